"""
Logging configuration for the SMS-Email Bridge.

The worker checks several team mailboxes at once, each cycle in its own
thread, so its format carries the thread name to keep interleaved cycles
apart.
"""

import logging
import logging.handlers
from pathlib import Path


LOG_FORMATS = {
    "standard": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    "worker": "%(asctime)s - %(threadName)s - %(name)s - %(levelname)s - %(message)s",
    "detailed": "%(asctime)s - %(threadName)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s",
}

# Libraries that log every statement or protocol line at DEBUG
NOISY_LOGGERS = ("imapclient", "sqlalchemy.engine")


def setup_logging(
    log_level: str = "INFO",
    log_file: str = None,
    log_to_console: bool = True,
    log_format: str = "standard",
    imap_trace: bool = False,
    max_bytes: int = 5 * 1024 * 1024,
):
    """
    Configure application logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file (None = no file logging)
        log_to_console: Whether to log to console
        log_format: Format style ('standard', 'worker', 'detailed')
        imap_trace: Log the IMAP conversation (imapclient at DEBUG)
        max_bytes: Size at which the log file is rotated

    Raises:
        ValueError: If log_level or log_format is unknown
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {log_level}")
    if log_format not in LOG_FORMATS:
        raise ValueError(f"Unknown log format '{log_format}' (choose from {', '.join(LOG_FORMATS)})")

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(LOG_FORMATS[log_format], datefmt="%Y-%m-%d %H:%M:%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    if log_to_console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=max_bytes, backupCount=5, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    if imap_trace:
        logging.getLogger("imapclient").setLevel(logging.DEBUG)

    logging.info(f"Logging configured: level={log_level}, format={log_format}, file={log_file}")
