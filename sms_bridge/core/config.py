"""
Configuration management for the SMS-Email Bridge.

Loads configuration from:
1. .env file (database URL and environment - never committed)
2. config.yaml (runtime settings: back-off timing, worker limits, debug flag)

Per-team IMAP credentials live in the database, not here.
"""

from dataclasses import dataclass, asdict, fields
from typing import List, Optional
import logging
import os
import yaml
from dotenv import load_dotenv


logger = logging.getLogger(__name__)


@dataclass
class DatabaseConfig:
    """Database configuration."""

    url: str = "sqlite:///sms_bridge.db"

    @property
    def connection_string(self) -> str:
        """SQLAlchemy connection string."""
        return self.url


@dataclass
class BridgeSettings:
    """Runtime bridge configuration (from config.yaml)."""

    # Diagnostics: log scheduling decisions and mailbox failures loudly
    debug: bool = False

    # Adaptive back-off timing
    backoff_time_step: int = 30
    backoff_multiplier: int = 2
    backoff_max_seconds: int = 600  # 10 minutes

    # Mailbox
    mailbox_name: str = "INBOX"
    imap_timeout_seconds: int = 30

    # Worker
    worker_poll_interval_seconds: float = 1.0
    max_concurrent_cycles: int = 5
    cycle_timeout_seconds: int = 300

    # Outbound transport: 'outbox' (database) or 'log' (dry run)
    transport: str = "outbox"


class ConfigManager:
    """Central configuration manager.

    Loads configuration from:
    - .env file for the database URL
    - config.yaml for runtime settings
    """

    def __init__(self, env_file: Optional[str] = None, config_file: Optional[str] = None):
        """
        Initialize configuration manager.

        Args:
            env_file: Path to .env file (default: .env in working directory)
            config_file: Path to config.yaml file (default: config.yaml in working directory)
        """
        if env_file is None:
            env_file = ".env"
        load_dotenv(env_file)

        if config_file is None:
            config_file = os.getenv("SMS_BRIDGE_CONFIG", "config.yaml")
        self.config_file = config_file

        self._load_env_config()
        self._load_yaml_config()

    def _load_env_config(self):
        """Load settings from environment."""
        self.env = os.getenv("SMS_BRIDGE_ENV", "development").lower()
        self.database = DatabaseConfig(url=os.getenv("DATABASE_URL", "sqlite:///sms_bridge.db"))

    def _load_yaml_config(self):
        """Load runtime configuration from config.yaml."""
        if not os.path.exists(self.config_file):
            self.bridge = BridgeSettings()
            return

        try:
            with open(self.config_file, "r") as f:
                data = yaml.safe_load(f) or {}

            # Ignore keys this version doesn't know about
            known = {f.name for f in fields(BridgeSettings)}
            unknown = sorted(set(data) - known)
            if unknown:
                logger.warning(f"Ignoring unknown config.yaml keys: {', '.join(unknown)}")

            self.bridge = BridgeSettings(**{k: v for k, v in data.items() if k in known})
        except (OSError, yaml.YAMLError, TypeError) as e:
            logger.warning(f"Failed to load {self.config_file}: {e}; using default configuration")
            self.bridge = BridgeSettings()

    def save_yaml_config(self):
        """Save runtime configuration to config.yaml."""
        with open(self.config_file, "w") as f:
            yaml.dump(asdict(self.bridge), f, default_flow_style=False, sort_keys=False)

        logger.info(f"Configuration saved to {self.config_file}")

    def reload_yaml_config(self):
        """Reload runtime configuration from config.yaml."""
        self._load_yaml_config()

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of validation error messages (empty if valid)
        """
        errors = []

        if not self.database.url:
            errors.append("DATABASE_URL is empty")

        if self.bridge.backoff_time_step < 1:
            errors.append("backoff_time_step must be >= 1")
        if self.bridge.backoff_multiplier < 2:
            errors.append("backoff_multiplier must be >= 2")
        if self.bridge.backoff_max_seconds < self.bridge.backoff_time_step:
            errors.append("backoff_max_seconds must be >= backoff_time_step")
        if self.bridge.max_concurrent_cycles < 1:
            errors.append("max_concurrent_cycles must be >= 1")
        if self.bridge.cycle_timeout_seconds < 1:
            errors.append("cycle_timeout_seconds must be >= 1")
        if self.bridge.transport not in ("outbox", "log"):
            errors.append(f"transport must be 'outbox' or 'log', got '{self.bridge.transport}'")
        if not self.bridge.mailbox_name:
            errors.append("mailbox_name must not be empty")

        return errors


# Global singleton instance
_config: Optional[ConfigManager] = None


def get_config(env_file: Optional[str] = None, config_file: Optional[str] = None) -> ConfigManager:
    """
    Get global configuration manager instance (singleton).

    Args:
        env_file: Path to .env file (only used on first call)
        config_file: Path to config.yaml file (only used on first call)

    Returns:
        ConfigManager instance
    """
    global _config
    if _config is None:
        _config = ConfigManager(env_file=env_file, config_file=config_file)
    return _config
