"""
Component wiring.

Builds the bridge and its collaborators from configuration, for the CLI
and the worker.
"""

from dataclasses import dataclass

from ..core.config import ConfigManager
from ..core.database import DatabaseManager
from ..directory import DatabaseDirectory, ConfigSettingsStore
from ..jobs.runner import DatabaseJobRunner
from ..jobs.scheduler import BackoffScheduler
from ..mailbox.client import ImapMailboxClient
from .bridge import MessageBridge
from .forwarder import Forwarder
from .lifecycle import BridgeRegistrar
from .transports import OutboxTransport, LoggingTransport


@dataclass
class BridgeComponents:
    """Everything needed to run and manage bridge cycles."""

    db: DatabaseManager
    directory: DatabaseDirectory
    job_runner: DatabaseJobRunner
    scheduler: BackoffScheduler
    bridge: MessageBridge
    registrar: BridgeRegistrar


def build_components(config: ConfigManager, db: DatabaseManager, dry_run: bool = False) -> BridgeComponents:
    """
    Wire the bridge to the database, IMAP and the configured transport.

    Args:
        config: Configuration manager
        db: DatabaseManager instance
        dry_run: Log outbound texts instead of queueing them

    Returns:
        BridgeComponents
    """
    settings = ConfigSettingsStore(config)
    directory = DatabaseDirectory(db)
    job_runner = DatabaseJobRunner(db)

    scheduler = BackoffScheduler(
        job_runner,
        directory,
        settings,
        time_step=config.bridge.backoff_time_step,
        multiplier=config.bridge.backoff_multiplier,
        max_seconds=config.bridge.backoff_max_seconds,
    )

    if dry_run or config.bridge.transport == "log":
        transport = LoggingTransport()
    else:
        transport = OutboxTransport(db)

    bridge = MessageBridge(
        teams=directory,
        members=directory,
        backoff_store=directory,
        mailbox_factory=lambda: ImapMailboxClient(
            timeout=config.bridge.imap_timeout_seconds, debug=bool(settings.get("debug"))
        ),
        forwarder=Forwarder(transport),
        scheduler=scheduler,
        settings=settings,
        mailbox_name=config.bridge.mailbox_name,
    )

    return BridgeComponents(
        db=db,
        directory=directory,
        job_runner=job_runner,
        scheduler=scheduler,
        bridge=bridge,
        registrar=BridgeRegistrar(db, scheduler),
    )
