"""
Bridge Module

Forwards texts from a team's gateway mailbox to the rest of the team:
- MessageBridge runs one polling cycle
- Forwarder builds outbound batches (never addressed to the sender)
- BridgeRegistrar starts/stops polling as teams are enabled or removed
"""

from .bridge import MessageBridge, CycleResult
from .forwarder import Forwarder, OutboundBatch
from .lifecycle import BridgeRegistrar
from .transports import OutboxTransport, LoggingTransport

__all__ = [
    "MessageBridge",
    "CycleResult",
    "Forwarder",
    "OutboundBatch",
    "BridgeRegistrar",
    "OutboxTransport",
    "LoggingTransport",
]
