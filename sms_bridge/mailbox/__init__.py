"""
Mailbox Module

Reads texts relayed into an IMAP mailbox by a carrier's SMS-to-email gateway:
- Search query composition (unseen mail from known phone numbers)
- IMAP client with explicit success/failure outcomes
- Sender phone number and body extraction
"""

from .client import ImapMailboxClient, ImapSettings
from .parser import InboundMessage, InboundMessageParser
from .query import SearchQuery, HeaderContains, Unseen, AndQuery, OrQuery, build_unseen_from_query

__all__ = [
    "ImapMailboxClient",
    "ImapSettings",
    "InboundMessage",
    "InboundMessageParser",
    "SearchQuery",
    "HeaderContains",
    "Unseen",
    "AndQuery",
    "OrQuery",
    "build_unseen_from_query",
]
