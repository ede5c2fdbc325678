"""
IMAP Mailbox Client

Wraps ``imapclient.IMAPClient`` behind the ``MailboxClient`` interface.
Every protocol error is caught at the call that raised it and returned as
a failed ``Outcome`` carrying a ``MailboxError``, so a polling cycle never
has to guess which step failed.

One instance holds one connection; create a fresh client per cycle.
"""

import logging
import ssl
from dataclasses import dataclass
from typing import List, Optional

from imapclient import IMAPClient
from imapclient.exceptions import IMAPClientError

from ..core.exceptions import MailboxConnectionError, MailboxSearchError, MailboxFetchError
from ..interfaces import MailboxClient, Outcome, SearchResult, FetchedMessage
from .query import SearchQuery


logger = logging.getLogger(__name__)

CONNECTION_SECURITY_MODES = ("none", "ssl", "tls")


@dataclass
class ImapSettings:
    """Connection settings for a team's gateway mailbox."""

    host: str
    username: str
    password: str
    port: int = 993
    security: str = "ssl"  # 'none', 'ssl' (implicit TLS) or 'tls' (STARTTLS)

    @classmethod
    def from_team(cls, team) -> Optional["ImapSettings"]:
        """
        Build settings from a Team row.

        Returns:
            ImapSettings, or None if host or username is missing
        """
        if not team.imap_server or not team.imap_username:
            return None

        security = (team.imap_connection_security or "ssl").lower()
        default_port = 993 if security == "ssl" else 143

        return cls(
            host=team.imap_server,
            username=team.imap_username,
            password=team.imap_password or "",
            port=team.imap_port or default_port,
            security=security,
        )


class ImapMailboxClient(MailboxClient):
    """
    Blocking IMAP client for one polling cycle.

    Usage:
        client = ImapMailboxClient(timeout=30)
        if client.connect(settings).ok:
            found = client.search("INBOX", query)
            ...
        client.logout()
    """

    def __init__(self, timeout: Optional[float] = 30, debug: bool = False):
        """
        Initialize client.

        Args:
            timeout: Socket timeout in seconds for connect and every command
            debug: Log the IMAP conversation (imapclient's own logger at DEBUG)
        """
        self.timeout = timeout
        self.debug = debug
        self._client: Optional[IMAPClient] = None
        self._selected: Optional[str] = None

    def connect(self, settings: ImapSettings) -> Outcome[None]:
        """Open the connection and log in."""
        if settings.security not in CONNECTION_SECURITY_MODES:
            return Outcome.failure(
                MailboxConnectionError(f"Unknown connection security '{settings.security}'")
            )

        try:
            client = IMAPClient(
                settings.host,
                port=settings.port,
                use_uid=True,
                ssl=settings.security == "ssl",
                timeout=self.timeout,
            )
            if self.debug:
                logging.getLogger("imapclient").setLevel(logging.DEBUG)
            if settings.security == "tls":
                client.starttls(ssl.create_default_context())
            client.login(settings.username, settings.password)
        except (IMAPClientError, OSError) as e:
            return Outcome.failure(
                MailboxConnectionError(f"Could not connect to {settings.host}:{settings.port} as {settings.username}: {e}")
            )

        self._client = client
        self._selected = None
        logger.debug(f"Connected to {settings.host}:{settings.port} ({settings.security})")
        return Outcome.success()

    def search(self, mailbox: str, query: SearchQuery) -> Outcome[SearchResult]:
        """Search a mailbox; ids are UIDs in ascending order."""
        try:
            self._select(mailbox)
            ids = sorted(self._client.search(query.to_criteria()))
        except (IMAPClientError, OSError) as e:
            return Outcome.failure(MailboxSearchError(f"SEARCH {query} in {mailbox} failed: {e}"))

        return Outcome.success(SearchResult(count=len(ids), match_ids=ids))

    def fetch(self, mailbox: str, match_ids: List[int]) -> Outcome[List[FetchedMessage]]:
        """
        Fetch full message text.

        Fetching RFC822 (not BODY.PEEK) sets \\Seen on the server, so a
        forwarded message is not matched again by the next cycle's search.
        """
        try:
            self._select(mailbox)
            response = self._client.fetch(match_ids, ["RFC822"])
        except (IMAPClientError, OSError) as e:
            return Outcome.failure(MailboxFetchError(f"FETCH {len(match_ids)} messages from {mailbox} failed: {e}"))

        messages = []
        for uid in match_ids:
            data = response.get(uid)
            if data is None or b"RFC822" not in data:
                # Expunged between SEARCH and FETCH
                logger.warning(f"Message {uid} missing from FETCH response, skipping")
                continue
            messages.append(FetchedMessage(message_id=uid, full_text=data[b"RFC822"]))

        return Outcome.success(messages)

    def logout(self) -> None:
        """Close the connection; safe to call when not connected."""
        if self._client is None:
            return
        try:
            self._client.logout()
        except (IMAPClientError, OSError) as e:
            logger.debug(f"IMAP logout failed: {e}")
        finally:
            self._client = None
            self._selected = None

    def _select(self, mailbox: str):
        if self._client is None:
            raise IMAPClientError("Not connected")
        if self._selected != mailbox:
            self._client.select_folder(mailbox)
            self._selected = mailbox
