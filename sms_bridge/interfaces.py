"""
Collaborator interfaces.

The bridge core only talks to the outside world through these abstract
classes: settings, the team/member directory, back-off step storage, the
mailbox, the outbound text transport and the delayed-job runner. Concrete
database/IMAP implementations live in ``sms_bridge.directory``,
``sms_bridge.mailbox.client``, ``sms_bridge.bridge.transports`` and
``sms_bridge.jobs.runner``; tests substitute in-memory doubles.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Generic, List, Optional, Sequence, TypeVar

from .core.database import Team, Member


T = TypeVar("T")


@dataclass
class Outcome(Generic[T]):
    """Success-or-failure result of a collaborator call.

    Mailbox operations return an Outcome instead of raising so that each
    cycle step decides explicitly what a failure means for scheduling.
    """

    ok: bool
    value: Optional[T] = None
    error: Optional[Exception] = None

    @classmethod
    def success(cls, value: T = None) -> "Outcome[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: Exception) -> "Outcome[T]":
        return cls(ok=False, error=error)


@dataclass
class SearchResult:
    """Matches of a mailbox search."""

    count: int
    match_ids: List[int]


@dataclass
class FetchedMessage:
    """Full text of one fetched message."""

    message_id: int
    full_text: bytes


class SettingsStore(ABC):
    """Read-only access to global bridge options (e.g. ``debug``)."""

    @abstractmethod
    def get(self, option: str) -> Any:
        pass


class TeamDirectory(ABC):
    """Team lookup."""

    @abstractmethod
    def get_by_id(self, team_id: int) -> Optional[Team]:
        pass

    @abstractmethod
    def get_confirmed_members(self, team: Team) -> Sequence[Member]:
        pass


class MemberDirectory(ABC):
    """Member lookup."""

    @abstractmethod
    def get_by_phone_number(self, phone_number: str) -> Optional[Member]:
        pass


class BackoffStore(ABC):
    """Persisted per-team back-off step."""

    @abstractmethod
    def get_backoff_step(self, team_id: int) -> int:
        """Stored step, or 0 when none is stored."""

    @abstractmethod
    def set_backoff_step(self, team_id: int, step: int) -> None:
        pass

    @abstractmethod
    def clear_backoff_step(self, team_id: int) -> None:
        pass


class JobRunner(ABC):
    """Keyed single-shot delayed execution.

    A job is identified by ``(hook, team_id)``; scheduling a job that is
    already pending replaces it.
    """

    @abstractmethod
    def schedule(self, hook: str, at: datetime, team_id: int) -> None:
        pass

    @abstractmethod
    def cancel(self, hook: str, team_id: int) -> None:
        """Cancel the pending job; no-op when nothing is pending."""

    @abstractmethod
    def next_scheduled_time(self, hook: str, team_id: int) -> Optional[datetime]:
        pass


class MailboxClient(ABC):
    """Blocking mailbox protocol client for one connection."""

    @abstractmethod
    def connect(self, settings) -> Outcome[None]:
        """Connect and authenticate using ``ImapSettings``."""

    @abstractmethod
    def search(self, mailbox: str, query) -> Outcome[SearchResult]:
        """Run a ``SearchQuery`` against a mailbox."""

    @abstractmethod
    def fetch(self, mailbox: str, match_ids: List[int]) -> Outcome[List[FetchedMessage]]:
        """Fetch full RFC 822 text for each id, in the order given."""

    @abstractmethod
    def logout(self) -> None:
        pass


class SendTransport(ABC):
    """Outbound text delivery."""

    @abstractmethod
    def send(self, batch) -> None:
        """Deliver an ``OutboundBatch``.

        Raises:
            ForwardError: If the batch could not be handed off
        """
