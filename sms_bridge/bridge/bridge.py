"""
SMS-Email Bridge Cycle

One polling cycle for one team:
1. Resolve the team (absent or disabled -> nothing to do)
2. Collect confirmed members with phone numbers
3. Connect to the team's gateway mailbox
4. Search for unread mail from any member's number
5. Fetch, parse and forward each match to the rest of the team
6. Re-arm the back-off scheduler

Mailbox failures never escape a cycle. Connect, search and fetch failures
are treated like an empty mailbox so the team keeps being polled at its
current back-off cadence until the server recovers.
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from ..core.database import Member
from ..core.exceptions import MessageParseError
from ..interfaces import TeamDirectory, MemberDirectory, BackoffStore, MailboxClient, SettingsStore
from ..jobs.scheduler import BackoffScheduler
from ..mailbox.client import ImapSettings
from ..mailbox.parser import InboundMessageParser
from ..mailbox.query import build_unseen_from_query
from .forwarder import Forwarder


logger = logging.getLogger(__name__)


# Cycle outcomes
SKIPPED = "skipped"  # team absent, disabled or not configured
FORWARDED = "forwarded"  # new messages found
NO_MESSAGES = "no_messages"
CONNECT_FAILED = "connect_failed"
SEARCH_FAILED = "search_failed"
FETCH_FAILED = "fetch_failed"


@dataclass
class CycleResult:
    """What one cycle did."""

    team_id: int
    outcome: str
    matched: int = 0
    forwarded: int = 0
    parse_errors: int = 0
    backoff_step: Optional[int] = None  # step the next run was scheduled with

    @property
    def rescheduled(self) -> bool:
        return self.backoff_step is not None


class MessageBridge:
    """
    Checks a team's gateway mailbox and forwards new texts to the team.

    Usage:
        bridge = MessageBridge(
            teams=directory,
            members=directory,
            backoff_store=directory,
            mailbox_factory=lambda: ImapMailboxClient(timeout=30),
            forwarder=Forwarder(OutboxTransport(db)),
            scheduler=BackoffScheduler(job_runner, directory, settings),
            settings=settings,
        )
        result = bridge.run(team_id)
    """

    def __init__(
        self,
        teams: TeamDirectory,
        members: MemberDirectory,
        backoff_store: BackoffStore,
        mailbox_factory: Callable[[], MailboxClient],
        forwarder: Forwarder,
        scheduler: BackoffScheduler,
        settings: SettingsStore,
        mailbox_name: str = "INBOX",
        parser: Optional[InboundMessageParser] = None,
    ):
        """
        Initialize bridge.

        Args:
            teams: Team lookup
            members: Member lookup by phone number
            backoff_store: Per-team back-off step
            mailbox_factory: Returns a fresh, unconnected mailbox client
            forwarder: Outbound text forwarder
            scheduler: Back-off scheduler used to re-arm the next run
            settings: Global options (``debug``)
            mailbox_name: Mailbox (folder) to search
            parser: Inbound message parser
        """
        self.teams = teams
        self.members = members
        self.backoff_store = backoff_store
        self.mailbox_factory = mailbox_factory
        self.forwarder = forwarder
        self.scheduler = scheduler
        self.settings = settings
        self.mailbox_name = mailbox_name
        self.parser = parser or InboundMessageParser()

    def run(self, team_id: int) -> CycleResult:
        """
        Run one polling cycle for a team.

        Args:
            team_id: Team to check

        Returns:
            CycleResult describing the cycle
        """
        team = self.teams.get_by_id(team_id)
        if team is None or not team.bridge_enabled:
            logger.debug(f"Bridge not enabled for team {team_id}, nothing to do")
            return CycleResult(team_id=team_id, outcome=SKIPPED)

        imap_settings = ImapSettings.from_team(team)
        if imap_settings is None:
            logger.debug(f"Team {team_id} has no mailbox settings, nothing to do")
            return CycleResult(team_id=team_id, outcome=SKIPPED)

        # Read once; the cycle writes the successor step when it reschedules
        current_step = self.backoff_store.get_backoff_step(team_id)
        recipients = self._get_recipients(team)

        mailbox = self.mailbox_factory()
        try:
            return self._check_mailbox(team_id, mailbox, imap_settings, recipients, current_step)
        finally:
            mailbox.logout()

    def _get_recipients(self, team) -> List[Member]:
        """Confirmed members with a phone number, looked up fresh every cycle."""
        return [m for m in self.teams.get_confirmed_members(team) if m.phone_number]

    def _check_mailbox(
        self,
        team_id: int,
        mailbox: MailboxClient,
        imap_settings: ImapSettings,
        recipients: List[Member],
        current_step: int,
    ) -> CycleResult:
        connected = mailbox.connect(imap_settings)
        if not connected.ok:
            self._log_failure(f"Team {team_id}: failed to connect to IMAP server: {connected.error}")
            return self._back_off(team_id, current_step, CONNECT_FAILED)

        if not recipients:
            logger.debug(f"Team {team_id} has no confirmed members with phone numbers")
            return self._back_off(team_id, current_step, NO_MESSAGES)

        query = build_unseen_from_query(r.phone_number for r in recipients)
        found = mailbox.search(self.mailbox_name, query)
        if not found.ok:
            self._log_failure(f"Team {team_id}: mailbox search failed: {found.error}")
            return self._back_off(team_id, current_step, SEARCH_FAILED)

        if not found.value.count:
            return self._back_off(team_id, current_step, NO_MESSAGES)

        logger.info(f"Team {team_id}: {found.value.count} new message(s) in {self.mailbox_name}")

        fetched = mailbox.fetch(self.mailbox_name, found.value.match_ids)
        if not fetched.ok:
            # Messages stay unseen on the server; the next cycle picks them up again
            logger.error(f"Team {team_id}: failed to fetch {found.value.count} message(s): {fetched.error}")
            return self._back_off(team_id, current_step, FETCH_FAILED, matched=found.value.count)

        result = CycleResult(team_id=team_id, outcome=FORWARDED, matched=found.value.count)
        for data in fetched.value:
            try:
                message = self.parser.parse(data.full_text, data.message_id)
            except MessageParseError as e:
                logger.warning(f"Team {team_id}: skipping unparseable message: {e}")
                result.parse_errors += 1
                continue

            sender = self._resolve_sender(message.sender_phone)
            if self.forwarder.forward(message.body, recipients, sender, team_id=team_id) is not None:
                result.forwarded += 1

        # Activity seen: reset to the fast cadence
        self.scheduler.schedule_next(team_id, 0)
        result.backoff_step = 0
        return result

    def _resolve_sender(self, phone_number: str) -> Member:
        """Member with this number, or a phone-number-only identity when unknown."""
        member = self.members.get_by_phone_number(phone_number)
        if member is None:
            return Member(phone_number=phone_number)
        return member

    def _back_off(self, team_id: int, current_step: int, outcome: str, matched: int = 0) -> CycleResult:
        self.scheduler.schedule_next(team_id, current_step)
        return CycleResult(team_id=team_id, outcome=outcome, matched=matched, backoff_step=current_step)

    def _log_failure(self, message: str):
        if self.settings.get("debug"):
            logger.warning(message)
        else:
            logger.debug(message)
