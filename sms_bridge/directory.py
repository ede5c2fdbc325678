"""
Team and Member Directory

Database-backed implementations of the bridge's lookup collaborators:
- Team lookup and confirmed member listing
- Member lookup by phone number
- Per-team back-off step storage
- Global options read from the runtime configuration
"""

import logging
import re
from typing import Any, List, Optional

from .core.config import ConfigManager
from .core.database import DatabaseManager, Team, Member, TeamMembership
from .core.exceptions import TeamNotFoundError
from .interfaces import TeamDirectory, MemberDirectory, BackoffStore, SettingsStore


logger = logging.getLogger(__name__)

# Shortest digit suffix accepted as the same number (national significant number)
MIN_SUFFIX_DIGITS = 10


def normalize_phone_number(phone_number: Optional[str]) -> str:
    """Strip everything but digits: '+1 (555) 123-4567' -> '15551234567'."""
    if not phone_number:
        return ""
    return re.sub(r"\D", "", phone_number)


def phone_numbers_match(a: Optional[str], b: Optional[str]) -> bool:
    """
    Compare two phone numbers by digits.

    Gateways usually drop the country code ('5551234567@vtext.com') while
    members are stored in E.164 ('+15551234567'), so a shared suffix of at
    least MIN_SUFFIX_DIGITS digits also counts as a match.
    """
    da, db = normalize_phone_number(a), normalize_phone_number(b)
    if not da or not db:
        return False
    if da == db:
        return True

    shorter, longer = sorted((da, db), key=len)
    return len(shorter) >= MIN_SUFFIX_DIGITS and longer.endswith(shorter)


class DatabaseDirectory(TeamDirectory, MemberDirectory, BackoffStore):
    """
    Team, member and back-off lookups backed by the bridge database.

    Usage:
        db = DatabaseManager(config.database.connection_string)
        directory = DatabaseDirectory(db)

        team = directory.get_by_id(1)
        recipients = directory.get_confirmed_members(team)
    """

    def __init__(self, db: DatabaseManager):
        """
        Initialize directory.

        Args:
            db: DatabaseManager instance
        """
        self.db = db

    # ------------------------------------------------------------------------
    # Teams
    # ------------------------------------------------------------------------

    def get_by_id(self, team_id: int) -> Optional[Team]:
        return self.db.get_team(team_id)

    def get_confirmed_members(self, team: Team) -> List[Member]:
        """Members with a confirmed membership on the team, in join order."""
        with self.db.get_session() as session:
            return (
                session.query(Member)
                .join(TeamMembership)
                .filter(TeamMembership.team_id == team.id, TeamMembership.confirmed == True)  # noqa: E712
                .order_by(TeamMembership.joined_at, TeamMembership.id)
                .all()
            )

    # ------------------------------------------------------------------------
    # Members
    # ------------------------------------------------------------------------

    def get_by_phone_number(self, phone_number: str) -> Optional[Member]:
        """
        Find the member a phone number belongs to.

        Exact matches win; otherwise numbers are compared by digits.
        """
        if not phone_number:
            return None

        with self.db.get_session() as session:
            exact = session.query(Member).filter(Member.phone_number == phone_number).first()
            if exact:
                return exact

            candidates = session.query(Member).filter(Member.phone_number.isnot(None)).all()
            for member in candidates:
                if phone_numbers_match(member.phone_number, phone_number):
                    return member

        logger.debug(f"No member found for phone number {phone_number}")
        return None

    # ------------------------------------------------------------------------
    # Back-off step
    # ------------------------------------------------------------------------

    def get_backoff_step(self, team_id: int) -> int:
        team = self.db.get_team(team_id)
        if team is None or team.backoff_step is None:
            return 0
        return abs(int(team.backoff_step))

    def set_backoff_step(self, team_id: int, step: int) -> None:
        try:
            self.db.update_team(team_id, backoff_step=step)
        except TeamNotFoundError:
            logger.warning(f"Cannot store back-off step {step}: team {team_id} no longer exists")

    def clear_backoff_step(self, team_id: int) -> None:
        try:
            self.db.update_team(team_id, backoff_step=None)
        except TeamNotFoundError:
            pass


class ConfigSettingsStore(SettingsStore):
    """Global options read from the runtime configuration (config.yaml)."""

    def __init__(self, config: ConfigManager):
        self.config = config

    def get(self, option: str) -> Any:
        return getattr(self.config.bridge, option, None)
