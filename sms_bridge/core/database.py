"""
Database models and management for the SMS-Email Bridge.

This module contains all SQLAlchemy models and the DatabaseManager class
for database operations.
"""

from sqlalchemy import (
    create_engine,
    Column,
    Integer,
    String,
    Text,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    CheckConstraint,
    UniqueConstraint,
    JSON,
)
from sqlalchemy.orm import sessionmaker, relationship, declarative_base
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql import func
from typing import Optional, List
import logging

from .exceptions import TeamNotFoundError, MemberNotFoundError

Base = declarative_base()


# ============================================================================
# TEAMS & MEMBERS
# ============================================================================


class Team(Base):
    """A group whose members exchange texts through a shared SMS gateway mailbox."""

    __tablename__ = "teams"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)

    # Bridge settings
    bridge_enabled = Column(Boolean, default=False, index=True)
    imap_server = Column(String(255))
    imap_port = Column(Integer)  # NULL = default port for the connection security mode
    imap_username = Column(String(255))
    imap_password = Column(String(255))
    imap_connection_security = Column(String(10), default="ssl")  # 'none', 'ssl', 'tls'

    # Adaptive polling state (NULL = cleared, read as 0)
    backoff_step = Column(Integer)

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    memberships = relationship("TeamMembership", back_populates="team", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint(
            "imap_connection_security IN ('none', 'ssl', 'tls')", name="valid_connection_security"
        ),
        CheckConstraint("backoff_step IS NULL OR backoff_step >= 0", name="non_negative_backoff_step"),
    )


class Member(Base):
    """An individual who may belong to teams."""

    __tablename__ = "members"

    id = Column(Integer, primary_key=True)
    display_name = Column(String(255))
    phone_number = Column(String(32), index=True)  # E.164-style, e.g. +15551234567
    created_at = Column(DateTime, default=func.now())

    memberships = relationship("TeamMembership", back_populates="member", cascade="all, delete-orphan")


class TeamMembership(Base):
    """Member's place on a team. Only confirmed memberships receive texts."""

    __tablename__ = "team_memberships"

    id = Column(Integer, primary_key=True)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    member_id = Column(Integer, ForeignKey("members.id", ondelete="CASCADE"), nullable=False, index=True)
    confirmed = Column(Boolean, default=False)
    joined_at = Column(DateTime, default=func.now())

    team = relationship("Team", back_populates="memberships")
    member = relationship("Member", back_populates="memberships")

    __table_args__ = (UniqueConstraint("team_id", "member_id", name="uq_team_member"),)


# ============================================================================
# SCHEDULING & DELIVERY
# ============================================================================


class ScheduledJob(Base):
    """Delayed single-shot job. At most one row per (hook, team)."""

    __tablename__ = "scheduled_jobs"

    id = Column(Integer, primary_key=True)
    hook = Column(String(100), nullable=False)
    team_id = Column(Integer, nullable=False)
    run_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, default=func.now())

    # Worker tracking
    claimed_by = Column(String(100))
    claimed_at = Column(DateTime)

    __table_args__ = (
        UniqueConstraint("hook", "team_id", name="uq_job_hook_team"),
        Index("idx_scheduled_jobs_due", "claimed_at", "run_at"),
        # IDs must never be reused: a worker completes its claimed job by ID
        # after the handler may have replaced it with a new row
        {"sqlite_autoincrement": True},
    )


class OutboundMessage(Base):
    """Outbound text waiting for the external SMS sender."""

    __tablename__ = "outbound_messages"

    id = Column(Integer, primary_key=True)
    team_id = Column(Integer, index=True)
    sender_phone = Column(String(32), nullable=False)
    sender_member_id = Column(Integer)
    body = Column(Text, nullable=False)
    addressee_phones = Column(JSON, nullable=False)  # ["+15551230001", ...]
    status = Column(String(20), default="pending", index=True)  # 'pending', 'sent', 'failed'
    created_at = Column(DateTime, default=func.now(), index=True)

    __table_args__ = (CheckConstraint("status IN ('pending', 'sent', 'failed')", name="valid_outbound_status"),)


class DatabaseManager:
    """Database operations manager."""

    def __init__(self, connection_string: str):
        """Initialize database manager with connection string."""
        self.logger = logging.getLogger(__name__)
        self.connection_string = connection_string

        if connection_string.startswith("sqlite"):
            # Worker cycles run in threads; in-memory databases need one shared connection
            engine_kwargs = {"connect_args": {"check_same_thread": False}}
            if ":memory:" in connection_string or connection_string in ("sqlite://", "sqlite:///"):
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs = {"pool_size": 10, "max_overflow": 20, "pool_pre_ping": True}

        self.engine = create_engine(connection_string, echo=False, **engine_kwargs)

        # Create session factory
        self.SessionLocal = sessionmaker(bind=self.engine, autocommit=False, autoflush=False, expire_on_commit=False)

    def create_tables(self):
        """Create all database tables."""
        Base.metadata.create_all(self.engine)
        self.logger.info("Database tables created successfully")

    def drop_tables(self):
        """Drop all database tables (use with caution!)."""
        Base.metadata.drop_all(self.engine)
        self.logger.warning("All database tables dropped")

    def get_session(self):
        """Get a new database session."""
        return self.SessionLocal()

    # ========================================================================
    # TEAM METHODS
    # ========================================================================

    def add_team(self, name: str, **kwargs) -> Team:
        """Create a team."""
        session = self.get_session()
        try:
            team = Team(name=name, **kwargs)
            session.add(team)
            session.commit()
            self.logger.info(f"Added team {team.id}: {name}")
            return team
        except Exception as e:
            session.rollback()
            self.logger.error(f"Failed to add team {name}: {e}")
            raise
        finally:
            session.close()

    def get_team(self, team_id: int) -> Optional[Team]:
        """Find team by ID."""
        with self.get_session() as session:
            return session.get(Team, team_id)

    def list_teams(self) -> List[Team]:
        """Get all teams ordered by ID."""
        with self.get_session() as session:
            return session.query(Team).order_by(Team.id).all()

    def update_team(self, team_id: int, **kwargs) -> Team:
        """Update team columns.

        Raises:
            TeamNotFoundError: If the team does not exist
        """
        session = self.get_session()
        try:
            team = session.get(Team, team_id)
            if team is None:
                raise TeamNotFoundError(f"Team {team_id} not found")
            for key, value in kwargs.items():
                setattr(team, key, value)
            session.commit()
            return team
        except TeamNotFoundError:
            raise
        except Exception as e:
            session.rollback()
            self.logger.error(f"Failed to update team {team_id}: {e}")
            raise
        finally:
            session.close()

    def delete_team(self, team_id: int) -> bool:
        """Delete team and its memberships. Returns False if it didn't exist."""
        with self.get_session() as session:
            team = session.get(Team, team_id)
            if team is None:
                return False
            session.delete(team)
            session.commit()
            self.logger.info(f"Deleted team {team_id}")
            return True

    # ========================================================================
    # MEMBER METHODS
    # ========================================================================

    def add_member(self, display_name: str, phone_number: Optional[str] = None) -> Member:
        """Create a member."""
        with self.get_session() as session:
            member = Member(display_name=display_name, phone_number=phone_number or None)
            session.add(member)
            session.commit()
            self.logger.info(f"Added member {member.id}: {display_name}")
            return member

    def list_members(self, team_id: Optional[int] = None) -> List[Member]:
        """Get members, optionally only those on one team."""
        with self.get_session() as session:
            query = session.query(Member)
            if team_id is not None:
                query = query.join(TeamMembership).filter(TeamMembership.team_id == team_id)
            return query.order_by(Member.id).all()

    def add_membership(self, team_id: int, member_id: int, confirmed: bool = True) -> TeamMembership:
        """Put a member on a team (or update the confirmation of an existing membership).

        Raises:
            TeamNotFoundError: If the team does not exist
            MemberNotFoundError: If the member does not exist
        """
        with self.get_session() as session:
            if session.get(Team, team_id) is None:
                raise TeamNotFoundError(f"Team {team_id} not found")
            if session.get(Member, member_id) is None:
                raise MemberNotFoundError(f"Member {member_id} not found")

            membership = (
                session.query(TeamMembership).filter_by(team_id=team_id, member_id=member_id).first()
            )
            if membership is None:
                membership = TeamMembership(team_id=team_id, member_id=member_id)
                session.add(membership)
            membership.confirmed = confirmed
            session.commit()
            return membership

    # ========================================================================
    # OUTBOX METHODS
    # ========================================================================

    def list_outbound_messages(self, status: Optional[str] = None, limit: int = 50) -> List[OutboundMessage]:
        """Get recent outbound messages, newest first."""
        with self.get_session() as session:
            query = session.query(OutboundMessage)
            if status:
                query = query.filter(OutboundMessage.status == status)
            return query.order_by(OutboundMessage.id.desc()).limit(limit).all()
