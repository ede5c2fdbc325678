"""
Scheduled Job Runner

Database-backed single-shot delayed jobs, keyed by (hook, team). Each key
has at most one row: scheduling an already-pending key replaces the row,
so a team can never have two runs queued at once.

Workers claim due rows atomically and delete them once the handler has
finished. A handler that reschedules its own key (the bridge does, at the
end of every cycle) replaces the claimed row with a new one, which the
worker then leaves alone.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..core.database import DatabaseManager, ScheduledJob
from ..core.exceptions import JobRunnerError
from ..interfaces import JobRunner


logger = logging.getLogger(__name__)


class DatabaseJobRunner(JobRunner):
    """
    Keyed delayed-job storage with atomic claiming.

    Usage:
        runner = DatabaseJobRunner(db)
        runner.schedule("sms_email_bridge_run", datetime.now() + timedelta(seconds=30), team_id=1)

        # Worker side
        for job in runner.claim_due_jobs(worker_id="worker-1", limit=5):
            handle(job)
            runner.complete(job.id)
    """

    def __init__(self, db: DatabaseManager):
        """
        Initialize job runner.

        Args:
            db: DatabaseManager instance
        """
        self.db = db

    def schedule(self, hook: str, at: datetime, team_id: int) -> None:
        """Schedule (or reschedule) the job for ``(hook, team_id)``."""
        session = self.db.get_session()
        try:
            existing = session.query(ScheduledJob).filter_by(hook=hook, team_id=team_id).first()
            if existing is not None:
                session.delete(existing)
                session.flush()  # free the (hook, team_id) key before inserting

            session.add(ScheduledJob(hook=hook, team_id=team_id, run_at=at))
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise JobRunnerError(f"Failed to schedule {hook} for team {team_id}: {e}") from e
        finally:
            session.close()

        logger.debug(f"Scheduled {hook} for team {team_id} at {at.strftime('%Y-%m-%d %H:%M:%S')}")

    def cancel(self, hook: str, team_id: int) -> None:
        """Delete the pending job for ``(hook, team_id)``; no-op when there is none."""
        with self.db.get_session() as session:
            deleted = session.query(ScheduledJob).filter_by(hook=hook, team_id=team_id).delete()
            session.commit()

        if deleted:
            logger.debug(f"Cancelled {hook} for team {team_id}")

    def next_scheduled_time(self, hook: str, team_id: int) -> Optional[datetime]:
        with self.db.get_session() as session:
            job = session.query(ScheduledJob).filter_by(hook=hook, team_id=team_id).first()
            return job.run_at if job else None

    def claim_due_jobs(self, worker_id: str, limit: int = 1, now: Optional[datetime] = None) -> List[ScheduledJob]:
        """
        Atomically claim jobs whose run time has passed.

        Selection: unclaimed, run_at <= now, earliest run_at first.

        Args:
            worker_id: Worker identifier (for tracking)
            limit: Maximum number of jobs to claim
            now: Current time (default: datetime.now())

        Returns:
            Claimed jobs (possibly empty)
        """
        if limit <= 0:
            return []
        now = now or datetime.now()

        with self.db.get_session() as session:
            jobs = (
                session.query(ScheduledJob)
                .filter(ScheduledJob.claimed_at.is_(None), ScheduledJob.run_at <= now)
                .order_by(ScheduledJob.run_at.asc(), ScheduledJob.id.asc())
                .limit(limit)
                .with_for_update(skip_locked=True)
                .all()
            )

            for job in jobs:
                job.claimed_by = worker_id
                job.claimed_at = now
            session.commit()

        for job in jobs:
            logger.info(f"Claimed job {job.id} ({job.hook}, team {job.team_id}, due {job.run_at})")

        return jobs

    def complete(self, job_id: int) -> bool:
        """
        Remove a finished job.

        Returns:
            True if the row was still there (the handler did not reschedule)
        """
        with self.db.get_session() as session:
            deleted = session.query(ScheduledJob).filter_by(id=job_id).delete()
            session.commit()
        return deleted > 0

    def release(self, job_id: int, run_at: datetime) -> bool:
        """
        Unclaim a job and move it to a new run time (handler crashed before rescheduling).

        Returns:
            True if the job still existed
        """
        with self.db.get_session() as session:
            job = session.get(ScheduledJob, job_id)
            if job is None:
                return False
            job.claimed_by = None
            job.claimed_at = None
            job.run_at = run_at
            session.commit()
        return True

    def update_heartbeat(self, job_id: int, now: Optional[datetime] = None) -> bool:
        """
        Refresh the claim time of a job whose cycle is still running.

        Args:
            job_id: Claimed job ID
            now: Current time (default: datetime.now())

        Returns:
            True if the job is still claimed and was refreshed
        """
        with self.db.get_session() as session:
            job = session.get(ScheduledJob, job_id)
            if job and job.claimed_at is not None:
                job.claimed_at = now or datetime.now()
                session.commit()
                return True
            return False

    def release_stale_claims(self, max_age_seconds: int = 900, now: Optional[datetime] = None) -> int:
        """
        Make jobs claimed by a worker that died mid-cycle claimable again.

        Args:
            max_age_seconds: Claims older than this are considered orphaned
            now: Current time (default: datetime.now())

        Returns:
            Number of jobs released
        """
        now = now or datetime.now()
        cutoff = now - timedelta(seconds=max_age_seconds)

        with self.db.get_session() as session:
            stale = session.query(ScheduledJob).filter(
                ScheduledJob.claimed_at.isnot(None), ScheduledJob.claimed_at < cutoff
            ).all()
            for job in stale:
                logger.warning(f"Releasing orphaned job {job.id} (team {job.team_id}, claimed by {job.claimed_by})")
                job.claimed_by = None
                job.claimed_at = None
            session.commit()

        return len(stale)

    def list_jobs(self, hook: Optional[str] = None) -> List[ScheduledJob]:
        """All pending and claimed jobs, earliest first."""
        with self.db.get_session() as session:
            query = session.query(ScheduledJob)
            if hook:
                query = query.filter(ScheduledJob.hook == hook)
            return query.order_by(ScheduledJob.run_at.asc()).all()
