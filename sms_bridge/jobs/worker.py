"""
Bridge Worker

Asynchronous worker that claims due scheduled jobs and runs their hook
handlers. Mailbox checks block on network I/O, so each handler runs in a
thread; up to ``max_concurrent`` teams are checked at once.
"""

import asyncio
import logging
import signal
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from ..core.database import ScheduledJob
from .runner import DatabaseJobRunner


logger = logging.getLogger(__name__)

# Hook handler: called with the team ID
HookHandler = Callable[[int], Any]


class BridgeWorker:
    """
    Runs scheduled bridge cycles.

    Features:
    - Concurrent cycles for different teams (bounded)
    - Per-cycle timeout
    - Crashed cycles retried after ``retry_delay_seconds``
    - Timed-out cycles keep a refreshed claim until their thread ends
    - Orphaned claims released periodically
    - Graceful shutdown on SIGTERM/SIGINT

    Usage:
        worker = BridgeWorker(job_runner, {BRIDGE_HOOK: bridge.run}, max_concurrent=5)
        worker.run()  # Blocks and handles signals
    """

    def __init__(
        self,
        job_runner: DatabaseJobRunner,
        handlers: Dict[str, HookHandler],
        max_concurrent: int = 5,
        cycle_timeout: int = 300,
        poll_interval: float = 1.0,
        retry_delay_seconds: int = 60,
        stale_claim_seconds: Optional[int] = None,
    ):
        """
        Initialize worker.

        Args:
            job_runner: Job storage to claim from
            handlers: Hook name -> handler
            max_concurrent: Maximum concurrent cycles (default 5)
            cycle_timeout: Seconds before a cycle gives up its slot (default 300)
            poll_interval: Seconds between claim attempts
            retry_delay_seconds: Delay before re-running a job whose handler raised
            stale_claim_seconds: Claims older than this are released (default 3x cycle_timeout)
        """
        self.job_runner = job_runner
        self.handlers = dict(handlers)
        self.max_concurrent = max_concurrent
        self.cycle_timeout = cycle_timeout
        self.poll_interval = poll_interval
        self.retry_delay_seconds = retry_delay_seconds
        self.stale_claim_seconds = stale_claim_seconds or cycle_timeout * 3

        self.worker_id = f"worker-{uuid.uuid4().hex[:8]}"
        self.running = False
        self.active_jobs: Dict[int, asyncio.Task] = {}
        # Timed-out cycles whose threads are still running
        self.overrunning: Dict[int, asyncio.Future] = {}

        logger.info(
            f"BridgeWorker initialized (id: {self.worker_id}, "
            f"max_concurrent: {max_concurrent}, timeout: {cycle_timeout}s, "
            f"hooks: {', '.join(sorted(self.handlers)) or 'none'})"
        )

    def register_handler(self, hook: str, handler: HookHandler):
        """Run ``handler(team_id)`` for jobs scheduled under ``hook``."""
        self.handlers[hook] = handler

    async def start(self):
        """
        Process jobs until stopped.

        Each iteration claims due jobs for free slots, starts them, and
        sleeps for ``poll_interval``. Orphaned claims are released about
        once a minute.
        """
        self.running = True
        last_sweep = datetime.now()

        logger.info(f"Worker {self.worker_id} started")

        try:
            while self.running:
                await self.process_due_jobs()

                if (datetime.now() - last_sweep).total_seconds() >= 60:
                    self.sweep_stale_claims()
                    last_sweep = datetime.now()

                await asyncio.sleep(self.poll_interval)
        finally:
            await self.stop()

    async def stop(self):
        """
        Stop the worker.

        Waits up to 30 seconds for running cycles to complete.
        """
        self.running = False

        if self.active_jobs:
            logger.info(f"Waiting for {len(self.active_jobs)} active cycle(s) to complete...")
            try:
                await asyncio.wait_for(
                    asyncio.gather(*self.active_jobs.values(), return_exceptions=True), timeout=30
                )
            except asyncio.TimeoutError:
                logger.warning("Some cycles did not complete within 30 seconds")

        logger.info(f"Worker {self.worker_id} stopped")

    def sweep_stale_claims(self, now: Optional[datetime] = None) -> int:
        """
        Release orphaned claims.

        Claims of this worker's overrunning cycles are refreshed first, so
        a team is never handed to a second cycle while its thread still runs.

        Returns:
            Number of claims released
        """
        now = now or datetime.now()
        try:
            for job_id in list(self.overrunning):
                self.job_runner.update_heartbeat(job_id, now=now)
            released = self.job_runner.release_stale_claims(self.stale_claim_seconds, now=now)
        except Exception as e:
            logger.error(f"Orphaned claim sweep failed: {e}")
            return 0

        if released:
            logger.info(f"Released {released} orphaned job claim(s)")
        return released

    async def process_due_jobs(self) -> int:
        """
        Claim due jobs to fill free slots and start them.

        Returns:
            Number of jobs started
        """
        available_slots = self.max_concurrent - len(self.active_jobs)
        if available_slots <= 0:
            return 0

        try:
            jobs = self.job_runner.claim_due_jobs(self.worker_id, limit=available_slots)
        except Exception as e:
            logger.error(f"Failed to claim jobs: {e}")
            return 0

        for job in jobs:
            task = asyncio.create_task(self._run_job(job))
            self.active_jobs[job.id] = task
            task.add_done_callback(lambda t, jid=job.id: self.active_jobs.pop(jid, None))

        return len(jobs)

    async def _run_job(self, job: ScheduledJob):
        """
        Run one job's handler with timeout enforcement.

        A handler that returns normally has either rescheduled its key (the
        claimed row is already gone) or chosen not to, in which case the
        claimed row is deleted. A handler that raises is retried later.

        A thread cannot be interrupted, so a timed-out cycle frees its slot
        but keeps its claim until the thread finishes.
        """
        handler = self.handlers.get(job.hook)
        if handler is None:
            logger.error(f"No handler registered for hook '{job.hook}', dropping job {job.id}")
            self.job_runner.complete(job.id)
            return

        logger.info(f"Running {job.hook} for team {job.team_id} (job {job.id})")

        cycle = asyncio.ensure_future(asyncio.to_thread(handler, job.team_id))
        try:
            await asyncio.wait_for(asyncio.shield(cycle), timeout=self.cycle_timeout)
        except asyncio.TimeoutError:
            logger.error(
                f"✗ {job.hook} for team {job.team_id} timed out after {self.cycle_timeout}s, "
                f"holding job {job.id} until the cycle ends"
            )
            self.overrunning[job.id] = cycle
            cycle.add_done_callback(lambda c: self._finish_overrun(job, c))
            return
        except Exception as e:
            self._retry_later(job, e)
            return

        if self.job_runner.complete(job.id):
            logger.debug(f"Job {job.id} finished without rescheduling")

    def _finish_overrun(self, job: ScheduledJob, cycle: asyncio.Future):
        """Settle the claim of a timed-out cycle once its thread ends."""
        self.overrunning.pop(job.id, None)

        try:
            if cycle.cancelled():
                self.job_runner.release(job.id, datetime.now())
            elif cycle.exception() is not None:
                self._retry_later(job, cycle.exception())
            else:
                logger.info(f"Overrunning {job.hook} for team {job.team_id} finished (job {job.id})")
                self.job_runner.complete(job.id)
        except Exception as e:
            logger.error(f"Failed to settle job {job.id} after overrun: {e}")

    def _retry_later(self, job: ScheduledJob, error: BaseException):
        retry_at = datetime.now() + timedelta(seconds=self.retry_delay_seconds)
        logger.error(
            f"✗ {job.hook} for team {job.team_id} failed, retrying at "
            f"{retry_at.strftime('%Y-%m-%d %H:%M:%S')}: {error}",
            exc_info=error,
        )
        self.job_runner.release(job.id, retry_at)

    def run(self):
        """
        Run worker in the main thread (blocks until stopped).

        Sets up signal handlers for graceful shutdown.
        """

        def signal_handler(signum, frame):
            logger.info(f"Received signal {signum}, initiating shutdown...")
            self.running = False

        try:
            signal.signal(signal.SIGTERM, signal_handler)
            signal.signal(signal.SIGINT, signal_handler)
        except ValueError:
            # Signal handlers only work in main thread
            logger.debug("Running in background thread, skipping signal handlers")

        asyncio.run(self.start())
