"""
Adaptive polling schedule for gateway mailboxes.

Implements a back-off timer similar to TCP's adaptive retransmission
timer: check often while a conversation may be going on, back off
geometrically (up to a ceiling) while the mailbox is quiet, and snap back
to the fast cadence as soon as a message arrives.

With a 30 second time step and a multiplier of 2:

    Run 1, back-off step 0, next run in 30 seconds
    Run 2, back-off step 1, next run in 1 minute
    Run 3, back-off step 2, next run in 2 minutes
    Run 4, back-off step 4, next run in 4 minutes
    Run 5, back-off step 8, next run in 8 minutes
    Run 6, back-off step 16, next run in 10 minutes (ceiling)

Total elapsed time for the first five runs is 15 minutes and 30 seconds.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from ..interfaces import JobRunner, BackoffStore, SettingsStore


logger = logging.getLogger(__name__)

# Job runner hook the bridge cycle is registered under
BRIDGE_HOOK = "sms_email_bridge_run"


def calculate_backoff_delay(step: int, time_step: int = 30, multiplier: int = 2, max_seconds: int = 600) -> int:
    """
    Seconds to wait before the next mailbox check.

    Strategy: delay = time_step when step is 0, else time_step * (step * multiplier),
    capped at max_seconds.

    Args:
        step: Back-off step (negative values are treated as their absolute value)
        time_step: Base delay in seconds
        multiplier: Growth factor
        max_seconds: Ceiling in seconds

    Returns:
        Delay in seconds
    """
    step = abs(int(step))
    delay = time_step if step == 0 else time_step * (step * multiplier)
    return min(delay, max_seconds)


def next_backoff_step(step: int, multiplier: int = 2) -> int:
    """Successor of a back-off step: 0 -> 1, otherwise step * multiplier."""
    step = abs(int(step))
    return 1 if step == 0 else step * multiplier


class BackoffScheduler:
    """
    Arms the next bridge run for a team and keeps its back-off step.

    Usage:
        scheduler = BackoffScheduler(job_runner, directory, settings)

        # Activity seen: check again soon
        scheduler.schedule_next(team_id, 0)

        # Quiet mailbox: continue backing off
        scheduler.schedule_next(team_id, directory.get_backoff_step(team_id))

        # Bridge disabled
        scheduler.unschedule_next(team_id)
    """

    TIME_STEP = 30
    MULTIPLIER = 2
    MAX_SECONDS = 600  # 10 minutes

    def __init__(
        self,
        job_runner: JobRunner,
        backoff_store: BackoffStore,
        settings: SettingsStore,
        time_step: Optional[int] = None,
        multiplier: Optional[int] = None,
        max_seconds: Optional[int] = None,
        clock: Callable[[], datetime] = datetime.now,
        hook: str = BRIDGE_HOOK,
    ):
        """
        Initialize scheduler.

        Args:
            job_runner: Delayed job runner to arm
            backoff_store: Where the per-team step is persisted
            settings: Global options (``debug`` turns on scheduling logs)
            time_step: Override TIME_STEP
            multiplier: Override MULTIPLIER
            max_seconds: Override MAX_SECONDS
            clock: Returns the current time
            hook: Job runner hook name
        """
        self.job_runner = job_runner
        self.backoff_store = backoff_store
        self.settings = settings
        self.time_step = time_step or self.TIME_STEP
        self.multiplier = multiplier or self.MULTIPLIER
        self.max_seconds = max_seconds or self.MAX_SECONDS
        self.clock = clock
        self.hook = hook

    def next_run_time(self, step: int) -> datetime:
        """Current time plus the back-off delay for ``step``."""
        delay = calculate_backoff_delay(step, self.time_step, self.multiplier, self.max_seconds)
        return self.clock() + timedelta(seconds=delay)

    def schedule_next(self, team_id: int, step: int = 0) -> datetime:
        """
        Arm the next run for a team and store the successor step.

        Any job already pending for the team is replaced.

        Args:
            team_id: Team to check
            step: Back-off step to compute the delay from

        Returns:
            Time the next run is scheduled for
        """
        step = abs(int(step or 0))
        run_at = self.next_run_time(step)

        self._debug(
            f"Scheduling bridge run for team {team_id} at {run_at.strftime('%Y-%m-%d %H:%M:%S')} "
            f"(back-off step is {step})"
        )

        self.job_runner.schedule(self.hook, run_at, team_id)
        self.backoff_store.set_backoff_step(team_id, next_backoff_step(step, self.multiplier))

        return run_at

    def unschedule_next(self, team_id: int) -> None:
        """Clear the stored step and cancel the pending run, if any."""
        self._debug(f"Unscheduling bridge run for team {team_id}")

        self.backoff_store.clear_backoff_step(team_id)
        if self.job_runner.next_scheduled_time(self.hook, team_id) is not None:
            self.job_runner.cancel(self.hook, team_id)

    def _debug(self, message: str):
        if self.settings.get("debug"):
            logger.info(message)
        else:
            logger.debug(message)
