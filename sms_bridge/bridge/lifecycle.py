"""
Bridge Lifecycle

Keeps a team's polling schedule in step with its settings. Enabling the
bridge starts the back-off loop at step 0; disabling it or removing the
team clears the stored step and cancels the pending run.
"""

import logging
from datetime import datetime
from typing import Optional

from ..core.database import DatabaseManager
from ..core.exceptions import TeamNotFoundError
from ..jobs.scheduler import BackoffScheduler
from ..mailbox.client import ImapSettings


logger = logging.getLogger(__name__)


class BridgeRegistrar:
    """
    Team state-change handler for the bridge.

    Usage:
        registrar = BridgeRegistrar(db, scheduler)
        registrar.enable(team_id)     # first run in 30 seconds
        registrar.disable(team_id)    # no more runs
        registrar.remove_team(team_id)
    """

    def __init__(self, db: DatabaseManager, scheduler: BackoffScheduler):
        """
        Initialize registrar.

        Args:
            db: DatabaseManager instance
            scheduler: Back-off scheduler
        """
        self.db = db
        self.scheduler = scheduler

    def enable(self, team_id: int) -> Optional[datetime]:
        """
        Turn the bridge on and arm the first run.

        Returns:
            Time of the first run, or None if a run was already pending

        Raises:
            TeamNotFoundError: If the team does not exist
            ValueError: If the team has no mailbox settings
        """
        team = self.db.get_team(team_id)
        if team is None:
            raise TeamNotFoundError(f"Team {team_id} not found")
        if ImapSettings.from_team(team) is None:
            raise ValueError(f"Team {team_id} needs an IMAP server and username before bridging can be enabled")

        self.db.update_team(team_id, bridge_enabled=True)
        return self.sync(team_id)

    def disable(self, team_id: int):
        """Turn the bridge off and stop polling."""
        self.db.update_team(team_id, bridge_enabled=False)
        self.scheduler.unschedule_next(team_id)
        logger.info(f"Bridge disabled for team {team_id}")

    def remove_team(self, team_id: int) -> bool:
        """Stop polling and delete the team. Returns False if it didn't exist."""
        self.scheduler.unschedule_next(team_id)
        return self.db.delete_team(team_id)

    def sync(self, team_id: int) -> Optional[datetime]:
        """
        Reconcile the schedule with the team's current settings.

        Enabled teams without a pending run get one at step 0; disabled
        or unconfigured teams get their schedule cleared.

        Returns:
            Time of a newly armed run, or None
        """
        team = self.db.get_team(team_id)
        if team is None or not team.bridge_enabled or ImapSettings.from_team(team) is None:
            self.scheduler.unschedule_next(team_id)
            return None

        if self.scheduler.job_runner.next_scheduled_time(self.scheduler.hook, team_id) is not None:
            logger.debug(f"Team {team_id} already has a bridge run pending")
            return None

        run_at = self.scheduler.schedule_next(team_id, 0)
        logger.info(f"Bridge enabled for team {team_id}, first check at {run_at.strftime('%Y-%m-%d %H:%M:%S')}")
        return run_at
