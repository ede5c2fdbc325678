"""
Unit tests for the adaptive back-off scheduler.

Tests:
- Delay formula and ceiling
- Step succession
- Scheduling replaces the pending run and stores the successor step
- Unscheduling clears state and is a no-op when nothing is pending
"""

import pytest
from datetime import datetime, timedelta

from sms_bridge.jobs.scheduler import (
    BRIDGE_HOOK,
    BackoffScheduler,
    calculate_backoff_delay,
    next_backoff_step,
)
from tests.fakes import DictSettings, FakeBackoffStore, FakeJobRunner


NOW = datetime(2024, 3, 1, 12, 0, 0)


@pytest.fixture
def job_runner():
    return FakeJobRunner()


@pytest.fixture
def backoff_store():
    return FakeBackoffStore()


@pytest.fixture
def scheduler(job_runner, backoff_store):
    return BackoffScheduler(job_runner, backoff_store, DictSettings(debug=False), clock=lambda: NOW)


class TestBackoffDelay:
    """Test the delay formula."""

    @pytest.mark.parametrize(
        "step,expected",
        [
            (0, 30),
            (1, 60),
            (2, 120),
            (4, 240),
            (5, 300),
            (8, 480),
            (10, 600),
            (11, 600),
            (16, 600),
        ],
    )
    def test_delay_for_step(self, step, expected):
        assert calculate_backoff_delay(step) == expected

    def test_negative_step_uses_absolute_value(self):
        assert calculate_backoff_delay(-4) == calculate_backoff_delay(4)

    def test_custom_timing(self):
        assert calculate_backoff_delay(0, time_step=10, multiplier=3, max_seconds=100) == 10
        assert calculate_backoff_delay(2, time_step=10, multiplier=3, max_seconds=100) == 60
        assert calculate_backoff_delay(4, time_step=10, multiplier=3, max_seconds=100) == 100


class TestNextStep:
    """Test step succession."""

    def test_step_zero_moves_to_one(self):
        assert next_backoff_step(0) == 1

    def test_later_steps_double(self):
        assert [next_backoff_step(s) for s in (1, 2, 4, 8, 16)] == [2, 4, 8, 16, 32]

    def test_custom_multiplier(self):
        assert next_backoff_step(3, multiplier=3) == 9


class TestScheduleNext:
    """Test arming the next run."""

    def test_schedules_at_now_plus_delay(self, scheduler, job_runner):
        run_at = scheduler.schedule_next(7, 0)

        assert run_at == NOW + timedelta(seconds=30)
        assert job_runner.next_scheduled_time(BRIDGE_HOOK, 7) == run_at

    def test_stores_successor_step(self, scheduler, backoff_store):
        scheduler.schedule_next(7, 0)
        assert backoff_store.get_backoff_step(7) == 1

        scheduler.schedule_next(7, 4)
        assert backoff_store.get_backoff_step(7) == 8

    def test_replaces_pending_run(self, scheduler, job_runner):
        scheduler.schedule_next(7, 8)
        scheduler.schedule_next(7, 0)

        assert len(job_runner.jobs) == 1
        assert job_runner.next_scheduled_time(BRIDGE_HOOK, 7) == NOW + timedelta(seconds=30)

    def test_teams_are_scheduled_independently(self, scheduler, job_runner, backoff_store):
        scheduler.schedule_next(1, 0)
        scheduler.schedule_next(2, 8)

        assert job_runner.next_scheduled_time(BRIDGE_HOOK, 1) == NOW + timedelta(seconds=30)
        assert job_runner.next_scheduled_time(BRIDGE_HOOK, 2) == NOW + timedelta(seconds=480)
        assert backoff_store.steps == {1: 1, 2: 16}

    def test_quiet_mailbox_sequence(self, scheduler, backoff_store):
        """Feeding each stored step back in walks 30s, 1m, 2m, 4m, 8m, then 10m."""
        delays = []
        for _ in range(7):
            run_at = scheduler.schedule_next(3, backoff_store.get_backoff_step(3))
            delays.append(int((run_at - NOW).total_seconds()))

        assert delays == [30, 60, 120, 240, 480, 600, 600]
        assert sum(delays[:5]) == 15 * 60 + 30

    def test_settings_override_class_defaults(self, job_runner, backoff_store):
        scheduler = BackoffScheduler(
            job_runner, backoff_store, DictSettings(), time_step=5, multiplier=3, max_seconds=40, clock=lambda: NOW
        )

        assert scheduler.schedule_next(1, 0) == NOW + timedelta(seconds=5)
        assert backoff_store.get_backoff_step(1) == 1
        assert scheduler.schedule_next(1, 1) == NOW + timedelta(seconds=15)
        assert backoff_store.get_backoff_step(1) == 3
        assert scheduler.schedule_next(1, 3) == NOW + timedelta(seconds=40)

    def test_debug_setting_logs_at_info(self, job_runner, backoff_store, caplog):
        scheduler = BackoffScheduler(job_runner, backoff_store, DictSettings(debug=True), clock=lambda: NOW)

        with caplog.at_level("INFO", logger="sms_bridge.jobs.scheduler"):
            scheduler.schedule_next(5, 2)

        assert "back-off step is 2" in caplog.text


class TestUnscheduleNext:
    """Test cancelling the pending run."""

    def test_cancels_pending_run_and_clears_step(self, scheduler, job_runner, backoff_store):
        scheduler.schedule_next(7, 2)
        scheduler.unschedule_next(7)

        assert job_runner.next_scheduled_time(BRIDGE_HOOK, 7) is None
        assert 7 not in backoff_store.steps
        assert backoff_store.get_backoff_step(7) == 0

    def test_noop_when_nothing_pending(self, scheduler, job_runner):
        scheduler.unschedule_next(7)

        assert not any(call[0] == "cancel" for call in job_runner.calls)
        assert job_runner.jobs == {}

    def test_leaves_other_teams_alone(self, scheduler, job_runner):
        scheduler.schedule_next(1, 0)
        scheduler.schedule_next(2, 0)

        scheduler.unschedule_next(1)

        assert job_runner.next_scheduled_time(BRIDGE_HOOK, 2) is not None
