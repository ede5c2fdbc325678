"""
Tests for the bridge worker.

Tests the worker that:
- Claims due jobs and runs their hook handler with the team ID
- Leaves jobs a handler re-armed, removes the rest
- Retries jobs whose handler raised
- Bounds concurrency and enforces the cycle timeout
- Holds the claim of a timed-out cycle until its thread ends
"""

import asyncio
import time
import pytest
from datetime import datetime, timedelta

from sms_bridge.core.database import DatabaseManager
from sms_bridge.jobs.runner import DatabaseJobRunner
from sms_bridge.jobs.scheduler import BRIDGE_HOOK
from sms_bridge.jobs.worker import BridgeWorker


@pytest.fixture
def runner():
    db = DatabaseManager("sqlite:///:memory:")
    db.create_tables()
    yield DatabaseJobRunner(db)
    db.drop_tables()


def schedule_due(runner, *team_ids):
    due = datetime.now() - timedelta(seconds=1)
    for team_id in team_ids:
        runner.schedule(BRIDGE_HOOK, due, team_id=team_id)


async def drain(worker):
    """Wait for every running job."""
    await asyncio.gather(*list(worker.active_jobs.values()))


async def settle(worker):
    """Wait for timed-out cycles whose threads are still running."""
    await asyncio.gather(*list(worker.overrunning.values()), return_exceptions=True)


class TestProcessDueJobs:
    """Test claiming and running jobs."""

    @pytest.mark.asyncio
    async def test_runs_handler_with_team_id(self, runner):
        seen = []
        worker = BridgeWorker(runner, {BRIDGE_HOOK: seen.append})
        schedule_due(runner, 3)

        started = await worker.process_due_jobs()
        await drain(worker)

        assert started == 1
        assert seen == [3]
        assert runner.list_jobs() == []
        assert worker.active_jobs == {}

    @pytest.mark.asyncio
    async def test_rearmed_job_is_kept(self, runner):
        next_run = datetime.now() + timedelta(seconds=30)

        def handler(team_id):
            runner.schedule(BRIDGE_HOOK, next_run, team_id=team_id)

        worker = BridgeWorker(runner, {BRIDGE_HOOK: handler})
        schedule_due(runner, 3)

        await worker.process_due_jobs()
        await drain(worker)

        [job] = runner.list_jobs()
        assert job.run_at == next_run
        assert job.claimed_by is None

    @pytest.mark.asyncio
    async def test_failed_handler_is_retried_later(self, runner):
        def handler(team_id):
            raise RuntimeError("database went away")

        worker = BridgeWorker(runner, {BRIDGE_HOOK: handler}, retry_delay_seconds=120)
        schedule_due(runner, 3)

        await worker.process_due_jobs()
        await drain(worker)

        [job] = runner.list_jobs()
        assert job.claimed_at is None
        assert job.run_at > datetime.now() + timedelta(seconds=100)

    @pytest.mark.asyncio
    async def test_job_without_handler_is_dropped(self, runner):
        worker = BridgeWorker(runner, {})
        runner.schedule("unknown_hook", datetime.now() - timedelta(seconds=1), team_id=3)

        await worker.process_due_jobs()
        await drain(worker)

        assert runner.list_jobs() == []

    @pytest.mark.asyncio
    async def test_registered_handler_is_used(self, runner):
        seen = []
        worker = BridgeWorker(runner, {})
        worker.register_handler(BRIDGE_HOOK, seen.append)
        schedule_due(runner, 8)

        await worker.process_due_jobs()
        await drain(worker)

        assert seen == [8]

    @pytest.mark.asyncio
    async def test_future_jobs_not_started(self, runner):
        worker = BridgeWorker(runner, {BRIDGE_HOOK: lambda team_id: None})
        runner.schedule(BRIDGE_HOOK, datetime.now() + timedelta(minutes=5), team_id=3)

        assert await worker.process_due_jobs() == 0

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, runner):
        worker = BridgeWorker(runner, {BRIDGE_HOOK: lambda team_id: time.sleep(0.2)}, max_concurrent=2)
        schedule_due(runner, 1, 2, 3)

        assert await worker.process_due_jobs() == 2
        assert await worker.process_due_jobs() == 0
        await drain(worker)

        assert await worker.process_due_jobs() == 1
        await drain(worker)

    @pytest.mark.asyncio
    async def test_timed_out_job_keeps_claim(self, runner):
        worker = BridgeWorker(runner, {BRIDGE_HOOK: lambda team_id: time.sleep(0.3)}, cycle_timeout=0.05)
        schedule_due(runner, 3)

        await worker.process_due_jobs()
        await drain(worker)

        [job] = runner.list_jobs()
        assert job.claimed_by == worker.worker_id
        assert job.id in worker.overrunning

        await settle(worker)

    @pytest.mark.asyncio
    async def test_timed_out_job_completed_when_thread_ends(self, runner):
        worker = BridgeWorker(runner, {BRIDGE_HOOK: lambda team_id: time.sleep(0.3)}, cycle_timeout=0.05)
        schedule_due(runner, 3)

        await worker.process_due_jobs()
        await drain(worker)
        await settle(worker)

        assert worker.overrunning == {}
        assert runner.list_jobs() == []

    @pytest.mark.asyncio
    async def test_timed_out_job_retried_when_thread_raises(self, runner):
        def handler(team_id):
            time.sleep(0.3)
            raise RuntimeError("mailbox hung up")

        worker = BridgeWorker(runner, {BRIDGE_HOOK: handler}, cycle_timeout=0.05, retry_delay_seconds=120)
        schedule_due(runner, 3)

        await worker.process_due_jobs()
        await drain(worker)
        await settle(worker)

        [job] = runner.list_jobs()
        assert job.claimed_at is None
        assert job.run_at > datetime.now() + timedelta(seconds=100)


class TestStaleClaimSweep:
    """Test releasing orphaned claims."""

    @pytest.mark.asyncio
    async def test_overrunning_cycle_is_not_released(self, runner):
        release = asyncio.Event()
        loop = asyncio.get_running_loop()
        finished = []

        def handler(team_id):
            asyncio.run_coroutine_threadsafe(release.wait(), loop).result()
            finished.append(team_id)

        worker = BridgeWorker(runner, {BRIDGE_HOOK: handler}, cycle_timeout=0.05, stale_claim_seconds=60)
        schedule_due(runner, 3)

        await worker.process_due_jobs()
        await drain(worker)

        assert worker.sweep_stale_claims(now=datetime.now() + timedelta(seconds=600)) == 0
        assert runner.claim_due_jobs("worker-b", now=datetime.now() + timedelta(seconds=600)) == []
        [job] = runner.list_jobs()
        assert job.claimed_by == worker.worker_id

        release.set()
        for _ in range(100):
            if not worker.overrunning:
                break
            await asyncio.sleep(0.01)

        assert finished == [3]
        assert runner.list_jobs() == []

    def test_orphaned_claim_is_released(self, runner):
        worker = BridgeWorker(runner, {}, stale_claim_seconds=60)
        schedule_due(runner, 3)
        runner.claim_due_jobs("dead-worker")

        assert worker.sweep_stale_claims(now=datetime.now() + timedelta(seconds=120)) == 1
        assert runner.list_jobs()[0].claimed_by is None


class TestStartStop:
    """Test the main loop."""

    @pytest.mark.asyncio
    async def test_start_processes_until_stopped(self, runner):
        seen = []
        worker = BridgeWorker(runner, {BRIDGE_HOOK: seen.append}, poll_interval=0.01)
        schedule_due(runner, 1, 2)

        loop_task = asyncio.create_task(worker.start())
        for _ in range(100):
            if len(seen) == 2:
                break
            await asyncio.sleep(0.01)
        worker.running = False
        await loop_task

        assert sorted(seen) == [1, 2]
        assert runner.list_jobs() == []
