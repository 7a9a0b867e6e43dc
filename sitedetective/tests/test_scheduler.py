"""Tests for deferred batch scheduling and housekeeping sweeps."""

import asyncio

import pytest

from sitedetective.daemon.scheduler import BatchScheduler


@pytest.fixture
def runs():
    return []


@pytest.fixture
def scheduler(runs):
    scheduler = BatchScheduler(sweep_interval=0.05)

    async def runner(job_id):
        runs.append(job_id)

    scheduler.bind(runner)
    return scheduler


class TestSchedule:

    @pytest.mark.asyncio
    async def test_runs_after_delay(self, scheduler, runs):
        scheduler.schedule("job-1", 0)
        assert scheduler.pending() == ["job-1"]
        await asyncio.sleep(0.05)
        assert runs == ["job-1"]
        assert scheduler.pending() == []

    @pytest.mark.asyncio
    async def test_rescheduling_replaces_pending(self, scheduler, runs):
        scheduler.schedule("job-1", 0.01)
        scheduler.schedule("job-1", 0.02)
        await asyncio.sleep(0.1)
        assert runs == ["job-1"]

    @pytest.mark.asyncio
    async def test_cancel(self, scheduler, runs):
        scheduler.schedule("job-1", 0.02)
        scheduler.cancel("job-1")
        await asyncio.sleep(0.05)
        assert runs == []

    @pytest.mark.asyncio
    async def test_runner_error_is_contained(self, runs):
        scheduler = BatchScheduler()

        async def runner(job_id):
            runs.append(job_id)
            raise RuntimeError("batch blew up")

        scheduler.bind(runner)
        scheduler.schedule("job-1", 0)
        scheduler.schedule("job-2", 0)
        await asyncio.sleep(0.05)
        assert sorted(runs) == ["job-1", "job-2"]

    @pytest.mark.asyncio
    async def test_unbound_scheduler_drops_request(self):
        scheduler = BatchScheduler()
        scheduler.schedule("job-1", 0)
        assert scheduler.pending() == []

    def test_no_running_loop(self, scheduler):
        scheduler.schedule("job-1", 0)
        assert scheduler.pending() == []

    @pytest.mark.asyncio
    async def test_stop_cancels_pending(self, scheduler, runs):
        scheduler.schedule("job-1", 0.05)
        await scheduler.stop()
        await asyncio.sleep(0.1)
        assert runs == []
        assert scheduler.pending() == []


    @pytest.mark.asyncio
    async def test_stop_cancels_overlapping_batches(self):
        """A batch fired while the previous one for the same job still runs is tracked too."""
        cancelled = []
        release = asyncio.Event()

        async def runner(job_id):
            try:
                await release.wait()
            except asyncio.CancelledError:
                cancelled.append(job_id)
                raise

        scheduler = BatchScheduler()
        scheduler.bind(runner)
        scheduler.schedule("job-1", 0)
        await asyncio.sleep(0.01)
        scheduler.schedule("job-1", 0)
        await asyncio.sleep(0.01)

        await scheduler.stop()
        assert cancelled == ["job-1", "job-1"]


class TestSweep:

    def test_sums_and_tolerates_errors(self, scheduler):
        def broken():
            raise RuntimeError("store offline")

        scheduler.add_sweep(lambda: 2)
        scheduler.add_sweep(broken)
        scheduler.add_sweep(lambda: 3)
        assert scheduler.sweep() == 5

    @pytest.mark.asyncio
    async def test_periodic_sweep(self, scheduler):
        calls = []
        scheduler.add_sweep(lambda: calls.append(1) or 0)
        await scheduler.start()
        await asyncio.sleep(0.2)
        await scheduler.stop()
        assert len(calls) >= 2
