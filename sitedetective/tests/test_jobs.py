"""Tests for deep-scan jobs: lifecycle, batching, control and expiry."""

from unittest.mock import Mock

import pytest

from sitedetective.daemon import bus as events
from sitedetective.daemon.cache import ResultCache
from sitedetective.daemon.errors import InvalidControlAction, JobNotFound
from sitedetective.daemon.explainer import NullExplainer
from sitedetective.daemon.jobs import JobManager, make_job_id, phase_progress
from sitedetective.daemon.load_monitor import LoadMonitor
from sitedetective.daemon.models import (
    JobStatus,
    PageContext,
    Query,
    ScanPhase,
    SourceType,
)
from sitedetective.daemon.providers import ScanProvider
from sitedetective.daemon.store import MemoryStore
from sitedetective.daemon.synthesis import Synthesizer


class BrokenProvider(ScanProvider):
    name = "broken"

    def units(self, context):
        return [1, 2]

    def scan_units(self, units, terms, context):
        raise RuntimeError("disk gone")


class PausingProvider(ScanProvider):
    """Pauses its own job while scanning the first unit."""

    name = "pausing"

    def __init__(self):
        self.manager = None
        self.job_id = None
        self.scanned = []

    def units(self, context):
        return [1, 2, 3]

    def scan_units(self, units, terms, context):
        self.scanned.extend(units)
        self.manager.pause(self.job_id)
        return []


@pytest.fixture
def event_bus():
    return Mock()


@pytest.fixture
def make_manager(site, builders, clock, scheduler, event_bus):
    def factory(**kwargs):
        store = MemoryStore(clock=clock)
        kwargs.setdefault('load_monitor', LoadMonitor(memory_limit_mb=1024,
                                                      memory_used=lambda: 0))
        return JobManager(
            store,
            site,
            Synthesizer(NullExplainer()),
            builders=builders,
            cache=ResultCache(store, clock=clock),
            scheduler=scheduler,
            event_bus=event_bus,
            clock=clock,
            **kwargs,
        )
    return factory


@pytest.fixture
def manager(make_manager):
    return make_manager()


@pytest.fixture
def query(home_page):
    return Query("where is the contact button", home_page)


async def run_to_end(manager, job_id, limit=20):
    for _ in range(limit):
        await manager.process_batch(job_id)
        if manager.get(job_id).status.is_terminal:
            break
    return manager.get(job_id)


def published(event_bus):
    return [c.args[0] for c in event_bus.publish.call_args_list]


class TestStart:

    def test_job_id_is_stable(self, home_page):
        assert make_job_id("q", home_page) == make_job_id("q", home_page)
        assert make_job_id("q", home_page) != make_job_id("q", PageContext(url="https://acme.test/"))

    def test_start_persists_and_schedules(self, manager, query, scheduler, event_bus):
        ticket = manager.start(query)
        assert ticket.status == "initiated"
        job = manager.get(ticket.job_id)
        assert job.status == JobStatus.INITIATED
        assert job.current_phase == ScanPhase.THEME_FILES
        assert scheduler.scheduled == [(ticket.job_id, 0)]
        assert published(event_bus) == [events.JOB_STARTED]

    def test_resubmission_returns_same_job(self, manager, query):
        first = manager.start(query)
        second = manager.start(query)
        assert second.job_id == first.job_id
        assert manager.active_jobs() == 1

    def test_resubmission_after_cancel_starts_fresh(self, manager, query):
        job_id = manager.start(query).job_id
        manager.cancel(job_id)
        ticket = manager.start(query)
        assert ticket.job_id == job_id
        assert manager.get(job_id).status == JobStatus.INITIATED

    def test_busy_at_ceiling(self, make_manager, home_page):
        manager = make_manager(max_concurrent_jobs=1)
        manager.start(Query("contact", home_page))
        ticket = manager.start(Query("newsletter", home_page))
        assert ticket.status == "busy"
        assert ticket.job_id is None


class TestProcessing:

    @pytest.mark.asyncio
    async def test_runs_every_phase_to_completion(self, manager, query, event_bus):
        job_id = manager.start(query).job_id
        job = await run_to_end(manager, job_id)

        assert job.status == JobStatus.COMPLETED
        assert job.progress_percent == 100.0
        assert job.completed_at is not None
        assert job.branding_report is not None
        assert job.ranked
        assert job.attribution.used_fallback
        assert job.attribution.primary_source == job.ranked[0]

        found = {item.source_type for item in job.results}
        assert SourceType.NAVIGATION_MENU in found
        assert SourceType.CONTENT_RECORD in found

        phases = [c.kwargs['phase'] for c in event_bus.publish.call_args_list
                  if c.args[0] == events.JOB_PHASE_COMPLETED]
        assert phases == [p.value for p in ScanPhase if p != ScanPhase.SYNTHESIS]
        assert published(event_bus)[-1] == events.JOB_COMPLETED

    @pytest.mark.asyncio
    async def test_first_batch_advances_phase(self, manager, query, scheduler):
        job_id = manager.start(query).job_id
        await manager.process_batch(job_id)

        job = manager.get(job_id)
        assert job.status == JobStatus.IN_PROGRESS
        assert job.current_phase == ScanPhase.EXTENSIONS
        assert job.progress_percent == 25
        assert scheduler.scheduled[-1] == (job_id, 5.0)

    @pytest.mark.asyncio
    async def test_small_batches_walk_a_phase(self, make_manager, query):
        manager = make_manager(batch_size=2)
        job_id = manager.start(query).job_id
        await manager.process_batch(job_id)

        job = manager.get(job_id)
        assert job.current_phase == ScanPhase.THEME_FILES
        assert job.batch_position == 2
        assert 0 < job.progress_percent < 25

    @pytest.mark.asyncio
    async def test_phase_failure_marks_job_errored(self, make_manager, query, event_bus):
        manager = make_manager(providers={ScanPhase.THEME_FILES: [BrokenProvider()]})
        job_id = manager.start(query).job_id
        await manager.process_batch(job_id)

        job = manager.get(job_id)
        assert job.status == JobStatus.ERROR
        assert job.error_message == "theme_files: disk gone"
        assert events.JOB_FAILED in published(event_bus)

    @pytest.mark.asyncio
    async def test_terminal_job_is_not_processed(self, manager, query):
        job_id = manager.start(query).job_id
        job = await run_to_end(manager, job_id)
        await manager.process_batch(job_id)
        assert manager.get(job_id).to_dict() == job.to_dict()


class TestControl:

    @pytest.mark.asyncio
    async def test_pause_resume_cancel(self, manager, query, scheduler, event_bus):
        job_id = manager.start(query).job_id
        await manager.process_batch(job_id)

        assert manager.pause(job_id) == JobStatus.PAUSED
        before = manager.get(job_id)
        await manager.process_batch(job_id)
        assert manager.get(job_id).to_dict() == before.to_dict()

        assert manager.resume(job_id) == JobStatus.IN_PROGRESS
        assert scheduler.scheduled[-1] == (job_id, 0)

        assert manager.cancel(job_id) == JobStatus.CANCELLED
        assert scheduler.cancelled == [job_id]
        cancelled = manager.get(job_id)
        await manager.process_batch(job_id)
        assert manager.get(job_id).to_dict() == cancelled.to_dict()

        for event in (events.JOB_PAUSED, events.JOB_RESUMED, events.JOB_CANCELLED):
            assert event in published(event_bus)

    @pytest.mark.asyncio
    async def test_pause_lands_between_units(self, make_manager, query):
        provider = PausingProvider()
        manager = make_manager(providers={ScanPhase.THEME_FILES: [provider]})
        job_id = manager.start(query).job_id
        provider.manager, provider.job_id = manager, job_id

        await manager.process_batch(job_id)

        job = manager.get(job_id)
        assert provider.scanned == [1]
        assert job.status == JobStatus.PAUSED
        assert job.current_phase == ScanPhase.THEME_FILES
        assert job.batch_position == 1

    def test_status_reads_without_loading_results(self, manager, query, clock):
        job_id = manager.start(query).job_id
        assert manager.status(job_id) == JobStatus.INITIATED
        manager.pause(job_id)
        assert manager.status(job_id) == JobStatus.PAUSED
        assert manager.status("missing") is None
        clock.advance(3600)
        assert manager.status(job_id) is None

    def test_controls_are_idempotent(self, manager, query):
        job_id = manager.start(query).job_id
        assert manager.pause(job_id) == JobStatus.PAUSED
        assert manager.pause(job_id) == JobStatus.PAUSED
        assert manager.cancel(job_id) == JobStatus.CANCELLED
        assert manager.resume(job_id) == JobStatus.CANCELLED
        assert manager.pause(job_id) == JobStatus.CANCELLED

    def test_control_by_name(self, manager, query):
        job_id = manager.start(query).job_id
        assert manager.control(job_id, "pause") == JobStatus.PAUSED
        with pytest.raises(InvalidControlAction):
            manager.control(job_id, "restart")

    def test_unknown_job(self, manager):
        with pytest.raises(JobNotFound) as exc:
            manager.pause("missing")
        assert exc.value.retryable


class TestProgress:

    @pytest.mark.asyncio
    async def test_snapshot(self, manager, query, clock):
        job_id = manager.start(query).job_id
        clock.advance(2)
        progress = await manager.progress(job_id)
        assert progress.status == JobStatus.INITIATED
        assert progress.elapsed_seconds == 2
        assert progress.to_dict()['current_phase'] == 'theme_files'

    @pytest.mark.asyncio
    async def test_stale_job_is_driven(self, manager, query, clock):
        job_id = manager.start(query).job_id
        clock.advance(10)
        progress = await manager.progress(job_id, drive_if_stale=True)
        assert progress.status == JobStatus.IN_PROGRESS
        assert progress.current_phase == ScanPhase.EXTENSIONS
        assert progress.partial_results

    @pytest.mark.asyncio
    async def test_fresh_job_is_not_driven(self, manager, query, clock):
        job_id = manager.start(query).job_id
        clock.advance(1)
        progress = await manager.progress(job_id, drive_if_stale=True)
        assert progress.status == JobStatus.INITIATED

    @pytest.mark.asyncio
    async def test_unknown_job(self, manager):
        with pytest.raises(JobNotFound):
            await manager.progress("missing")


class TestExpiry:

    @pytest.mark.asyncio
    async def test_job_expires_after_ttl(self, manager, query, clock):
        job_id = manager.start(query).job_id
        clock.advance(3600)
        with pytest.raises(JobNotFound):
            await manager.progress(job_id)
        assert manager.active_jobs() == 0

    def test_sweep_removes_expired_records(self, manager, clock):
        manager.store.set("job:stale", {'id': 'stale', 'started_at': clock() - 4000}, 10_000)
        assert manager.sweep() == 1
        assert manager.store.get("job:stale") is None


def test_phase_progress_bands():
    assert phase_progress(ScanPhase.THEME_FILES, 0, 10) == 0
    assert phase_progress(ScanPhase.THEME_FILES, 5, 10) == 12.5
    assert phase_progress(ScanPhase.BUILDERS, 0, 0) == 85
    assert phase_progress(ScanPhase.SYNTHESIS, 1, 1) == 100
