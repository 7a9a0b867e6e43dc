"""Deep-scan jobs: phased, batch-driven, resumable background scans.

A job is persisted in the key-value store after every batch, so progress
reads never block and any process can pick up where the last batch stopped.
Batches are driven from outside (BatchScheduler, or a stale progress read);
a job never runs itself.

Phases and their share of the progress bar:

    theme_files      0-25
    extensions      25-50
    database        50-75
    builders        75-85
    branding_audit  85-90
    synthesis       90-100
"""

import asyncio
import hashlib
import time
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from loguru import logger

from . import bus as events
from . import scoring
from .bus import EventBus
from .cache import ResultCache
from .errors import InvalidControlAction, JobNotFound
from .load_monitor import LoadMonitor
from .metrics import MetricsCollector
from .models import (
    ControlAction,
    DeepScanTicket,
    EvidenceItem,
    JobProgress,
    JobStatus,
    PageContext,
    Query,
    ScanJob,
    ScanPhase,
)
from .providers import ScanContext, ScanProvider, deep_providers
from .providers.branding import BrandingProvider
from .sources import BuilderAdapter, ContentSource
from .store import KeyValueStore
from .synthesis import Synthesizer
from .terms import extract_terms


PHASE_BANDS: Dict[ScanPhase, Tuple[float, float]] = {
    ScanPhase.THEME_FILES: (0, 25),
    ScanPhase.EXTENSIONS: (25, 50),
    ScanPhase.DATABASE: (50, 75),
    ScanPhase.BUILDERS: (75, 85),
    ScanPhase.BRANDING_AUDIT: (85, 90),
    ScanPhase.SYNTHESIS: (90, 100),
}

PHASE_TASKS: Dict[ScanPhase, str] = {
    ScanPhase.THEME_FILES: "Scanning theme files...",
    ScanPhase.EXTENSIONS: "Analyzing extensions...",
    ScanPhase.DATABASE: "Searching stored content...",
    ScanPhase.BUILDERS: "Checking page builders...",
    ScanPhase.BRANDING_AUDIT: "Auditing branding & CSS...",
    ScanPhase.SYNTHESIS: "Cross-referencing findings...",
}

KEY_PREFIX = "job:"


class BatchDriver(Protocol):
    """Something that runs process_batch(job_id) after a delay."""

    def schedule(self, job_id: str, delay: float = 0) -> None: ...

    def cancel(self, job_id: str) -> None: ...


def make_job_id(query: str, page: PageContext) -> str:
    page_id = "" if page.page_id is None else str(page.page_id)
    return hashlib.md5(f"{query}{page.url}{page_id}".encode()).hexdigest()


def phase_progress(phase: ScanPhase, position: int, total: int) -> float:
    start, end = PHASE_BANDS[phase]
    if total <= 0:
        return end
    return start + (end - start) * min(position, total) / total


class JobManager:
    """Creates, advances and controls deep-scan jobs."""

    def __init__(self,
                 store: KeyValueStore,
                 source: ContentSource,
                 synthesizer: Synthesizer,
                 builders: Optional[BuilderAdapter] = None,
                 cache: Optional[ResultCache] = None,
                 load_monitor: Optional[LoadMonitor] = None,
                 providers: Optional[Dict[ScanPhase, List[ScanProvider]]] = None,
                 scheduler: Optional[BatchDriver] = None,
                 batch_size: int = 50,
                 batch_time_limit: float = 30.0,
                 max_concurrent_jobs: int = 3,
                 job_ttl: float = 3600,
                 stale_after: float = 5.0,
                 inter_batch_delay: float = 5.0,
                 file_list_ttl: float = 1800,
                 top_n: int = 20,
                 metrics: Optional[MetricsCollector] = None,
                 event_bus: Optional[EventBus] = None,
                 clock: Callable[[], float] = time.time):
        self.store = store
        self.source = source
        self.synthesizer = synthesizer
        self.builders = builders
        self.cache = cache
        self.load_monitor = load_monitor or LoadMonitor(active_jobs=self.active_jobs)
        self.providers = providers if providers is not None else deep_providers()
        self.scheduler = scheduler
        self.batch_size = batch_size
        self.batch_time_limit = batch_time_limit
        self.max_concurrent_jobs = max_concurrent_jobs
        self.job_ttl = job_ttl
        self.stale_after = stale_after
        self.inter_batch_delay = inter_batch_delay
        self.file_list_ttl = file_list_ttl
        self.top_n = top_n
        self.metrics = metrics
        self.event_bus = event_bus
        self._clock = clock
        self._locks: Dict[str, asyncio.Lock] = {}

    # Persistence

    def _key(self, job_id: str) -> str:
        return KEY_PREFIX + job_id

    def load(self, job_id: str) -> Optional[ScanJob]:
        data = self.store.get(self._key(job_id))
        if data is None:
            return None
        job = ScanJob.from_dict(data)
        if job.started_at + self.job_ttl <= self._clock():
            return None
        return job

    def status(self, job_id: str) -> Optional[JobStatus]:
        """Current status without rebuilding the job and its results."""
        data = self.store.get(self._key(job_id))
        if data is None or data['started_at'] + self.job_ttl <= self._clock():
            return None
        return JobStatus(data['status'])

    def get(self, job_id: str) -> ScanJob:
        job = self.load(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    def save(self, job: ScanJob) -> None:
        # Expiry is measured from started_at, whatever the status
        ttl = max(0.0, job.started_at + self.job_ttl - self._clock())
        self.store.set(self._key(job.id), job.to_dict(), ttl)

    def jobs(self) -> List[ScanJob]:
        loaded = (self.load(key[len(KEY_PREFIX):]) for key in self.store.keys(KEY_PREFIX))
        return [job for job in loaded if job is not None]

    def active_jobs(self) -> int:
        return sum(1 for job in self.jobs() if job.status.is_runnable)

    # Lifecycle

    def start(self, query: Query) -> DeepScanTicket:
        """
        Start a deep scan, or return the one already running for this query.

        Returns a ticket with status "busy" and no job id when the
        concurrent job ceiling is reached.
        """
        job_id = make_job_id(query.text, query.page)
        existing = self.load(job_id)
        if existing is not None and not existing.status.is_terminal:
            logger.info(f"Deep scan {job_id} already {existing.status.value}")
            return DeepScanTicket(
                job_id=job_id,
                status=existing.status.value,
                message="Deep scan already running for this question.",
            )

        if self.active_jobs() >= self.max_concurrent_jobs:
            logger.warning(f"Refusing deep scan: {self.max_concurrent_jobs} jobs already running")
            self._count("job.busy")
            return DeepScanTicket(
                job_id=None,
                status="busy",
                message="Too many deep scans running. Retry later.",
            )

        now = self._clock()
        job = ScanJob(
            id=job_id,
            query=query.text,
            page=query.page,
            hints=list(query.hints),
            started_at=now,
            last_update=now,
        )
        self.save(job)
        self._count("job.started")
        self._publish(events.JOB_STARTED, job)
        logger.info(f"Deep scan {job_id} started for '{query.text}'")

        if self.scheduler:
            self.scheduler.schedule(job_id, 0)

        return DeepScanTicket(
            job_id=job_id,
            status=JobStatus.INITIATED.value,
            message="Deep scan started. Poll progress for live updates.",
        )

    async def process_batch(self, job_id: str) -> None:
        """Advance a job by one batch. No-op unless it is initiated or in progress."""
        lock = self._locks.setdefault(job_id, asyncio.Lock())
        async with lock:
            await self._process_batch(job_id)

    async def _process_batch(self, job_id: str) -> None:
        job = self.load(job_id)
        if job is None or not job.status.is_runnable:
            return

        if job.status == JobStatus.INITIATED:
            job.status = JobStatus.IN_PROGRESS
            job.current_task = PHASE_TASKS[job.current_phase]
            job.last_update = self._clock()
            self.save(job)

        snapshot = self.load_monitor.snapshot()
        throttled = self.load_monitor.should_throttle(snapshot)
        settings = self.load_monitor.throttle("deep", self.load_monitor.load_level(snapshot))
        batch_size = settings.batch_size if throttled else self.batch_size
        delay = self.inter_batch_delay + settings.inter_batch_delay

        phase = job.current_phase
        batch_start = self._clock()
        try:
            if phase == ScanPhase.SYNTHESIS:
                await self._synthesize(job)
            else:
                await self._scan_phase(job, phase, batch_size)
        except Exception as e:
            logger.error(f"Deep scan {job_id} failed in {phase.value}: {e}")
            self._fail(job_id, f"{phase.value}: {e}")
            return
        finally:
            if self.metrics:
                self.metrics.record_latency("deep.batch", (self._clock() - batch_start) * 1000)

        current = self.load(job_id)
        if current is not None and current.status == JobStatus.IN_PROGRESS and self.scheduler:
            self.scheduler.schedule(job_id, delay)

    def _context(self, job: ScanJob) -> ScanContext:
        return ScanContext(
            page=job.page,
            source=self.source,
            builders=self.builders,
            hints=tuple(job.hints),
            cache=self.cache,
            quick=False,
            file_list_ttl=self.file_list_ttl,
        )

    def _phase_units(self, phase: ScanPhase,
                     context: ScanContext) -> List[Tuple[ScanProvider, Any]]:
        return [
            (provider, unit)
            for provider in self.providers.get(phase, [])
            for unit in provider.units(context)
        ]

    def _scan_slice(self, job: ScanJob, phase: ScanPhase, batch_size: int
                    ) -> Tuple[List[EvidenceItem], int, int, Optional[Dict[str, Any]]]:
        """Scan one slice of the phase's units. Runs in a worker thread."""
        terms = extract_terms(job.query)
        context = self._context(job)
        units = self._phase_units(phase, context)
        total = len(units)
        position = job.batch_position
        end = min(total, position + batch_size)
        deadline = self._clock() + self.batch_time_limit

        items: List[EvidenceItem] = []
        while position < end and self._clock() < deadline:
            # Cooperative cancellation: pause and cancel land between units
            status = self.status(job.id)
            if status is None or not status.is_runnable:
                break
            provider, unit = units[position]
            items.extend(provider.scan_units([unit], terms, context))
            position += 1

        report = None
        if position >= total:
            for provider in self.providers.get(phase, []):
                if isinstance(provider, BrandingProvider):
                    report = provider.audit(context)
        return items, position, total, report

    async def _scan_phase(self, job: ScanJob, phase: ScanPhase, batch_size: int) -> None:
        items, position, total, report = await asyncio.to_thread(
            self._scan_slice, job, phase, batch_size
        )

        fresh = self.load(job.id)
        if fresh is None:
            return
        fresh.results.extend(items)
        fresh.batch_position = position
        fresh.progress_percent = phase_progress(phase, position, total)
        fresh.current_task = f"{PHASE_TASKS[phase]} ({position}/{total})"
        fresh.last_update = self._clock()
        if report is not None:
            fresh.branding_report = report

        if fresh.status.is_runnable and position >= total:
            next_phase = phase.next()
            logger.info(f"Deep scan {job.id}: {phase.value} complete ({len(fresh.results)} results)")
            self._publish(events.JOB_PHASE_COMPLETED, fresh, phase=phase.value)
            fresh.current_phase = next_phase
            fresh.batch_position = 0
            fresh.current_task = PHASE_TASKS[next_phase]
            fresh.progress_percent = PHASE_BANDS[next_phase][0]

        self.save(fresh)

    async def _synthesize(self, job: ScanJob) -> None:
        terms = extract_terms(job.query)
        ranked = scoring.rank(job.results, terms, self.top_n)
        attribution = await self.synthesizer.synthesize(job.query, ranked)

        fresh = self.load(job.id)
        if fresh is None or not fresh.status.is_runnable:
            return
        now = self._clock()
        fresh.ranked = ranked
        fresh.attribution = attribution
        fresh.status = JobStatus.COMPLETED
        fresh.progress_percent = 100.0
        fresh.current_task = "Deep scan completed"
        fresh.completed_at = now
        fresh.last_update = now
        self.save(fresh)
        self._count("job.completed")
        self._publish(events.JOB_COMPLETED, fresh, results=len(ranked))
        logger.info(f"Deep scan {job.id} completed with {len(ranked)} ranked results")

    def _fail(self, job_id: str, message: str) -> None:
        job = self.load(job_id)
        if job is None:
            return
        job.status = JobStatus.ERROR
        job.error_message = message
        job.current_task = "Deep scan failed"
        job.last_update = self._clock()
        self.save(job)
        self._count("job.failed")
        self._publish(events.JOB_FAILED, job, error=message)

    # Control

    def pause(self, job_id: str) -> JobStatus:
        job = self.get(job_id)
        if job.status.is_terminal or job.status == JobStatus.PAUSED:
            return job.status
        now = self._clock()
        job.status = JobStatus.PAUSED
        job.paused_at = now
        job.current_task = "Scan paused"
        job.last_update = now
        self.save(job)
        self._publish(events.JOB_PAUSED, job)
        logger.info(f"Deep scan {job_id} paused")
        return job.status

    def resume(self, job_id: str) -> JobStatus:
        job = self.get(job_id)
        if job.status != JobStatus.PAUSED:
            return job.status
        job.status = JobStatus.IN_PROGRESS
        job.paused_at = None
        job.current_task = PHASE_TASKS[job.current_phase]
        job.last_update = self._clock()
        self.save(job)
        self._publish(events.JOB_RESUMED, job)
        logger.info(f"Deep scan {job_id} resumed")
        if self.scheduler:
            self.scheduler.schedule(job_id, 0)
        return job.status

    def cancel(self, job_id: str) -> JobStatus:
        job = self.get(job_id)
        if job.status.is_terminal:
            return job.status
        now = self._clock()
        job.status = JobStatus.CANCELLED
        job.cancelled_at = now
        job.current_task = "Scan cancelled"
        job.last_update = now
        self.save(job)
        if self.scheduler:
            self.scheduler.cancel(job_id)
        self._publish(events.JOB_CANCELLED, job)
        logger.info(f"Deep scan {job_id} cancelled")
        return job.status

    def control(self, job_id: str, action: str) -> JobStatus:
        try:
            control = ControlAction(action)
        except ValueError:
            raise InvalidControlAction(f"Unknown action: {action}")
        handlers = {
            ControlAction.PAUSE: self.pause,
            ControlAction.RESUME: self.resume,
            ControlAction.CANCEL: self.cancel,
        }
        return handlers[control](job_id)

    # Progress

    def is_stale(self, job: ScanJob) -> bool:
        return self._clock() - job.last_update > self.stale_after

    async def progress(self, job_id: str, drive_if_stale: bool = False) -> JobProgress:
        """
        Snapshot of a job's persisted state.

        With drive_if_stale, a runnable job whose last update is older than
        stale_after gets one batch run inline first, covering for a stalled
        scheduler. Raises JobNotFound for unknown or expired ids.
        """
        job = self.get(job_id)
        lock = self._locks.get(job_id)
        if (drive_if_stale and job.status.is_runnable and self.is_stale(job)
                and not (lock and lock.locked())):
            logger.warning(f"Deep scan {job_id} is stale; running a batch inline")
            await self.process_batch(job_id)
            job = self.get(job_id)
        return self.snapshot(job)

    def snapshot(self, job: ScanJob) -> JobProgress:
        end = job.completed_at or job.cancelled_at or self._clock()
        return JobProgress(
            job_id=job.id,
            status=job.status,
            progress_percent=job.progress_percent,
            current_phase=job.current_phase,
            current_task=job.current_task,
            partial_results=list(job.results),
            elapsed_seconds=max(0.0, end - job.started_at),
            last_update=job.last_update,
            error_message=job.error_message,
            attribution=job.attribution,
            ranked=list(job.ranked),
        )

    def sweep(self) -> int:
        """Drop expired jobs. Returns how many were removed."""
        now = self._clock()
        removed = 0
        for key in self.store.keys(KEY_PREFIX):
            data = self.store.get(key)
            if data is not None and data.get('started_at', 0) + self.job_ttl <= now:
                self.store.delete(key)
                removed += 1

        # The store may have expired jobs on its own; their locks go too
        live = {key[len(KEY_PREFIX):] for key in self.store.keys(KEY_PREFIX)}
        for job_id in list(self._locks):
            if job_id not in live and not self._locks[job_id].locked():
                del self._locks[job_id]

        if removed:
            logger.info(f"Swept {removed} expired deep scans")
        return removed

    def _publish(self, event_type: str, job: ScanJob, **data) -> None:
        if self.event_bus:
            self.event_bus.publish(event_type, source="jobs", job_id=job.id,
                                   status=job.status.value, **data)

    def _count(self, name: str) -> None:
        if self.metrics:
            self.metrics.increment_counter(name)
