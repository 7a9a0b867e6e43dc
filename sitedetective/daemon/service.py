"""The SiteDetective facade: the operations the daemon and CLI call."""

from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from loguru import logger

from .bus import EventBus
from .cache import ResultCache
from .config import Config
from .explainer import create_explainer
from .export import export_job
from .jobs import JobManager
from .load_monitor import LoadMonitor
from .metrics import MetricsCollector
from .models import (
    DeepScanTicket,
    JobProgress,
    JobStatus,
    PageContext,
    Query,
    QuickResult,
    StructuralHint,
)
from .quick_scan import QuickScanOrchestrator
from .scheduler import BatchScheduler
from .sources import (
    BuilderAdapter,
    ContentSource,
    Explainer,
    StaticBuilderAdapter,
    StaticContentSource,
    load_site_snapshot,
)
from .store import KeyValueStore, MemoryStore
from .synthesis import Synthesizer


def _hints(hints: Optional[Sequence[Any]]) -> tuple:
    return tuple(
        h if isinstance(h, StructuralHint) else StructuralHint.from_dict(h)
        for h in hints or ()
    )


class SiteDetective:
    """Wires the scan engine together and exposes quick and deep scans."""

    def __init__(self,
                 config: Config,
                 source: ContentSource,
                 builders: Optional[BuilderAdapter] = None,
                 explainer: Optional[Explainer] = None,
                 store: Optional[KeyValueStore] = None,
                 metrics: Optional[MetricsCollector] = None,
                 event_bus: Optional[EventBus] = None,
                 scheduler: Optional[BatchScheduler] = None):
        self.config = config
        self.source = source
        self.builders = builders
        self.store = store or MemoryStore()
        self.metrics = metrics or MetricsCollector()
        self.event_bus = event_bus or EventBus()
        self.scheduler = scheduler or BatchScheduler(config.cache.sweep_interval_seconds)

        self.cache = ResultCache(
            self.store,
            compress_threshold=config.cache.compress_threshold_bytes,
            default_ttl=config.cache.default_ttl_seconds,
            metrics=self.metrics,
        )
        self.synthesizer = Synthesizer(
            explainer or create_explainer(config.explainer),
            timeout_ms=config.explainer.timeout_ms,
            metrics=self.metrics,
        )
        self.quick = QuickScanOrchestrator(
            source,
            builders=builders,
            budget_seconds=config.scan.quick_budget_seconds,
            top_n=config.scoring.top_n,
            synthesizer=self.synthesizer,
            quick_analysis=config.scan.quick_analysis,
            metrics=self.metrics,
            event_bus=self.event_bus,
        )
        self.jobs = JobManager(
            self.store,
            source,
            self.synthesizer,
            builders=builders,
            cache=self.cache,
            scheduler=self.scheduler,
            batch_size=config.scan.deep_batch_size,
            batch_time_limit=config.scan.batch_time_limit_seconds,
            max_concurrent_jobs=config.scan.max_concurrent_jobs,
            job_ttl=config.scan.job_ttl_seconds,
            stale_after=config.scan.stale_after_seconds,
            inter_batch_delay=config.scan.inter_batch_delay_seconds,
            file_list_ttl=config.cache.file_list_ttl_seconds,
            top_n=config.scoring.top_n,
            metrics=self.metrics,
            event_bus=self.event_bus,
        )
        self.jobs.load_monitor = LoadMonitor.from_config(config.throttle, self.jobs.active_jobs)

        self.scheduler.bind(self.jobs.process_batch)
        self.scheduler.add_sweep(self.cache.sweep)
        self.scheduler.add_sweep(self.jobs.sweep)

    @classmethod
    def from_config(cls, config: Config, **kwargs) -> "SiteDetective":
        """Build a detective over the configured site snapshot (or an empty site)."""
        if config.site.snapshot_path:
            source = load_site_snapshot(config.site.snapshot_path)
        else:
            logger.warning("No site snapshot configured; scanning an empty site")
            source = StaticContentSource()
        return cls(config, source, builders=StaticBuilderAdapter(source), **kwargs)

    async def start(self) -> None:
        await self.event_bus.start()
        await self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()
        await self.event_bus.stop()

    async def quick_scan(self, query: str, page: Optional[PageContext] = None,
                         hints: Optional[Sequence[Any]] = None) -> QuickResult:
        return await self.quick.scan(Query(text=query, page=page or PageContext(),
                                           hints=_hints(hints)))

    def start_deep_scan(self, query: str, page: Optional[PageContext] = None,
                        hints: Optional[Sequence[Any]] = None) -> DeepScanTicket:
        return self.jobs.start(Query(text=query, page=page or PageContext(),
                                     hints=_hints(hints)))

    async def get_job_progress(self, job_id: str) -> JobProgress:
        return await self.jobs.progress(job_id, drive_if_stale=True)

    def control_job(self, job_id: str, action: str) -> JobStatus:
        return self.jobs.control(job_id, action)

    async def export_results(self, job_id: str, format: str = "csv") -> Path:
        job = self.jobs.get(job_id)
        return await export_job(job, format, self.config.export.directory)

    def sweep(self) -> int:
        """Drop expired cache entries and jobs."""
        return self.scheduler.sweep()

    def stats(self) -> Dict[str, Any]:
        return {
            'active_jobs': self.jobs.active_jobs(),
            'pending_batches': len(self.scheduler.pending()),
            'cache': self.cache.stats(),
            'events': self.event_bus.get_stats(),
        }
