"""Quick scan: a bounded-time pass over the cheapest evidence providers.

Providers run one after another in a fixed order. Before each one the
orchestrator checks whether the provider's estimated cost still fits in the
budget; if not, the provider is skipped and the result is flagged timed_out.
A slow provider is never interrupted, so a scan overruns its budget by at
most one provider's latency.
"""

import asyncio
import time
from typing import Callable, Dict, List, Optional, Sequence

from loguru import logger

from . import scoring
from .bus import QUICK_SCAN_COMPLETED, EventBus
from .errors import BudgetExceeded, ProviderError
from .metrics import MetricsCollector
from .models import EvidenceItem, PageContext, Query, QuickResult, StructuralHint
from .providers import ScanContext, ScanProvider, quick_providers
from .sources import BuilderAdapter, ContentSource
from .synthesis import Synthesizer
from .terms import extract_terms


TOP_CONFIDENCES = 3


def quick_confidence(items: Sequence[EvidenceItem]) -> float:
    """Mean of the best few item confidences, 0 when there is no evidence."""
    best = sorted((i.confidence for i in items), reverse=True)[:TOP_CONFIDENCES]
    if not best:
        return 0.0
    return round(sum(best) / len(best), 2)


class QuickScanOrchestrator:
    """Runs the quick-scan providers within a wall-clock budget."""

    def __init__(self,
                 source: ContentSource,
                 builders: Optional[BuilderAdapter] = None,
                 providers: Optional[List[ScanProvider]] = None,
                 budget_seconds: float = 5.0,
                 top_n: int = 20,
                 synthesizer: Optional[Synthesizer] = None,
                 quick_analysis: bool = False,
                 metrics: Optional[MetricsCollector] = None,
                 event_bus: Optional[EventBus] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.source = source
        self.builders = builders
        self.providers = providers if providers is not None else quick_providers()
        self.budget_seconds = budget_seconds
        self.top_n = top_n
        self.synthesizer = synthesizer
        self.quick_analysis = quick_analysis
        self.metrics = metrics
        self.event_bus = event_bus
        self._clock = clock

    async def scan(self, query: Query) -> QuickResult:
        start = self._clock()
        terms = extract_terms(query.text)
        context = ScanContext(
            page=query.page,
            source=self.source,
            builders=self.builders,
            hints=query.hints,
            quick=True,
        )

        evidence: List[EvidenceItem] = []
        skipped: List[str] = []
        errors: Dict[str, str] = {}

        for provider in self.providers:
            elapsed = self._clock() - start
            if elapsed + provider.estimated_cost > self.budget_seconds:
                reason = BudgetExceeded(provider.name, elapsed, self.budget_seconds)
                logger.warning(str(reason))
                skipped.append(provider.name)
                self._count("provider.skipped")
                continue

            provider_start = self._clock()
            try:
                items = await asyncio.to_thread(provider.scan, terms, context)
            except Exception as e:
                error = ProviderError(provider.name, e)
                logger.error(str(error))
                errors[provider.name] = str(e)
                self._count("provider.error")
                items = []

            took_ms = (self._clock() - provider_start) * 1000
            logger.debug(f"Provider {provider.name}: {len(items)} items in {took_ms:.1f}ms")
            if self.metrics:
                self.metrics.record_latency(f"provider.{provider.name}", took_ms)
            evidence.extend(items)

        ranked = scoring.rank(evidence, terms, self.top_n)
        elapsed = self._clock() - start

        result = QuickResult(
            query=query.text,
            terms=terms,
            primary_source=ranked[0] if ranked else None,
            scored_evidence=ranked,
            confidence=quick_confidence(evidence),
            elapsed_ms=elapsed * 1000,
            timed_out=bool(skipped) or elapsed > self.budget_seconds,
            skipped_providers=skipped,
            provider_errors=errors,
        )

        if self.quick_analysis and self.synthesizer and ranked:
            remaining_ms = int((self.budget_seconds - elapsed) * 1000)
            result.analysis = await self.synthesizer.synthesize(query.text, ranked, remaining_ms)
            result.elapsed_ms = (self._clock() - start) * 1000

        if self.metrics:
            self.metrics.record_latency("quick_scan", result.elapsed_ms)
        if self.event_bus:
            self.event_bus.publish(
                QUICK_SCAN_COMPLETED,
                source="quick_scan",
                query=query.text,
                result_count=len(ranked),
                timed_out=result.timed_out,
                elapsed_ms=result.elapsed_ms,
            )

        logger.info(
            f"Quick scan '{query.text}': {len(ranked)} results, "
            f"confidence {result.confidence}, {result.elapsed_ms:.0f}ms"
        )
        return result

    async def scan_text(self, text: str, page: Optional[PageContext] = None,
                        hints: Sequence[StructuralHint] = ()) -> QuickResult:
        return await self.scan(Query(text=text, page=page or PageContext(), hints=tuple(hints)))

    def _count(self, name: str) -> None:
        if self.metrics:
            self.metrics.increment_counter(name)
