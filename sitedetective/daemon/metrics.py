"""Write-only metrics sink for scan latencies and outcome counters."""

import json
import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


@dataclass
class LatencyHistogram:
    """Bucketed latency distribution, in milliseconds."""
    name: str
    buckets: List[float] = field(default_factory=lambda: [
        5, 25, 100, 250, 500, 1000, 2500, 5000, 15000, 30000
    ])
    counts: Dict[float, int] = field(default_factory=dict)
    total_count: int = 0
    sum_ms: float = 0

    def __post_init__(self):
        self.counts = {bucket: 0 for bucket in self.buckets}

    def record(self, latency_ms: float) -> None:
        self.total_count += 1
        self.sum_ms += latency_ms
        for bucket in self.buckets:
            if latency_ms <= bucket:
                self.counts[bucket] += 1
                return
        # Overflow goes into the widest bucket
        self.counts[self.buckets[-1]] += 1

    def percentile(self, pct: float) -> float:
        if self.total_count == 0:
            return 0
        target = self.total_count * (pct / 100)
        cumulative = 0
        for bucket in self.buckets:
            cumulative += self.counts[bucket]
            if cumulative >= target:
                return bucket
        return self.buckets[-1]

    def mean(self) -> float:
        return self.sum_ms / self.total_count if self.total_count else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "count": self.total_count,
            "mean": round(self.mean(), 1),
            "p50": self.percentile(50),
            "p95": self.percentile(95),
            "p99": self.percentile(99),
        }


class MetricsCollector:
    """
    Latency histograms and counters for the detective core.

    Histograms in use: quick_scan, provider.<name>, deep.batch, synthesis.
    Counters: provider.error, provider.skipped, explainer.fallback,
    cache.hit, cache.miss, cache.compressed, job.started, job.busy,
    job.completed, job.failed.

    The core only writes here; /metrics is the only reader.
    """

    def __init__(self):
        self.histograms: Dict[str, LatencyHistogram] = {}
        self.counters: Dict[str, int] = defaultdict(int)
        self.started_at = datetime.now(timezone.utc)

    def record_latency(self, metric_name: str, latency_ms: float) -> None:
        hist = self.histograms.get(metric_name)
        if hist is None:
            hist = self.histograms[metric_name] = LatencyHistogram(metric_name)
        hist.record(latency_ms)

    def increment_counter(self, counter_name: str, amount: int = 1) -> None:
        self.counters[counter_name] += amount

    def timer(self, metric_name: str) -> "LatencyTimer":
        return LatencyTimer(metric_name, self)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": round(
                (datetime.now(timezone.utc) - self.started_at).total_seconds(), 1
            ),
            "latencies": {name: h.to_dict() for name, h in sorted(self.histograms.items())},
            "counters": dict(sorted(self.counters.items())),
        }

    def export_metrics(self, format: str = "json") -> str:
        """Export all metrics as JSON or Prometheus text."""
        if format == "json":
            return json.dumps(self.snapshot(), indent=2)

        if format == "prometheus":
            lines = [
                "# HELP sitedetective_info Site detective daemon information",
                "# TYPE sitedetective_info gauge",
                'sitedetective_info{version="0.1.0"} 1',
            ]
            for name, hist in sorted(self.histograms.items()):
                metric = f"sitedetective_{_sanitize(name)}_latency_ms"
                lines.append(f"# TYPE {metric} histogram")
                cumulative = 0
                for bucket in hist.buckets:
                    cumulative += hist.counts[bucket]
                    lines.append(f'{metric}_bucket{{le="{bucket}"}} {cumulative}')
                lines.append(f'{metric}_bucket{{le="+Inf"}} {hist.total_count}')
                lines.append(f"{metric}_sum {hist.sum_ms}")
                lines.append(f"{metric}_count {hist.total_count}")
            for name, value in sorted(self.counters.items()):
                metric = f"sitedetective_{_sanitize(name)}_total"
                lines.append(f"# TYPE {metric} counter")
                lines.append(f"{metric} {value}")
            return "\n".join(lines) + "\n"

        raise ValueError(f"Unknown format: {format}")

    def reset(self) -> None:
        self.histograms.clear()
        self.counters.clear()


def _sanitize(name: str) -> str:
    return "".join(c if c.isalnum() else "_" for c in name)


class LatencyTimer:
    """Context manager recording elapsed wall time into a histogram."""

    def __init__(self, metric_name: str, metrics: MetricsCollector):
        self.metric_name = metric_name
        self.metrics = metrics
        self.start_time: Optional[float] = None
        self.elapsed_ms = 0.0

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is not None:
            self.elapsed_ms = (time.perf_counter() - self.start_time) * 1000
            self.metrics.record_latency(self.metric_name, self.elapsed_ms)
