"""Server load sampling and throttle policy for scans."""

from typing import Callable, Dict, Optional

import psutil
from loguru import logger

from .models import LoadLevel, LoadSnapshot, ThrottleSettings


DEEP_DELAYS: Dict[LoadLevel, float] = {
    LoadLevel.LOW: 0,
    LoadLevel.MEDIUM: 1,
    LoadLevel.HIGH: 3,
    LoadLevel.CRITICAL: 5,
}


def _system_memory() -> float:
    return float(psutil.virtual_memory().total)


def _process_memory() -> float:
    return float(psutil.Process().memory_info().rss)


class LoadMonitor:
    """
    Samples memory and active job count, grades load, and picks batch sizes.

    Callers ask before a batch; nothing here blocks or sleeps.
    """

    def __init__(self,
                 active_jobs: Callable[[], int] = lambda: 0,
                 memory_limit_mb: Optional[float] = None,
                 memory_threshold: float = 0.8,
                 max_active_jobs: int = 3,
                 soft_time_ceiling: float = 25.0,
                 quick_batch_size: int = 20,
                 deep_batch_size: int = 10,
                 memory_used: Callable[[], float] = _process_memory,
                 memory_total: Callable[[], float] = _system_memory):
        self.active_jobs = active_jobs
        self.memory_limit_mb = memory_limit_mb
        self.memory_threshold = memory_threshold
        self.max_active_jobs = max_active_jobs
        self.soft_time_ceiling = soft_time_ceiling
        self.quick_batch_size = quick_batch_size
        self.deep_batch_size = deep_batch_size
        self._memory_used = memory_used
        self._memory_total = memory_total

    @classmethod
    def from_config(cls, config, active_jobs: Callable[[], int]) -> "LoadMonitor":
        return cls(
            active_jobs=active_jobs,
            memory_limit_mb=config.memory_limit_mb,
            memory_threshold=config.memory_threshold,
            max_active_jobs=config.max_active_jobs,
            soft_time_ceiling=config.soft_time_ceiling_seconds,
            quick_batch_size=config.quick_batch_size,
            deep_batch_size=config.deep_batch_size,
        )

    def snapshot(self, elapsed_time: float = 0.0) -> LoadSnapshot:
        if self.memory_limit_mb:
            limit = self.memory_limit_mb * 1024 * 1024
        else:
            limit = self._memory_total()
        return LoadSnapshot(
            memory_used=self._memory_used(),
            memory_limit=limit,
            elapsed_time=elapsed_time,
            active_jobs=self.active_jobs(),
        )

    def load_level(self, snapshot: LoadSnapshot) -> LoadLevel:
        score = min(40.0, snapshot.memory_fraction * 40)
        score += min(30.0, (snapshot.active_jobs / 5) * 30)
        score += min(30.0, (snapshot.elapsed_time / 30) * 30)

        if score >= 80:
            return LoadLevel.CRITICAL
        if score >= 60:
            return LoadLevel.HIGH
        if score >= 40:
            return LoadLevel.MEDIUM
        return LoadLevel.LOW

    def throttle(self, kind: str, level: LoadLevel) -> ThrottleSettings:
        """Batch size and inter-batch delay for a scan kind at a load level."""
        if kind == "quick":
            return ThrottleSettings(batch_size=self.quick_batch_size,
                                    inter_batch_delay=0,
                                    max_concurrent=5)
        return ThrottleSettings(batch_size=self.deep_batch_size,
                                inter_batch_delay=DEEP_DELAYS[level],
                                max_concurrent=2)

    def should_throttle(self, snapshot: LoadSnapshot) -> bool:
        throttled = (
            snapshot.memory_fraction > self.memory_threshold
            or snapshot.active_jobs > self.max_active_jobs
            or snapshot.elapsed_time > self.soft_time_ceiling
        )
        if throttled:
            logger.warning(
                f"Throttling scans: memory {snapshot.memory_fraction:.0%}, "
                f"{snapshot.active_jobs} active jobs, {snapshot.elapsed_time:.1f}s elapsed"
            )
        return throttled
