"""Deferred batch scheduling and periodic housekeeping."""

import asyncio
from typing import Awaitable, Callable, Dict, List, Optional, Set

from loguru import logger


class BatchScheduler:
    """
    Runs a job's next batch after a delay on the event loop.

    At most one batch is pending per job: scheduling again replaces the
    pending handle. Housekeeping callbacks registered with add_sweep run
    every sweep_interval seconds while the scheduler is started.
    """

    def __init__(self, sweep_interval: float = 300.0):
        self.sweep_interval = sweep_interval
        self._runner: Optional[Callable[[str], Awaitable[None]]] = None
        self._pending: Dict[str, asyncio.TimerHandle] = {}
        self._running: Set[asyncio.Task] = set()
        self._sweeps: List[Callable[[], int]] = []
        self._sweep_task: Optional[asyncio.Task] = None

    def bind(self, runner: Callable[[str], Awaitable[None]]) -> None:
        """Set the coroutine function that processes one batch for a job id."""
        self._runner = runner

    def add_sweep(self, sweep: Callable[[], int]) -> None:
        self._sweeps.append(sweep)

    def schedule(self, job_id: str, delay: float = 0) -> None:
        if self._runner is None:
            logger.warning(f"No batch runner bound; dropping schedule for {job_id}")
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running loop; batch for {job_id} not scheduled")
            return

        existing = self._pending.pop(job_id, None)
        if existing:
            existing.cancel()
        self._pending[job_id] = loop.call_later(max(0.0, delay), self._fire, job_id)
        logger.debug(f"Batch for {job_id} scheduled in {delay:.1f}s")

    def cancel(self, job_id: str) -> None:
        handle = self._pending.pop(job_id, None)
        if handle:
            handle.cancel()
            logger.debug(f"Pending batch for {job_id} cancelled")

    def pending(self) -> List[str]:
        return list(self._pending)

    def _fire(self, job_id: str) -> None:
        self._pending.pop(job_id, None)
        task = asyncio.create_task(self._run(job_id))
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    async def _run(self, job_id: str) -> None:
        try:
            await self._runner(job_id)
        except Exception as e:
            logger.error(f"Batch for {job_id} raised: {e}")

    async def start(self) -> None:
        if self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._sweep_loop())
            logger.info(f"Scheduler started (sweep every {self.sweep_interval:.0f}s)")

    async def stop(self) -> None:
        for handle in self._pending.values():
            handle.cancel()
        self._pending.clear()

        tasks = list(self._running)
        if self._sweep_task:
            tasks.append(self._sweep_task)
            self._sweep_task = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._running.clear()
        logger.info("Scheduler stopped")

    def sweep(self) -> int:
        removed = 0
        for sweep in self._sweeps:
            try:
                removed += sweep()
            except Exception as e:
                logger.error(f"Sweep {getattr(sweep, '__qualname__', sweep)} failed: {e}")
        return removed

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            removed = self.sweep()
            if removed:
                logger.debug(f"Sweep removed {removed} expired entries")
