"""Async event bus carrying scan and job lifecycle events."""

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from loguru import logger


# Lifecycle event types
QUICK_SCAN_COMPLETED = "scan.quick.completed"
JOB_STARTED = "job.started"
JOB_PHASE_COMPLETED = "job.phase_completed"
JOB_COMPLETED = "job.completed"
JOB_FAILED = "job.failed"
JOB_PAUSED = "job.paused"
JOB_RESUMED = "job.resumed"
JOB_CANCELLED = "job.cancelled"


@dataclass
class Event:
    """A lifecycle event."""
    type: str
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    source: Optional[str] = None


class EventBus:
    """
    Async pub/sub event bus.

    Event types follow pattern: category.action
    Examples: job.started, job.phase_completed, scan.quick.completed
    """

    def __init__(self, maxsize: int = 1000):
        self._subscribers: Dict[str, List[Callable[[Event], Any]]] = defaultdict(list)
        self._event_queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._running = False
        self._processor_task: Optional[asyncio.Task] = None
        self._stats = defaultdict(int)

    def subscribe(self, event_pattern: str, handler: Callable[[Event], Any]) -> None:
        """
        Subscribe to events matching pattern.
        'job.*' matches every job event, '*' matches everything.
        """
        self._subscribers[event_pattern].append(handler)
        logger.debug(f"Subscribed handler to pattern: {event_pattern}")

    async def emit(self, event: Event) -> None:
        self.emit_nowait(event)

    def emit_nowait(self, event: Event) -> bool:
        """
        Queue an event without waiting.
        Returns False if the queue is full and the event was dropped.
        """
        try:
            self._event_queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(f"Event queue full, dropping event: {event.type}")
            self._stats['dropped'] += 1
            return False
        self._stats['emitted'] += 1
        return True

    def publish(self, event_type: str, source: Optional[str] = None, **data) -> bool:
        return self.emit_nowait(Event(type=event_type, data=data, source=source))

    async def start(self) -> None:
        if self._running:
            logger.warning("Event bus already running")
            return
        self._running = True
        self._processor_task = asyncio.create_task(self._process_events())
        logger.info("Event bus started")

    async def stop(self) -> None:
        self._running = False
        if self._processor_task:
            await self._processor_task
            self._processor_task = None
        logger.info("Event bus stopped")

    async def _process_events(self) -> None:
        while self._running:
            try:
                # Short timeout so stop() is honoured promptly
                event = await asyncio.wait_for(self._event_queue.get(), timeout=0.5)
            except asyncio.TimeoutError:
                continue
            await self._dispatch(event)

    async def _dispatch(self, event: Event) -> None:
        handlers = [
            handler
            for pattern, subscribed in list(self._subscribers.items())
            if self._matches_pattern(event.type, pattern)
            for handler in subscribed
        ]

        tasks = []
        for handler in handlers:
            if asyncio.iscoroutinefunction(handler):
                tasks.append(asyncio.create_task(handler(event)))
            else:
                tasks.append(asyncio.create_task(asyncio.to_thread(handler, event)))

        results = await asyncio.gather(*tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error(f"Handler error for event {event.type}: {result}")
                self._stats['handler_errors'] += 1

        self._stats['processed'] += 1

    def _matches_pattern(self, event_type: str, pattern: str) -> bool:
        if pattern == "*":
            return True
        if pattern.endswith(".*"):
            return event_type.startswith(pattern[:-2] + ".")
        return event_type == pattern

    def get_stats(self) -> Dict[str, int]:
        return dict(self._stats)
