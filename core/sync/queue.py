"""
Change Event Queue.

Ordered FIFO hand-off between the push channel and the engine's single
consumer task, with a size bound and metrics.
"""

import asyncio
import logging
from collections import defaultdict, deque
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional
from dataclasses import dataclass, field

from .events import ChangeEvent

logger = logging.getLogger(__name__)


@dataclass
class QueueMetrics:
    """Metrics for monitoring queue performance"""
    total_items_enqueued: int = 0
    total_items_dequeued: int = 0
    total_items_rejected: int = 0
    current_queue_size: int = 0
    max_queue_size_reached: int = 0
    events_by_type: Dict[str, int] = field(default_factory=lambda: defaultdict(int))


class ChangeEventQueue:
    """
    Asynchronous FIFO queue feeding the sync engine.

    Items are handed out strictly in the order they were accepted. Change
    events count against `max_queue_size`; callers may force control items
    (such as resnapshot requests) past the bound. A rejected change event
    means the consumer has a gap and must resynchronize.
    """

    def __init__(self, max_queue_size: int = 1000):
        """
        Initialize the queue.

        Args:
            max_queue_size: Maximum number of items held before rejecting
        """
        self.max_queue_size = max_queue_size

        self._queue: Deque[Any] = deque()
        self._queue_lock = asyncio.Lock()
        self._event_waiters: List[asyncio.Future] = []

        self.metrics = QueueMetrics()
        self._start_time = datetime.now()
        self._running = False

        logger.debug(f"Initialized ChangeEventQueue with max_size={max_queue_size}")

    @property
    def is_active(self) -> bool:
        """Check if the queue is currently active"""
        return self._running

    async def start(self) -> None:
        """Start accepting items"""
        self._running = True

    async def stop(self) -> None:
        """Stop accepting items and release waiting consumers"""
        self._running = False

        for waiter in self._event_waiters:
            if not waiter.done():
                waiter.cancel()
        self._event_waiters.clear()

    async def enqueue(self, item: Any, force: bool = False) -> bool:
        """
        Append an item to the queue.

        Args:
            item: ChangeEvent or engine control item
            force: Accept even when the queue is at capacity

        Returns:
            True if the item was accepted
        """
        if not self._running:
            return False

        async with self._queue_lock:
            if not force and len(self._queue) >= self.max_queue_size:
                self.metrics.total_items_rejected += 1
                logger.warning(f"Queue full ({len(self._queue)} items), rejecting: {item}")
                return False

            self._queue.append(item)

            self.metrics.total_items_enqueued += 1
            self.metrics.current_queue_size = len(self._queue)
            self.metrics.max_queue_size_reached = max(
                self.metrics.max_queue_size_reached,
                len(self._queue)
            )
            if isinstance(item, ChangeEvent):
                self.metrics.events_by_type[item.change_type.value] += 1

            # Wake up one waiting consumer
            while self._event_waiters:
                waiter = self._event_waiters.pop(0)
                if not waiter.done():
                    waiter.set_result(None)
                    break

            return True

    async def dequeue(self, timeout: Optional[float] = None) -> Optional[Any]:
        """
        Remove and return the oldest item.

        Args:
            timeout: Maximum seconds to wait; None waits indefinitely

        Returns:
            The oldest item, or None on timeout or when the queue stops
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout is not None else None

        while True:
            async with self._queue_lock:
                if self._queue:
                    return self._pop_item()
                if not self._running:
                    return None
                waiter = loop.create_future()
                self._event_waiters.append(waiter)

            try:
                if deadline is None:
                    await waiter
                else:
                    remaining = deadline - loop.time()
                    if remaining <= 0:
                        return None
                    await asyncio.wait_for(waiter, timeout=remaining)
            except asyncio.TimeoutError:
                return None
            except asyncio.CancelledError:
                if waiter.cancelled() and not self._running:
                    # Released by stop()
                    return None
                raise
            finally:
                if waiter in self._event_waiters:
                    self._event_waiters.remove(waiter)

    def get_nowait(self) -> Optional[Any]:
        """Pop the oldest item without waiting, or None if empty"""
        if not self._queue:
            return None
        return self._pop_item()

    def _pop_item(self) -> Any:
        item = self._queue.popleft()
        self.metrics.total_items_dequeued += 1
        self.metrics.current_queue_size = len(self._queue)
        return item

    async def size(self) -> int:
        """Get current queue size"""
        async with self._queue_lock:
            return len(self._queue)

    async def is_empty(self) -> bool:
        """Check if queue is empty"""
        return await self.size() == 0

    async def clear(self) -> int:
        """Clear all items from queue and return count cleared"""
        async with self._queue_lock:
            count = len(self._queue)
            self._queue.clear()
            self.metrics.current_queue_size = 0
            if count:
                logger.debug(f"Cleared {count} items from queue")
            return count

    def get_metrics(self) -> Dict[str, Any]:
        """Get queue metrics"""
        uptime = (datetime.now() - self._start_time).total_seconds()

        return {
            "current_size": self.metrics.current_queue_size,
            "max_size_reached": self.metrics.max_queue_size_reached,
            "items_enqueued": self.metrics.total_items_enqueued,
            "items_dequeued": self.metrics.total_items_dequeued,
            "items_rejected": self.metrics.total_items_rejected,
            "events_by_type": dict(self.metrics.events_by_type),
            "uptime_seconds": uptime,
            "queue_utilization": self.metrics.current_queue_size / self.max_queue_size
        }

    def __len__(self) -> int:
        """Get current queue size (sync version)"""
        return len(self._queue)

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
