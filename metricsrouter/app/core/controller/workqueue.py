############################################################
#
# metricsrouter - Custom and External Metrics Router
#
# workqueue.py: Deduplicating rate-limited work queue
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Work queue of backend identities awaiting reconciliation.

Semantics:
- An item is queued at most once; re-adding a pending item is a no-op.
- An item being processed is never handed to a second worker. Adding it
  while it is processing marks it dirty, and it is re-queued on ``done``.
- Failed items are re-added after a per-item exponential backoff.
"""

import asyncio
from collections import deque
from typing import Deque, Dict, Hashable, Optional, Set, Tuple

from prometheus_client import Counter, Gauge

from metricsrouter.app.logging_config import get_logger

logger = get_logger(__name__)

QUEUE_DEPTH = Gauge(
    "metricsrouter_workqueue_depth",
    "Items waiting in the work queue",
    ["name"],
)
QUEUE_RETRIES = Counter(
    "metricsrouter_workqueue_retries_total",
    "Items re-added after a failure",
    ["name"],
)

# 2**62 * base_delay is far beyond any sane max_delay
_MAX_EXPONENT = 62


class ExponentialBackoff:
    """Per-item exponential backoff: ``base_delay * 2**failures``, capped."""

    def __init__(self, base_delay: float = 0.5, max_delay: float = 300.0):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._failures: Dict[Hashable, int] = {}

    def when(self, item: Hashable) -> float:
        """Record a failure for ``item`` and return how long to wait."""
        exponent = self._failures.get(item, 0)
        self._failures[item] = exponent + 1
        delay = self.base_delay * (2 ** min(exponent, _MAX_EXPONENT))
        return min(delay, self.max_delay)

    def forget(self, item: Hashable) -> None:
        self._failures.pop(item, None)

    def num_requeues(self, item: Hashable) -> int:
        return self._failures.get(item, 0)


class WorkQueue:
    """Deduplicating FIFO with delayed and rate-limited adds."""

    def __init__(self, name: str = "reconcile", rate_limiter: Optional[ExponentialBackoff] = None):
        self.name = name
        self._rate_limiter = rate_limiter or ExponentialBackoff()
        self._queue: Deque[Hashable] = deque()
        self._dirty: Set[Hashable] = set()
        self._processing: Set[Hashable] = set()
        self._cond = asyncio.Condition()
        self._shutting_down = False
        # item -> (ready_at, task)
        self._delayed: Dict[Hashable, Tuple[float, asyncio.Task]] = {}

    def __len__(self) -> int:
        return len(self._queue)

    def __contains__(self, item: object) -> bool:
        return item in self._dirty

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def is_processing(self, item: Hashable) -> bool:
        return item in self._processing

    async def add(self, item: Hashable) -> None:
        """Queue ``item`` unless it is already pending."""
        async with self._cond:
            if self._shutting_down or item in self._dirty:
                return
            self._dirty.add(item)
            if item in self._processing:
                return
            self._queue.append(item)
            self._update_depth()
            self._cond.notify()

    async def get(self) -> Tuple[Optional[Hashable], bool]:
        """
        Wait for the next item.

        Returns:
            (item, shutdown). Once the queue is shut down, (None, True).
        """
        async with self._cond:
            while not self._queue and not self._shutting_down:
                await self._cond.wait()
            if self._shutting_down:
                return None, True
            item = self._queue.popleft()
            self._processing.add(item)
            self._dirty.discard(item)
            self._update_depth()
            return item, False

    async def done(self, item: Hashable) -> None:
        """Mark ``item`` finished; re-queue it if it was added meanwhile."""
        async with self._cond:
            self._processing.discard(item)
            if item in self._dirty and not self._shutting_down:
                self._queue.append(item)
                self._update_depth()
                self._cond.notify()

    async def discard(self, item: Hashable) -> None:
        """Drop any pending or delayed add of ``item``."""
        self._cancel_delayed(item)
        async with self._cond:
            if item in self._dirty:
                self._dirty.discard(item)
                if item in self._queue:
                    self._queue.remove(item)
                    self._update_depth()

    def add_after(self, item: Hashable, delay: float) -> None:
        """Queue ``item`` once ``delay`` seconds have passed."""
        if self._shutting_down:
            return
        loop = asyncio.get_running_loop()
        ready_at = loop.time() + max(delay, 0.0)
        pending = self._delayed.get(item)
        if pending is not None:
            if pending[0] <= ready_at:
                return
            pending[1].cancel()
        task = loop.create_task(self._add_later(item, delay))
        self._delayed[item] = (ready_at, task)

    def add_rate_limited(self, item: Hashable) -> None:
        """Queue ``item`` after its backoff delay."""
        delay = self._rate_limiter.when(item)
        QUEUE_RETRIES.labels(name=self.name).inc()
        logger.debug("workqueue_retry_scheduled", queue=self.name, item=str(item), delay=delay)
        self.add_after(item, delay)

    def forget(self, item: Hashable) -> None:
        """Reset the backoff for ``item``."""
        self._rate_limiter.forget(item)

    def num_requeues(self, item: Hashable) -> int:
        return self._rate_limiter.num_requeues(item)

    async def shut_down(self) -> None:
        """Stop accepting work and wake every waiting worker."""
        for item in list(self._delayed):
            self._cancel_delayed(item)
        async with self._cond:
            self._shutting_down = True
            self._cond.notify_all()
        logger.info("workqueue_shut_down", queue=self.name, pending=len(self._queue))

    async def _add_later(self, item: Hashable, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            return
        current = self._delayed.get(item)
        if current is not None and current[1] is asyncio.current_task():
            del self._delayed[item]
        await self.add(item)

    def _cancel_delayed(self, item: Hashable) -> None:
        pending = self._delayed.pop(item, None)
        if pending is not None:
            pending[1].cancel()

    def _update_depth(self) -> None:
        QUEUE_DEPTH.labels(name=self.name).set(len(self._queue))
