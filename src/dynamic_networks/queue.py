"""Rate limited work queue feeding the controller workers.

The queue follows the semantics of the Kubernetes controller work queue:

* an item is queued at most once, no matter how often it is added before a
  worker picks it up;
* an item added while a worker processes it is queued again once the worker
  calls :meth:`RateLimitingQueue.done`, so no two workers ever hold the same
  item;
* failures are retried through :meth:`RateLimitingQueue.add_rate_limited`,
  which delays the item according to a rate limiter that also tracks how many
  times the item was requeued.

Items are compared by identity (or by whatever ``__eq__``/``__hash__`` they
define), so two distinct request objects carrying the same data are two
separate work items.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from typing import Any, Callable, Deque, Dict, Hashable, List, Optional, Sequence, Set, Tuple

LOG = logging.getLogger(__name__)


class RateLimiter(ABC):
    """Decide how long an item waits before it is retried."""

    @abstractmethod
    def when(self, item: Hashable) -> float:
        """Record a failure of ``item`` and return the delay in seconds."""

    @abstractmethod
    def forget(self, item: Hashable) -> None:
        """Stop tracking ``item``."""

    @abstractmethod
    def num_requeues(self, item: Hashable) -> int:
        """Return how many failures were recorded for ``item``."""


class ItemExponentialFailureRateLimiter(RateLimiter):
    """Per-item exponential backoff: ``base_delay * 2 ** failures``, capped."""

    def __init__(self, base_delay: float = 0.005, max_delay: float = 1000.0) -> None:
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._failures: Dict[Hashable, int] = {}
        self._lock = threading.Lock()

    def when(self, item: Hashable) -> float:
        with self._lock:
            exponent = self._failures.get(item, 0)
            self._failures[item] = exponent + 1
        # 2 ** 64 already exceeds any sensible cap
        if exponent > 64:
            return self._max_delay
        return min(self._base_delay * (2 ** exponent), self._max_delay)

    def forget(self, item: Hashable) -> None:
        with self._lock:
            self._failures.pop(item, None)

    def num_requeues(self, item: Hashable) -> int:
        with self._lock:
            return self._failures.get(item, 0)


class BucketRateLimiter(RateLimiter):
    """Overall token bucket shared by every item.

    The bucket refills at ``qps`` tokens per second up to ``burst``.  Each
    retry takes one token; once the bucket is empty retries are spread out at
    ``qps``.
    """

    def __init__(
        self,
        qps: float = 10.0,
        burst: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._qps = qps
        self._burst = burst
        self._clock = clock
        self._tokens = float(burst)
        self._last = clock()
        self._lock = threading.Lock()

    def when(self, item: Hashable) -> float:
        with self._lock:
            now = self._clock()
            self._tokens = min(self._burst, self._tokens + (now - self._last) * self._qps)
            self._last = now
            self._tokens -= 1
            if self._tokens >= 0:
                return 0.0
            return -self._tokens / self._qps

    def forget(self, item: Hashable) -> None:
        pass

    def num_requeues(self, item: Hashable) -> int:
        return 0


class MaxOfRateLimiter(RateLimiter):
    """Combine limiters, waiting for the slowest one."""

    def __init__(self, *limiters: RateLimiter) -> None:
        if not limiters:
            raise ValueError("MaxOfRateLimiter needs at least one limiter")
        self._limiters: Sequence[RateLimiter] = limiters

    def when(self, item: Hashable) -> float:
        return max(limiter.when(item) for limiter in self._limiters)

    def forget(self, item: Hashable) -> None:
        for limiter in self._limiters:
            limiter.forget(item)

    def num_requeues(self, item: Hashable) -> int:
        return max(limiter.num_requeues(item) for limiter in self._limiters)


def default_controller_rate_limiter() -> RateLimiter:
    """Per-item backoff from 5ms to 1000s combined with a 10 qps / 100 burst bucket."""

    return MaxOfRateLimiter(
        ItemExponentialFailureRateLimiter(0.005, 1000.0),
        BucketRateLimiter(qps=10.0, burst=100),
    )


class RateLimitingQueue:
    """Thread-safe de-duplicating FIFO with delayed and rate limited adds."""

    def __init__(self, rate_limiter: Optional[RateLimiter] = None, name: str = "") -> None:
        self.name = name
        self._rate_limiter = rate_limiter or default_controller_rate_limiter()

        self._cond = threading.Condition()
        self._queue: Deque[Any] = deque()
        self._dirty: Set[Any] = set()
        self._processing: Set[Any] = set()
        self._shutting_down = False

        self._delay_cond = threading.Condition()
        self._waiting: List[Tuple[float, int, Any]] = []
        self._ready_at: Dict[Any, float] = {}
        self._sequence = itertools.count()
        self._delay_stopped = False
        self._delay_thread = threading.Thread(
            target=self._waiting_loop,
            name=f"{name or 'workqueue'}-delay",
            daemon=True,
        )
        self._delay_thread.start()

    # ------------------------------------------------------------------
    # Basic queue operations
    # ------------------------------------------------------------------
    def add(self, item: Any) -> None:
        with self._cond:
            if self._shutting_down:
                LOG.debug("queue %s is shutting down, dropping %s", self.name, item)
                return
            if item in self._dirty:
                return
            self._dirty.add(item)
            if item in self._processing:
                return
            self._queue.append(item)
            self._cond.notify()

    def get(self) -> Tuple[Any, bool]:
        """Block until an item is available.

        Returns ``(item, False)``, or ``(None, True)`` once the queue is shut
        down and every queued item has been handed out.
        """

        with self._cond:
            while not self._queue and not self._shutting_down:
                self._cond.wait()
            if not self._queue:
                return None, True
            item = self._queue.popleft()
            self._processing.add(item)
            self._dirty.discard(item)
            return item, False

    def done(self, item: Any) -> None:
        with self._cond:
            self._processing.discard(item)
            if item in self._dirty:
                self._queue.append(item)
                self._cond.notify()

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    def shut_down(self) -> None:
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()
        with self._delay_cond:
            self._delay_stopped = True
            self._delay_cond.notify_all()

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    # ------------------------------------------------------------------
    # Delayed / rate limited operations
    # ------------------------------------------------------------------
    def add_after(self, item: Any, delay: float) -> None:
        if self.shutting_down:
            return
        if delay <= 0:
            self.add(item)
            return

        ready_at = time.monotonic() + delay
        with self._delay_cond:
            current = self._ready_at.get(item)
            if current is not None and current <= ready_at:
                return
            self._ready_at[item] = ready_at
            heapq.heappush(self._waiting, (ready_at, next(self._sequence), item))
            self._delay_cond.notify()

    def add_rate_limited(self, item: Any) -> None:
        self.add_after(item, self._rate_limiter.when(item))

    def forget(self, item: Any) -> None:
        self._rate_limiter.forget(item)

    def num_requeues(self, item: Any) -> int:
        return self._rate_limiter.num_requeues(item)

    def _pop_ready(self, now: float) -> List[Any]:
        ready = []
        while self._waiting and self._waiting[0][0] <= now:
            ready_at, _, item = heapq.heappop(self._waiting)
            # superseded by an earlier add_after for the same item
            if self._ready_at.get(item) == ready_at:
                del self._ready_at[item]
                ready.append(item)
        return ready

    def _waiting_loop(self) -> None:
        while True:
            with self._delay_cond:
                ready: List[Any] = []
                while not self._delay_stopped:
                    ready = self._pop_ready(time.monotonic())
                    if ready:
                        break
                    timeout = None
                    if self._waiting:
                        timeout = max(self._waiting[0][0] - time.monotonic(), 0.0)
                    self._delay_cond.wait(timeout)
                if self._delay_stopped:
                    return
            for item in ready:
                self.add(item)
