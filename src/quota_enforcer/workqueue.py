"""Deduplicating, rate-limited work queue of namespace keys."""

import heapq
import itertools
import logging
import threading
import time
from collections import deque
from typing import Deque, Dict, Hashable, List, Optional, Set, Tuple

from .config import QUEUE_BASE_DELAY_SECONDS, QUEUE_MAX_DELAY_SECONDS

logger = logging.getLogger(__name__)


class RateLimitingQueue:
    """
    Work queue with the get/done/forget protocol.

    A key is held by at most one worker at a time: adding a key that is
    being processed marks it dirty, and it is queued again on done().
    Pending duplicates collapse to one entry. Failed keys are re-added
    after an exponential per-key delay that forget() resets.
    """

    def __init__(
        self,
        name: str = "",
        base_delay: float = QUEUE_BASE_DELAY_SECONDS,
        max_delay: float = QUEUE_MAX_DELAY_SECONDS,
    ):
        self.name = name
        self.base_delay = base_delay
        self.max_delay = max_delay

        self._cond = threading.Condition()
        self._queue: Deque[Hashable] = deque()
        self._dirty: Set[Hashable] = set()
        self._processing: Set[Hashable] = set()
        self._failures: Dict[Hashable, int] = {}
        self._shutting_down = False

        self._delay_cond = threading.Condition()
        self._waiting: List[Tuple[float, int, Hashable]] = []
        self._ready_at: Dict[Hashable, float] = {}
        self._sequence = itertools.count()
        self._delay_thread: Optional[threading.Thread] = None

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    def add(self, key: Hashable) -> None:
        """Queue a key for processing. No-op if it is already pending."""
        with self._cond:
            if self._shutting_down or key in self._dirty:
                return
            self._dirty.add(key)
            if key in self._processing:
                return
            self._queue.append(key)
            self._cond.notify()

    def get(self) -> Tuple[Optional[Hashable], bool]:
        """
        Block until a key is available.

        Returns:
            Tuple of (key, shutdown); key is None once the queue is shut down
        """
        with self._cond:
            while not self._queue and not self._shutting_down:
                self._cond.wait()
            if self._shutting_down:
                return None, True
            key = self._queue.popleft()
            self._processing.add(key)
            self._dirty.discard(key)
            return key, False

    def done(self, key: Hashable) -> None:
        """Release a key obtained from get(). Re-queues it if it was added meanwhile."""
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty and not self._shutting_down:
                self._queue.append(key)
                self._cond.notify()

    def forget(self, key: Hashable) -> None:
        """Reset the failure count of a key."""
        with self._cond:
            self._failures.pop(key, None)

    def num_requeues(self, key: Hashable) -> int:
        with self._cond:
            return self._failures.get(key, 0)

    def when(self, key: Hashable) -> float:
        """Record a failure for key and return its backoff delay."""
        with self._cond:
            failures = self._failures.get(key, 0)
            self._failures[key] = failures + 1
        return min(self.max_delay, self.base_delay * (2 ** min(failures, 64)))

    def add_rate_limited(self, key: Hashable) -> None:
        """Re-add a key after its exponential failure backoff."""
        self.add_after(key, self.when(key))

    def add_after(self, key: Hashable, delay: float) -> None:
        """Add a key once delay seconds have passed."""
        if self.shutting_down():
            return
        if delay <= 0:
            self.add(key)
            return

        ready_at = time.monotonic() + delay
        with self._delay_cond:
            current = self._ready_at.get(key)
            if current is not None and current <= ready_at:
                return
            self._ready_at[key] = ready_at
            heapq.heappush(self._waiting, (ready_at, next(self._sequence), key))
            if self._delay_thread is None:
                self._delay_thread = threading.Thread(
                    target=self._delay_loop,
                    name=f"{self.name or 'workqueue'}-delay",
                    daemon=True,
                )
                self._delay_thread.start()
            self._delay_cond.notify()

    def _pop_ready(self) -> Optional[List[Hashable]]:
        """Wait for due keys. Returns None on shutdown."""
        with self._delay_cond:
            while True:
                if self._shutting_down:
                    return None
                now = time.monotonic()
                ready = []
                while self._waiting and self._waiting[0][0] <= now:
                    ready_at, _, key = heapq.heappop(self._waiting)
                    if self._ready_at.get(key) == ready_at:
                        del self._ready_at[key]
                        ready.append(key)
                if ready:
                    return ready
                timeout = self._waiting[0][0] - now if self._waiting else None
                self._delay_cond.wait(timeout)

    def _delay_loop(self) -> None:
        while True:
            ready = self._pop_ready()
            if ready is None:
                return
            for key in ready:
                self.add(key)

    def shut_down(self) -> None:
        """Stop accepting keys and wake every blocked get()."""
        logger.info(f"Shutting down work queue {self.name}".rstrip())
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()
        with self._delay_cond:
            self._delay_cond.notify_all()

    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down
