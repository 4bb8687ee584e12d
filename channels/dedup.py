"""
Delivery Deduplication

Remembers recently seen provider message ids so retried webhook
deliveries are answered once.
"""

import threading
import time
from collections import OrderedDict
from typing import Callable, Optional


class DeliveryDeduplicator:
    """
    Bounded record of claimed message ids.

    Keeps at most `capacity` ids, evicting the oldest first. With a TTL,
    ids older than `ttl_seconds` are forgotten as well.
    """

    def __init__(
        self,
        capacity: int = 10_000,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._seen: "OrderedDict[str, float]" = OrderedDict()
        self._lock = threading.Lock()

    def _expire(self, now: float) -> None:
        if not self.ttl_seconds:
            return
        cutoff = now - self.ttl_seconds
        while self._seen:
            oldest_key = next(iter(self._seen))
            if self._seen[oldest_key] >= cutoff:
                break
            self._seen.popitem(last=False)

    def claim(self, key: str) -> bool:
        """
        Claim a message id.

        Returns True the first time a key is seen, False for duplicates.
        """
        with self._lock:
            now = self._clock()
            self._expire(now)

            if key in self._seen:
                return False

            self._seen[key] = now
            while len(self._seen) > self.capacity:
                self._seen.popitem(last=False)
            return True

    def seen(self, key: str) -> bool:
        """Check whether a key is currently remembered."""
        with self._lock:
            self._expire(self._clock())
            return key in self._seen

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)
