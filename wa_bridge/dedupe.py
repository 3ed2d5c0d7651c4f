"""Bounded, time-limited cache of seen message IDs."""
import threading
import time
from collections import OrderedDict
from typing import Callable

from wa_bridge.logging_conf import logger
from wa_bridge.scheduling import PeriodicTask

SWEEP_INTERVAL_SECONDS = 5 * 60


class DedupCache:
    """
    Remembers message IDs for `ttl` seconds, holding at most `max_size` of them.

    Chat protocol messages can be redelivered after reconnects; this cache keeps
    them from being forwarded twice without growing over a long-lived process.
    """

    def __init__(
        self,
        max_size: int = 1000,
        ttl: float = 3600,
        clock: Callable[[], float] = time.monotonic,
        sweep_interval: float = SWEEP_INTERVAL_SECONDS,
    ):
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self.max_size = max_size
        self.ttl = ttl
        self._clock = clock
        # message_id -> inserted_at, oldest first
        self._entries: "OrderedDict[str, float]" = OrderedDict()
        self._lock = threading.Lock()
        self._sweeper = PeriodicTask("dedupe-sweep", sweep_interval, self.sweep)

    def start(self):
        """Start the periodic expiry sweep."""
        self._sweeper.start()

    def stop(self):
        self._sweeper.stop()

    def has(self, message_id: str) -> bool:
        """Return True if the ID was seen within `ttl`; expired entries are evicted."""
        with self._lock:
            inserted_at = self._entries.get(message_id)
            if inserted_at is None:
                return False

            if self._clock() - inserted_at > self.ttl:
                del self._entries[message_id]
                return False

            return True

    def add(self, message_id: str) -> None:
        """Record an ID, evicting the oldest entry first if the cache is full."""
        with self._lock:
            if message_id in self._entries:
                del self._entries[message_id]
            elif len(self._entries) >= self.max_size:
                oldest_id, _ = self._entries.popitem(last=False)
                logger.debug(f"Dedupe cache full, evicted {oldest_id}")

            self._entries[message_id] = self._clock()

    def sweep(self) -> int:
        """Remove every expired entry. Returns the number removed."""
        now = self._clock()
        removed = 0

        with self._lock:
            # Insertion order is timestamp order, so stop at the first live entry
            while self._entries:
                message_id, inserted_at = next(iter(self._entries.items()))
                if now - inserted_at <= self.ttl:
                    break
                del self._entries[message_id]
                removed += 1
            remaining = len(self._entries)

        if removed > 0:
            logger.debug(
                f"Cleaned up {removed} expired dedupe entries",
                extra={"removed": removed, "remaining": remaining},
            )
        return removed

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def __len__(self) -> int:
        return self.size()

    def __contains__(self, message_id: str) -> bool:
        return self.has(message_id)
