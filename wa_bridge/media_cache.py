"""Download and cache media used by outbound image and template messages."""
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional

import requests

from wa_bridge.logging_conf import logger
from wa_bridge.scheduling import PeriodicTask

SWEEP_INTERVAL_SECONDS = 30 * 60


@dataclass
class MediaCacheEntry:
    url: str
    content: bytes
    size: int
    inserted_at: float


class MediaCache:
    """Caches downloaded media, bounded by total byte size, with TTL expiry."""

    def __init__(
        self,
        fetch: Callable[[str], bytes],
        max_bytes: int = 100 * 1024 * 1024,
        ttl: float = 3600,
        clock: Callable[[], float] = time.monotonic,
        sweep_interval: float = SWEEP_INTERVAL_SECONDS,
    ):
        self.fetch = fetch
        self.max_bytes = max_bytes
        self.ttl = ttl
        self._clock = clock
        self._entries: "OrderedDict[str, MediaCacheEntry]" = OrderedDict()
        self._total_bytes = 0
        self._lock = threading.Lock()
        self._sweeper = PeriodicTask("media-cache-sweep", sweep_interval, self.sweep)

    def start(self):
        self._sweeper.start()

    def stop(self):
        self._sweeper.stop()

    @property
    def total_bytes(self) -> int:
        return self._total_bytes

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, url: str) -> Optional[bytes]:
        """Return media for a URL from the cache or by downloading it. None on failure."""
        cached = self._lookup(url)
        if cached is not None:
            return cached

        logger.debug(f"Downloading media (cache miss): {url}")
        try:
            content = self.fetch(url)
        except requests.RequestException as e:
            logger.warning(f"Failed to download media {url}: {e}")
            return None

        self._store(url, content)
        return content

    def _lookup(self, url: str) -> Optional[bytes]:
        with self._lock:
            entry = self._entries.get(url)
            if entry is None:
                return None

            age = self._clock() - entry.inserted_at
            if age >= self.ttl:
                self._remove(url)
                logger.debug(f"Media cache entry expired: {url}")
                return None

            logger.debug(f"Media served from cache: {url} (age {round(age)}s)")
            return entry.content

    def _store(self, url: str, content: bytes) -> None:
        size = len(content)
        if size > self.max_bytes:
            logger.warning(f"Media too large for cache, not caching: {url} ({size} bytes)")
            return

        with self._lock:
            if url in self._entries:
                self._remove(url)

            # Make room, oldest first
            while self._entries and self._total_bytes + size > self.max_bytes:
                oldest_url = next(iter(self._entries))
                evicted = self._remove(oldest_url)
                logger.debug(f"Evicted oldest media cache entry: {oldest_url} ({evicted.size} bytes)")

            self._entries[url] = MediaCacheEntry(url=url, content=content, size=size, inserted_at=self._clock())
            self._total_bytes += size

        logger.debug(
            f"Media cached: {url} ({size} bytes)",
            extra={"entries": len(self._entries), "total_bytes": self._total_bytes},
        )

    def _remove(self, url: str) -> MediaCacheEntry:
        entry = self._entries.pop(url)
        self._total_bytes -= entry.size
        return entry

    def sweep(self) -> int:
        """Drop expired entries. Returns the number removed."""
        now = self._clock()
        cleaned = 0
        cleaned_bytes = 0

        with self._lock:
            for url in [u for u, e in self._entries.items() if now - e.inserted_at >= self.ttl]:
                cleaned_bytes += self._remove(url).size
                cleaned += 1
            remaining = len(self._entries)

        if cleaned > 0:
            logger.info(
                f"Cleaned {cleaned} expired media cache entries ({round(cleaned_bytes / 1024 / 1024)}MB)",
                extra={"remaining": remaining},
            )
        return cleaned
