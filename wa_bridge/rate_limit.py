"""Per-client fixed-window rate limiting for the HTTP API."""
import threading
import time
from typing import Callable, Dict, Tuple


class RateLimiter:
    """Allows at most `max_requests` per client key in each `window` seconds."""

    def __init__(self, window: float = 60, max_requests: int = 20, clock: Callable[[], float] = time.monotonic):
        self.window = window
        self.max_requests = max_requests
        self._clock = clock
        self._windows: Dict[str, Tuple[float, int]] = {}  # key -> (window_start, count)
        self._lock = threading.Lock()

    def allow(self, key: str) -> bool:
        now = self._clock()
        with self._lock:
            window_start, count = self._windows.get(key, (now, 0))
            if now - window_start >= self.window:
                window_start, count = now, 0

            if count >= self.max_requests:
                return False

            self._windows[key] = (window_start, count + 1)
            self._prune(now)
            return True

    def _prune(self, now: float) -> None:
        # Keep the table from growing with one-off clients
        if len(self._windows) < 1000:
            return
        for key in [k for k, (start, _) in self._windows.items() if now - start >= self.window]:
            del self._windows[key]
