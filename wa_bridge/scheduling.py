"""Owned background timers."""
import threading
from typing import Callable, Optional

from wa_bridge.logging_conf import logger


class PeriodicTask:
    """Runs a callable every `interval` seconds on a daemon thread until stopped."""

    def __init__(self, name: str, interval: float, target: Callable[[], None]):
        self.name = name
        self.interval = interval
        self.target = target
        self._stop_event = threading.Event()
        self.thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self.thread is not None and self.thread.is_alive()

    def start(self):
        """Start the timer thread."""
        if self.running:
            logger.warning(f"{self.name} is already running")
            return

        self._stop_event.clear()
        self.thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self.thread.start()
        logger.debug(f"{self.name} started (interval: {self.interval}s)")

    def stop(self):
        """Cancel the timer and wait for the thread to exit."""
        self._stop_event.set()
        if self.thread and self.thread is not threading.current_thread():
            self.thread.join(timeout=10)
        self.thread = None

    def _run(self):
        # wait() returns True once stop() is called
        while not self._stop_event.wait(self.interval):
            try:
                self.target()
            except Exception as e:
                logger.error(f"{self.name} error: {e}", exc_info=True)
