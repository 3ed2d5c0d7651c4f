"""Sequential, retrying queue for outbound sends."""
import threading
import time
from collections import deque
from concurrent.futures import Future
from typing import Any, Callable, Deque, Optional

from wa_bridge.logging_conf import logger
from wa_bridge.queue.models import QueueItem


class SendQueue:
    """
    Runs send operations one at a time, in submission order, with bounded retries.

    A single worker thread drains the pending items. It is started by `enqueue`
    when no worker is present and exits as soon as the queue is empty, so an idle
    queue holds no thread. Each item is attempted up to `max_retries + 1` times,
    sleeping `retry_delay * 2 ** (attempt - 1)` seconds after each failed attempt.
    """

    def __init__(
        self,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._sleep = sleep

        self._pending: Deque[QueueItem] = deque()
        self._lock = threading.Lock()
        self._processing = False  # Worker presence flag, guarded by _lock
        self.thread: Optional[threading.Thread] = None

    def enqueue(self, payload: Any, executor: Callable[[Any], str]) -> "Future[str]":
        """Append a send operation and return a future settled with its final outcome."""
        item = QueueItem.create(payload, executor)

        with self._lock:
            self._pending.append(item)
            queue_length = len(self._pending)
            start_worker = not self._processing
            if start_worker:
                self._processing = True

        logger.debug(
            f"Message added to queue: {item.id}",
            extra={"item_id": item.id, "queue_length": queue_length},
        )

        if start_worker:
            self.thread = threading.Thread(target=self._run, name="send-queue", daemon=True)
            self.thread.start()

        return item.future

    def pending(self) -> int:
        """Number of items waiting to be dispatched."""
        with self._lock:
            return len(self._pending)

    def __len__(self) -> int:
        return self.pending()

    @property
    def processing(self) -> bool:
        with self._lock:
            return self._processing

    def join(self, timeout: Optional[float] = None) -> None:
        """Wait for the current worker (if any) to drain the queue."""
        thread = self.thread
        if thread and thread is not threading.current_thread():
            thread.join(timeout)

    def _next_item(self) -> Optional[QueueItem]:
        with self._lock:
            if not self._pending:
                self._processing = False
                return None
            return self._pending.popleft()

    def _run(self):
        """Main worker loop."""
        while True:
            item = self._next_item()
            if item is None:
                break

            if not item.future.set_running_or_notify_cancel():
                logger.info(f"Skipping cancelled queue item {item.id}")
                continue

            try:
                result = self._execute_with_retry(item)
            except Exception as e:
                logger.error(
                    f"Message failed after {item.retry_count} retries: {item.id}: {e}",
                    extra={"item_id": item.id, "retries": item.retry_count},
                )
                item.future.set_exception(e)
            else:
                item.future.set_result(result)

    def _execute_with_retry(self, item: QueueItem) -> str:
        while True:
            try:
                logger.debug(f"Executing message {item.id} (attempt {item.retry_count + 1})")
                result = item.executor(item.payload)
                logger.info(f"Message sent successfully: {item.id}", extra={"item_id": item.id, "result": result})
                return result
            except Exception as e:
                item.retry_count += 1
                if item.retry_count > self.max_retries:
                    raise

                # Exponential backoff
                delay = self.retry_delay * 2 ** (item.retry_count - 1)
                logger.warning(
                    f"Message {item.id} failed, retrying in {delay}s: {e}",
                    extra={"item_id": item.id, "retry": item.retry_count, "delay": delay},
                )
                self._sleep(delay)
