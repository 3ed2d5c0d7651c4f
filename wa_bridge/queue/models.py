"""Queue data models."""
import time
import uuid
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any, Callable


@dataclass
class QueueItem:
    """One pending outbound send operation."""

    id: str
    payload: Any  # Opaque to the queue
    executor: Callable[[Any], str]  # The send operation to invoke
    retry_count: int = 0
    future: "Future[str]" = field(default_factory=Future)  # Settled exactly once

    @classmethod
    def create(cls, payload: Any, executor: Callable[[Any], str]):
        """Factory method to create a QueueItem."""
        return cls(
            id=f"{int(time.time() * 1000)}-{uuid.uuid4().hex}",
            payload=payload,
            executor=executor,
        )

    @property
    def settled(self) -> bool:
        return self.future.done()
