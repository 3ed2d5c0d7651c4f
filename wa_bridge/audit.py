"""Audit trail of message events, written fire-and-forget."""
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

import psycopg2
from psycopg2.extras import Json, RealDictCursor

from wa_bridge.logging_conf import logger


@dataclass
class AuditRecord:
    event_type: str
    metadata: Dict[str, Any]
    success: bool
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @classmethod
    def create(cls, event_type: str, metadata: Dict[str, Any]):
        return cls(
            event_type=event_type,
            metadata=metadata,
            success=metadata.get("success") is not False,
        )


class AuditSink(Protocol):
    def write(self, record: AuditRecord) -> None:
        ...


class PostgresAuditSink:
    """Appends audit records to the `message_events` table."""

    def __init__(self, database_url: str):
        self.database_url = database_url
        self._conn = None
        self._lock = threading.Lock()

    @property
    def conn(self):
        """Get or create database connection."""
        if self._conn is None or self._conn.closed:
            self._conn = psycopg2.connect(self.database_url)
        return self._conn

    def close(self):
        """Close database connection."""
        if self._conn and not self._conn.closed:
            self._conn.close()
            self._conn = None

    @contextmanager
    def cursor(self):
        """Context manager for cursor with auto-commit/rollback."""
        cur = self.conn.cursor(cursor_factory=RealDictCursor)
        try:
            yield cur
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        finally:
            cur.close()

    def write(self, record: AuditRecord) -> None:
        with self._lock, self.cursor() as cur:
            cur.execute("""
                INSERT INTO message_events (event_type, metadata, success, timestamp)
                VALUES (%s, %s, %s, %s)
            """, (record.event_type, Json(record.metadata), record.success, record.timestamp))


class AuditLogger:
    """
    Hands audit records to a sink without blocking the caller.

    Records are written on a single background thread; write failures are logged
    and dropped. With `background=False` records are written inline, which tests use.
    Without a sink, auditing is disabled and `log` is a no-op.
    """

    def __init__(self, sink: Optional[AuditSink] = None, background: bool = True):
        self.sink = sink
        self._executor: Optional[ThreadPoolExecutor] = None
        if sink is not None and background:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="audit")

        if sink is None:
            logger.warning("Audit logging disabled: DATABASE_URL not set")
        else:
            logger.info("Audit logging enabled")

    @property
    def enabled(self) -> bool:
        return self.sink is not None

    def log(self, event_type: str, metadata: Dict[str, Any]) -> None:
        if self.sink is None:
            return

        record = AuditRecord.create(event_type, metadata)
        if self._executor is None:
            self._write(record)
            return

        try:
            self._executor.submit(self._write, record)
        except RuntimeError as e:
            # Executor already shut down
            logger.error(f"Dropped audit event {event_type}: {e}")

    def _write(self, record: AuditRecord) -> None:
        try:
            self.sink.write(record)
            logger.debug(f"Audit event logged: {record.event_type}")
        except Exception as e:
            logger.error(f"Failed to log audit event {record.event_type}: {e}")

    def close(self, wait: bool = True) -> None:
        """Flush pending writes and release the sink."""
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
        close = getattr(self.sink, "close", None)
        if close is not None:
            close()
