"""Fire-and-forget audit collaborator."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AuditEvent:
    """A single audited operation (model call, model response, tool call...)."""

    operation_type: str
    user_id: str | None = None
    run_id: str | None = None
    agent_name: str | None = None
    tool_name: str | None = None
    detail: str | None = None
    token_cost: int = 0
    duration_ms: int = 0
    status: str = "success"
    created_at: datetime = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        return data


class AuditSink(ABC):
    """Durable destination for audit events."""

    @abstractmethod
    def write(self, event: AuditEvent) -> None:
        """Persist one event."""

    @abstractmethod
    def recent(self, limit: int = 10) -> list[AuditEvent]:
        """Return the latest events, newest first."""


class InMemoryAuditSink(AuditSink):
    def __init__(self, max_events: int = 1000) -> None:
        self._events: deque[AuditEvent] = deque(maxlen=max_events)
        self._lock = threading.Lock()

    def write(self, event: AuditEvent) -> None:
        with self._lock:
            self._events.append(event)

    def recent(self, limit: int = 10) -> list[AuditEvent]:
        with self._lock:
            return list(reversed(self._events))[:limit]


class AuditRecorder:
    """Writes audit events on a background worker.

    ``record_event`` never blocks the caller and never raises: sink failures
    are logged and dropped. Events are written in submission order.
    """

    def __init__(self, sink: AuditSink) -> None:
        self.sink = sink
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="agentflow-audit")
        self._closed = False

    def record_event(self, event: AuditEvent) -> None:
        if self._closed:
            logger.debug("Audit recorder closed; dropping %s event", event.operation_type)
            return
        try:
            self._executor.submit(self._write, event)
        except RuntimeError:
            logger.debug("Audit executor unavailable; dropping %s event", event.operation_type)

    def _write(self, event: AuditEvent) -> None:
        try:
            self.sink.write(event)
        except Exception:
            logger.warning("Audit write failed for %s event", event.operation_type, exc_info=True)

    def flush(self, timeout: float | None = 5.0) -> None:
        """Wait until every event submitted so far has been written."""
        if self._closed:
            return
        marker: Future[None] = self._executor.submit(lambda: None)
        marker.result(timeout=timeout)

    def recent(self, limit: int = 10) -> list[AuditEvent]:
        return self.sink.recent(limit)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._executor.shutdown(wait=True)
