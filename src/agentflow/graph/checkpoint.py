"""Checkpoint contract for suspending and resuming graph runs."""

from __future__ import annotations

import copy
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class RunStatus(str, Enum):
    """Lifecycle of one run, as recorded in its checkpoint."""

    RUNNING = "RUNNING"
    SUSPENDED = "SUSPENDED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Checkpoint:
    """Latest persisted snapshot of a run.

    Attributes:
        thread_id: Run identifier; one checkpoint per thread
        values: SharedState snapshot
        pending_node: Node that runs next (None once the run has ended)
        status: Run status at the time of the snapshot
        graph_name: Name of the compiled graph that produced the run
        step: Number of nodes committed so far
        error: Error text for failed runs
        updated_at: Time of the last save
    """

    thread_id: str
    values: dict[str, Any]
    pending_node: str | None
    status: RunStatus = RunStatus.RUNNING
    graph_name: str = ""
    step: int = 0
    error: str | None = None
    updated_at: datetime = field(default_factory=_utcnow)


class CheckpointStore(ABC):
    """Key-value persistence of the latest checkpoint per thread id."""

    @abstractmethod
    def save(
        self,
        thread_id: str,
        snapshot: dict[str, Any],
        pending_node: str | None,
        *,
        status: RunStatus = RunStatus.RUNNING,
        graph_name: str = "",
        step: int = 0,
        error: str | None = None,
    ) -> Checkpoint:
        """Overwrite the checkpoint for ``thread_id``."""

    @abstractmethod
    def load(self, thread_id: str) -> Checkpoint | None:
        """Return the checkpoint for ``thread_id`` or None when absent."""

    @abstractmethod
    def delete(self, thread_id: str) -> bool:
        """Remove a checkpoint; returns True when one existed."""

    @abstractmethod
    def list_checkpoints(self, status: RunStatus | None = None) -> list[Checkpoint]:
        """List checkpoints, optionally filtered by status, newest first."""


class InMemoryCheckpointStore(CheckpointStore):
    """Process-local store; snapshots are deep-copied on the way in and out."""

    def __init__(self) -> None:
        self._rows: dict[str, Checkpoint] = {}
        self._lock = threading.Lock()

    def save(
        self,
        thread_id: str,
        snapshot: dict[str, Any],
        pending_node: str | None,
        *,
        status: RunStatus = RunStatus.RUNNING,
        graph_name: str = "",
        step: int = 0,
        error: str | None = None,
    ) -> Checkpoint:
        checkpoint = Checkpoint(
            thread_id=thread_id,
            values=copy.deepcopy(snapshot),
            pending_node=pending_node,
            status=status,
            graph_name=graph_name,
            step=step,
            error=error,
        )
        with self._lock:
            self._rows[thread_id] = checkpoint
        return copy.deepcopy(checkpoint)

    def load(self, thread_id: str) -> Checkpoint | None:
        with self._lock:
            checkpoint = self._rows.get(thread_id)
            return copy.deepcopy(checkpoint) if checkpoint is not None else None

    def delete(self, thread_id: str) -> bool:
        with self._lock:
            return self._rows.pop(thread_id, None) is not None

    def list_checkpoints(self, status: RunStatus | None = None) -> list[Checkpoint]:
        with self._lock:
            rows = [
                copy.deepcopy(row)
                for row in self._rows.values()
                if status is None or row.status == status
            ]
        return sorted(rows, key=lambda row: row.updated_at, reverse=True)
