"""Tests for checkpoint persistence."""

from __future__ import annotations

from pathlib import Path

import pytest

from agentflow.graph.builder import END, WorkflowGraph
from agentflow.graph.checkpoint import CheckpointStore, InMemoryCheckpointStore, RunStatus
from agentflow.graph.executor import GraphExecutor, ResumeDecision
from agentflow.graph.state import MergePolicy, SharedState
from agentflow.storage.db import Database, SqlCheckpointStore


@pytest.fixture(params=["memory", "sqlite"])
def store(request: pytest.FixtureRequest, tmp_path: Path) -> CheckpointStore:
    if request.param == "memory":
        return InMemoryCheckpointStore()
    return SqlCheckpointStore(Database(f"sqlite:///{tmp_path / 'checkpoints.db'}"))


def test_save_load_round_trip(store: CheckpointStore) -> None:
    snapshot = {"messages": [{"role": "user", "content": "hi"}], "count": 2, "nested": {"a": [1]}}

    store.save("thread-1", snapshot, "review", status=RunStatus.SUSPENDED, graph_name="g", step=3)
    loaded = store.load("thread-1")

    assert loaded is not None
    assert loaded.values == snapshot
    assert loaded.pending_node == "review"
    assert loaded.status == RunStatus.SUSPENDED
    assert loaded.graph_name == "g"
    assert loaded.step == 3


def test_save_overwrites_latest(store: CheckpointStore) -> None:
    store.save("thread-1", {"v": 1}, "a")
    store.save("thread-1", {"v": 2}, None, status=RunStatus.COMPLETED)

    loaded = store.load("thread-1")

    assert loaded is not None
    assert loaded.values == {"v": 2}
    assert loaded.pending_node is None
    assert loaded.status == RunStatus.COMPLETED


def test_load_missing_returns_none(store: CheckpointStore) -> None:
    assert store.load("nope") is None


def test_list_and_delete(store: CheckpointStore) -> None:
    store.save("a", {}, "x", status=RunStatus.SUSPENDED)
    store.save("b", {}, None, status=RunStatus.COMPLETED)

    suspended = store.list_checkpoints(RunStatus.SUSPENDED)

    assert [row.thread_id for row in suspended] == ["a"]
    assert {row.thread_id for row in store.list_checkpoints()} == {"a", "b"}
    assert store.delete("a") is True
    assert store.delete("a") is False
    assert store.load("a") is None


def test_memory_store_returns_copies() -> None:
    store = InMemoryCheckpointStore()
    snapshot = {"items": [1]}
    store.save("t", snapshot, None)
    snapshot["items"].append(2)

    loaded = store.load("t")
    loaded.values["items"].append(3)

    assert store.load("t").values == {"items": [1]}


def _approval_graph(store: CheckpointStore):
    graph = WorkflowGraph("durable", policies={"trail": MergePolicy.APPEND})
    graph.add_node("draft", lambda state: {"trail": ["draft"]})
    graph.add_node("publish", lambda state: {"trail": ["publish"], "published": True})
    graph.set_entry_point("draft")
    graph.add_edge("draft", "publish")
    graph.add_edge("publish", END)
    return graph.compile(checkpointer=store, interrupt_before=["publish"])


def test_resume_from_new_process_with_sqlite(tmp_path: Path) -> None:
    uri = f"sqlite:///{tmp_path / 'runs.db'}"
    first = _approval_graph(SqlCheckpointStore(Database(uri)))

    suspended = GraphExecutor().run(first, {"title": "post"}, "run-1")
    assert suspended.suspended

    # Fresh engine, graph and executor, as after a restart.
    second = _approval_graph(SqlCheckpointStore(Database(uri)))
    resumed = GraphExecutor().resume(second, "run-1", ResumeDecision(approved=True))

    assert resumed.completed
    assert resumed.state["trail"] == ["draft", "publish"]
    assert resumed.state["title"] == "post"
    assert resumed.state["published"] is True


def test_from_snapshot_preserves_append_semantics_after_reload(tmp_path: Path) -> None:
    store = SqlCheckpointStore(Database(f"sqlite:///{tmp_path / 'state.db'}"))
    state = SharedState({"trail": MergePolicy.APPEND}, {"trail": ["a"]})
    store.save("t", state.snapshot(), "next")

    restored = SharedState.from_snapshot(state.policies, store.load("t").values)
    restored.apply({"trail": ["b"]})

    assert restored["trail"] == ["a", "b"]
