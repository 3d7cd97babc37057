"""Graph executor: runs compiled graphs with checkpointed interrupt and resume."""

from __future__ import annotations

import logging
import threading
from collections.abc import Generator, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel

from agentflow.core.errors import (
    NodeExecutionError,
    PolicyShortCircuit,
    RoutingError,
    RunNotFoundError,
    RunStateError,
    StepLimitError,
)
from agentflow.graph.builder import END, CompiledGraph, NodeResult
from agentflow.graph.checkpoint import Checkpoint, RunStatus
from agentflow.graph.state import HUMAN_DECISION_KEY, SharedState
from agentflow.observability.opik_client import opik_track
from agentflow.runtime.context import RunContext

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 100


@dataclass(frozen=True)
class StepEvent:
    """One committed node: its name, the delta it applied and the step number."""

    node: str
    delta: dict[str, Any]
    step: int


@dataclass
class RunResult:
    """Outcome of a run or resume call.

    A suspended run (``status == SUSPENDED``) needs a human decision; a failed
    run carries the error and keeps its last good checkpoint.
    """

    thread_id: str
    graph_name: str
    status: RunStatus
    state: dict[str, Any]
    pending_node: str | None = None
    error: str | None = None
    error_type: str | None = None
    short_circuited_by: str | None = None
    steps: list[StepEvent] = field(default_factory=list)

    @property
    def suspended(self) -> bool:
        return self.status == RunStatus.SUSPENDED

    @property
    def completed(self) -> bool:
        return self.status == RunStatus.COMPLETED

    @property
    def failed(self) -> bool:
        return self.status == RunStatus.FAILED


class ResumeDecision(BaseModel):
    """Human decision injected into the state before a suspended node runs."""

    approved: bool
    feedback: str | None = None


def _unpack(output: Any) -> tuple[Mapping[str, Any], str | None]:
    if output is None:
        return {}, None
    if isinstance(output, NodeResult):
        return output.update, output.next_hint
    if isinstance(output, Mapping):
        return output, None
    raise TypeError(
        f"Node must return a mapping, NodeResult or None, got {type(output).__name__}"
    )


class _ThreadLock:
    """A thread id's lock plus the number of callers holding or awaiting it."""

    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class GraphExecutor:
    """Drives compiled graphs one node at a time.

    Each run is sequential. Runs with different thread ids may execute
    concurrently; calls for the same thread id are serialized by a per-thread
    lock, so two resumes can never mutate one checkpoint at the same time.
    A thread's lock is dropped once no caller holds or awaits it.
    """

    def __init__(self, max_steps: int = DEFAULT_MAX_STEPS) -> None:
        if max_steps <= 0:
            raise ValueError("max_steps must be > 0")
        self.max_steps = max_steps
        self._locks: dict[str, _ThreadLock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _thread_lock(self, thread_id: str) -> Iterator[None]:
        with self._locks_guard:
            entry = self._locks.get(thread_id)
            if entry is None:
                entry = self._locks[thread_id] = _ThreadLock()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._locks_guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[thread_id]

    def active_threads(self) -> int:
        """Number of thread ids currently running or waiting for their lock."""
        with self._locks_guard:
            return len(self._locks)

    def stream(
        self,
        graph: CompiledGraph,
        initial_state: Mapping[str, Any] | None,
        thread_id: str,
        context: RunContext | None = None,
    ) -> Generator[StepEvent, None, RunResult]:
        """Start a run and yield one :class:`StepEvent` per committed node.

        The generator's return value (``StopIteration.value``) is the final
        :class:`RunResult`; use :meth:`run` to get it directly.
        The thread lock is held until the generator is exhausted or closed.
        A thread id whose last run failed may be started again; any other
        existing run is left untouched.

        Raises:
            RunStateError: If ``thread_id`` already has a run that did not fail
        """
        with self._thread_lock(thread_id):
            existing = graph.checkpointer.load(thread_id)
            if existing is not None and existing.status != RunStatus.FAILED:
                raise RunStateError(
                    f"Run '{thread_id}' already exists ({existing.status.value})"
                )
            if existing is not None:
                logger.info("Restarting failed run %s", thread_id)
            context = context or RunContext(run_id=thread_id)
            state = graph.new_state(initial_state)
            logger.info("Starting run %s on graph '%s'", thread_id, graph.name)
            graph.checkpointer.save(
                thread_id,
                state.snapshot(),
                graph.entry,
                status=RunStatus.RUNNING,
                graph_name=graph.name,
                step=0,
            )
            return (
                yield from self._drive(
                    graph, state, graph.entry, thread_id, 0, context, resume_step=None
                )
            )

    @opik_track(name="graph_run")
    def run(
        self,
        graph: CompiledGraph,
        initial_state: Mapping[str, Any] | None,
        thread_id: str,
        context: RunContext | None = None,
    ) -> RunResult:
        """Run ``graph`` until END, an interrupt, a short-circuit or a failure."""
        return _collect(self.stream(graph, initial_state, thread_id, context))

    def stream_resume(
        self,
        graph: CompiledGraph,
        thread_id: str,
        decision: ResumeDecision,
        context: RunContext | None = None,
    ) -> Generator[StepEvent, None, RunResult]:
        """Resume a suspended run, yielding committed nodes like :meth:`stream`.

        Raises:
            RunNotFoundError: If no checkpoint exists for ``thread_id``
            RunStateError: If the run is not suspended or belongs to another graph
        """
        with self._thread_lock(thread_id):
            checkpoint, pending_node = self._check_resumable(
                graph, thread_id, graph.checkpointer.load(thread_id)
            )

            state = SharedState.from_snapshot(graph.policies, checkpoint.values)
            state.apply({HUMAN_DECISION_KEY: decision.model_dump()})
            logger.info(
                "Resuming run %s at '%s' (approved=%s)",
                thread_id,
                pending_node,
                decision.approved,
            )

            if not decision.approved and not graph.resume_on_reject:
                graph.checkpointer.save(
                    thread_id,
                    state.snapshot(),
                    None,
                    status=RunStatus.COMPLETED,
                    graph_name=graph.name,
                    step=checkpoint.step,
                )
                logger.info("Run %s rejected; '%s' skipped", thread_id, pending_node)
                return RunResult(
                    thread_id=thread_id,
                    graph_name=graph.name,
                    status=RunStatus.COMPLETED,
                    state=state.snapshot(),
                )

            context = context or RunContext(run_id=thread_id)
            context.resumed = True
            return (
                yield from self._drive(
                    graph,
                    state,
                    pending_node,
                    thread_id,
                    checkpoint.step,
                    context,
                    resume_step=checkpoint.step,
                )
            )

    @opik_track(name="graph_resume")
    def resume(
        self,
        graph: CompiledGraph,
        thread_id: str,
        decision: ResumeDecision,
        context: RunContext | None = None,
    ) -> RunResult:
        """Resume a suspended run with a human decision and drive it onward."""
        return _collect(self.stream_resume(graph, thread_id, decision, context))

    @staticmethod
    def _check_resumable(
        graph: CompiledGraph, thread_id: str, checkpoint: Checkpoint | None
    ) -> tuple[Checkpoint, str]:
        if checkpoint is None:
            raise RunNotFoundError(f"No run found for thread '{thread_id}'")
        if checkpoint.graph_name and checkpoint.graph_name != graph.name:
            raise RunStateError(
                f"Run '{thread_id}' belongs to graph '{checkpoint.graph_name}', not '{graph.name}'"
            )
        if checkpoint.status != RunStatus.SUSPENDED or checkpoint.pending_node is None:
            raise RunStateError(
                f"Run '{thread_id}' is {checkpoint.status.value}; only suspended runs can resume"
            )
        return checkpoint, checkpoint.pending_node

    def _drive(
        self,
        graph: CompiledGraph,
        state: SharedState,
        node: str,
        thread_id: str,
        step: int,
        context: RunContext,
        resume_step: int | None,
    ) -> Generator[StepEvent, None, RunResult]:
        steps: list[StepEvent] = []
        executed = 0

        def finish(status: RunStatus, pending: str | None, **extra: Any) -> RunResult:
            graph.checkpointer.save(
                thread_id,
                state.snapshot(),
                pending,
                status=status,
                graph_name=graph.name,
                step=step,
                error=extra.get("error"),
            )
            return RunResult(
                thread_id=thread_id,
                graph_name=graph.name,
                status=status,
                state=state.snapshot(),
                pending_node=pending,
                steps=steps,
                **extra,
            )

        while node != END:
            # The resume token matches exactly one step: the one that suspended.
            if node in graph.interrupt_before and resume_step != step:
                logger.info("Run %s suspended before '%s'", thread_id, node)
                return finish(RunStatus.SUSPENDED, node)
            resume_step = None

            if executed >= self.max_steps:
                error = StepLimitError(
                    f"Run '{thread_id}' exceeded {self.max_steps} steps at '{node}'"
                )
                logger.error("%s", error)
                return finish(
                    RunStatus.FAILED, node, error=str(error), error_type=type(error).__name__
                )

            logger.debug("Run %s executing node '%s'", thread_id, node)
            candidate = state.copy()
            try:
                output = graph.nodes[node](candidate, context)
                update, hint = _unpack(output)
                delta = candidate.apply(update)
            except PolicyShortCircuit as signal:
                delta = state.apply(signal.update)
                step += 1
                event = StepEvent(node=node, delta=delta, step=step)
                steps.append(event)
                yield event
                logger.info(
                    "Run %s short-circuited at '%s' by hook '%s'", thread_id, node, signal.hook
                )
                return finish(RunStatus.COMPLETED, None, short_circuited_by=signal.hook)
            except Exception as exc:
                error = NodeExecutionError(node, exc)
                logger.exception("Run %s failed at node '%s'", thread_id, node)
                return finish(
                    RunStatus.FAILED, node, error=str(error), error_type=type(exc).__name__
                )
            finally:
                context.resumed = False

            try:
                next_node = graph.successor(node, candidate, hint)
            except RoutingError as exc:
                logger.error("Run %s routing failed: %s", thread_id, exc)
                return finish(
                    RunStatus.FAILED, node, error=str(exc), error_type=type(exc).__name__
                )
            except Exception as exc:
                logger.exception("Run %s router for '%s' raised", thread_id, node)
                error = NodeExecutionError(node, exc)
                return finish(
                    RunStatus.FAILED, node, error=str(error), error_type=type(exc).__name__
                )

            state = candidate
            step += 1
            executed += 1
            event = StepEvent(node=node, delta=delta, step=step)
            steps.append(event)
            graph.checkpointer.save(
                thread_id,
                state.snapshot(),
                next_node,
                status=RunStatus.RUNNING,
                graph_name=graph.name,
                step=step,
            )
            logger.info("Run %s: '%s' -> '%s'", thread_id, node, next_node)
            yield event
            node = next_node

        logger.info("Run %s completed after %d step(s)", thread_id, step)
        return finish(RunStatus.COMPLETED, None)


def _collect(stream: Generator[StepEvent, None, RunResult]) -> RunResult:
    while True:
        try:
            next(stream)
        except StopIteration as stop:
            return stop.value
