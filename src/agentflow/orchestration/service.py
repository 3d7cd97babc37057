"""Submit and resume workflow runs by graph id and run id."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from typing import Any

from agentflow.core.errors import RunNotFoundError, RunStateError, UnknownWorkflowError
from agentflow.graph.builder import CompiledGraph
from agentflow.graph.checkpoint import Checkpoint, CheckpointStore, RunStatus
from agentflow.graph.executor import GraphExecutor, ResumeDecision, RunResult
from agentflow.runtime.context import RunContext

logger = logging.getLogger(__name__)

USER_ID_KEY = "user_id"


class WorkflowService:
    """Registry of compiled workflows plus the submit/resume entry points.

    All registered graphs share ``checkpoints`` so a run can be looked up by
    id alone; the graph that owns it is read back from its checkpoint.
    """

    def __init__(
        self,
        graphs: Mapping[str, CompiledGraph],
        checkpoints: CheckpointStore,
        executor: GraphExecutor | None = None,
    ) -> None:
        self._graphs = dict(graphs)
        self.checkpoints = checkpoints
        self.executor = executor or GraphExecutor()

    def list_graphs(self) -> list[str]:
        return sorted(self._graphs)

    def graph(self, graph_id: str) -> CompiledGraph:
        """Return the compiled graph registered under ``graph_id``.

        Raises:
            UnknownWorkflowError: If no graph has that id
        """
        graph = self._graphs.get(graph_id)
        if graph is None:
            raise UnknownWorkflowError(
                f"Unknown workflow '{graph_id}'. Available: {', '.join(self.list_graphs())}"
            )
        return graph

    def _graph_by_name(self, graph_name: str) -> CompiledGraph:
        for graph in self._graphs.values():
            if graph.name == graph_name:
                return graph
        raise UnknownWorkflowError(f"No registered workflow compiles graph '{graph_name}'")

    def submit(
        self,
        graph_id: str,
        state: Mapping[str, Any] | None = None,
        run_id: str | None = None,
        user_id: str | None = None,
    ) -> RunResult:
        """Start a new run of ``graph_id``.

        ``user_id`` is stored in the run state so that a later resume (possibly
        from another process) charges the same user. A failed run may be
        resubmitted under its own ``run_id`` once its input is fixed.

        Raises:
            UnknownWorkflowError: If ``graph_id`` is not registered
            RunStateError: If ``run_id`` belongs to a run that has not failed
        """
        graph = self.graph(graph_id)
        run_id = run_id or str(uuid.uuid4())

        values = dict(state or {})
        if user_id is not None:
            values[USER_ID_KEY] = user_id
        context = RunContext(run_id=run_id, user_id=values.get(USER_ID_KEY))
        logger.info("Submitting run %s to workflow '%s'", run_id, graph_id)
        return self.executor.run(graph, values, run_id, context)

    def resume(
        self,
        run_id: str,
        approved: bool,
        feedback: str | None = None,
    ) -> RunResult:
        """Resume a suspended run with a human decision.

        Raises:
            RunNotFoundError: If no run has that id
            RunStateError: If the run is not suspended
        """
        checkpoint = self.get(run_id)
        graph = self._graph_by_name(checkpoint.graph_name)
        decision = ResumeDecision(approved=approved, feedback=feedback)
        context = RunContext(run_id=run_id, user_id=checkpoint.values.get(USER_ID_KEY))
        return self.executor.resume(graph, run_id, decision, context)

    def get(self, run_id: str) -> Checkpoint:
        """Return the latest checkpoint of a run.

        Raises:
            RunNotFoundError: If no run has that id
        """
        checkpoint = self.checkpoints.load(run_id)
        if checkpoint is None:
            raise RunNotFoundError(f"Run '{run_id}' not found")
        return checkpoint

    def list_runs(self, status: RunStatus | None = None) -> list[Checkpoint]:
        return self.checkpoints.list_checkpoints(status)
