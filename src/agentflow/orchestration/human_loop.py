"""Human-in-the-loop approvals built on the ``approval`` workflow."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel

from agentflow.core.errors import RunNotFoundError
from agentflow.graph.checkpoint import Checkpoint, RunStatus
from agentflow.graph.executor import RunResult
from agentflow.graph.state import HUMAN_DECISION_KEY
from agentflow.orchestration.service import USER_ID_KEY, WorkflowService

logger = logging.getLogger(__name__)

APPROVAL_GRAPH = "approval"


class ApprovalRecord(BaseModel):
    """Client-facing view of one approval workflow."""

    workflow_id: str
    status: str
    task: str = ""
    user_id: str | None = None
    proposal: str | None = None
    execution_result: str | None = None
    approved: bool | None = None
    feedback: str | None = None
    error: str | None = None


def approval_status(status: RunStatus, values: dict[str, Any]) -> str:
    """Map a run status onto pending/rejected/completed/failed/running."""
    if status == RunStatus.SUSPENDED:
        return "pending"
    if status == RunStatus.FAILED:
        return "failed"
    if status == RunStatus.RUNNING:
        return "running"
    decision = values.get(HUMAN_DECISION_KEY) or {}
    if decision.get("approved") is False:
        return "rejected"
    return "completed"


def _record(
    workflow_id: str, status: RunStatus, values: dict[str, Any], error: str | None = None
) -> ApprovalRecord:
    decision = values.get(HUMAN_DECISION_KEY) or {}
    return ApprovalRecord(
        workflow_id=workflow_id,
        status=approval_status(status, values),
        task=str(values.get("task", "")),
        user_id=values.get(USER_ID_KEY),
        proposal=values.get("proposal"),
        execution_result=values.get("execution_result"),
        approved=decision.get("approved"),
        feedback=decision.get("feedback"),
        error=error,
    )


class HumanLoopService:
    """Create approval requests, list the pending ones and record decisions."""

    def __init__(self, workflows: WorkflowService) -> None:
        self.workflows = workflows

    def create(self, task: str, user_id: str | None = None) -> ApprovalRecord:
        """Draft a proposal for ``task`` and suspend for approval."""
        if not task.strip():
            raise ValueError("task must not be empty")
        result = self.workflows.submit(APPROVAL_GRAPH, {"task": task}, user_id=user_id)
        logger.info("Approval %s created with status %s", result.thread_id, result.status.value)
        return self._from_result(result)

    def decide(
        self, workflow_id: str, approved: bool, feedback: str | None = None
    ) -> ApprovalRecord:
        """Approve (execute the plan) or reject (end the run) a pending approval."""
        self._checkpoint(workflow_id)
        result = self.workflows.resume(workflow_id, approved, feedback)
        logger.info("Approval %s decided: approved=%s", workflow_id, approved)
        return self._from_result(result)

    def pending(self) -> list[ApprovalRecord]:
        return [
            _record(checkpoint.thread_id, checkpoint.status, checkpoint.values)
            for checkpoint in self.workflows.list_runs(RunStatus.SUSPENDED)
            if checkpoint.graph_name == APPROVAL_GRAPH
        ]

    def detail(self, workflow_id: str) -> ApprovalRecord:
        checkpoint = self._checkpoint(workflow_id)
        return _record(
            workflow_id, checkpoint.status, checkpoint.values, error=checkpoint.error
        )

    def _checkpoint(self, workflow_id: str) -> Checkpoint:
        checkpoint = self.workflows.get(workflow_id)
        if checkpoint.graph_name != APPROVAL_GRAPH:
            raise RunNotFoundError(f"Approval workflow '{workflow_id}' not found")
        return checkpoint

    @staticmethod
    def _from_result(result: RunResult) -> ApprovalRecord:
        return _record(result.thread_id, result.status, result.state, error=result.error)
