"""Pydantic schemas for the REST API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from agentflow.graph.checkpoint import Checkpoint
from agentflow.graph.executor import RunResult


class RunSubmitRequest(BaseModel):
    """Initial state for a new workflow run."""

    state: dict[str, Any] = Field(default_factory=dict)
    user_id: str | None = None
    run_id: str | None = None


class ResumeRequest(BaseModel):
    approved: bool
    feedback: str | None = None


class RunResponse(BaseModel):
    """Outcome of submit/resume, or the latest checkpoint of a run."""

    run_id: str
    graph_id: str
    status: str
    state: dict[str, Any] = Field(default_factory=dict)
    pending_node: str | None = None
    error: str | None = None
    error_type: str | None = None
    short_circuited_by: str | None = None
    steps: list[str] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: RunResult) -> RunResponse:
        return cls(
            run_id=result.thread_id,
            graph_id=result.graph_name,
            status=result.status.value,
            state=result.state,
            pending_node=result.pending_node,
            error=result.error,
            error_type=result.error_type,
            short_circuited_by=result.short_circuited_by,
            steps=[event.node for event in result.steps],
        )

    @classmethod
    def from_checkpoint(cls, checkpoint: Checkpoint) -> RunResponse:
        return cls(
            run_id=checkpoint.thread_id,
            graph_id=checkpoint.graph_name,
            status=checkpoint.status.value,
            state=checkpoint.values,
            pending_node=checkpoint.pending_node,
            error=checkpoint.error,
        )


class WorkflowListResponse(BaseModel):
    workflows: list[str]


class InvokeRequest(BaseModel):
    prompt: str
    user_id: str | None = None


class InvokeResponse(BaseModel):
    agent: str
    text: str
    usage: dict[str, int]
    short_circuited: bool = False
    ended_by: str | None = None
    blocked: bool = False


class ToolCallRequest(BaseModel):
    arguments: dict[str, Any] = Field(default_factory=dict)
    user_id: str | None = None


class ToolCallResponse(BaseModel):
    tool: str
    ok: bool
    output: Any = None
    error: str | None = None


class SequentialRequest(BaseModel):
    """Agents to chain; each reply becomes the next agent's input."""

    prompt: str
    agents: list[str] = Field(default_factory=lambda: ["analyst", "architect", "coder"])
    user_id: str | None = None


class ParallelTask(BaseModel):
    agent: str
    prompt: str


class ParallelRequest(BaseModel):
    tasks: list[ParallelTask] = Field(min_length=1)
    user_id: str | None = None


class SupervisorRequest(BaseModel):
    request: str
    user_id: str | None = None


class PatternResponse(BaseModel):
    outcomes: list[dict[str, Any]]
    summary: str | None = None
    plan: list[dict[str, str]] = Field(default_factory=list)


class ApprovalCreateRequest(BaseModel):
    task: str
    user_id: str | None = None


class ApprovalDecisionRequest(BaseModel):
    approved: bool
    feedback: str | None = None


class SecurityCheckRequest(BaseModel):
    text: str


class SecurityCheckResponse(BaseModel):
    safe: bool
    message: str
    sensitive_words: list[str] = Field(default_factory=list)
    filtered: str


class TokenUsageResponse(BaseModel):
    """Quota and recent usage of one user."""

    user_id: str
    token_quota: int
    token_used: int
    remaining: int
    usage_rate: float
    recent_usage: list[dict[str, Any]] = Field(default_factory=list)
