"""FastAPI application exposing workflows, agents, approvals and monitoring."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, HTTPException

from agentflow import __version__
from agentflow.core.errors import ModelError, RunStateError
from agentflow.graph.checkpoint import RunStatus
from agentflow.orchestration.bootstrap import AgentflowContainer, build_container
from agentflow.orchestration.human_loop import ApprovalRecord
from agentflow.orchestration.patterns import fan_out, plan_then_execute, sequential_handoff
from agentflow.policies.security import check_security, filter_sensitive_info, find_sensitive_words
from agentflow.runtime.context import RunContext
from agentflow.server.schemas import (
    ApprovalCreateRequest,
    ApprovalDecisionRequest,
    InvokeRequest,
    InvokeResponse,
    ParallelRequest,
    PatternResponse,
    ResumeRequest,
    RunResponse,
    RunSubmitRequest,
    SecurityCheckRequest,
    SecurityCheckResponse,
    SequentialRequest,
    SupervisorRequest,
    TokenUsageResponse,
    ToolCallRequest,
    ToolCallResponse,
    WorkflowListResponse,
)

logger = logging.getLogger(__name__)


def _http_error(exc: Exception) -> HTTPException:
    """Map domain errors onto HTTP status codes."""
    if isinstance(exc, LookupError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, RunStateError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, ModelError):
        return HTTPException(status_code=502, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


_DOMAIN_ERRORS = (LookupError, RunStateError, ModelError, ValueError)


def create_app(container: AgentflowContainer | None = None) -> FastAPI:
    """Create the API app around ``container`` (built from the environment when omitted)."""
    container = container or build_container()
    workflows = container.workflows
    agents = container.agents
    human_loop = container.human_loop

    app = FastAPI(title="agentflow API Server", version=__version__)
    app.state.container = container

    @app.get("/healthz")
    def healthz() -> dict[str, bool]:
        """Health check endpoint."""
        return {"ok": True}

    @app.get("/api/workflows", response_model=WorkflowListResponse)
    def list_workflows() -> WorkflowListResponse:
        return WorkflowListResponse(workflows=workflows.list_graphs())

    @app.post("/api/workflows/{graph_id}/runs", response_model=RunResponse)
    def submit_run(graph_id: str, payload: RunSubmitRequest) -> RunResponse:
        """Start a run; suspended, completed and failed runs all return 200."""
        try:
            result = workflows.submit(
                graph_id, payload.state, run_id=payload.run_id, user_id=payload.user_id
            )
        except _DOMAIN_ERRORS as exc:
            raise _http_error(exc) from exc
        return RunResponse.from_result(result)

    @app.get("/api/runs", response_model=list[RunResponse])
    def list_runs(status: str | None = None) -> list[RunResponse]:
        try:
            status_filter = RunStatus(status.upper()) if status else None
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=f"Invalid status: {status}") from exc
        return [RunResponse.from_checkpoint(row) for row in workflows.list_runs(status_filter)]

    @app.get("/api/runs/{run_id}", response_model=RunResponse)
    def get_run(run_id: str) -> RunResponse:
        try:
            return RunResponse.from_checkpoint(workflows.get(run_id))
        except _DOMAIN_ERRORS as exc:
            raise _http_error(exc) from exc

    @app.post("/api/runs/{run_id}/resume", response_model=RunResponse)
    def resume_run(run_id: str, payload: ResumeRequest) -> RunResponse:
        try:
            result = workflows.resume(run_id, payload.approved, payload.feedback)
        except _DOMAIN_ERRORS as exc:
            raise _http_error(exc) from exc
        return RunResponse.from_result(result)

    @app.get("/api/agents")
    def list_agents() -> dict[str, list[str]]:
        return {"agents": agents.names()}

    @app.post("/api/agents/{agent_name}/invoke", response_model=InvokeResponse)
    def invoke_agent(agent_name: str, payload: InvokeRequest) -> InvokeResponse:
        try:
            runtime = agents.get(agent_name)
            result = runtime.invoke(
                payload.prompt, RunContext(user_id=payload.user_id, agent_name=agent_name)
            )
        except _DOMAIN_ERRORS as exc:
            raise _http_error(exc) from exc
        return InvokeResponse(
            agent=agent_name,
            text=result.text,
            usage=result.usage.to_dict(),
            short_circuited=result.short_circuited,
            ended_by=result.ended_by,
            blocked=result.blocked,
        )

    @app.post("/api/agents/{agent_name}/tools/{tool_name}", response_model=ToolCallResponse)
    def call_tool(agent_name: str, tool_name: str, payload: ToolCallRequest) -> ToolCallResponse:
        try:
            response = agents.get(agent_name).call_tool(
                tool_name, payload.arguments, RunContext(user_id=payload.user_id)
            )
        except _DOMAIN_ERRORS as exc:
            raise _http_error(exc) from exc
        return ToolCallResponse(
            tool=tool_name, ok=response.ok, output=response.output, error=response.error
        )

    @app.post("/api/multi-agent/sequential", response_model=PatternResponse)
    def run_sequential(payload: SequentialRequest) -> PatternResponse:
        try:
            chain = [agents.get(name) for name in payload.agents]
            outcomes = sequential_handoff(
                chain, payload.prompt, RunContext(user_id=payload.user_id)
            )
        except _DOMAIN_ERRORS as exc:
            raise _http_error(exc) from exc
        return PatternResponse(
            outcomes=[outcome.to_dict() for outcome in outcomes],
            summary=outcomes[-1].text if outcomes else None,
        )

    @app.post("/api/multi-agent/parallel", response_model=PatternResponse)
    def run_parallel(payload: ParallelRequest) -> PatternResponse:
        try:
            tasks = [(agents.get(task.agent), task.prompt) for task in payload.tasks]
        except _DOMAIN_ERRORS as exc:
            raise _http_error(exc) from exc
        outcomes = fan_out(
            tasks,
            RunContext(user_id=payload.user_id),
            max_workers=container.settings.fan_out_workers,
        )
        return PatternResponse(outcomes=[outcome.to_dict() for outcome in outcomes])

    @app.post("/api/multi-agent/supervisor", response_model=PatternResponse)
    def run_supervisor(payload: SupervisorRequest) -> PatternResponse:
        try:
            result = plan_then_execute(
                agents,
                payload.request,
                RunContext(user_id=payload.user_id),
                max_workers=container.settings.fan_out_workers,
            )
        except _DOMAIN_ERRORS as exc:
            raise _http_error(exc) from exc
        data = result.to_dict()
        return PatternResponse(
            outcomes=data["outcomes"], summary=data["summary"], plan=data["plan"]
        )

    @app.post("/api/human-in-loop", response_model=ApprovalRecord)
    def create_approval(payload: ApprovalCreateRequest) -> ApprovalRecord:
        try:
            return human_loop.create(payload.task, user_id=payload.user_id)
        except _DOMAIN_ERRORS as exc:
            raise _http_error(exc) from exc

    @app.get("/api/human-in-loop/pending", response_model=list[ApprovalRecord])
    def pending_approvals() -> list[ApprovalRecord]:
        return human_loop.pending()

    @app.post("/api/human-in-loop/{workflow_id}/decision", response_model=ApprovalRecord)
    def decide_approval(workflow_id: str, payload: ApprovalDecisionRequest) -> ApprovalRecord:
        try:
            return human_loop.decide(workflow_id, payload.approved, payload.feedback)
        except _DOMAIN_ERRORS as exc:
            raise _http_error(exc) from exc

    @app.get("/api/human-in-loop/{workflow_id}", response_model=ApprovalRecord)
    def approval_detail(workflow_id: str) -> ApprovalRecord:
        try:
            return human_loop.detail(workflow_id)
        except _DOMAIN_ERRORS as exc:
            raise _http_error(exc) from exc

    @app.get("/api/monitor/performance")
    def monitor_performance() -> dict[str, Any]:
        return container.performance.statistics()

    @app.get("/api/monitor/safety")
    def monitor_safety() -> dict[str, Any]:
        return container.safety.statistics()

    @app.get("/api/monitor/tools")
    def monitor_tools() -> dict[str, Any]:
        return container.tool_monitor.statistics()

    @app.get("/api/monitor/audit")
    def monitor_audit(limit: int = 10) -> dict[str, Any]:
        if limit < 1 or limit > 500:
            raise HTTPException(status_code=400, detail="limit must be between 1 and 500")
        container.audit.flush()
        events = container.audit.recent(limit)
        return {"events": [event.to_dict() for event in events], "count": len(events)}

    @app.get("/api/monitor/overview")
    def monitor_overview() -> dict[str, Any]:
        return container.overview()

    @app.get("/api/monitor/token/{user_id}", response_model=TokenUsageResponse)
    def monitor_token(user_id: str) -> TokenUsageResponse:
        quota = container.stores.quota
        snapshot = quota.get_quota(user_id)
        usage = quota.recent_usage(user_id)
        return TokenUsageResponse(
            user_id=user_id,
            token_quota=snapshot.token_quota,
            token_used=snapshot.token_used,
            remaining=snapshot.remaining,
            usage_rate=snapshot.usage_rate,
            recent_usage=[
                {
                    "agent_name": record.agent_name,
                    "total_tokens": record.total_tokens,
                    "estimated_cost": record.estimated_cost,
                    "exceeded_limit": record.exceeded_limit,
                    "created_at": record.created_at.isoformat(),
                }
                for record in usage
            ],
        )

    @app.post("/api/monitor/security/check", response_model=SecurityCheckResponse)
    def security_check(payload: SecurityCheckRequest) -> SecurityCheckResponse:
        result = check_security(payload.text)
        return SecurityCheckResponse(
            safe=result.safe,
            message=result.message,
            sensitive_words=find_sensitive_words(payload.text),
            filtered=filter_sensitive_info(payload.text),
        )

    logger.info("API app created with workflows %s", workflows.list_graphs())
    return app
