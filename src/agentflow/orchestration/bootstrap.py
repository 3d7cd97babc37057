"""Application wiring: stores, policies, agents, workflows and services."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from agentflow.core.config import RuntimeSettings, load_runtime_settings
from agentflow.graph.executor import GraphExecutor
from agentflow.llm.base import ModelClient
from agentflow.llm.openai_client import create_model_client
from agentflow.observability.opik_client import configure_opik, tracing_status
from agentflow.orchestration.agents import AgentRegistry
from agentflow.orchestration.human_loop import HumanLoopService
from agentflow.orchestration.service import WorkflowService
from agentflow.policies import (
    AuditHook,
    MessageTrimmingHook,
    PerformanceInterceptor,
    SafetyInterceptor,
    SecurityHook,
    TokenLimitHook,
    ToolMonitorInterceptor,
)
from agentflow.runtime.audit import AuditRecorder
from agentflow.storage.factory import Stores, create_stores
from agentflow.workflows import build_workflows

logger = logging.getLogger(__name__)


@dataclass
class AgentflowContainer:
    """Everything the CLI and the REST server need, built from one settings object."""

    settings: RuntimeSettings
    stores: Stores
    audit: AuditRecorder
    performance: PerformanceInterceptor
    safety: SafetyInterceptor
    tool_monitor: ToolMonitorInterceptor
    agents: AgentRegistry
    workflows: WorkflowService
    human_loop: HumanLoopService

    def overview(self) -> dict[str, Any]:
        """Combined read-only statistics for monitoring."""
        return {
            "performance": self.performance.statistics(),
            "safety": self.safety.statistics(),
            "tools": self.tool_monitor.statistics(),
            "workflows": self.workflows.list_graphs(),
            "storage": "sql" if self.stores.durable else "memory",
            "tracing": tracing_status().to_dict(),
        }

    def close(self) -> None:
        self.audit.close()
        if self.stores.database is not None:
            self.stores.database.dispose()


def build_container(
    settings: RuntimeSettings | None = None,
    model: ModelClient | None = None,
    stores: Stores | None = None,
) -> AgentflowContainer:
    """Wire the default policy stack around one model.

    Hooks run in the order trimming, security, token limit, audit; model
    interceptors in the order performance, safety (performance outermost).
    """
    settings = settings or load_runtime_settings()
    configure_opik()
    stores = stores or create_stores(settings)
    model = model or create_model_client(settings)

    audit = AuditRecorder(stores.audit)
    performance = PerformanceInterceptor(slow_call_ms=settings.slow_call_ms)
    safety = SafetyInterceptor()
    tool_monitor = ToolMonitorInterceptor()
    hooks = [
        MessageTrimmingHook(
            max_messages=settings.max_messages,
            min_keep_messages=settings.min_keep_messages,
        ),
        SecurityHook(),
        TokenLimitHook(stores.quota, run_on_resume=settings.quota_run_on_resume),
        AuditHook(audit),
    ]
    agents = AgentRegistry(
        model,
        hooks=hooks,
        interceptors=[performance, safety],
        tool_interceptors=[tool_monitor],
    )
    workflows = WorkflowService(
        build_workflows(agents, stores.checkpoints),
        stores.checkpoints,
        GraphExecutor(),
    )
    logger.info(
        "agentflow ready: model=%s, storage=%s, workflows=%s",
        model.name,
        "sql" if stores.durable else "memory",
        workflows.list_graphs(),
    )
    return AgentflowContainer(
        settings=settings,
        stores=stores,
        audit=audit,
        performance=performance,
        safety=safety,
        tool_monitor=tool_monitor,
        agents=agents,
        workflows=workflows,
        human_loop=HumanLoopService(workflows),
    )
