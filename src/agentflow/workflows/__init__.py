"""Workflow templates registered by graph id."""

from __future__ import annotations

from collections.abc import Callable

from agentflow.graph.builder import CompiledGraph
from agentflow.graph.checkpoint import CheckpointStore
from agentflow.orchestration.agents import AgentRegistry
from agentflow.workflows.approval import build_approval_graph
from agentflow.workflows.content_routing import build_content_routing_graph
from agentflow.workflows.development import build_development_graph

GraphBuilder = Callable[[AgentRegistry, CheckpointStore], CompiledGraph]

WORKFLOW_BUILDERS: dict[str, GraphBuilder] = {
    "development": build_development_graph,
    "content_routing": build_content_routing_graph,
    "approval": build_approval_graph,
}


def build_workflows(
    agents: AgentRegistry, checkpointer: CheckpointStore
) -> dict[str, CompiledGraph]:
    """Compile every registered workflow against one shared checkpoint store."""
    return {graph_id: builder(agents, checkpointer) for graph_id, builder in WORKFLOW_BUILDERS.items()}


__all__ = ["WORKFLOW_BUILDERS", "build_workflows"]
