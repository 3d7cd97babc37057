"""Content routing workflow: classify the input, then hand it to a specialist."""

from __future__ import annotations

import logging
import re
from typing import Any

from agentflow.graph.builder import END, CompiledGraph, WorkflowGraph
from agentflow.graph.checkpoint import CheckpointStore
from agentflow.graph.state import MESSAGES_KEY, MergePolicy, SharedState
from agentflow.orchestration.agents import AgentRegistry
from agentflow.runtime.agent import agent_step
from agentflow.runtime.context import RunContext

logger = logging.getLogger(__name__)

GRAPH_ID = "content_routing"
CATEGORIES = ("technical", "business", "general")

CLASSIFY_PROMPT = (
    "Decide whether the content below is technical, business or general. "
    "Answer with a single line 'category: <name>'.\n\n{input}"
)
HANDLER_PROMPTS = {
    "technical": (
        "Answer this technical question with analysis, underlying principles, a solution "
        "with example code and best practices.\n\n{input}"
    ),
    "business": (
        "Analyse this business request: clarify it, assess value and user scenarios, "
        "recommend an approach and list risks and success metrics.\n\n{input}"
    ),
    "general": "Answer clearly, accurately and helpfully.\n\n{input}",
}
HANDLER_AGENTS = {
    "technical": "tech_expert",
    "business": "business_expert",
    "general": "general_expert",
}


def parse_category(text: str) -> str:
    """Map a model reply onto one of :data:`CATEGORIES` (general when unclear)."""
    lowered = text.lower()
    match = re.search(r"category\s*:\s*(\w+)", lowered)
    if match and match.group(1) in CATEGORIES:
        return match.group(1)
    if "technical" in lowered or "技术" in lowered:
        return "technical"
    if "business" in lowered or "业务" in lowered:
        return "business"
    return "general"


def route_by_category(state: SharedState) -> str | None:
    category = state.get("category")
    return str(category) if category is not None else None


def build_content_routing_graph(
    agents: AgentRegistry, checkpointer: CheckpointStore | None = None
) -> CompiledGraph:
    """Build classify_content -> technical | business | general -> END."""

    def classify_content(state: SharedState, context: RunContext) -> dict[str, Any]:
        content = str(state.get("input") or "").strip()
        if not content:
            raise ValueError("input must not be empty")
        result = agent_step(
            agents.get("classifier"), state, context, CLASSIFY_PROMPT.format(input=content)
        )
        category = parse_category(result.text)
        logger.info("Content classified as %s", category)
        return {**result.update, "category": category}

    def make_handler(category: str):
        agent_name = HANDLER_AGENTS[category]

        def handle(state: SharedState, context: RunContext) -> dict[str, Any]:
            prompt = HANDLER_PROMPTS[category].format(input=state["input"])
            result = agent_step(agents.get(agent_name), state, context, prompt)
            return {
                **result.update,
                "result": result.text,
                "handler": agent_name,
                "status": "completed",
            }

        handle.__name__ = f"handle_{category}"
        return handle

    graph = WorkflowGraph(GRAPH_ID, policies={MESSAGES_KEY: MergePolicy.APPEND})
    graph.add_node("classify_content", classify_content)
    for category in CATEGORIES:
        graph.add_node(category, make_handler(category))
        graph.add_edge(category, END)
    graph.set_entry_point("classify_content")
    graph.add_conditional_edges(
        "classify_content", route_by_category, list(CATEGORIES), default="general"
    )
    return graph.compile(checkpointer=checkpointer)
