"""Software development workflow: requirement to tests, with review of complex work."""

from __future__ import annotations

import logging
import re
from typing import Any

from agentflow.graph.builder import END, CompiledGraph, NodeResult, WorkflowGraph
from agentflow.graph.checkpoint import CheckpointStore
from agentflow.graph.state import HUMAN_DECISION_KEY, MESSAGES_KEY, MergePolicy, SharedState
from agentflow.orchestration.agents import AgentRegistry
from agentflow.runtime.agent import agent_step, user_message
from agentflow.runtime.context import RunContext

logger = logging.getLogger(__name__)

GRAPH_ID = "development"

CLASSIFY_PROMPT = (
    "Classify the requirement below. Reply with three lines:\n"
    "type: simple|medium|complex\ncomplexity: low|medium|high\n"
    "category: technical|business|general\n\n{requirement}"
)
QUICK_ANALYSIS_PROMPT = (
    "Quickly analyse this simple requirement: list the one or two core features, "
    "the key technology and the expected effort.\n\n{requirement}"
)
DETAILED_ANALYSIS_PROMPT = (
    "Analyse this requirement in detail: functional breakdown, technical choices, "
    "data model, interfaces, and expected risks.{feedback}\n\n{requirement}"
)
SOLUTION_PROMPT = (
    "Design a technical solution from this analysis: architecture, stack, core modules, "
    "storage and delivery steps.\n\n{analysis}"
)
CODE_PROMPT = "Write the core code for this design.\n\n{design}"
TESTS_PROMPT = (
    "Write tests for this code: unit, integration, edge cases and failure scenarios.\n\n{code}"
)

CLASSIFICATION_DEFAULTS = {"type": "simple", "complexity": "medium", "category": "general"}


def parse_classification(text: str) -> dict[str, str]:
    """Extract ``type``, ``complexity`` and ``category`` from a model reply.

    Accepts ``key: value`` lines or JSON-ish ``"key": "value"`` pairs; missing
    keys fall back to simple/medium/general.
    """
    result = dict(CLASSIFICATION_DEFAULTS)
    for key in result:
        match = re.search(rf'"?{key}"?\s*:\s*"?([\w-]+)"?', text, re.IGNORECASE)
        if match:
            result[key] = match.group(1).lower()
    return result


def route_for(classification: dict[str, str]) -> str:
    if classification["complexity"] == "high" or classification["type"] == "complex":
        return "human_review"
    if classification["type"] == "simple":
        return "quick_analysis"
    return "detailed_analysis"


def build_development_graph(
    agents: AgentRegistry, checkpointer: CheckpointStore | None = None
) -> CompiledGraph:
    """Build the development workflow.

    read_requirement -> classify_requirement -> quick_analysis | detailed_analysis
    | human_review (suspends for approval, then detailed_analysis) ->
    generate_solution -> generate_code -> generate_tests -> END
    """

    def read_requirement(state: SharedState) -> dict[str, Any]:
        requirement = str(state.get("requirement") or "").strip()
        if not requirement:
            raise ValueError("requirement must not be empty")
        logger.info("Processing requirement: %s", requirement[:80])
        return {
            MESSAGES_KEY: [user_message(f"Start processing requirement: {requirement}")],
            "status": "processing",
        }

    def classify_requirement(state: SharedState, context: RunContext) -> NodeResult:
        result = agent_step(
            agents.get("classifier"),
            state,
            context,
            CLASSIFY_PROMPT.format(requirement=state["requirement"]),
        )
        classification = parse_classification(result.text)
        next_node = route_for(classification)
        logger.info("Requirement classified as %s -> %s", classification, next_node)
        return NodeResult(
            update={**result.update, "classification": classification},
            next_hint=next_node,
        )

    def quick_analysis(state: SharedState, context: RunContext) -> dict[str, Any]:
        prompt = QUICK_ANALYSIS_PROMPT.format(requirement=state["requirement"])
        result = agent_step(agents.get("analyst"), state, context, prompt)
        return {**result.update, "analysis": result.text}

    def detailed_analysis(state: SharedState, context: RunContext) -> dict[str, Any]:
        decision = state.get(HUMAN_DECISION_KEY) or {}
        feedback = f"\nReviewer feedback: {decision['feedback']}" if decision.get("feedback") else ""
        prompt = DETAILED_ANALYSIS_PROMPT.format(
            requirement=state["requirement"], feedback=feedback
        )
        result = agent_step(agents.get("analyst"), state, context, prompt)
        return {**result.update, "analysis": result.text}

    def human_review(state: SharedState) -> dict[str, Any]:
        classification = state.get("classification") or {}
        decision = state.get(HUMAN_DECISION_KEY) or {}
        return {
            "review_data": {
                "requirement": state.get("requirement", ""),
                "type": classification.get("type"),
                "complexity": classification.get("complexity"),
                "approved": decision.get("approved"),
                "feedback": decision.get("feedback"),
            },
            "status": "reviewed",
        }

    def generate_solution(state: SharedState, context: RunContext) -> dict[str, Any]:
        prompt = SOLUTION_PROMPT.format(analysis=state.get("analysis", ""))
        result = agent_step(agents.get("architect"), state, context, prompt)
        return {**result.update, "design": result.text}

    def generate_code(state: SharedState, context: RunContext) -> dict[str, Any]:
        prompt = CODE_PROMPT.format(design=state.get("design", ""))
        result = agent_step(agents.get("coder"), state, context, prompt)
        return {**result.update, "code": result.text}

    def generate_tests(state: SharedState, context: RunContext) -> dict[str, Any]:
        prompt = TESTS_PROMPT.format(code=state.get("code", ""))
        result = agent_step(agents.get("tester"), state, context, prompt)
        return {**result.update, "test_result": result.text, "status": "completed"}

    graph = WorkflowGraph(GRAPH_ID, policies={MESSAGES_KEY: MergePolicy.APPEND})
    graph.add_node("read_requirement", read_requirement)
    graph.add_node("classify_requirement", classify_requirement)
    graph.add_node("quick_analysis", quick_analysis)
    graph.add_node("detailed_analysis", detailed_analysis)
    graph.add_node("human_review", human_review)
    graph.add_node("generate_solution", generate_solution)
    graph.add_node("generate_code", generate_code)
    graph.add_node("generate_tests", generate_tests)

    graph.set_entry_point("read_requirement")
    graph.add_edge("read_requirement", "classify_requirement")
    graph.add_hinted_edges(
        "classify_requirement",
        ["quick_analysis", "detailed_analysis", "human_review"],
        default="detailed_analysis",
    )
    graph.add_edge("human_review", "detailed_analysis")
    graph.add_edge("quick_analysis", "generate_solution")
    graph.add_edge("detailed_analysis", "generate_solution")
    graph.add_edge("generate_solution", "generate_code")
    graph.add_edge("generate_code", "generate_tests")
    graph.add_edge("generate_tests", END)
    return graph.compile(checkpointer=checkpointer, interrupt_before=["human_review"])
