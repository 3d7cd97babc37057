"""Approval workflow: draft a plan, wait for a human, then execute it."""

from __future__ import annotations

from typing import Any

from agentflow.graph.builder import END, CompiledGraph, WorkflowGraph
from agentflow.graph.checkpoint import CheckpointStore
from agentflow.graph.state import HUMAN_DECISION_KEY, MESSAGES_KEY, MergePolicy, SharedState
from agentflow.orchestration.agents import AgentRegistry
from agentflow.runtime.agent import agent_step
from agentflow.runtime.context import RunContext

GRAPH_ID = "approval"

PROPOSAL_PROMPT = (
    "Draft a detailed execution plan for the task below covering steps, expected "
    "results, risks and required resources.\n\n{task}"
)
EXECUTION_PROMPT = (
    "Carry out the approved plan and report the results.\n"
    "Task: {task}\nPlan: {proposal}\nReviewer feedback: {feedback}\n\n{task}"
)


def build_approval_graph(
    agents: AgentRegistry, checkpointer: CheckpointStore | None = None
) -> CompiledGraph:
    """Build propose -> (suspend for approval) -> execute -> END.

    A rejected decision ends the run without executing the plan.
    """

    def propose(state: SharedState, context: RunContext) -> dict[str, Any]:
        task = str(state.get("task") or "").strip()
        if not task:
            raise ValueError("task must not be empty")
        result = agent_step(
            agents.get("proposal_agent"), state, context, PROPOSAL_PROMPT.format(task=task)
        )
        return {**result.update, "proposal": result.text, "status": "pending"}

    def execute(state: SharedState, context: RunContext) -> dict[str, Any]:
        decision = state.get(HUMAN_DECISION_KEY) or {}
        prompt = EXECUTION_PROMPT.format(
            task=state["task"],
            proposal=state.get("proposal", ""),
            feedback=decision.get("feedback") or "none",
        )
        result = agent_step(agents.get("execution_agent"), state, context, prompt)
        return {**result.update, "execution_result": result.text, "status": "completed"}

    graph = WorkflowGraph(GRAPH_ID, policies={MESSAGES_KEY: MergePolicy.APPEND})
    graph.add_node("propose", propose)
    graph.add_node("execute", execute)
    graph.set_entry_point("propose")
    graph.add_edge("propose", "execute")
    graph.add_edge("execute", END)
    return graph.compile(checkpointer=checkpointer, interrupt_before=["execute"])
