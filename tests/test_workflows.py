"""End-to-end tests of the bundled workflows on the offline heuristic model."""

from __future__ import annotations

import random

import pytest

from agentflow.core.errors import RunNotFoundError, RunStateError, UnknownWorkflowError
from agentflow.graph.checkpoint import InMemoryCheckpointStore, RunStatus
from agentflow.llm.openai_client import HeuristicModel
from agentflow.orchestration.agents import AgentRegistry
from agentflow.orchestration.service import WorkflowService
from agentflow.workflows import build_workflows
from agentflow.workflows.content_routing import parse_category
from agentflow.workflows.development import parse_classification, route_for


@pytest.fixture
def service() -> WorkflowService:
    store = InMemoryCheckpointStore()
    agents = AgentRegistry(HeuristicModel())
    return WorkflowService(build_workflows(agents, store), store)


def _nodes(result) -> list[str]:
    return [event.node for event in result.steps]


def test_registered_workflows(service: WorkflowService) -> None:
    assert service.list_graphs() == ["approval", "content_routing", "development"]
    with pytest.raises(UnknownWorkflowError):
        service.graph("missing")


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("type: complex\ncomplexity: high\ncategory: technical", ("complex", "high", "technical")),
        ('{"type": "medium", "complexity": "low"}', ("medium", "low", "general")),
        ("no labels at all", ("simple", "medium", "general")),
    ],
)
def test_parse_classification(text: str, expected: tuple[str, str, str]) -> None:
    parsed = parse_classification(text)

    assert (parsed["type"], parsed["complexity"], parsed["category"]) == expected


def test_route_for_complexity() -> None:
    assert route_for({"type": "simple", "complexity": "high"}) == "human_review"
    assert route_for({"type": "complex", "complexity": "low"}) == "human_review"
    assert route_for({"type": "simple", "complexity": "low"}) == "quick_analysis"
    assert route_for({"type": "medium", "complexity": "medium"}) == "detailed_analysis"


def test_parse_category_falls_back_to_keywords() -> None:
    assert parse_category("category: business") == "business"
    assert parse_category("This looks technical to me") == "technical"
    assert parse_category("category: sports") == "general"


@pytest.mark.parametrize(
    ("content", "handler"),
    [
        ("How do I fix this python api bug?", "tech_expert"),
        ("What pricing strategy grows revenue?", "business_expert"),
        ("Tell me a joke", "general_expert"),
    ],
)
def test_content_routing_dispatches_by_category(
    service: WorkflowService, content: str, handler: str
) -> None:
    result = service.submit("content_routing", {"input": content})

    assert result.completed
    assert result.state["handler"] == handler
    assert result.state["status"] == "completed"
    assert result.state["result"] == f"[{handler}] {content}"
    assert _nodes(result)[0] == "classify_content"


def test_content_routing_fails_on_empty_input(service: WorkflowService) -> None:
    result = service.submit("content_routing", {"input": "  "}, run_id="empty")

    assert result.failed
    assert result.error_type == "ValueError"
    assert service.get("empty").status == RunStatus.FAILED


def test_simple_requirement_takes_quick_path(service: WorkflowService) -> None:
    result = service.submit("development", {"requirement": "Add a button"})

    assert result.completed
    assert _nodes(result) == [
        "read_requirement",
        "classify_requirement",
        "quick_analysis",
        "generate_solution",
        "generate_code",
        "generate_tests",
    ]
    assert result.state["classification"]["type"] == "simple"
    assert result.state["status"] == "completed"
    assert result.state["test_result"].startswith("[tester]")


def test_medium_requirement_takes_detailed_path(service: WorkflowService) -> None:
    result = service.submit("development", {"requirement": "Plan a data migration"})

    assert result.completed
    assert "detailed_analysis" in _nodes(result)
    assert "quick_analysis" not in _nodes(result)


def test_complex_requirement_waits_for_review_then_completes(service: WorkflowService) -> None:
    requirement = "Design a distributed microservice architecture with security integration"

    suspended = service.submit(
        "development", {"requirement": requirement}, run_id="dev-1", user_id="u-1"
    )

    assert suspended.suspended
    assert suspended.pending_node == "human_review"
    assert suspended.state["classification"]["complexity"] == "high"
    assert "analysis" not in suspended.state

    finished = service.resume("dev-1", approved=True, feedback="Prefer PostgreSQL")

    assert finished.completed
    assert _nodes(finished)[:2] == ["human_review", "detailed_analysis"]
    assert finished.state["review_data"]["approved"] is True
    assert finished.state["review_data"]["feedback"] == "Prefer PostgreSQL"
    assert finished.state["user_id"] == "u-1"
    prompts = [m["content"] for m in finished.state["messages"] if m["role"] == "user"]
    assert any("Reviewer feedback: Prefer PostgreSQL" in prompt for prompt in prompts)


def test_rejected_review_ends_run_without_analysis(service: WorkflowService) -> None:
    requirement = "Design a distributed microservice architecture with security integration"
    service.submit("development", {"requirement": requirement}, run_id="dev-2")

    result = service.resume("dev-2", approved=False, feedback="Out of scope")

    assert result.status == RunStatus.COMPLETED
    assert "review_data" not in result.state
    assert "test_result" not in result.state
    assert result.state["human_decision"] == {"approved": False, "feedback": "Out of scope"}


def test_approval_workflow_executes_after_approval(service: WorkflowService) -> None:
    pending = service.submit("approval", {"task": "Rotate the backup keys"}, run_id="ap-1")

    assert pending.suspended
    assert pending.pending_node == "execute"
    assert pending.state["proposal"] == "[proposal_agent] Rotate the backup keys"

    done = service.resume("ap-1", approved=True)

    assert done.completed
    assert done.state["execution_result"] == "[execution_agent] Rotate the backup keys"


def test_resume_errors(service: WorkflowService) -> None:
    with pytest.raises(RunNotFoundError):
        service.resume("nope", approved=True)

    service.submit("content_routing", {"input": "Tell me a joke"}, run_id="done")
    with pytest.raises(RunStateError):
        service.resume("done", approved=True)


def test_submit_rejects_duplicate_run_id(service: WorkflowService) -> None:
    service.submit("content_routing", {"input": "hello"}, run_id="dup")

    with pytest.raises(RunStateError):
        service.submit("content_routing", {"input": "hello"}, run_id="dup")


def test_list_runs_filters_by_status(service: WorkflowService) -> None:
    service.submit("approval", {"task": "Ship it"}, run_id="waiting")
    service.submit("content_routing", {"input": "hello"}, run_id="finished")

    suspended = [checkpoint.thread_id for checkpoint in service.list_runs(RunStatus.SUSPENDED)]

    assert suspended == ["waiting"]
    assert len(service.list_runs()) == 2


def test_failed_run_can_be_resubmitted_with_fixed_input(service: WorkflowService) -> None:
    assert service.submit("content_routing", {"input": ""}, run_id="fix-me").failed

    result = service.submit("content_routing", {"input": "Tell me a joke"}, run_id="fix-me")

    assert result.completed
    assert result.state["handler"] == "general_expert"
    assert service.get("fix-me").status == RunStatus.COMPLETED


def test_suspended_run_cannot_be_resubmitted(service: WorkflowService) -> None:
    service.submit("approval", {"task": "Ship it"}, run_id="held")

    with pytest.raises(RunStateError):
        service.submit("approval", {"task": "Ship something else"}, run_id="held")

    assert service.get("held").values["task"] == "Ship it"


ROUTING_WORDS = (
    "simple",
    "medium",
    "complex",
    "low",
    "high",
    "technical",
    "business",
    "general",
    "legal",
    "urgent",
    "n-a",
)


def _random_reply(rng: random.Random) -> str:
    lines = [
        f"{key}: {rng.choice(ROUTING_WORDS)}"
        for key in ("type", "complexity", "category")
        if rng.random() < 0.8
    ]
    if rng.random() < 0.3:
        lines.append(rng.choice(ROUTING_WORDS))
    rng.shuffle(lines)
    return "\n".join(lines)


@pytest.mark.parametrize("seed", range(5))
def test_routers_resolve_to_declared_targets_for_random_states(
    service: WorkflowService, seed: int
) -> None:
    rng = random.Random(seed)

    for graph_id in service.list_graphs():
        graph = service.graph(graph_id)
        for source, edge in graph.conditional_edges.items():
            declared = set(graph.declared_targets(source))
            for _ in range(50):
                reply = _random_reply(rng)
                values: dict = {"classification": parse_classification(reply)}
                if rng.random() < 0.9:
                    values["category"] = parse_category(reply)
                state = graph.new_state(values)
                # Hinted edges take their hint from the classifying node.
                hint = route_for(values["classification"]) if edge.router is None else None

                assert graph.successor(source, state, hint) in declared
