"""Tests for sequential hand-off, fan-out and plan-then-execute."""

from __future__ import annotations

import threading

import pytest

from agentflow.core.errors import ModelError
from agentflow.llm.base import ModelClient
from agentflow.llm.openai_client import HeuristicModel
from agentflow.orchestration.agents import AgentRegistry
from agentflow.orchestration.patterns import (
    FALLBACK_EXPERT,
    HANDOFF_TEMPLATE,
    fan_out,
    parse_plan,
    plan_then_execute,
    sequential_handoff,
)
from agentflow.runtime.agent import AgentRuntime
from agentflow.runtime.context import RunContext
from agentflow.runtime.hooks import FunctionHook, HookResult
from agentflow.runtime.interceptors import ModelRequest


class DownModel(ModelClient):
    name = "down"

    def complete(self, request: ModelRequest):
        raise ModelError("upstream unavailable")


def test_sequential_handoff_feeds_each_reply_forward(make_model) -> None:
    model = make_model()
    agents = [AgentRuntime("analyst", model), AgentRuntime("coder", model)]

    outcomes = sequential_handoff(agents, "start")

    assert [outcome.agent_name for outcome in outcomes] == ["analyst", "coder"]
    assert outcomes[0].text == "echo: start"
    assert outcomes[1].prompt == HANDOFF_TEMPLATE.format(previous="echo: start")
    assert all(outcome.ok for outcome in outcomes)


def test_sequential_handoff_stops_on_short_circuit(make_model) -> None:
    model = make_model()
    gate = FunctionHook("gate", before=lambda state, ctx: HookResult.stop("not allowed"))
    agents = [
        AgentRuntime("analyst", model),
        AgentRuntime("architect", model, hooks=[gate]),
        AgentRuntime("coder", model),
    ]

    outcomes = sequential_handoff(agents, "start")

    assert len(outcomes) == 2
    assert outcomes[1].short_circuited is True
    assert outcomes[1].text == "not allowed"
    assert len(model.requests) == 1


def test_sequential_handoff_requires_agents() -> None:
    with pytest.raises(ValueError):
        sequential_handoff([], "start")


def test_fan_out_isolates_failures(make_model) -> None:
    model = make_model()
    tasks = [(AgentRuntime(f"worker-{index}", model), f"task {index}") for index in range(4)]
    tasks.insert(2, (AgentRuntime("broken", DownModel()), "task broken"))

    outcomes = fan_out(tasks, RunContext(user_id="u-1"), max_workers=5)

    assert len(outcomes) == 5
    assert [outcome.agent_name for outcome in outcomes] == [
        "worker-0",
        "worker-1",
        "broken",
        "worker-2",
        "worker-3",
    ]
    assert outcomes[2].ok is False
    assert "upstream unavailable" in outcomes[2].error
    assert [outcome.text for outcome in outcomes if outcome.ok] == [
        "echo: task 0",
        "echo: task 1",
        "echo: task 2",
        "echo: task 3",
    ]


def test_fan_out_runs_tasks_concurrently(make_model) -> None:
    barrier = threading.Barrier(3, timeout=5)

    def wait_for_peers(request: ModelRequest) -> str:
        barrier.wait()
        return "done"

    model = make_model(wait_for_peers)
    tasks = [(AgentRuntime(f"worker-{index}", model), "go") for index in range(3)]

    outcomes = fan_out(tasks, max_workers=3)

    assert all(outcome.ok and outcome.text == "done" for outcome in outcomes)


def test_fan_out_with_no_tasks() -> None:
    assert fan_out([]) == []


def test_parse_plan_maps_unknown_experts_and_skips_noise() -> None:
    plan = parse_plan(
        "Here is the plan:\ntech_expert|Profile the API\nlegal_expert|Review terms\nbad|\n"
    )

    assert plan == [("tech_expert", "Profile the API"), (FALLBACK_EXPERT, "Review terms")]


def test_parse_plan_falls_back_to_single_task() -> None:
    assert parse_plan("no structure here", fallback_task="the request") == [
        (FALLBACK_EXPERT, "the request")
    ]


def test_plan_then_execute_with_heuristic_model() -> None:
    agents = AgentRegistry(HeuristicModel())
    request = "Fix the database bug. Estimate the market pricing"

    result = plan_then_execute(agents, request, RunContext(user_id="u-1"))

    assert result.plan == [
        ("tech_expert", "Fix the database bug"),
        ("business_expert", "Estimate the market pricing"),
    ]
    assert [outcome.text for outcome in result.outcomes] == [
        "[tech_expert] Fix the database bug",
        "[business_expert] Estimate the market pricing",
    ]
    assert result.summary == f"[supervisor] {request}"
    assert result.to_dict()["plan"][0] == {"expert": "tech_expert", "task": "Fix the database bug"}


def test_plan_then_execute_reports_planner_failure() -> None:
    agents = AgentRegistry(DownModel())

    result = plan_then_execute(agents, "anything")

    assert result.plan == []
    assert result.outcomes == []
    assert "upstream unavailable" in result.summary
