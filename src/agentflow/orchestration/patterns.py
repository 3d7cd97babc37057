"""Multi-agent patterns built on AgentRuntime outside the graph engine.

Three ways of combining agent calls:

* sequential hand-off: each agent's reply becomes the next agent's input
* fan-out: independent calls run concurrently and are joined once all finish;
  one call failing never cancels the others
* plan-then-execute: a planner emits ``expert|task`` lines, the tasks are fanned
  out and a supervisor merges the answers
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

from agentflow.orchestration.agents import AgentRegistry
from agentflow.runtime.agent import AgentRuntime, InvokeResult
from agentflow.runtime.context import RunContext
from agentflow.runtime.interceptors import TokenUsage

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 5
FALLBACK_EXPERT = "general_expert"
DEFAULT_EXPERTS = ("tech_expert", "business_expert", "general_expert")

HANDOFF_TEMPLATE = "Continue the work using the previous agent's output.\n\n{previous}"
PLAN_TEMPLATE = (
    "Split the request into sub-tasks. Answer with one line per task in the form "
    "expert|task.\n\n{request}"
)
SUMMARY_TEMPLATE = (
    "Merge the expert answers below into one coherent response to the request, "
    "removing duplicates.\nExpert answers:\n{answers}\n\n{request}"
)


@dataclass
class TaskOutcome:
    """Result of one agent call inside a pattern; ``error`` is set on failure."""

    agent_name: str
    prompt: str
    text: str | None = None
    usage: TokenUsage = field(default_factory=TokenUsage)
    short_circuited: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and not self.short_circuited

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent_name": self.agent_name,
            "prompt": self.prompt,
            "text": self.text,
            "usage": self.usage.to_dict(),
            "short_circuited": self.short_circuited,
            "error": self.error,
        }


@dataclass
class PlanResult:
    """Plan, per-task outcomes and the supervisor's merged answer."""

    plan: list[tuple[str, str]]
    outcomes: list[TaskOutcome]
    summary: str
    planner: TaskOutcome | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan": [{"expert": expert, "task": task} for expert, task in self.plan],
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
            "summary": self.summary,
        }


def _outcome(runtime: AgentRuntime, prompt: str, result: InvokeResult) -> TaskOutcome:
    return TaskOutcome(
        agent_name=runtime.name,
        prompt=prompt,
        text=result.text,
        usage=result.usage,
        short_circuited=result.short_circuited,
    )


def _invoke(runtime: AgentRuntime, prompt: str, context: RunContext) -> TaskOutcome:
    try:
        result = runtime.invoke(prompt, context.for_agent(runtime.name))
    except Exception as exc:
        logger.exception("Agent '%s' failed", runtime.name)
        return TaskOutcome(
            agent_name=runtime.name, prompt=prompt, error=f"{type(exc).__name__}: {exc}"
        )
    return _outcome(runtime, prompt, result)


def sequential_handoff(
    agents: Sequence[AgentRuntime],
    prompt: str,
    context: RunContext | None = None,
    template: str = HANDOFF_TEMPLATE,
) -> list[TaskOutcome]:
    """Run ``agents`` in order, feeding each reply to the next agent.

    The chain stops at the first call that fails or is short-circuited by a
    policy; the outcomes collected so far are returned.
    """
    if not agents:
        raise ValueError("sequential_handoff needs at least one agent")
    context = context or RunContext()
    outcomes: list[TaskOutcome] = []
    current = prompt
    for runtime in agents:
        outcome = _invoke(runtime, current, context)
        outcomes.append(outcome)
        if not outcome.ok:
            logger.info("Hand-off stopped at '%s'", runtime.name)
            break
        current = template.format(previous=outcome.text)
    return outcomes


def fan_out(
    tasks: Sequence[tuple[AgentRuntime, str]],
    context: RunContext | None = None,
    max_workers: int = DEFAULT_MAX_WORKERS,
) -> list[TaskOutcome]:
    """Run independent agent calls concurrently and wait for all of them.

    Returns one outcome per task, in task order. Each call gets its own
    context sharing the run and user ids.
    """
    if not tasks:
        return []
    context = context or RunContext()
    workers = max(1, min(max_workers, len(tasks)))
    logger.info("Fanning out %d task(s) on %d worker(s)", len(tasks), workers)
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="agentflow-fanout") as pool:
        futures = [pool.submit(_invoke, runtime, prompt, context) for runtime, prompt in tasks]
        outcomes = [future.result() for future in futures]
    failed = sum(1 for outcome in outcomes if outcome.error)
    if failed:
        logger.warning("Fan-out finished with %d failed task(s) of %d", failed, len(outcomes))
    return outcomes


def parse_plan(
    text: str,
    experts: Collection[str] = DEFAULT_EXPERTS,
    fallback_task: str | None = None,
) -> list[tuple[str, str]]:
    """Parse ``expert|task`` lines.

    Unknown experts are mapped to ``general_expert``. When no line parses,
    the plan is a single general task for ``fallback_task`` (or the text).
    """
    plan: list[tuple[str, str]] = []
    for line in text.splitlines():
        if "|" not in line:
            continue
        expert, task = (part.strip() for part in line.split("|", 1))
        if not task:
            continue
        plan.append((expert if expert in experts else FALLBACK_EXPERT, task))
    if not plan:
        plan.append((FALLBACK_EXPERT, (fallback_task or text).strip()))
    return plan


def plan_then_execute(
    agents: AgentRegistry,
    request: str,
    context: RunContext | None = None,
    planner: str = "planner",
    supervisor: str = "supervisor",
    experts: Collection[str] = DEFAULT_EXPERTS,
    max_workers: int = DEFAULT_MAX_WORKERS,
) -> PlanResult:
    """Plan sub-tasks, fan them out to experts and merge the answers."""
    context = context or RunContext()
    planner_runtime = agents.get(planner)
    planned = _invoke(planner_runtime, PLAN_TEMPLATE.format(request=request), context)
    if not planned.ok:
        return PlanResult(
            plan=[], outcomes=[], summary=planned.text or planned.error or "", planner=planned
        )

    plan = parse_plan(planned.text or "", experts, fallback_task=request)
    logger.info("Planner produced %d task(s)", len(plan))
    outcomes = fan_out(
        [(agents.get(expert), task) for expert, task in plan], context, max_workers
    )

    answers = "\n".join(
        f"[{outcome.agent_name}] {outcome.prompt}: "
        f"{outcome.text if outcome.error is None else 'failed: ' + outcome.error}"
        for outcome in outcomes
    )
    merged = _invoke(
        agents.get(supervisor),
        SUMMARY_TEMPLATE.format(answers=answers, request=request),
        context,
    )
    summary = merged.text if merged.text is not None else f"Summary failed: {merged.error}"
    return PlanResult(plan=plan, outcomes=outcomes, summary=summary, planner=planned)
