"""Named agents sharing one model, hook chain and interceptor chain."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

from agentflow.core.errors import UnknownAgentError
from agentflow.llm.base import ModelClient
from agentflow.runtime.agent import AgentRuntime
from agentflow.runtime.hooks import Hook
from agentflow.runtime.interceptors import Interceptor

logger = logging.getLogger(__name__)

AGENT_PROMPTS: dict[str, str] = {
    "assistant": "You are a helpful, precise assistant.",
    "classifier": (
        "You classify requests. Answer only with lines of the form "
        "'type: ...', 'complexity: ...' and 'category: ...'."
    ),
    "analyst": "You are a requirements analyst. Break requests into concrete functional points.",
    "architect": "You are a software architect. Propose pragmatic technical designs.",
    "coder": "You are a senior engineer. Write clean, commented code for the given design.",
    "tester": "You write thorough unit, integration and edge-case tests.",
    "tech_expert": "You are a technical expert. Explain root causes and give working solutions.",
    "business_expert": "You are a business analyst. Assess value, risks and success metrics.",
    "general_expert": "You answer general questions clearly and accurately.",
    "planner": (
        "You split a request into sub-tasks for experts. Answer with one line per task "
        "in the form expert|task, using tech_expert, business_expert or general_expert."
    ),
    "supervisor": "You merge expert answers into one coherent, de-duplicated response.",
    "proposal_agent": "You draft execution plans with steps, expected results, risks and resources.",
    "execution_agent": "You carry out approved plans and report the results.",
}


def current_time() -> str:
    """Return the current UTC time in ISO 8601 format."""
    return datetime.now(timezone.utc).isoformat()


def word_count(text: str) -> int:
    """Count whitespace-separated words."""
    return len(text.split())


DEFAULT_TOOLS: dict[str, Callable[..., Any]] = {
    "current_time": current_time,
    "word_count": word_count,
}


class AgentRegistry:
    """Lazily creates one :class:`AgentRuntime` per known agent name."""

    def __init__(
        self,
        model: ModelClient,
        hooks: Iterable[Hook] = (),
        interceptors: Iterable[Interceptor] = (),
        tool_interceptors: Iterable[Interceptor] = (),
        prompts: Mapping[str, str] | None = None,
        tools: Mapping[str, Callable[..., Any]] | None = None,
    ) -> None:
        self.model = model
        self._hooks = list(hooks)
        self._interceptors = list(interceptors)
        self._tool_interceptors = list(tool_interceptors)
        self._prompts = dict(prompts if prompts is not None else AGENT_PROMPTS)
        self._tools = dict(tools if tools is not None else DEFAULT_TOOLS)
        self._agents: dict[str, AgentRuntime] = {}
        self._lock = threading.Lock()

    def names(self) -> list[str]:
        return sorted(self._prompts)

    def get(self, name: str) -> AgentRuntime:
        """Return the agent registered under ``name``.

        Raises:
            UnknownAgentError: If ``name`` is not a known agent
        """
        if name not in self._prompts:
            raise UnknownAgentError(
                f"Unknown agent: {name}. Available agents: {', '.join(self.names())}"
            )
        with self._lock:
            agent = self._agents.get(name)
            if agent is None:
                logger.info("Creating agent '%s' on model %s", name, self.model.name)
                agent = AgentRuntime(
                    name=name,
                    model=self.model,
                    hooks=self._hooks,
                    interceptors=self._interceptors,
                    tool_interceptors=self._tool_interceptors,
                    tools=self._tools,
                    system_prompt=self._prompts[name],
                )
                self._agents[name] = agent
            return agent
