"""AgentRuntime: hooks, interceptors and the opaque model call as one unit."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Union

from agentflow.core.errors import ModelError, PolicyShortCircuit
from agentflow.graph.state import MESSAGES_KEY, MergePolicy, SharedState
from agentflow.llm.base import ModelClient
from agentflow.observability.opik_client import opik_track
from agentflow.runtime.context import RunContext
from agentflow.runtime.hooks import Hook, HookChain
from agentflow.runtime.interceptors import (
    Interceptor,
    InterceptorChain,
    ModelRequest,
    ModelResponse,
    TokenUsage,
    ToolRequest,
    ToolResponse,
)

logger = logging.getLogger(__name__)

MIN_TOKEN_ESTIMATE = 100
_CJK = re.compile(r"[\u4e00-\u9fa5]")

Tool = Callable[..., Any]
PromptSource = Union[str, Callable[[SharedState], str], None]


def system_message(content: str) -> dict[str, str]:
    return {"role": "system", "content": content}


def user_message(content: str) -> dict[str, str]:
    return {"role": "user", "content": content}


def assistant_message(content: str) -> dict[str, str]:
    return {"role": "assistant", "content": content}


def estimate_tokens(messages: Iterable[Mapping[str, Any]]) -> int:
    """Rough token estimate: 1.5 per CJK character, 0.25 per other character.

    Never returns less than ``MIN_TOKEN_ESTIMATE``.
    """
    total = 0
    for message in messages:
        text = str(message.get("content") or "")
        cjk = len(_CJK.findall(text))
        total += int(cjk * 1.5 + (len(text) - cjk) * 0.25)
    return max(MIN_TOKEN_ESTIMATE, total)


@dataclass(frozen=True)
class InvokeResult:
    """Outcome of one agent call.

    Attributes:
        text: Model reply, or the hook message when the chain was ended
        usage: Token usage reported by the model (zero when short-circuited)
        short_circuited: True when a before-hook ended the chain
        ended_by: Name of the hook that ended the chain
        update: State update equivalent to everything the call changed
    """

    text: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    short_circuited: bool = False
    ended_by: str | None = None
    blocked: bool = False
    update: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "usage": self.usage.to_dict(),
            "short_circuited": self.short_circuited,
            "ended_by": self.ended_by,
            "blocked": self.blocked,
        }


class AgentRuntime:
    """A named agent: ordered hooks around an interceptor-wrapped model call."""

    def __init__(
        self,
        name: str,
        model: ModelClient,
        hooks: Iterable[Hook] = (),
        interceptors: Iterable[Interceptor] = (),
        tool_interceptors: Iterable[Interceptor] = (),
        tools: Mapping[str, Tool] | None = None,
        system_prompt: str | None = None,
    ) -> None:
        self.name = name
        self.model = model
        self.hooks = HookChain(hooks)
        self.interceptors = InterceptorChain(interceptors)
        self.tool_interceptors = InterceptorChain(tool_interceptors)
        self.system_prompt = system_prompt
        self._tools: dict[str, Tool] = dict(tools or {})

    @property
    def tools(self) -> list[str]:
        return sorted(self._tools)

    def register_tool(self, name: str, func: Tool) -> AgentRuntime:
        self._tools[name] = func
        return self

    def new_state(self) -> SharedState:
        """Fresh conversation state holding only the system prompt, if any."""
        values: dict[str, Any] = {}
        if self.system_prompt:
            values[MESSAGES_KEY] = [system_message(self.system_prompt)]
        return SharedState({MESSAGES_KEY: MergePolicy.APPEND}, values)

    @opik_track(name="agent_invoke")
    def invoke(self, prompt: str, context: RunContext | None = None) -> InvokeResult:
        """Run one prompt outside any graph."""
        context = context or RunContext(agent_name=self.name)
        return self.execute(self.new_state(), context, prompt=prompt)

    def execute(
        self,
        state: SharedState,
        context: RunContext,
        prompt: str | None = None,
    ) -> InvokeResult:
        """Run the hook chain and the model against ``state`` without mutating it.

        Args:
            state: Conversation state; ``messages`` must use the APPEND policy
            context: Run context shared by this call's hooks
            prompt: Optional user message appended before the hooks run

        Returns:
            The call outcome, including the update that reproduces its effects

        Raises:
            ModelError: If the model call fails
        """
        if state.policy_for(MESSAGES_KEY) is not MergePolicy.APPEND:
            raise ValueError(f"'{MESSAGES_KEY}' must use the APPEND merge policy")

        working = state.copy()
        if prompt is not None:
            working.apply({MESSAGES_KEY: [user_message(prompt)]})

        outcome = self.hooks.run_before(working, context)
        if outcome.ended:
            if outcome.message:
                working.apply({MESSAGES_KEY: [assistant_message(outcome.message)]})
            logger.info("Agent '%s' short-circuited by '%s'", self.name, outcome.ended_by)
            return InvokeResult(
                text=outcome.message or "",
                short_circuited=True,
                ended_by=outcome.ended_by,
                update=working.update_since(state),
            )

        request = ModelRequest(
            messages=list(working.get(MESSAGES_KEY, [])),
            agent_name=self.name,
            user_id=context.user_id,
        )
        response: ModelResponse = self.interceptors.invoke(request, self._call_model)
        working.apply({MESSAGES_KEY: [assistant_message(response.text)]})
        self.hooks.run_after(working, context, response)
        logger.debug(
            "Agent '%s' answered: tokens=%d, blocked=%s",
            self.name,
            response.usage.total_tokens,
            response.blocked,
        )
        return InvokeResult(
            text=response.text,
            usage=response.usage,
            blocked=response.blocked,
            update=working.update_since(state),
        )

    def call_tool(
        self,
        name: str,
        arguments: Mapping[str, Any] | None = None,
        context: RunContext | None = None,
    ) -> ToolResponse:
        """Run a registered tool through the tool interceptor chain.

        Raises:
            ValueError: If no tool is registered under ``name``
        """
        if name not in self._tools:
            available = ", ".join(self.tools) or "none"
            raise ValueError(f"Unknown tool '{name}'. Available: {available}")
        request = ToolRequest(
            name=name,
            arguments=dict(arguments or {}),
            agent_name=self.name,
            user_id=context.user_id if context else None,
        )
        return self.tool_interceptors.invoke(request, self._run_tool)

    def _call_model(self, request: ModelRequest) -> ModelResponse:
        try:
            return self.model.complete(request)
        except ModelError:
            raise
        except Exception as exc:
            raise ModelError(f"Model '{self.model.name}' failed: {exc}") from exc

    def _run_tool(self, request: ToolRequest) -> ToolResponse:
        output = self._tools[request.name](**request.arguments)
        return ToolResponse(name=request.name, output=output)


def _resolve_prompt(prompt: PromptSource, state: SharedState) -> str | None:
    if prompt is None or isinstance(prompt, str):
        return prompt
    return prompt(state)


def agent_step(
    runtime: AgentRuntime,
    state: SharedState,
    context: RunContext,
    prompt: str | None = None,
) -> InvokeResult:
    """Run one agent call from inside a graph node.

    The call gets its own context for the agent (same run and user). A
    before-hook ending the chain is raised as :class:`PolicyShortCircuit`
    carrying the call's update, so the executor completes the run with the
    hook's message appended.
    """
    result = runtime.execute(state, context.for_agent(runtime.name), prompt=prompt)
    if result.short_circuited:
        raise PolicyShortCircuit(result.ended_by or "hook", result.text or None, result.update)
    return result


def agent_node(
    runtime: AgentRuntime,
    prompt: PromptSource = None,
    output_key: str | None = None,
) -> Callable[[SharedState, RunContext], dict[str, Any]]:
    """Wrap an agent as a graph node.

    The node returns the call's state update, plus ``output_key`` holding the
    reply when given.
    """

    def node(state: SharedState, context: RunContext) -> dict[str, Any]:
        result = agent_step(runtime, state, context, _resolve_prompt(prompt, state))
        update = dict(result.update)
        if output_key:
            update[output_key] = result.text
        return update

    node.__name__ = f"{runtime.name}_node"
    return node
