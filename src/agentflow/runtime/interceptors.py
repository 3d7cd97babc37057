"""Request/response middleware around the opaque model and tool calls."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from typing import Any

from agentflow.core.errors import InterceptorMisuseError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenUsage:
    """Token counts reported (or estimated) for one model call."""

    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def to_dict(self) -> dict[str, int]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass(frozen=True)
class ModelRequest:
    """Request handed to the model interceptor chain.

    Attributes:
        messages: Conversation as ``{"role": ..., "content": ...}`` dicts
        agent_name: Agent issuing the call
        user_id: Caller identity, when known
        model: Model override; adapters use their default when None
        metadata: Free-form values for interceptors
    """

    messages: list[dict[str, Any]]
    agent_name: str | None = None
    user_id: str | None = None
    model: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def last_user_message(self) -> str | None:
        for message in reversed(self.messages):
            if message.get("role") == "user":
                return str(message.get("content", ""))
        return None

    def with_messages(self, messages: list[dict[str, Any]]) -> ModelRequest:
        return replace(self, messages=messages)


@dataclass(frozen=True)
class ModelResponse:
    """Response produced by the model, or substituted by an interceptor."""

    text: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    model: str | None = None
    blocked: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    def with_text(self, text: str) -> ModelResponse:
        return replace(self, text=text)


@dataclass(frozen=True)
class ToolRequest:
    """Invocation of a registered tool by name."""

    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    agent_name: str | None = None
    user_id: str | None = None


@dataclass(frozen=True)
class ToolResponse:
    """Tool output, or the error that replaced it."""

    name: str
    output: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


Handler = Callable[[Any], Any]


class Interceptor(ABC):
    """Wraps the next stage of a chain.

    ``intercept`` must call ``call_next`` at most once: zero times to answer
    with its own response, once to forward the (possibly transformed) request.
    """

    name: str = "interceptor"

    @abstractmethod
    def intercept(self, request: Any, call_next: Handler) -> Any:
        """Handle ``request``, usually by delegating to ``call_next``."""


class FunctionInterceptor(Interceptor):
    """Adapts a plain ``(request, call_next) -> response`` function."""

    def __init__(self, name: str, func: Callable[[Any, Handler], Any]) -> None:
        self.name = name
        self._func = func

    def intercept(self, request: Any, call_next: Handler) -> Any:
        return self._func(request, call_next)


def _link(interceptor: Interceptor, downstream: Handler) -> Handler:
    def handler(request: Any) -> Any:
        called = False

        def call_next(forwarded: Any) -> Any:
            nonlocal called
            if called:
                raise InterceptorMisuseError(
                    f"Interceptor '{interceptor.name}' called the next stage more than once"
                )
            called = True
            return downstream(forwarded)

        return interceptor.intercept(request, call_next)

    return handler


class InterceptorChain:
    """Ordered interceptors composed right to left around a terminal call.

    The first registered interceptor is the outermost: it sees the raw
    request first and the final response last.
    """

    def __init__(self, interceptors: Iterable[Interceptor] = ()) -> None:
        self._interceptors: list[Interceptor] = list(interceptors)

    @property
    def interceptors(self) -> list[Interceptor]:
        return list(self._interceptors)

    def register(self, interceptor: Interceptor) -> InterceptorChain:
        self._interceptors.append(interceptor)
        return self

    def build(self, terminal: Handler) -> Handler:
        handler = terminal
        for interceptor in reversed(self._interceptors):
            handler = _link(interceptor, handler)
        return handler

    def invoke(self, request: Any, terminal: Handler) -> Any:
        logger.debug(
            "Invoking chain: interceptors=%s",
            [interceptor.name for interceptor in self._interceptors],
        )
        return self.build(terminal)(request)
