"""Policy hooks that run before and after the opaque model call."""

from __future__ import annotations

import logging
from abc import ABC
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from agentflow.graph.state import SharedState
from agentflow.runtime.context import RunContext
from agentflow.runtime.interceptors import ModelResponse

logger = logging.getLogger(__name__)


class HookPosition(str, Enum):
    """Points around the model call where a hook participates."""

    BEFORE = "before"
    AFTER = "after"


class HookSignal(str, Enum):
    CONTINUE = "continue"
    END = "end"


@dataclass(frozen=True)
class HookResult:
    """What a hook asks the chain to do.

    Attributes:
        signal: CONTINUE to keep going; END (before-hooks only) to skip the
            remaining hooks and the model call
        update: Partial SharedState update to apply
        context_update: Values merged into ``RunContext.scratch``
        message: Text appended as an assistant message when the chain ends
    """

    signal: HookSignal = HookSignal.CONTINUE
    update: dict[str, Any] = field(default_factory=dict)
    context_update: dict[str, Any] = field(default_factory=dict)
    message: str | None = None

    @property
    def ends(self) -> bool:
        return self.signal == HookSignal.END

    @classmethod
    def proceed(
        cls,
        update: Mapping[str, Any] | None = None,
        context_update: Mapping[str, Any] | None = None,
    ) -> HookResult:
        return cls(update=dict(update or {}), context_update=dict(context_update or {}))

    @classmethod
    def stop(cls, message: str | None = None, update: Mapping[str, Any] | None = None) -> HookResult:
        return cls(signal=HookSignal.END, message=message, update=dict(update or {}))


HookOutput = Union[HookResult, HookSignal, Mapping[str, Any], None]


def _normalize(output: HookOutput) -> HookResult:
    if output is None:
        return HookResult()
    if isinstance(output, HookResult):
        return output
    if isinstance(output, HookSignal):
        return HookResult(signal=output)
    if isinstance(output, Mapping):
        return HookResult.proceed(output)
    raise TypeError(f"Hook returned unsupported value of type {type(output).__name__}")


class Hook(ABC):
    """Base class for policy hooks.

    Subclasses set ``positions`` and override the matching method(s).
    ``run_on_resume`` controls whether the before position runs for the first
    node executed after a human-in-the-loop resume.
    """

    name: str = "hook"
    positions: frozenset[HookPosition] = frozenset({HookPosition.BEFORE})
    run_on_resume: bool = True

    def before_call(self, state: SharedState, context: RunContext) -> HookOutput:
        """Inspect the state before the model call."""
        return None

    def after_call(
        self, state: SharedState, context: RunContext, response: ModelResponse
    ) -> HookOutput:
        """Observe the response after the model call."""
        return None


class FunctionHook(Hook):
    """Hook built from plain functions, one per position."""

    def __init__(
        self,
        name: str,
        before: Callable[[SharedState, RunContext], HookOutput] | None = None,
        after: Callable[[SharedState, RunContext, ModelResponse], HookOutput] | None = None,
        run_on_resume: bool = True,
    ) -> None:
        if before is None and after is None:
            raise ValueError("FunctionHook needs a before or an after function")
        self.name = name
        self._before = before
        self._after = after
        self.run_on_resume = run_on_resume
        positions = set()
        if before is not None:
            positions.add(HookPosition.BEFORE)
        if after is not None:
            positions.add(HookPosition.AFTER)
        self.positions = frozenset(positions)

    def before_call(self, state: SharedState, context: RunContext) -> HookOutput:
        return self._before(state, context) if self._before else None

    def after_call(
        self, state: SharedState, context: RunContext, response: ModelResponse
    ) -> HookOutput:
        return self._after(state, context, response) if self._after else None


@dataclass(frozen=True)
class BeforeOutcome:
    """Result of running the before-hooks: who ended the chain, if anyone."""

    ended_by: str | None = None
    message: str | None = None

    @property
    def ended(self) -> bool:
        return self.ended_by is not None


class HookChain:
    """Hooks executed in registration order around one model call."""

    def __init__(self, hooks: Iterable[Hook] = ()) -> None:
        self._hooks: list[Hook] = list(hooks)

    @property
    def hooks(self) -> list[Hook]:
        return list(self._hooks)

    def register(self, hook: Hook) -> HookChain:
        self._hooks.append(hook)
        return self

    def run_before(self, state: SharedState, context: RunContext) -> BeforeOutcome:
        """Run before-hooks, applying their updates to ``state`` in order.

        Stops at the first hook that returns an END signal.
        """
        for hook in self._hooks:
            if HookPosition.BEFORE not in hook.positions:
                continue
            if context.resumed and not hook.run_on_resume:
                logger.debug("Skipping hook '%s' on resume", hook.name)
                continue
            result = _normalize(hook.before_call(state, context))
            state.apply(result.update)
            context.scratch.update(result.context_update)
            if result.ends:
                logger.info("Hook '%s' ended the chain: %s", hook.name, result.message)
                return BeforeOutcome(ended_by=hook.name, message=result.message)
            logger.debug("Hook '%s' passed", hook.name)
        return BeforeOutcome()

    def run_after(
        self, state: SharedState, context: RunContext, response: ModelResponse
    ) -> None:
        """Run after-hooks in order. They observe the response but cannot veto it."""
        for hook in self._hooks:
            if HookPosition.AFTER not in hook.positions:
                continue
            result = _normalize(hook.after_call(state, context, response))
            if result.ends:
                logger.warning(
                    "After-hook '%s' returned END; ignored because the response exists",
                    hook.name,
                )
            state.apply(result.update)
            context.scratch.update(result.context_update)
