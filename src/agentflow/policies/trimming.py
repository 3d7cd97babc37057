"""Conversation window trimming."""

from __future__ import annotations

import logging

from agentflow.graph.state import MESSAGES_KEY, Overwrite, SharedState
from agentflow.runtime.context import RunContext
from agentflow.runtime.hooks import Hook, HookPosition, HookResult

logger = logging.getLogger(__name__)

DEFAULT_MAX_MESSAGES = 20
DEFAULT_MIN_KEEP_MESSAGES = 5


class MessageTrimmingHook(Hook):
    """Keeps system messages plus the newest messages once the window overflows."""

    name = "message_trimming_hook"
    positions = frozenset({HookPosition.BEFORE})

    def __init__(
        self,
        max_messages: int = DEFAULT_MAX_MESSAGES,
        min_keep_messages: int = DEFAULT_MIN_KEEP_MESSAGES,
        run_on_resume: bool = True,
    ) -> None:
        if max_messages <= 0 or min_keep_messages <= 0:
            raise ValueError("message limits must be > 0")
        self.max_messages = max_messages
        self.min_keep_messages = min_keep_messages
        self.run_on_resume = run_on_resume

    def trim(self, messages: list[dict]) -> list[dict]:
        if len(messages) <= self.max_messages:
            return messages
        system = [message for message in messages if message.get("role") == "system"]
        keep = max(self.min_keep_messages, self.max_messages - len(system))
        recent = [message for message in messages[-keep:] if message.get("role") != "system"]
        return system + recent

    def before_call(self, state: SharedState, context: RunContext) -> HookResult | None:
        messages = list(state.get(MESSAGES_KEY, []))
        trimmed = self.trim(messages)
        if len(trimmed) == len(messages):
            return None
        logger.info("Trimmed conversation from %d to %d messages", len(messages), len(trimmed))
        return HookResult.proceed({MESSAGES_KEY: Overwrite(trimmed)})
