"""Audit hook recording every model call and response."""

from __future__ import annotations

import logging
import time

from agentflow.graph.state import MESSAGES_KEY, SharedState
from agentflow.runtime.audit import AuditEvent, AuditRecorder
from agentflow.runtime.context import RunContext
from agentflow.runtime.hooks import Hook, HookPosition, HookResult
from agentflow.runtime.interceptors import ModelResponse

logger = logging.getLogger(__name__)

_START_KEY = "audit_started_at"


class AuditHook(Hook):
    """Emits ``model_call`` before and ``model_response`` after each call.

    Events go through the fire-and-forget recorder, so auditing never blocks
    or fails the call.
    """

    name = "audit_hook"
    positions = frozenset({HookPosition.BEFORE, HookPosition.AFTER})

    def __init__(self, recorder: AuditRecorder, run_on_resume: bool = True) -> None:
        self.recorder = recorder
        self.run_on_resume = run_on_resume

    def before_call(self, state: SharedState, context: RunContext) -> HookResult:
        message_count = len(state.get(MESSAGES_KEY, []))
        self.recorder.record_event(
            AuditEvent(
                operation_type="model_call",
                user_id=context.user_id,
                run_id=context.run_id,
                agent_name=context.agent_name,
                detail=f"{message_count} messages",
                status="processing",
            )
        )
        return HookResult.proceed(context_update={_START_KEY: time.monotonic()})

    def after_call(
        self, state: SharedState, context: RunContext, response: ModelResponse
    ) -> None:
        started = context.get(_START_KEY)
        duration_ms = int((time.monotonic() - started) * 1000) if started is not None else 0
        self.recorder.record_event(
            AuditEvent(
                operation_type="model_response",
                user_id=context.user_id,
                run_id=context.run_id,
                agent_name=context.agent_name,
                detail="Response blocked" if response.blocked else "Response received",
                token_cost=response.usage.total_tokens,
                duration_ms=duration_ms,
                status="blocked" if response.blocked else "success",
            )
        )
        logger.debug("Audited response for run %s in %dms", context.run_id, duration_ms)
