"""Token quota enforcement around model calls."""

from __future__ import annotations

import logging
import time

from agentflow.graph.state import MESSAGES_KEY, SharedState
from agentflow.runtime.agent import estimate_tokens
from agentflow.runtime.context import RunContext
from agentflow.runtime.hooks import Hook, HookPosition, HookResult
from agentflow.runtime.interceptors import ModelResponse
from agentflow.runtime.quota import QuotaStore, TokenUsageRecord

logger = logging.getLogger(__name__)

_ESTIMATE_KEY = "token_estimate"
_START_KEY = "token_started_at"


class TokenLimitHook(Hook):
    """Denies calls that would exceed the user's quota and charges actual usage.

    Before the call the conversation is estimated and checked against the
    quota; a denial ends the chain with an explanatory message rather than
    raising. After the call the reported usage (or the estimate, when the
    model reports none) is deducted atomically and logged. With
    ``run_on_resume=False`` a resumed call skips the quota check but is still
    charged.

    Calls without a ``user_id`` in the run context are not metered.
    """

    name = "token_limit_hook"
    positions = frozenset({HookPosition.BEFORE, HookPosition.AFTER})

    def __init__(self, quota: QuotaStore, run_on_resume: bool = True) -> None:
        self.quota = quota
        self.run_on_resume = run_on_resume

    def before_call(self, state: SharedState, context: RunContext) -> HookResult | None:
        if context.user_id is None:
            logger.debug("No user on run %s; quota not enforced", context.run_id)
            return None

        estimate = estimate_tokens(state.get(MESSAGES_KEY, []))
        if not self.quota.check_quota(context.user_id, estimate):
            remaining = self.quota.get_quota(context.user_id).remaining
            self.quota.record_usage(
                TokenUsageRecord(
                    user_id=context.user_id,
                    total_tokens=0,
                    agent_name=context.agent_name,
                    exceeded_limit=True,
                )
            )
            logger.warning(
                "Token quota exhausted for user %s: estimate=%d, remaining=%d",
                context.user_id,
                estimate,
                remaining,
            )
            return HookResult.stop(
                "Token quota exhausted, please contact an administrator to top up.\n"
                f"Remaining: {remaining}"
            )

        logger.debug("Estimated %d tokens for user %s", estimate, context.user_id)
        return HookResult.proceed(
            context_update={_ESTIMATE_KEY: estimate, _START_KEY: time.monotonic()}
        )

    def after_call(
        self, state: SharedState, context: RunContext, response: ModelResponse
    ) -> None:
        if context.user_id is None:
            return

        # No estimate when the before position was skipped on resume.
        estimate = context.get(_ESTIMATE_KEY)
        if estimate is None:
            estimate = estimate_tokens(state.get(MESSAGES_KEY, []))
        usage = response.usage
        total = usage.total_tokens or estimate
        input_tokens = usage.input_tokens if usage.total_tokens else total // 2
        output_tokens = usage.output_tokens if usage.total_tokens else total - input_tokens
        started = context.get(_START_KEY)
        duration_ms = int((time.monotonic() - started) * 1000) if started is not None else 0

        self.quota.deduct_quota(context.user_id, total)
        self.quota.record_usage(
            TokenUsageRecord(
                user_id=context.user_id,
                total_tokens=total,
                agent_name=context.agent_name,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                duration_ms=duration_ms,
            )
        )
        logger.info(
            "Charged %d tokens to user %s (%dms)", total, context.user_id, duration_ms
        )
