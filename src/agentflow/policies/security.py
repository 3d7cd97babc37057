"""Input screening and output redaction."""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from agentflow.graph.state import MESSAGES_KEY, SharedState
from agentflow.runtime.context import RunContext
from agentflow.runtime.hooks import Hook, HookPosition, HookResult
from agentflow.runtime.interceptors import Interceptor, ModelRequest, ModelResponse

logger = logging.getLogger(__name__)

SENSITIVE_WORDS = ("密码", "password", "token", "秘钥", "secret", "apikey")

SQL_INJECTION_PATTERN = re.compile(
    r"\bunion\s+(all\s+)?select\b"
    r"|\bselect\s+.+?\s+from\b"
    r"|\binsert\s+into\b"
    r"|\bupdate\s+\w+\s+set\b"
    r"|\bdelete\s+from\b"
    r"|\bdrop\s+(table|database|schema)\b"
    r"|\bexec(ute)?\s*\("
    r"|<script",
    re.IGNORECASE | re.DOTALL,
)
COMMAND_INJECTION_PATTERN = re.compile(
    r"(?:[;&|]|`|\$\()\s*"
    r"(?:rm|curl|wget|cat|sh|bash|zsh|nc|chmod|chown|sudo|python3?|perl|kill|mkfs|dd)\b",
    re.IGNORECASE,
)

_REDACTIONS = (
    (re.compile(r"(?<!\d)\d{17}[\dXx](?![\dXx])"), "******************"),
    (re.compile(r"(?<!\d)1[3-9]\d{9}(?!\d)"), "***********"),
    (re.compile(r"[\w.-]+@[\w.-]+\.\w+"), "***@***.***"),
    (re.compile(r"(?<!\d)\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}(?!\d)"), "***.***.***.***"),
)

BLOCKED_RESPONSE = "Unsafe input detected, please revise your request and retry."


@dataclass(frozen=True)
class SecurityCheckResult:
    safe: bool
    message: str


def find_sensitive_words(text: str, words: Iterable[str] = SENSITIVE_WORDS) -> list[str]:
    lowered = text.lower()
    return [word for word in words if word.lower() in lowered]


def check_security(text: str | None) -> SecurityCheckResult:
    """Screen one input for injection attempts.

    Sensitive words are logged but never make the input unsafe.
    """
    if text is None or not text.strip():
        return SecurityCheckResult(True, "Empty input")
    if SQL_INJECTION_PATTERN.search(text):
        return SecurityCheckResult(False, "Suspicious SQL injection attempt detected")
    if COMMAND_INJECTION_PATTERN.search(text):
        return SecurityCheckResult(False, "Suspicious command injection attempt detected")
    for word in find_sensitive_words(text):
        logger.warning("Sensitive word in input: %s", word)
    return SecurityCheckResult(True, "Security check passed")


def filter_sensitive_info(text: str) -> str:
    """Mask national ids, phone numbers, e-mail and IPv4 addresses."""
    if not text:
        return text
    filtered = text
    for pattern, replacement in _REDACTIONS:
        filtered = pattern.sub(replacement, filtered)
    return filtered


def _latest_user_text(state: SharedState) -> str | None:
    for message in reversed(list(state.get(MESSAGES_KEY, []))):
        if message.get("role") == "user":
            return str(message.get("content") or "")
    return None


class SecurityHook(Hook):
    """Ends the chain when the latest user message looks like an injection attempt."""

    name = "security_hook"
    positions = frozenset({HookPosition.BEFORE})

    def __init__(self, run_on_resume: bool = True) -> None:
        self.run_on_resume = run_on_resume

    def before_call(self, state: SharedState, context: RunContext) -> HookResult | None:
        result = check_security(_latest_user_text(state))
        if result.safe:
            return None
        logger.warning(
            "Security check failed for user %s: %s", context.user_id, result.message
        )
        return HookResult.stop(
            f"Security check failed: {result.message}. Please revise your input and retry."
        )


class SafetyInterceptor(Interceptor):
    """Blocks injection-like requests and redacts personal data in responses."""

    name = "safety_interceptor"

    def __init__(self, redact_output: bool = True) -> None:
        self.redact_output = redact_output
        self._lock = threading.Lock()
        self._total_checks = 0
        self._blocked = 0

    def intercept(self, request: ModelRequest, call_next: Any) -> ModelResponse:
        with self._lock:
            self._total_checks += 1

        for message in request.messages:
            if message.get("role") != "user":
                continue
            content = str(message.get("content") or "")
            for word in find_sensitive_words(content):
                logger.warning("Sensitive word in request: %s", word)
            if SQL_INJECTION_PATTERN.search(content):
                with self._lock:
                    self._blocked += 1
                logger.warning("Blocked request from agent %s: SQL injection", request.agent_name)
                return ModelResponse(text=BLOCKED_RESPONSE, blocked=True)

        response: ModelResponse = call_next(request)
        if not self.redact_output:
            return response
        filtered = filter_sensitive_info(response.text)
        if filtered != response.text:
            logger.info("Redacted sensitive data in response for agent %s", request.agent_name)
            return response.with_text(filtered)
        return response

    def statistics(self) -> dict[str, Any]:
        with self._lock:
            total, blocked = self._total_checks, self._blocked
        pass_rate = (total - blocked) / total * 100 if total else 100.0
        return {
            "total_checks": total,
            "blocked_count": blocked,
            "pass_rate": round(pass_rate, 2),
        }
