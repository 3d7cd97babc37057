"""Tests for the built-in hooks and interceptors."""

from __future__ import annotations

import pytest

from agentflow.graph.state import MESSAGES_KEY, MergePolicy, Overwrite, SharedState
from agentflow.policies import (
    AuditHook,
    MessageTrimmingHook,
    PerformanceInterceptor,
    SafetyInterceptor,
    SecurityHook,
    ToolMonitorInterceptor,
    check_security,
    filter_sensitive_info,
)
from agentflow.policies.security import BLOCKED_RESPONSE, find_sensitive_words
from agentflow.runtime.agent import AgentRuntime
from agentflow.runtime.audit import AuditRecorder, InMemoryAuditSink
from agentflow.runtime.context import RunContext
from agentflow.runtime.interceptors import ModelRequest


@pytest.mark.parametrize(
    "text",
    [
        "1 UNION SELECT password FROM users",
        "'; DROP TABLE accounts; --",
        "please run ; rm -rf /",
        "cat notes.txt | bash",
    ],
)
def test_check_security_flags_injection(text: str) -> None:
    assert check_security(text).safe is False


@pytest.mark.parametrize(
    "text",
    ["Build a login page for the web app", "What is a pipe | in shell?", "", None],
)
def test_check_security_allows_plain_text(text: str | None) -> None:
    assert check_security(text).safe is True


def test_sensitive_words_are_reported_but_allowed() -> None:
    text = "Where do I store the API password?"

    assert find_sensitive_words(text) == ["password"]
    assert check_security(text).safe is True


def test_filter_sensitive_info_masks_personal_data() -> None:
    text = (
        "Call 13812345678, id 110101199003071234, mail bob@example.com, host 10.0.0.12"
    )

    filtered = filter_sensitive_info(text)

    assert "13812345678" not in filtered
    assert "110101199003071234" not in filtered
    assert "bob@example.com" not in filtered
    assert "10.0.0.12" not in filtered
    assert "***@***.***" in filtered


def test_security_hook_ends_chain_before_model(make_model) -> None:
    model = make_model()
    runtime = AgentRuntime("assistant", model, hooks=[SecurityHook()])

    result = runtime.invoke("x' UNION SELECT secret FROM vault")

    assert result.short_circuited is True
    assert result.ended_by == "security_hook"
    assert result.text.startswith("Security check failed:")
    assert model.requests == []


def test_safety_interceptor_blocks_without_calling_model(make_model) -> None:
    model = make_model()
    safety = SafetyInterceptor()
    runtime = AgentRuntime("assistant", model, interceptors=[safety])

    result = runtime.invoke("DELETE FROM users")

    assert result.blocked is True
    assert result.text == BLOCKED_RESPONSE
    assert model.requests == []
    assert safety.statistics() == {"total_checks": 1, "blocked_count": 1, "pass_rate": 0.0}


def test_safety_interceptor_redacts_response(make_model) -> None:
    model = make_model(lambda request: "Contact admin@corp.io for access")
    safety = SafetyInterceptor()
    runtime = AgentRuntime("assistant", model, interceptors=[safety])

    result = runtime.invoke("Who do I contact?")

    assert result.text == "Contact ***@***.*** for access"
    assert safety.statistics()["pass_rate"] == 100.0


def test_performance_interceptor_tracks_calls_and_failures(make_model) -> None:
    performance = PerformanceInterceptor(slow_call_ms=10_000)
    runtime = AgentRuntime("assistant", make_model(), interceptors=[performance])

    runtime.invoke("one")
    runtime.invoke("two")
    stats = performance.statistics()

    assert stats["total_calls"] == 2
    assert stats["failed_calls"] == 0
    assert stats["slow_calls"] == 0
    assert stats["max_time_ms"] >= stats["min_time_ms"] >= 0


def test_performance_interceptor_reraises_failures() -> None:
    performance = PerformanceInterceptor()

    def failing(request):
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        performance.intercept(ModelRequest(messages=[]), failing)

    assert performance.statistics()["failed_calls"] == 1


def test_tool_monitor_converts_exceptions(make_model) -> None:
    monitor = ToolMonitorInterceptor()

    def explode() -> None:
        raise KeyError("missing")

    runtime = AgentRuntime(
        "assistant",
        make_model(),
        tools={"explode": explode, "ping": lambda: "pong"},
        tool_interceptors=[monitor],
    )

    failed = runtime.call_tool("explode")
    ok = runtime.call_tool("ping")

    assert failed.ok is False
    assert failed.error.startswith("Tool execution failed:")
    assert ok.output == "pong"
    assert monitor.statistics() == {
        "total_calls": 2,
        "success_calls": 1,
        "failed_calls": 1,
        "success_rate": 50.0,
    }


def test_trimming_keeps_system_and_recent_messages() -> None:
    hook = MessageTrimmingHook(max_messages=5, min_keep_messages=2)
    messages = [{"role": "system", "content": "rules"}] + [
        {"role": "user", "content": f"m{i}"} for i in range(8)
    ]
    state = SharedState({MESSAGES_KEY: MergePolicy.APPEND}, {MESSAGES_KEY: messages})

    result = hook.before_call(state, RunContext())

    assert result is not None
    trimmed = result.update[MESSAGES_KEY]
    assert isinstance(trimmed, Overwrite)
    assert trimmed.value[0] == {"role": "system", "content": "rules"}
    assert [message["content"] for message in trimmed.value[1:]] == ["m4", "m5", "m6", "m7"]


def test_trimming_leaves_short_conversations_alone() -> None:
    hook = MessageTrimmingHook(max_messages=5, min_keep_messages=2)
    state = SharedState(
        {MESSAGES_KEY: MergePolicy.APPEND}, {MESSAGES_KEY: [{"role": "user", "content": "hi"}]}
    )

    assert hook.before_call(state, RunContext()) is None


def test_trimming_applies_inside_agent_call(make_model) -> None:
    model = make_model()
    runtime = AgentRuntime(
        "assistant", model, hooks=[MessageTrimmingHook(max_messages=3, min_keep_messages=1)]
    )
    state = SharedState(
        {MESSAGES_KEY: MergePolicy.APPEND},
        {MESSAGES_KEY: [{"role": "user", "content": f"old {i}"} for i in range(6)]},
    )

    result = runtime.execute(state, RunContext(), prompt="latest")

    assert len(model.requests[0].messages) == 3
    assert model.requests[0].messages[-1]["content"] == "latest"
    assert isinstance(result.update[MESSAGES_KEY], Overwrite)


def test_audit_hook_records_call_and_response(make_model) -> None:
    sink = InMemoryAuditSink()
    recorder = AuditRecorder(sink)
    runtime = AgentRuntime("assistant", make_model(), hooks=[AuditHook(recorder)])

    runtime.invoke("hi", RunContext(user_id="u-1", run_id="r-1"))
    recorder.flush()

    events = sink.recent(10)
    assert [event.operation_type for event in events] == ["model_response", "model_call"]
    assert all(event.user_id == "u-1" and event.run_id == "r-1" for event in events)
    assert events[0].token_cost == 15
    recorder.close()
