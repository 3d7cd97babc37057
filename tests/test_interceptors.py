"""Tests for interceptor chains."""

from __future__ import annotations

import pytest

from agentflow.core.errors import InterceptorMisuseError
from agentflow.runtime.interceptors import (
    FunctionInterceptor,
    InterceptorChain,
    ModelRequest,
    ModelResponse,
)


def _request(text: str = "hi") -> ModelRequest:
    return ModelRequest(messages=[{"role": "user", "content": text}])


def _terminal(request: ModelRequest) -> ModelResponse:
    return ModelResponse(text=f"model saw: {request.last_user_message()}")


def test_first_registered_interceptor_is_outermost() -> None:
    events: list[str] = []

    def tracer(name: str):
        def intercept(request, call_next):
            events.append(f"{name}:in")
            response = call_next(request)
            events.append(f"{name}:out")
            return response

        return FunctionInterceptor(name, intercept)

    chain = InterceptorChain([tracer("outer"), tracer("inner")])

    chain.invoke(_request(), _terminal)

    assert events == ["outer:in", "inner:in", "inner:out", "outer:out"]


def test_interceptor_can_transform_request() -> None:
    def shout(request, call_next):
        return call_next(request.with_messages([{"role": "user", "content": "HI"}]))

    response = InterceptorChain([FunctionInterceptor("shout", shout)]).invoke(
        _request(), _terminal
    )

    assert response.text == "model saw: HI"


def test_interceptor_can_answer_without_calling_next() -> None:
    terminal_calls: list[ModelRequest] = []

    def terminal(request: ModelRequest) -> ModelResponse:
        terminal_calls.append(request)
        return ModelResponse(text="real")

    def cached(request, call_next):
        return ModelResponse(text="cached")

    response = InterceptorChain([FunctionInterceptor("cache", cached)]).invoke(
        _request(), terminal
    )

    assert response.text == "cached"
    assert terminal_calls == []


def test_calling_next_twice_is_an_error() -> None:
    def twice(request, call_next):
        call_next(request)
        return call_next(request)

    chain = InterceptorChain([FunctionInterceptor("twice", twice)])

    with pytest.raises(InterceptorMisuseError, match="more than once"):
        chain.invoke(_request(), _terminal)


def test_exceptions_propagate_through_chain() -> None:
    def failing_terminal(request: ModelRequest) -> ModelResponse:
        raise RuntimeError("model down")

    def passthrough(request, call_next):
        return call_next(request)

    chain = InterceptorChain([FunctionInterceptor("pass", passthrough)])

    with pytest.raises(RuntimeError, match="model down"):
        chain.invoke(_request(), failing_terminal)


def test_chain_is_reusable_across_calls() -> None:
    counter = {"calls": 0}

    def count(request, call_next):
        counter["calls"] += 1
        return call_next(request)

    chain = InterceptorChain().register(FunctionInterceptor("count", count))

    chain.invoke(_request("a"), _terminal)
    chain.invoke(_request("b"), _terminal)

    assert counter["calls"] == 2
