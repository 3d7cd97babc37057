"""Shared test helpers."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from agentflow.llm.base import ModelClient
from agentflow.runtime.interceptors import ModelRequest, ModelResponse, TokenUsage


class ScriptedModel(ModelClient):
    """Model whose reply is computed from the request; records every request."""

    name = "scripted"

    def __init__(
        self,
        reply: Callable[[ModelRequest], str] | None = None,
        usage: TokenUsage | None = None,
    ) -> None:
        self._reply = reply or (lambda request: f"echo: {request.last_user_message()}")
        self._usage = usage or TokenUsage(input_tokens=10, output_tokens=5)
        self.requests: list[ModelRequest] = []

    def complete(self, request: ModelRequest) -> ModelResponse:
        self.requests.append(request)
        return ModelResponse(text=self._reply(request), usage=self._usage, model=self.name)


@pytest.fixture
def make_model() -> type[ScriptedModel]:
    """Factory for scripted models: ``make_model(reply=None, usage=None)``."""
    return ScriptedModel


@pytest.fixture(autouse=True)
def _no_tracing(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPIK_TRACK_DISABLE", "true")
    monkeypatch.delenv("AGENTFLOW_DATABASE_URI", raising=False)
