"""Contract for the opaque model call."""

from __future__ import annotations

from abc import ABC, abstractmethod

from agentflow.runtime.interceptors import ModelRequest, ModelResponse


class ModelClient(ABC):
    """A language model reduced to ``complete(request) -> response``.

    Implementations raise :class:`agentflow.core.errors.ModelError` when the
    call fails.
    """

    name: str = "model"

    @abstractmethod
    def complete(self, request: ModelRequest) -> ModelResponse:
        """Produce a response for ``request``."""
