"""Opik tracing for agent calls, graph runs and the OpenAI client.

Tracing is opt-in. It turns on only when ``OPIK_TRACK_DISABLE`` is not set
and the Opik credentials are present; otherwise every helper here is a
pass-through.
"""

from __future__ import annotations

import importlib
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from functools import wraps
from typing import Any, TypeVar

from agentflow.core.config import TRUE_LIKE

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

OPIK_ENV_VARS = ("OPIK_API_KEY", "OPIK_WORKSPACE", "OPIK_PROJECT_NAME")


@dataclass
class TracingStatus:
    """Outcome of :func:`configure_opik`; ``reason`` explains a disabled state."""

    configured: bool = False
    enabled: bool = False
    project: str | None = None
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"enabled": self.enabled, "project": self.project, "reason": self.reason}


_status = TracingStatus()


def tracing_status() -> TracingStatus:
    return _status


def is_tracing_enabled() -> bool:
    """Return whether Opik tracing is currently enabled."""
    return _status.enabled


def configure_opik() -> TracingStatus:
    """Enable Opik from the environment, once per process."""
    global _status
    if _status.configured:
        return _status

    disable = os.getenv("OPIK_TRACK_DISABLE")
    if disable is not None and disable.strip().lower() in TRUE_LIKE:
        _status = TracingStatus(configured=True, reason="disabled by OPIK_TRACK_DISABLE")
        logger.info("Opik tracing %s", _status.reason)
        return _status

    missing = [name for name in OPIK_ENV_VARS if not os.getenv(name)]
    if missing:
        _status = TracingStatus(configured=True, reason=f"missing {', '.join(missing)}")
        logger.warning("Opik not configured; %s", _status.reason)
        return _status

    project = os.getenv("OPIK_PROJECT_NAME")
    try:
        importlib.import_module("opik").configure(use_local=False)
    except Exception as exc:
        _status = TracingStatus(configured=True, project=project, reason=str(exc))
        logger.warning("Opik initialization failed; continuing without tracing: %s", exc)
        return _status

    _status = TracingStatus(configured=True, enabled=True, project=project)
    logger.info("Opik tracing enabled for project %s", project)
    return _status


def track_openai_client(client: Any) -> Any:
    """Return ``client`` wrapped by Opik's OpenAI integration when tracing is on."""
    if not _status.enabled:
        return client
    try:
        integration = importlib.import_module("opik.integrations.openai")
    except ImportError:
        logger.debug("Opik OpenAI integration unavailable", exc_info=True)
        return client
    return integration.track_openai(client)


def opik_track(name: str | None = None) -> Callable[[F], F]:
    """Decorate a function so its calls become Opik spans while tracing is on.

    The tracked wrapper is built on first use and reused. When tracing is off
    or Opik cannot be imported, the function is called directly. Either way it
    runs exactly once per call and its exceptions propagate.
    """

    def decorator(func: F) -> F:
        tracked: list[Callable[..., Any]] = []

        def resolve() -> Callable[..., Any]:
            if not tracked:
                try:
                    track = importlib.import_module("opik").track
                    tracked.append(track(name=name or func.__name__)(func))
                except (ImportError, AttributeError):
                    logger.debug("opik.track unavailable for %s", func.__name__, exc_info=True)
                    return func
            return tracked[0]

        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            target = resolve() if _status.enabled else func
            return target(*args, **kwargs)

        return wrapper  # type: ignore[return-value]

    return decorator
