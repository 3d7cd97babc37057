"""Configuration management for agentflow."""

from __future__ import annotations

import logging
import os

from pydantic import BaseModel

logger = logging.getLogger(__name__)

TRUE_LIKE = {"1", "true", "yes", "on"}


class RuntimeSettings(BaseModel):
    """Agent runtime, policy and storage settings loaded from environment variables."""

    database_uri: str | None = None
    model: str | None = None
    no_llm: bool = False
    default_token_quota: int = 100_000
    slow_call_ms: int = 5000
    max_messages: int = 20
    min_keep_messages: int = 5
    fan_out_workers: int = 5
    quota_run_on_resume: bool = True

    def model_post_init(self, __context: object) -> None:
        """Validate cross-field constraints after model initialization."""
        if self.default_token_quota < 0:
            raise ValueError("default_token_quota must be >= 0")
        if self.slow_call_ms <= 0:
            raise ValueError("slow_call_ms must be > 0")
        if self.max_messages <= 0 or self.min_keep_messages <= 0:
            raise ValueError("message trimming limits must be > 0")
        if self.min_keep_messages > self.max_messages:
            raise ValueError("min_keep_messages cannot exceed max_messages")
        if self.fan_out_workers <= 0:
            raise ValueError("fan_out_workers must be > 0")

    @property
    def uses_memory_storage(self) -> bool:
        """Whether checkpoints, quota and audit live in process memory."""
        uri = (self.database_uri or "").strip().lower()
        return uri in {"", "memory"}


class ServerSettings(BaseModel):
    """Server settings loaded from environment variables."""

    host: str
    port: int


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in TRUE_LIKE


def _env_int(name: str, default: str) -> int:
    try:
        return int(os.getenv(name, default))
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc


def load_runtime_settings() -> RuntimeSettings:
    """Load runtime settings from environment with validation."""
    default_token_quota = _env_int("AGENTFLOW_DEFAULT_TOKEN_QUOTA", "100000")
    slow_call_ms = _env_int("AGENTFLOW_SLOW_CALL_MS", "5000")
    max_messages = _env_int("AGENTFLOW_MAX_MESSAGES", "20")
    min_keep_messages = _env_int("AGENTFLOW_MIN_KEEP_MESSAGES", "5")
    fan_out_workers = _env_int("AGENTFLOW_FANOUT_WORKERS", "5")

    if default_token_quota < 0:
        raise ValueError("AGENTFLOW_DEFAULT_TOKEN_QUOTA must be >= 0")
    if slow_call_ms <= 0:
        raise ValueError("AGENTFLOW_SLOW_CALL_MS must be > 0")
    if max_messages <= 0:
        raise ValueError("AGENTFLOW_MAX_MESSAGES must be > 0")
    if min_keep_messages <= 0:
        raise ValueError("AGENTFLOW_MIN_KEEP_MESSAGES must be > 0")
    if min_keep_messages > max_messages:
        raise ValueError("AGENTFLOW_MIN_KEEP_MESSAGES cannot exceed AGENTFLOW_MAX_MESSAGES")
    if fan_out_workers <= 0:
        raise ValueError("AGENTFLOW_FANOUT_WORKERS must be > 0")

    settings = RuntimeSettings(
        database_uri=os.getenv("AGENTFLOW_DATABASE_URI") or None,
        model=os.getenv("AGENTFLOW_MODEL") or None,
        no_llm=_env_bool("AGENTFLOW_NO_LLM"),
        default_token_quota=default_token_quota,
        slow_call_ms=slow_call_ms,
        max_messages=max_messages,
        min_keep_messages=min_keep_messages,
        fan_out_workers=fan_out_workers,
        quota_run_on_resume=_env_bool("AGENTFLOW_QUOTA_RUN_ON_RESUME", "true"),
    )
    logger.debug(
        "Runtime settings loaded: storage=%s, no_llm=%s",
        "memory" if settings.uses_memory_storage else "sql",
        settings.no_llm,
    )
    return settings


def load_server_settings() -> ServerSettings:
    """Load HTTP server settings."""
    host = os.getenv("AGENTFLOW_SERVER_HOST", "0.0.0.0")
    port = _env_int("AGENTFLOW_SERVER_PORT", "8080")
    if port <= 0:
        raise ValueError("AGENTFLOW_SERVER_PORT must be > 0")
    return ServerSettings(host=host, port=port)
