"""Tests for core configuration."""

import pytest
from pydantic import ValidationError

from agentflow.core.config import (
    RuntimeSettings,
    load_runtime_settings,
    load_server_settings,
)

_RUNTIME_ENV = (
    "AGENTFLOW_DATABASE_URI",
    "AGENTFLOW_MODEL",
    "AGENTFLOW_NO_LLM",
    "AGENTFLOW_DEFAULT_TOKEN_QUOTA",
    "AGENTFLOW_SLOW_CALL_MS",
    "AGENTFLOW_MAX_MESSAGES",
    "AGENTFLOW_MIN_KEEP_MESSAGES",
    "AGENTFLOW_FANOUT_WORKERS",
    "AGENTFLOW_QUOTA_RUN_ON_RESUME",
)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in _RUNTIME_ENV:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_runtime_settings_defaults() -> None:
    settings = RuntimeSettings()

    assert settings.database_uri is None
    assert settings.no_llm is False
    assert settings.default_token_quota == 100_000
    assert settings.slow_call_ms == 5000
    assert settings.max_messages == 20
    assert settings.min_keep_messages == 5
    assert settings.fan_out_workers == 5
    assert settings.quota_run_on_resume is True
    assert settings.uses_memory_storage is True


@pytest.mark.parametrize(
    ("uri", "memory"),
    [(None, True), ("", True), ("memory", True), ("sqlite:///runs.db", False)],
)
def test_uses_memory_storage(uri: str | None, memory: bool) -> None:
    assert RuntimeSettings(database_uri=uri).uses_memory_storage is memory


def test_runtime_settings_rejects_inverted_trim_limits() -> None:
    with pytest.raises(ValueError, match="min_keep_messages cannot exceed max_messages"):
        RuntimeSettings(max_messages=3, min_keep_messages=4)


def test_runtime_settings_rejects_negative_quota() -> None:
    with pytest.raises(ValueError, match="default_token_quota must be >= 0"):
        RuntimeSettings(default_token_quota=-1)


def test_runtime_settings_type_validation() -> None:
    with pytest.raises(ValidationError):
        RuntimeSettings(slow_call_ms="fast")  # type: ignore[arg-type]


def test_load_runtime_settings_defaults(clean_env: pytest.MonkeyPatch) -> None:
    settings = load_runtime_settings()

    assert settings == RuntimeSettings()


def test_load_runtime_settings_from_env(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("AGENTFLOW_DATABASE_URI", "sqlite:///agentflow.db")
    clean_env.setenv("AGENTFLOW_NO_LLM", "yes")
    clean_env.setenv("AGENTFLOW_DEFAULT_TOKEN_QUOTA", "500")
    clean_env.setenv("AGENTFLOW_QUOTA_RUN_ON_RESUME", "false")

    settings = load_runtime_settings()

    assert settings.database_uri == "sqlite:///agentflow.db"
    assert settings.no_llm is True
    assert settings.default_token_quota == 500
    assert settings.quota_run_on_resume is False
    assert settings.uses_memory_storage is False


@pytest.mark.parametrize(
    ("name", "value", "message"),
    [
        ("AGENTFLOW_SLOW_CALL_MS", "abc", "AGENTFLOW_SLOW_CALL_MS must be an integer"),
        ("AGENTFLOW_SLOW_CALL_MS", "0", "AGENTFLOW_SLOW_CALL_MS must be > 0"),
        ("AGENTFLOW_FANOUT_WORKERS", "0", "AGENTFLOW_FANOUT_WORKERS must be > 0"),
        ("AGENTFLOW_MIN_KEEP_MESSAGES", "50", "cannot exceed AGENTFLOW_MAX_MESSAGES"),
    ],
)
def test_load_runtime_settings_validation(
    clean_env: pytest.MonkeyPatch, name: str, value: str, message: str
) -> None:
    clean_env.setenv(name, value)

    with pytest.raises(ValueError, match=message):
        load_runtime_settings()


def test_load_server_settings_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("AGENTFLOW_SERVER_HOST", raising=False)
    monkeypatch.delenv("AGENTFLOW_SERVER_PORT", raising=False)

    settings = load_server_settings()

    assert settings.host == "0.0.0.0"
    assert settings.port == 8080


def test_load_server_settings_rejects_bad_port(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AGENTFLOW_SERVER_PORT", "-1")

    with pytest.raises(ValueError, match="AGENTFLOW_SERVER_PORT must be > 0"):
        load_server_settings()
