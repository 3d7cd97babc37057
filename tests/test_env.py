"""Tests for environment loading."""

import os
from pathlib import Path

import pytest

from agentflow.core.env import load_environment


def test_load_environment_missing_file_is_safe(tmp_path: Path) -> None:
    missing_env = tmp_path / ".env.missing"

    assert load_environment(str(missing_env)) is False
    assert not missing_env.exists()


def test_load_environment_keeps_existing_values(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text(
        "AGENTFLOW_MODEL=gpt-4o\nAGENTFLOW_SERVER_HOST=10.1.1.1\n", encoding="utf-8"
    )
    monkeypatch.setenv("AGENTFLOW_MODEL", "from-shell")
    monkeypatch.delenv("AGENTFLOW_SERVER_HOST", raising=False)

    assert load_environment(str(env_file)) is True
    assert os.environ["AGENTFLOW_MODEL"] == "from-shell"
    assert os.environ["AGENTFLOW_SERVER_HOST"] == "10.1.1.1"
