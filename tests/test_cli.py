"""Tests for CLI."""

import json
import logging
from pathlib import Path

import pytest
from click.testing import CliRunner

from agentflow.cli.main import cli

COMPLEX_REQUIREMENT = "Design a distributed microservice architecture with security integration"


@pytest.fixture(autouse=True)
def cli_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    """Run every command offline against a throwaway SQLite database."""
    monkeypatch.setenv("AGENTFLOW_NO_LLM", "true")
    monkeypatch.setenv("AGENTFLOW_DATABASE_URI", f"sqlite:///{tmp_path / 'cli.db'}")
    root = logging.getLogger()
    level = root.level
    yield
    # setup_logging leaves a handler on the runner's closed stdout
    for handler in root.handlers[:]:
        if type(handler) is logging.StreamHandler:
            root.removeHandler(handler)
    root.setLevel(level)


def test_cli_help() -> None:
    runner = CliRunner()
    result = runner.invoke(cli, ["--help"])

    assert result.exit_code == 0
    assert "stateful multi-agent workflows" in result.output
    for command in ("workflows", "run", "resume", "invoke", "serve"):
        assert command in result.output


def test_workflows_command_lists_graphs() -> None:
    runner = CliRunner()
    result = runner.invoke(cli, ["workflows", "--log-level", "ERROR"])

    assert result.exit_code == 0
    assert result.output.split() == ["approval", "content_routing", "development"]


def test_run_command_completed() -> None:
    runner = CliRunner()
    result = runner.invoke(
        cli,
        [
            "run",
            "content_routing",
            "--state",
            json.dumps({"input": "What pricing strategy grows revenue?"}),
            "--log-level",
            "ERROR",
        ],
    )

    assert result.exit_code == 0
    payload = json.loads(result.output)
    assert payload["status"] == "COMPLETED"
    assert payload["state"]["handler"] == "business_expert"


def test_run_then_resume_across_invocations() -> None:
    runner = CliRunner()
    suspended = runner.invoke(
        cli,
        [
            "run",
            "development",
            "--state",
            json.dumps({"requirement": COMPLEX_REQUIREMENT}),
            "--thread-id",
            "cli-run",
            "--user-id",
            "u-1",
            "--log-level",
            "ERROR",
        ],
    )

    assert suspended.exit_code == 2
    assert json.loads(suspended.output)["pending_node"] == "human_review"

    resumed = runner.invoke(
        cli,
        ["resume", "cli-run", "--approve", "--feedback", "Ship it", "--log-level", "ERROR"],
    )

    assert resumed.exit_code == 0
    payload = json.loads(resumed.output)
    assert payload["status"] == "COMPLETED"
    assert payload["steps"][0] == "human_review"
    assert payload["state"]["user_id"] == "u-1"


def test_resume_requires_a_decision() -> None:
    runner = CliRunner()
    result = runner.invoke(cli, ["resume", "cli-run"])

    assert result.exit_code == 2
    assert "--approve" in result.output


def test_resume_unknown_run_fails() -> None:
    runner = CliRunner()
    result = runner.invoke(cli, ["resume", "missing", "--reject", "--log-level", "ERROR"])

    assert result.exit_code == 1


@pytest.mark.parametrize(
    "args",
    [
        ["run", "content_routing", "--state", "not json"],
        ["run", "content_routing", "--state", "[1, 2]"],
        ["run", "unknown_graph"],
    ],
)
def test_run_command_errors(args: list[str]) -> None:
    runner = CliRunner()
    result = runner.invoke(cli, [*args, "--log-level", "ERROR"])

    assert result.exit_code == 1


def test_run_command_reports_invalid_state_json() -> None:
    runner = CliRunner()
    result = runner.invoke(
        cli, ["run", "content_routing", "--state", "{not json", "--log-level", "ERROR"]
    )

    assert result.exit_code == 1
    assert "Invalid --state JSON" in result.output
    assert "Configuration error" not in result.output


def test_run_command_retries_failed_run_under_same_thread_id() -> None:
    runner = CliRunner()
    args = ["run", "content_routing", "--thread-id", "cli-retry", "--log-level", "CRITICAL"]

    failed = runner.invoke(cli, [*args, "--state", json.dumps({"input": ""})])
    retried = runner.invoke(cli, [*args, "--state", json.dumps({"input": "Tell me a joke"})])

    assert failed.exit_code == 1
    assert retried.exit_code == 0
    assert json.loads(retried.output)["status"] == "COMPLETED"


def test_run_command_failed_node_exit_code() -> None:
    runner = CliRunner()
    result = runner.invoke(cli, ["run", "development", "--log-level", "CRITICAL"])

    assert result.exit_code == 1
    assert json.loads(result.output)["status"] == "FAILED"


def test_invoke_command() -> None:
    runner = CliRunner()
    result = runner.invoke(
        cli, ["invoke", "general_expert", "Explain checkpoints", "--log-level", "ERROR"]
    )

    assert result.exit_code == 0
    payload = json.loads(result.output)
    assert payload["agent"] == "general_expert"
    assert payload["text"] == "[general_expert] Explain checkpoints"


def test_invoke_unknown_agent() -> None:
    runner = CliRunner()
    result = runner.invoke(cli, ["invoke", "nobody", "hi", "--log-level", "ERROR"])

    assert result.exit_code == 1


def test_serve_command_help() -> None:
    runner = CliRunner()
    result = runner.invoke(cli, ["serve", "--help"])

    assert result.exit_code == 0
    assert "--host" in result.output
    assert "--port" in result.output
    assert "--reload" in result.output


def test_serve_passes_settings_to_uvicorn(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[dict] = []
    monkeypatch.setattr("uvicorn.run", lambda app, **kwargs: calls.append({"app": app, **kwargs}))
    monkeypatch.setenv("AGENTFLOW_SERVER_PORT", "9001")

    runner = CliRunner()
    result = runner.invoke(cli, ["serve", "--host", "127.0.0.1", "--log-level", "ERROR"])

    assert result.exit_code == 0
    assert calls == [
        {
            "app": "agentflow.server.app:create_app",
            "factory": True,
            "host": "127.0.0.1",
            "port": 9001,
            "reload": False,
        }
    ]
