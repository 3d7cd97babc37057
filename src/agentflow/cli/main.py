"""Command-line interface for agentflow."""

from __future__ import annotations

import json
import logging
import sys
from typing import Any

import click

from agentflow import __version__
from agentflow.core.config import load_runtime_settings, load_server_settings
from agentflow.core.env import load_environment
from agentflow.core.errors import RunStateError
from agentflow.core.logging import setup_logging
from agentflow.graph.executor import RunResult
from agentflow.orchestration.bootstrap import build_container
from agentflow.runtime.context import RunContext

logger = logging.getLogger(__name__)

_LOG_LEVELS = click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False)


def log_level_option(func: Any) -> Any:
    return click.option(
        "--log-level",
        default="INFO",
        type=_LOG_LEVELS,
        help="Logging level (default: INFO)",
    )(func)


def _echo_json(payload: dict[str, Any]) -> None:
    click.echo(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def _result_payload(result: RunResult) -> dict[str, Any]:
    return {
        "run_id": result.thread_id,
        "graph_id": result.graph_name,
        "status": result.status.value,
        "pending_node": result.pending_node,
        "error": result.error,
        "short_circuited_by": result.short_circuited_by,
        "steps": [event.node for event in result.steps],
        "state": result.state,
    }


def _exit_for(result: RunResult) -> None:
    if result.suspended:
        logger.info(
            "Run %s is waiting for approval before '%s'", result.thread_id, result.pending_node
        )
        sys.exit(2)
    if result.failed:
        sys.exit(1)


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """agentflow: stateful multi-agent workflows with policy hooks.

    Runs checkpointed workflow graphs that can pause for human approval,
    with quota, security and audit policies around every model call.
    """


@cli.command("workflows")
@log_level_option
def list_workflows(log_level: str) -> None:
    """List registered workflow ids."""
    load_environment()
    setup_logging(level=log_level)
    try:
        container = build_container()
    except ValueError as exc:
        logger.error("Configuration error: %s", exc)
        sys.exit(1)
    try:
        for graph_id in container.workflows.list_graphs():
            click.echo(graph_id)
    finally:
        container.close()


@cli.command()
@click.argument("graph_id")
@click.option("--state", "state_json", default="{}", help="Initial state as a JSON object")
@click.option("--thread-id", default=None, help="Run id (generated when omitted)")
@click.option("--user-id", default=None, help="User charged for model calls")
@log_level_option
def run(
    graph_id: str, state_json: str, thread_id: str | None, user_id: str | None, log_level: str
) -> None:
    """Start a workflow run.

    Exits 0 when completed, 2 when waiting for approval and 1 on failure.
    """
    load_environment()
    setup_logging(level=log_level)

    container = None
    try:
        state = json.loads(state_json)
        if not isinstance(state, dict):
            raise ValueError("--state must be a JSON object")
        container = build_container()
        if not container.stores.durable:
            logger.warning(
                "AGENTFLOW_DATABASE_URI is not set; this run cannot be resumed from another process"
            )
        result = container.workflows.submit(graph_id, state, run_id=thread_id, user_id=user_id)
        _echo_json(_result_payload(result))
    except json.JSONDecodeError as exc:
        logger.error("Invalid --state JSON: %s", exc)
        sys.exit(1)
    except ValueError as exc:
        logger.error("Configuration error: %s", exc)
        sys.exit(1)
    except LookupError as exc:
        logger.error("%s", exc)
        sys.exit(1)
    except RunStateError as exc:
        logger.error("%s", exc)
        sys.exit(1)
    finally:
        if container is not None:
            container.close()
    _exit_for(result)


@cli.command()
@click.argument("run_id")
@click.option("--approve/--reject", "approved", required=True, help="Decision for the pending step")
@click.option("--feedback", default=None, help="Reviewer feedback stored with the decision")
@log_level_option
def resume(run_id: str, approved: bool, feedback: str | None, log_level: str) -> None:
    """Resume a run that is waiting for approval."""
    load_environment()
    setup_logging(level=log_level)

    container = None
    try:
        container = build_container()
        result = container.workflows.resume(run_id, approved, feedback)
        _echo_json(_result_payload(result))
    except ValueError as exc:
        logger.error("Configuration error: %s", exc)
        sys.exit(1)
    except LookupError as exc:
        logger.error("%s", exc)
        sys.exit(1)
    except Exception as exc:
        logger.error("Cannot resume run %s: %s", run_id, exc)
        sys.exit(1)
    finally:
        if container is not None:
            container.close()
    _exit_for(result)


@cli.command()
@click.argument("agent")
@click.argument("prompt")
@click.option("--user-id", default=None, help="User charged for the call")
@log_level_option
def invoke(agent: str, prompt: str, user_id: str | None, log_level: str) -> None:
    """Send one prompt to a named agent and print the reply."""
    load_environment()
    setup_logging(level=log_level)

    container = None
    try:
        container = build_container()
        runtime = container.agents.get(agent)
        result = runtime.invoke(prompt, RunContext(user_id=user_id, agent_name=agent))
        _echo_json({"agent": agent, **result.to_dict()})
    except ValueError as exc:
        logger.error("Configuration error: %s", exc)
        sys.exit(1)
    except LookupError as exc:
        logger.error("%s", exc)
        sys.exit(1)
    except Exception as exc:
        logger.exception("Unexpected error during invoke: %s", exc)
        sys.exit(1)
    finally:
        if container is not None:
            container.close()


@cli.command()
@click.option("--host", default=None, help="Server host")
@click.option("--port", type=int, default=None, help="Server port")
@click.option("--reload", is_flag=True, default=False, help="Enable auto-reload")
@log_level_option
def serve(host: str | None, port: int | None, reload: bool, log_level: str) -> None:
    """Run the HTTP API server."""
    load_environment()
    setup_logging(level=log_level)

    try:
        load_runtime_settings()
        settings = load_server_settings()
        resolved_host = host if host is not None else settings.host
        resolved_port = port if port is not None else settings.port

        import uvicorn

        uvicorn.run(
            "agentflow.server.app:create_app",
            factory=True,
            host=resolved_host,
            port=resolved_port,
            reload=reload,
        )
    except ValueError as exc:
        logger.error("Configuration error: %s", exc)
        sys.exit(1)
    except Exception as exc:
        logger.exception("Unexpected error during server execution: %s", exc)
        sys.exit(1)


if __name__ == "__main__":
    cli()
