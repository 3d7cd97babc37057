"""Error taxonomy for graph execution and the agent runtime."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any


class AgentflowError(Exception):
    """Base class for all agentflow errors."""


class GraphDefinitionError(AgentflowError, ValueError):
    """Raised when a workflow graph is structurally invalid."""


class RoutingError(AgentflowError):
    """A router resolved to a target that the edge never declared."""

    def __init__(self, node: str, target: object, declared: Iterable[str]) -> None:
        self.node = node
        self.target = target
        self.declared = sorted(declared)
        super().__init__(
            f"Node '{node}' routed to {target!r}; declared targets: {', '.join(self.declared)}"
        )


class NodeExecutionError(AgentflowError):
    """A node action raised; the run fails without committing its update."""

    def __init__(self, node: str, cause: BaseException) -> None:
        self.node = node
        super().__init__(f"Node '{node}' failed: {type(cause).__name__}: {cause}")
        self.__cause__ = cause


class ModelError(AgentflowError):
    """The opaque model (or tool) call failed."""


class RunNotFoundError(AgentflowError, LookupError):
    """No checkpoint exists for the requested thread id."""


class RunStateError(AgentflowError):
    """The run is not in a state that allows the requested operation."""


class InterceptorMisuseError(AgentflowError):
    """An interceptor called the next stage more than once."""


class PolicyShortCircuit(AgentflowError):
    """Control-flow signal: a before-hook ended the chain.

    This is not a failure. The executor commits ``update`` and finishes the run
    as completed, skipping the rest of the graph.
    """

    def __init__(
        self,
        hook: str,
        message: str | None = None,
        update: Mapping[str, Any] | None = None,
    ) -> None:
        self.hook = hook
        self.message = message
        self.update = dict(update or {})
        super().__init__(f"Hook '{hook}' ended the chain: {message or 'no message'}")


class StepLimitError(AgentflowError):
    """A run executed more nodes than the executor allows (likely a routing cycle)."""


class UnknownWorkflowError(AgentflowError, LookupError):
    """No workflow graph is registered under the requested id."""


class UnknownAgentError(AgentflowError, LookupError):
    """No agent is registered under the requested name."""
