"""Workflow graph definition: nodes, edges and compile-time validation."""

from __future__ import annotations

import inspect
import logging
from collections import deque
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Union

from agentflow.core.errors import GraphDefinitionError, RoutingError
from agentflow.graph.checkpoint import CheckpointStore, InMemoryCheckpointStore
from agentflow.graph.state import MergePolicy, SharedState

logger = logging.getLogger(__name__)

START = "__start__"
END = "__end__"
_RESERVED = {START, END}


@dataclass(frozen=True)
class NodeResult:
    """Tagged node return: a partial update plus an optional successor hint.

    The hint is honoured only when the node's outgoing edge was declared with
    :meth:`WorkflowGraph.add_hinted_edges` (or matches its static edge).
    """

    update: dict[str, Any] = field(default_factory=dict)
    next_hint: str | None = None


NodeOutput = Union[Mapping[str, Any], NodeResult, None]
NodeAction = Callable[..., NodeOutput]
Router = Callable[[SharedState], Union[str, None]]


@dataclass(frozen=True)
class NodeSpec:
    """A registered node and whether its action also takes the run context."""

    name: str
    action: NodeAction
    accepts_context: bool = False

    def __call__(self, state: SharedState, context: Any) -> NodeOutput:
        if self.accepts_context:
            return self.action(state, context)
        return self.action(state)


@dataclass(frozen=True)
class ConditionalEdge:
    """Outgoing edge whose target is chosen at run time.

    Attributes:
        source: Node the edge leaves from
        targets: Route key -> node name (or END)
        router: Function of the state returning a route key; None follows the
            node's ``next_hint``
        default: Explicit target used when the router (or hint) yields None
    """

    source: str
    targets: dict[str, str]
    router: Router | None = None
    default: str | None = None

    def resolve(self, state: SharedState, hint: str | None = None) -> str:
        key = hint if self.router is None else self.router(state)
        if key is None:
            if self.default is None:
                raise RoutingError(self.source, None, self.targets)
            return self.default
        if key not in self.targets:
            raise RoutingError(self.source, key, self.targets)
        return self.targets[key]


def _accepts_context(action: NodeAction) -> bool:
    try:
        parameters = inspect.signature(action).parameters.values()
    except (TypeError, ValueError):
        return False
    positional = [
        param
        for param in parameters
        if param.kind in (param.POSITIONAL_ONLY, param.POSITIONAL_OR_KEYWORD)
    ]
    has_varargs = any(param.kind == param.VAR_POSITIONAL for param in parameters)
    return len(positional) >= 2 or has_varargs


def _normalize_targets(targets: Mapping[str, str] | Sequence[str]) -> dict[str, str]:
    if isinstance(targets, Mapping):
        return dict(targets)
    return {target: target for target in targets}


class WorkflowGraph:
    """Mutable graph definition compiled once per workflow template."""

    def __init__(self, name: str, policies: Mapping[str, MergePolicy] | None = None) -> None:
        self.name = name
        self._nodes: dict[str, NodeSpec] = {}
        self._edges: dict[str, str] = {}
        self._conditional_edges: dict[str, ConditionalEdge] = {}
        self._policies: dict[str, MergePolicy] = dict(policies or {})

    def add_node(self, name: str, action: NodeAction) -> WorkflowGraph:
        if name in _RESERVED:
            raise GraphDefinitionError(f"'{name}' is a reserved node name")
        if name in self._nodes:
            raise GraphDefinitionError(f"Node '{name}' is already declared")
        self._nodes[name] = NodeSpec(
            name=name, action=action, accepts_context=_accepts_context(action)
        )
        return self

    def set_entry_point(self, name: str) -> WorkflowGraph:
        return self.add_edge(START, name)

    def add_edge(self, source: str, target: str) -> WorkflowGraph:
        """Declare an unconditional transition."""
        if source == END:
            raise GraphDefinitionError("END cannot have outgoing edges")
        self._ensure_no_outgoing(source)
        self._edges[source] = target
        return self

    def add_conditional_edges(
        self,
        source: str,
        router: Router,
        targets: Mapping[str, str] | Sequence[str],
        default: str | None = None,
    ) -> WorkflowGraph:
        """Declare a transition chosen by ``router`` among ``targets``.

        ``targets`` is either a list of node names or a mapping from route key
        to node name. ``default`` must be one of the declared target nodes.
        """
        if source in _RESERVED:
            raise GraphDefinitionError("Conditional edges must leave from a declared node")
        self._ensure_no_outgoing(source)
        self._conditional_edges[source] = ConditionalEdge(
            source=source,
            targets=_normalize_targets(targets),
            router=router,
            default=default,
        )
        return self

    def add_hinted_edges(
        self,
        source: str,
        targets: Sequence[str],
        default: str | None = None,
    ) -> WorkflowGraph:
        """Declare a transition chosen by the node's own ``NodeResult.next_hint``."""
        if source in _RESERVED:
            raise GraphDefinitionError("Hinted edges must leave from a declared node")
        self._ensure_no_outgoing(source)
        self._conditional_edges[source] = ConditionalEdge(
            source=source,
            targets=_normalize_targets(targets),
            router=None,
            default=default,
        )
        return self

    def set_merge_policy(self, key: str, policy: MergePolicy) -> WorkflowGraph:
        self._policies[key] = policy
        return self

    def compile(
        self,
        checkpointer: CheckpointStore | None = None,
        interrupt_before: Iterable[str] = (),
        resume_on_reject: bool = False,
    ) -> CompiledGraph:
        """Validate the definition and freeze it into a :class:`CompiledGraph`.

        Args:
            checkpointer: Store for per-thread checkpoints; in-memory when omitted
            interrupt_before: Nodes that suspend the run before executing
            resume_on_reject: When False a rejected human decision ends the run;
                when True execution continues so the graph can handle rejection

        Raises:
            GraphDefinitionError: If the graph is structurally invalid
        """
        entry = self._edges.get(START)
        if entry is None:
            raise GraphDefinitionError(f"Graph '{self.name}' has no entry point")
        if entry == END:
            raise GraphDefinitionError("The entry point must be a declared node, not END")

        for source, target in self._edges.items():
            if source != START and source not in self._nodes:
                raise GraphDefinitionError(f"Edge source '{source}' is not a declared node")
            if target != END and target not in self._nodes:
                raise GraphDefinitionError(f"Edge target '{target}' is not a declared node")
        for source, edge in self._conditional_edges.items():
            if source not in self._nodes:
                raise GraphDefinitionError(f"Edge source '{source}' is not a declared node")
            if not edge.targets:
                raise GraphDefinitionError(f"Conditional edge from '{source}' declares no targets")
            for target in edge.targets.values():
                if target != END and target not in self._nodes:
                    raise GraphDefinitionError(
                        f"Conditional target '{target}' from '{source}' is not a declared node"
                    )
            if edge.default is not None and edge.default not in edge.targets.values():
                raise GraphDefinitionError(
                    f"Default target '{edge.default}' from '{source}' is not a declared target"
                )

        interrupts = tuple(dict.fromkeys(interrupt_before))
        unknown = [name for name in interrupts if name not in self._nodes]
        if unknown:
            raise GraphDefinitionError(f"Interrupt nodes are not declared: {', '.join(unknown)}")

        reachable = self._reachable_from(entry)
        dangling = sorted(
            name
            for name in reachable
            if name not in self._edges and name not in self._conditional_edges
        )
        if dangling:
            raise GraphDefinitionError(
                f"Reachable nodes without outgoing edges: {', '.join(dangling)}"
            )

        logger.info(
            "Compiled graph '%s': nodes=%d, interrupt_before=%s",
            self.name,
            len(self._nodes),
            list(interrupts),
        )
        return CompiledGraph(
            name=self.name,
            entry=entry,
            nodes=dict(self._nodes),
            edges={source: target for source, target in self._edges.items() if source != START},
            conditional_edges=dict(self._conditional_edges),
            policies=dict(self._policies),
            interrupt_before=interrupts,
            checkpointer=checkpointer if checkpointer is not None else InMemoryCheckpointStore(),
            resume_on_reject=resume_on_reject,
        )

    def _ensure_no_outgoing(self, source: str) -> None:
        if source in self._edges or source in self._conditional_edges:
            raise GraphDefinitionError(f"Node '{source}' already has an outgoing edge")

    def _reachable_from(self, entry: str) -> set[str]:
        seen: set[str] = set()
        queue: deque[str] = deque([entry])
        while queue:
            name = queue.popleft()
            if name == END or name in seen:
                continue
            seen.add(name)
            if name in self._edges:
                queue.append(self._edges[name])
            elif name in self._conditional_edges:
                queue.extend(self._conditional_edges[name].targets.values())
        return seen


@dataclass(frozen=True)
class CompiledGraph:
    """Immutable executable form of a :class:`WorkflowGraph`, reused across runs."""

    name: str
    entry: str
    nodes: dict[str, NodeSpec]
    edges: dict[str, str]
    conditional_edges: dict[str, ConditionalEdge]
    policies: dict[str, MergePolicy]
    interrupt_before: tuple[str, ...]
    checkpointer: CheckpointStore
    resume_on_reject: bool = False

    def new_state(self, values: Mapping[str, Any] | None = None) -> SharedState:
        return SharedState(self.policies, values)

    def successor(self, node: str, state: SharedState, hint: str | None = None) -> str:
        """Resolve the node that follows ``node``.

        Raises:
            RoutingError: If the router or hint names an undeclared target
        """
        if node in self.edges:
            target = self.edges[node]
            if hint is not None and hint != target:
                raise RoutingError(node, hint, [target])
            return target
        return self.conditional_edges[node].resolve(state, hint)

    def declared_targets(self, node: str) -> list[str]:
        if node in self.edges:
            return [self.edges[node]]
        return sorted(set(self.conditional_edges[node].targets.values()))
