"""Graph execution engine: shared state, graph definition, executor and checkpoints."""

from agentflow.graph.builder import END, START, CompiledGraph, NodeResult, WorkflowGraph
from agentflow.graph.checkpoint import (
    Checkpoint,
    CheckpointStore,
    InMemoryCheckpointStore,
    RunStatus,
)
from agentflow.graph.executor import GraphExecutor, ResumeDecision, RunResult, StepEvent
from agentflow.graph.state import MergePolicy, Overwrite, SharedState

__all__ = [
    "END",
    "START",
    "Checkpoint",
    "CheckpointStore",
    "CompiledGraph",
    "GraphExecutor",
    "InMemoryCheckpointStore",
    "MergePolicy",
    "NodeResult",
    "Overwrite",
    "ResumeDecision",
    "RunResult",
    "RunStatus",
    "SharedState",
    "StepEvent",
    "WorkflowGraph",
]
