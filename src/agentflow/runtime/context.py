"""Per-run context visible to hooks, interceptors and nodes."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any


@dataclass
class RunContext:
    """Mutable bag of run metadata.

    One context is created per run (or per resume) and shared by every node,
    hook and interceptor that executes inside it. ``scratch`` is where policies
    pass values from their before to their after position, e.g. the estimated
    token cost.

    Attributes:
        run_id: Identifier of the run; graph runs use the thread id
        user_id: Owner of the run, used for quota and audit
        agent_name: Name of the agent currently executing, if any
        started_at: Monotonic clock reading when the context was created
        resumed: True while the first node after a resume is executing
        scratch: Free-form per-run storage
    """

    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str | None = None
    agent_name: str | None = None
    started_at: float = field(default_factory=time.monotonic)
    resumed: bool = False
    scratch: dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.scratch.get(key, default)

    def put(self, key: str, value: Any) -> None:
        self.scratch[key] = value

    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.started_at) * 1000

    def for_agent(self, agent_name: str) -> RunContext:
        """Return a sibling context for one agent call with its own scratch space."""
        return RunContext(
            run_id=self.run_id,
            user_id=self.user_id,
            agent_name=agent_name,
            resumed=self.resumed,
        )
