"""Store factory utilities."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from agentflow.core.config import RuntimeSettings, load_runtime_settings
from agentflow.graph.checkpoint import CheckpointStore, InMemoryCheckpointStore
from agentflow.runtime.audit import AuditSink, InMemoryAuditSink
from agentflow.runtime.quota import InMemoryQuotaStore, QuotaStore
from agentflow.storage.db import Database, SqlAuditSink, SqlCheckpointStore, SqlQuotaStore

logger = logging.getLogger(__name__)


@dataclass
class Stores:
    """Checkpoint, quota and audit backends built from one configuration."""

    checkpoints: CheckpointStore
    quota: QuotaStore
    audit: AuditSink
    database: Database | None = None

    @property
    def durable(self) -> bool:
        return self.database is not None


def create_stores(settings: RuntimeSettings | None = None) -> Stores:
    """Create configured stores; in-memory unless a database URI is set."""
    settings = settings or load_runtime_settings()
    if settings.uses_memory_storage:
        logger.info("Using in-memory checkpoint, quota and audit stores")
        return Stores(
            checkpoints=InMemoryCheckpointStore(),
            quota=InMemoryQuotaStore(default_quota=settings.default_token_quota),
            audit=InMemoryAuditSink(),
        )

    database = Database(str(settings.database_uri))
    return Stores(
        checkpoints=SqlCheckpointStore(database),
        quota=SqlQuotaStore(database, default_quota=settings.default_token_quota),
        audit=SqlAuditSink(database),
        database=database,
    )
