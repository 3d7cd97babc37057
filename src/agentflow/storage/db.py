"""SQLAlchemy-backed checkpoint, quota and audit stores."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, cast

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    Integer,
    String,
    Text,
    create_engine,
    delete,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from agentflow.graph.checkpoint import Checkpoint, CheckpointStore, RunStatus
from agentflow.runtime.audit import AuditEvent, AuditSink
from agentflow.runtime.quota import (
    DEFAULT_TOKEN_QUOTA,
    QuotaSnapshot,
    QuotaStore,
    TokenUsageRecord,
)

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Declarative SQLAlchemy base for agentflow tables."""


class CheckpointRow(Base):
    """Latest checkpoint of one run; saving overwrites the row."""

    __tablename__ = "checkpoints"

    thread_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    graph_name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    pending_node: Mapped[str | None] = mapped_column(String(128), nullable=True)
    step: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    state_json: Mapped[str] = mapped_column(Text, nullable=False)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )


class QuotaRow(Base):
    __tablename__ = "user_quotas"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    token_quota: Mapped[int] = mapped_column(Integer, nullable=False)
    token_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class TokenUsageRow(Base):
    __tablename__ = "token_usage_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    agent_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    input_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    output_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    estimated_cost: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    exceeded_limit: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )


class AuditLogRow(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    run_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    operation_type: Mapped[str] = mapped_column(String(64), nullable=False)
    agent_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    tool_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    detail: Mapped[str | None] = mapped_column(Text, nullable=True)
    token_cost: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )


class Database:
    """Engine and session factory shared by the SQL stores."""

    def __init__(self, database_uri: str) -> None:
        self.engine: Engine = create_engine(database_uri, future=True, pool_pre_ping=True)
        self.session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        Base.metadata.create_all(self.engine)
        logger.info("Database ready: %s", self.engine.url.get_backend_name())

    def dispose(self) -> None:
        self.engine.dispose()


class SqlCheckpointStore(CheckpointStore):
    """Checkpoint store for SQLite and PostgreSQL; one row per thread id."""

    def __init__(self, database: Database) -> None:
        self._session_factory = database.session_factory

    def save(
        self,
        thread_id: str,
        snapshot: dict[str, Any],
        pending_node: str | None,
        *,
        status: RunStatus = RunStatus.RUNNING,
        graph_name: str = "",
        step: int = 0,
        error: str | None = None,
    ) -> Checkpoint:
        now = _now()
        state_json = json.dumps(snapshot)
        with self._session_factory() as session:
            row = cast(CheckpointRow | None, session.get(CheckpointRow, thread_id))
            if row is None:
                row = CheckpointRow(thread_id=thread_id, created_at=now)
                session.add(row)
            row.graph_name = graph_name
            row.status = status.value
            row.pending_node = pending_node
            row.step = step
            row.state_json = state_json
            row.error = error
            row.updated_at = now
            session.commit()
            return self._to_checkpoint(row)

    def load(self, thread_id: str) -> Checkpoint | None:
        with self._session_factory() as session:
            row = cast(CheckpointRow | None, session.get(CheckpointRow, thread_id))
            return self._to_checkpoint(row) if row is not None else None

    def delete(self, thread_id: str) -> bool:
        with self._session_factory() as session:
            result = session.execute(
                delete(CheckpointRow).where(CheckpointRow.thread_id == thread_id)
            )
            session.commit()
            return bool(result.rowcount)

    def list_checkpoints(self, status: RunStatus | None = None) -> list[Checkpoint]:
        query = select(CheckpointRow).order_by(CheckpointRow.updated_at.desc())
        if status is not None:
            query = query.where(CheckpointRow.status == status.value)
        with self._session_factory() as session:
            return [self._to_checkpoint(row) for row in session.scalars(query).all()]

    def _to_checkpoint(self, row: CheckpointRow) -> Checkpoint:
        return Checkpoint(
            thread_id=row.thread_id,
            values=json.loads(row.state_json),
            pending_node=row.pending_node,
            status=RunStatus(row.status),
            graph_name=row.graph_name,
            step=row.step,
            error=row.error,
            updated_at=row.updated_at,
        )


class SqlQuotaStore(QuotaStore):
    """Quota counters whose deductions are single ``UPDATE`` statements."""

    def __init__(self, database: Database, default_quota: int = DEFAULT_TOKEN_QUOTA) -> None:
        self._session_factory = database.session_factory
        self.default_quota = default_quota

    def _ensure_row(self, session: Session, user_id: str) -> QuotaRow:
        row = cast(QuotaRow | None, session.get(QuotaRow, user_id))
        if row is not None:
            return row
        row = QuotaRow(
            user_id=user_id, token_quota=self.default_quota, token_used=0, updated_at=_now()
        )
        session.add(row)
        try:
            session.commit()
        except IntegrityError:
            # Another writer provisioned the user first.
            session.rollback()
            row = cast(QuotaRow, session.get(QuotaRow, user_id))
        logger.info("Provisioned quota %d for user %s", row.token_quota, user_id)
        return row

    def check_quota(self, user_id: str, estimated_cost: int) -> bool:
        with self._session_factory() as session:
            row = self._ensure_row(session, user_id)
            return row.token_quota - row.token_used >= estimated_cost

    def deduct_quota(self, user_id: str, cost: int) -> None:
        if cost < 0:
            raise ValueError("cost must be >= 0")
        with self._session_factory() as session:
            self._ensure_row(session, user_id)
            session.execute(
                update(QuotaRow)
                .where(QuotaRow.user_id == user_id)
                .values(token_used=QuotaRow.token_used + cost, updated_at=_now())
            )
            session.commit()
        logger.debug("Deducted %d tokens from user %s", cost, user_id)

    def get_quota(self, user_id: str) -> QuotaSnapshot:
        with self._session_factory() as session:
            row = self._ensure_row(session, user_id)
            session.refresh(row)
            return QuotaSnapshot(user_id, row.token_quota, row.token_used)

    def set_quota(self, user_id: str, token_quota: int) -> QuotaSnapshot:
        if token_quota < 0:
            raise ValueError("token_quota must be >= 0")
        with self._session_factory() as session:
            row = self._ensure_row(session, user_id)
            row.token_quota = token_quota
            row.updated_at = _now()
            session.commit()
            return QuotaSnapshot(user_id, row.token_quota, row.token_used)

    def record_usage(self, record: TokenUsageRecord) -> None:
        with self._session_factory() as session:
            session.add(
                TokenUsageRow(
                    user_id=record.user_id,
                    agent_name=record.agent_name,
                    input_tokens=record.input_tokens,
                    output_tokens=record.output_tokens,
                    total_tokens=record.total_tokens,
                    estimated_cost=record.estimated_cost,
                    duration_ms=record.duration_ms,
                    exceeded_limit=record.exceeded_limit,
                    created_at=record.created_at,
                )
            )
            session.commit()

    def recent_usage(self, user_id: str, limit: int = 10) -> list[TokenUsageRecord]:
        query = (
            select(TokenUsageRow)
            .where(TokenUsageRow.user_id == user_id)
            .order_by(TokenUsageRow.created_at.desc(), TokenUsageRow.id.desc())
            .limit(limit)
        )
        with self._session_factory() as session:
            return [
                TokenUsageRecord(
                    user_id=row.user_id,
                    total_tokens=row.total_tokens,
                    agent_name=row.agent_name,
                    input_tokens=row.input_tokens,
                    output_tokens=row.output_tokens,
                    duration_ms=row.duration_ms,
                    exceeded_limit=row.exceeded_limit,
                    created_at=row.created_at,
                )
                for row in session.scalars(query).all()
            ]


class SqlAuditSink(AuditSink):
    def __init__(self, database: Database) -> None:
        self._session_factory = database.session_factory

    def write(self, event: AuditEvent) -> None:
        with self._session_factory() as session:
            session.add(
                AuditLogRow(
                    user_id=event.user_id,
                    run_id=event.run_id,
                    operation_type=event.operation_type,
                    agent_name=event.agent_name,
                    tool_name=event.tool_name,
                    detail=event.detail,
                    token_cost=event.token_cost,
                    duration_ms=event.duration_ms,
                    status=event.status,
                    created_at=event.created_at,
                )
            )
            session.commit()

    def recent(self, limit: int = 10) -> list[AuditEvent]:
        query = (
            select(AuditLogRow)
            .order_by(AuditLogRow.created_at.desc(), AuditLogRow.id.desc())
            .limit(limit)
        )
        with self._session_factory() as session:
            return [
                AuditEvent(
                    operation_type=row.operation_type,
                    user_id=row.user_id,
                    run_id=row.run_id,
                    agent_name=row.agent_name,
                    tool_name=row.tool_name,
                    detail=row.detail,
                    token_cost=row.token_cost,
                    duration_ms=row.duration_ms,
                    status=row.status,
                    created_at=row.created_at,
                )
                for row in session.scalars(query).all()
            ]
