"""Per-user token quota collaborator."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_QUOTA = 100_000
COST_PER_TOKEN = 0.001


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class QuotaSnapshot:
    """Point-in-time view of one user's quota."""

    user_id: str
    token_quota: int
    token_used: int

    @property
    def remaining(self) -> int:
        return self.token_quota - self.token_used

    @property
    def usage_rate(self) -> float:
        if self.token_quota <= 0:
            return 0.0
        return round(self.token_used / self.token_quota * 100, 2)


@dataclass(frozen=True)
class TokenUsageRecord:
    """One model call charged against a user's quota."""

    user_id: str
    total_tokens: int
    agent_name: str | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    duration_ms: int = 0
    exceeded_limit: bool = False
    created_at: datetime = field(default_factory=_now)

    @property
    def estimated_cost(self) -> float:
        return round(self.total_tokens * COST_PER_TOKEN, 6)


class QuotaStore(ABC):
    """Shared quota counters. Deductions must be atomic across threads and runs."""

    @abstractmethod
    def check_quota(self, user_id: str, estimated_cost: int) -> bool:
        """Return True when ``user_id`` has at least ``estimated_cost`` tokens left."""

    @abstractmethod
    def deduct_quota(self, user_id: str, cost: int) -> None:
        """Atomically add ``cost`` to the user's used tokens."""

    @abstractmethod
    def get_quota(self, user_id: str) -> QuotaSnapshot:
        """Return the user's quota, provisioning the default for unknown users."""

    @abstractmethod
    def set_quota(self, user_id: str, token_quota: int) -> QuotaSnapshot:
        """Set the user's total quota, keeping usage."""

    @abstractmethod
    def record_usage(self, record: TokenUsageRecord) -> None:
        """Append a usage log entry."""

    @abstractmethod
    def recent_usage(self, user_id: str, limit: int = 10) -> list[TokenUsageRecord]:
        """Return the user's latest usage entries, newest first."""


class InMemoryQuotaStore(QuotaStore):
    """Process-local quota counters guarded by a single lock."""

    def __init__(
        self, default_quota: int = DEFAULT_TOKEN_QUOTA, max_usage_records: int = 1000
    ) -> None:
        self.default_quota = default_quota
        self._quotas: dict[str, int] = {}
        self._used: dict[str, int] = {}
        self._usage: deque[TokenUsageRecord] = deque(maxlen=max_usage_records)
        self._lock = threading.Lock()

    def _ensure(self, user_id: str) -> None:
        if user_id not in self._quotas:
            self._quotas[user_id] = self.default_quota
            self._used[user_id] = 0

    def check_quota(self, user_id: str, estimated_cost: int) -> bool:
        with self._lock:
            self._ensure(user_id)
            return self._quotas[user_id] - self._used[user_id] >= estimated_cost

    def deduct_quota(self, user_id: str, cost: int) -> None:
        if cost < 0:
            raise ValueError("cost must be >= 0")
        with self._lock:
            self._ensure(user_id)
            self._used[user_id] += cost
            remaining = self._quotas[user_id] - self._used[user_id]
        logger.debug("Deducted %d tokens from user %s; remaining=%d", cost, user_id, remaining)

    def get_quota(self, user_id: str) -> QuotaSnapshot:
        with self._lock:
            self._ensure(user_id)
            return QuotaSnapshot(user_id, self._quotas[user_id], self._used[user_id])

    def set_quota(self, user_id: str, token_quota: int) -> QuotaSnapshot:
        if token_quota < 0:
            raise ValueError("token_quota must be >= 0")
        with self._lock:
            self._ensure(user_id)
            self._quotas[user_id] = token_quota
            return QuotaSnapshot(user_id, token_quota, self._used[user_id])

    def record_usage(self, record: TokenUsageRecord) -> None:
        with self._lock:
            self._usage.append(record)

    def recent_usage(self, user_id: str, limit: int = 10) -> list[TokenUsageRecord]:
        with self._lock:
            rows = [record for record in reversed(self._usage) if record.user_id == user_id]
        return rows[:limit]
