"""Shared state threaded through a single graph run."""

from __future__ import annotations

import copy
import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

MESSAGES_KEY = "messages"
HUMAN_DECISION_KEY = "human_decision"


class MergePolicy(str, Enum):
    """How a node's value for a key combines with the stored value."""

    REPLACE = "replace"
    APPEND = "append"


@dataclass(frozen=True)
class Overwrite:
    """Update value that replaces the stored value regardless of the key's policy."""

    value: Any


def _as_items(value: Any) -> list[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


class SharedState(Mapping[str, Any]):
    """Read-only mapping view whose only mutator is :meth:`apply`.

    Every key carries one merge policy fixed when the graph is compiled; keys
    without a declared policy are replaced.
    """

    def __init__(
        self,
        policies: Mapping[str, MergePolicy] | None = None,
        values: Mapping[str, Any] | None = None,
    ) -> None:
        self._policies: dict[str, MergePolicy] = dict(policies or {})
        self._values: dict[str, Any] = {}
        if values:
            self.apply(values)

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"SharedState({self._values!r})"

    @property
    def policies(self) -> dict[str, MergePolicy]:
        return dict(self._policies)

    def policy_for(self, key: str) -> MergePolicy:
        return self._policies.get(key, MergePolicy.REPLACE)

    def apply(self, update: Mapping[str, Any] | None) -> dict[str, Any]:
        """Merge ``update`` into the state through each key's policy.

        The whole update is staged before anything is committed, so a failure
        on any key leaves the state untouched.

        Args:
            update: Partial update returned by a node or hook

        Returns:
            The delta actually committed, keyed like ``update``
        """
        if not update:
            return {}

        staged: dict[str, Any] = {}
        delta: dict[str, Any] = {}
        for key, raw_value in update.items():
            if not isinstance(key, str):
                raise TypeError(f"State keys must be strings, got {type(key).__name__}")
            if isinstance(raw_value, Overwrite):
                staged[key] = copy.deepcopy(raw_value.value)
                delta[key] = copy.deepcopy(raw_value.value)
                continue
            if self.policy_for(key) is MergePolicy.APPEND:
                current = staged.get(key, self._values.get(key))
                existing = [] if current is None else _as_items(current)
                added = copy.deepcopy(_as_items(raw_value))
                staged[key] = existing + added
                delta[key] = added
            else:
                staged[key] = copy.deepcopy(raw_value)
                delta[key] = copy.deepcopy(raw_value)

        self._values.update(staged)
        logger.debug("State updated: keys=%s", sorted(delta))
        return delta

    def snapshot(self) -> dict[str, Any]:
        """Return a deep copy of the stored values."""
        return copy.deepcopy(self._values)

    def copy(self) -> SharedState:
        clone = SharedState(self._policies)
        clone._values = self.snapshot()
        return clone

    @classmethod
    def from_snapshot(
        cls, policies: Mapping[str, MergePolicy], values: Mapping[str, Any]
    ) -> SharedState:
        """Rebuild a state from a checkpoint snapshot without re-merging."""
        state = cls(policies)
        state._values = copy.deepcopy(dict(values))
        return state

    def update_since(self, base: Mapping[str, Any]) -> dict[str, Any]:
        """Express the changes from ``base`` as an update that replays them.

        Append keys whose stored sequence still starts with the base sequence
        yield only the new tail; any other changed Append key yields an
        :class:`Overwrite`. Replace keys yield their new value.
        """
        update: dict[str, Any] = {}
        for key, value in self._values.items():
            if key in base and base[key] == value:
                continue
            if self.policy_for(key) is MergePolicy.APPEND:
                previous = base.get(key)
                prior = [] if previous is None else _as_items(previous)
                current = _as_items(value)
                if current[: len(prior)] == prior:
                    update[key] = copy.deepcopy(current[len(prior) :])
                else:
                    update[key] = Overwrite(copy.deepcopy(value))
            else:
                update[key] = copy.deepcopy(value)
        return update
