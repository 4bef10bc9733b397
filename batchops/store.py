"""In-memory user store implementing the update capability.

Used by the CLI and tests as a stand-in for a remote user API. Updates
follow PATCH semantics: ``shallow`` overlays top-level fields, ``deep``
merges nested mappings recursively.
"""

import asyncio
import copy
from collections.abc import Mapping
from typing import Any

from loguru import logger

from batchops.core.errors import (
    NetworkError,
    RecordNotFoundError,
    RecordValidationError,
    UpdateError,
)
from batchops.operations.models import MergeStrategy


def deep_merge(target: Mapping[str, Any], source: Mapping[str, Any]) -> dict[str, Any]:
    """Recursively merge ``source`` into a copy of ``target``.

    Nested mappings present on both sides are merged; any other value in
    ``source`` replaces the one in ``target``.

    Example:
        >>> deep_merge({"a": {"x": 1, "y": 2}}, {"a": {"y": 3}})
        {'a': {'x': 1, 'y': 3}}
    """
    result = dict(target)
    for key, value in source.items():
        if isinstance(value, Mapping) and isinstance(result.get(key), Mapping):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


class InMemoryUserStore:
    """
    Dictionary-backed user records with an async update method.

    Example:
        >>> store = InMemoryUserStore({"u-1": {"name": "Ada"}})
        >>> await store.apply_update("u-1", {"role": "admin"}, MergeStrategy.SHALLOW)
        {'name': 'Ada', 'role': 'admin'}
    """

    def __init__(
        self,
        records: Mapping[str, Mapping[str, Any]] | None = None,
        latency: float = 0.0,
    ):
        """
        Initialize the store.

        Args:
            records: Initial records keyed by user ID.
            latency: Simulated delay per update in seconds.
        """
        self._records: dict[str, dict[str, Any]] = {
            key: copy.deepcopy(dict(value)) for key, value in (records or {}).items()
        }
        self.latency = latency
        self.calls: list[str] = []
        self._failures: dict[str, list[UpdateError]] = {}

    def get(self, target_id: str) -> dict[str, Any] | None:
        """Get a copy of a record."""
        record = self._records.get(target_id)
        return copy.deepcopy(record) if record is not None else None

    def all(self) -> dict[str, dict[str, Any]]:
        """Get a copy of every record."""
        return copy.deepcopy(self._records)

    def fail_next(self, target_id: str, times: int = 1, error: UpdateError | None = None) -> None:
        """Make the next ``times`` updates of ``target_id`` fail.

        Args:
            target_id: Record whose updates should fail.
            times: Number of consecutive failures.
            error: Error to raise (defaults to NetworkError).
        """
        failure = error or NetworkError(target_id, f"Network error updating {target_id}")
        self._failures.setdefault(target_id, []).extend([failure] * times)

    async def apply_update(
        self,
        target_id: str,
        data: dict[str, Any],
        merge_strategy: MergeStrategy = MergeStrategy.SHALLOW,
    ) -> dict[str, Any]:
        """
        Apply one update to one record.

        Args:
            target_id: Record to update.
            data: Field values to apply.
            merge_strategy: ``shallow`` or ``deep``.

        Returns:
            Copy of the updated record.

        Raises:
            RecordValidationError: If the ID or the update is empty.
            RecordNotFoundError: If the record does not exist.
            UpdateError: Any failure queued with ``fail_next``.
        """
        self.calls.append(target_id)

        if self.latency:
            await asyncio.sleep(self.latency)

        if not target_id:
            raise RecordValidationError(target_id, "User ID is required")
        if not data:
            raise RecordValidationError(target_id, "No updates provided")

        queued = self._failures.get(target_id)
        if queued:
            raise queued.pop(0)

        current = self._records.get(target_id)
        if current is None:
            raise RecordNotFoundError(target_id)

        if MergeStrategy(merge_strategy) == MergeStrategy.DEEP:
            updated = deep_merge(current, data)
        else:
            updated = {**current, **copy.deepcopy(data)}

        self._records[target_id] = updated
        logger.debug(f"Applied {MergeStrategy(merge_strategy).value} update to {target_id}")
        return copy.deepcopy(updated)
