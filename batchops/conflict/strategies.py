"""
Resolution Strategies for batch conflicts

Strategy pattern implementation for conflict resolution.
Each strategy handles one ``Resolution`` and rewrites a working copy of
the operation list.
"""

from abc import ABC, abstractmethod
from typing import Any

from loguru import logger

from batchops.conflict.detector import Conflict, ConflictType, Resolution
from batchops.operations.models import Operation


class ResolutionStrategy(ABC):
    """Base class for conflict resolution strategies."""

    resolution: Resolution
    conflict_types: tuple[ConflictType, ...] = ()

    @abstractmethod
    def apply(
        self,
        operations: list[Operation],
        conflict: Conflict,
        manual_values: dict[str, Any],
    ) -> list[Operation]:
        """
        Apply the resolution.

        Args:
            operations: Working copy of the operation list (owned by the caller)
            conflict: Conflict being resolved
            manual_values: Caller-supplied field values (manual resolution only)

        Returns:
            The rewritten operation list
        """
        pass

    def can_resolve(self, conflict: Conflict) -> bool:
        """Check if this strategy can handle the conflict."""
        return conflict.conflict_type in self.conflict_types and conflict.allows(
            self.resolution
        )


class PairStrategy(ResolutionStrategy):
    """Base for strategies that collapse a pair of operations."""

    conflict_types = (ConflictType.USER_CONFLICT, ConflictType.FIELD_CONFLICT)

    @staticmethod
    def _pair(conflict: Conflict) -> tuple[int, int]:
        first, second = conflict.indices[0], conflict.indices[1]
        return first, second


class KeepFirstStrategy(PairStrategy):
    """Drop the later-indexed operation."""

    resolution = Resolution.KEEP_FIRST

    def apply(
        self,
        operations: list[Operation],
        conflict: Conflict,
        manual_values: dict[str, Any],
    ) -> list[Operation]:
        _, second = self._pair(conflict)
        logger.debug(f"Keeping operation {conflict.indices[0]}, dropping {second}")
        del operations[second]
        return operations


class KeepLastStrategy(PairStrategy):
    """Drop the earlier-indexed operation."""

    resolution = Resolution.KEEP_LAST

    def apply(
        self,
        operations: list[Operation],
        conflict: Conflict,
        manual_values: dict[str, Any],
    ) -> list[Operation]:
        first, _ = self._pair(conflict)
        logger.debug(f"Keeping operation {conflict.indices[1]}, dropping {first}")
        del operations[first]
        return operations


class MergeOperationsStrategy(PairStrategy):
    """
    Fold the later operation into the earlier one.

    For field conflicts only the overlapping fields are taken from the
    later operation; for user conflicts every field is.
    """

    resolution = Resolution.MERGE

    def apply(
        self,
        operations: list[Operation],
        conflict: Conflict,
        manual_values: dict[str, Any],
    ) -> list[Operation]:
        first, second = self._pair(conflict)
        keep, absorbed = operations[first], operations[second]

        merged = dict(keep.data)
        if conflict.conflict_type == ConflictType.FIELD_CONFLICT:
            for name in conflict.fields:
                merged[name] = absorbed.data[name]
        else:
            merged.update(absorbed.data)

        operations[first] = keep.model_copy(
            update={
                "data": merged,
                "merged_from": (keep.merged_from or [keep.target_id]) + [absorbed.target_id],
            },
            deep=True,
        )
        del operations[second]

        logger.debug(f"Merged operation {second} into {first}")
        return operations


class ManualResolveStrategy(PairStrategy):
    """Apply caller-supplied values for the overlapping fields."""

    resolution = Resolution.MANUAL_RESOLVE
    conflict_types = (ConflictType.FIELD_CONFLICT,)

    def apply(
        self,
        operations: list[Operation],
        conflict: Conflict,
        manual_values: dict[str, Any],
    ) -> list[Operation]:
        first, second = self._pair(conflict)
        keep = operations[first]

        data = dict(keep.data)
        for name in conflict.fields:
            if name in manual_values:
                data[name] = manual_values[name]

        operations[first] = keep.model_copy(
            update={"data": data, "manually_resolved": True},
            deep=True,
        )
        del operations[second]
        return operations


class RemoveDependencyStrategy(ResolutionStrategy):
    """Strip the dependency edge that closes the recorded cycle."""

    resolution = Resolution.REMOVE_DEPENDENCY
    conflict_types = (ConflictType.CIRCULAR_DEPENDENCY,)

    def apply(
        self,
        operations: list[Operation],
        conflict: Conflict,
        manual_values: dict[str, Any],
    ) -> list[Operation]:
        source, target = conflict.indices[-2], conflict.indices[-1]
        op = operations[source]
        target_id = operations[target].target_id

        operations[source] = op.model_copy(
            update={"depends_on": [dep for dep in op.depends_on if dep != target_id]},
            deep=True,
        )
        logger.debug(f"Removed dependency {op.target_id} -> {target_id}")
        return operations


class ReorderStrategy(ResolutionStrategy):
    """
    Relocate the first operation of the cycle after its last member.

    The recorded cycle ends where it starts, so the last distinct member
    is the one before the closing index.
    """

    resolution = Resolution.REORDER
    conflict_types = (ConflictType.CIRCULAR_DEPENDENCY,)

    def apply(
        self,
        operations: list[Operation],
        conflict: Conflict,
        manual_values: dict[str, Any],
    ) -> list[Operation]:
        indices = conflict.indices
        first = indices[0]
        last = indices[-2] if len(indices) > 1 and indices[-1] == first else indices[-1]

        moved = operations.pop(first)
        # Popping shifts later positions left, so ``last`` now points just after it.
        position = last if last >= first else last + 1
        operations.insert(position, moved)

        logger.debug(f"Moved operation {first} to position {position}")
        return operations


DEFAULT_STRATEGIES: tuple[type[ResolutionStrategy], ...] = (
    KeepFirstStrategy,
    KeepLastStrategy,
    MergeOperationsStrategy,
    ManualResolveStrategy,
    RemoveDependencyStrategy,
    ReorderStrategy,
)
