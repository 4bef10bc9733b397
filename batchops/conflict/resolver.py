"""
Conflict Resolution for batch operations

Applies a caller-chosen resolution to one conflict and recomputes the
conflict list. Resolution never mutates the caller's operations: it works
on a deep copy and returns the new list together with fresh conflicts.
"""

from typing import Any

from loguru import logger

from batchops.conflict.detector import Conflict, ConflictDetector, Resolution
from batchops.conflict.strategies import DEFAULT_STRATEGIES, ResolutionStrategy
from batchops.core.errors import InvalidResolutionError
from batchops.operations.models import Operation


class ConflictResolver:
    """
    Resolves conflicts using registered strategies.

    Usage:
        resolver = ConflictResolver()
        operations, conflicts = resolver.resolve(
            operations, conflicts, 0, Resolution.KEEP_LAST
        )

    Resolving may reveal or clear other conflicts, so callers must use
    the returned conflict list rather than patching their own.
    """

    def __init__(self, detector: ConflictDetector | None = None):
        self._detector = detector or ConflictDetector()
        self._strategies: dict[Resolution, ResolutionStrategy] = {}
        self._register_default_strategies()

    def _register_default_strategies(self):
        """Register one strategy per resolution."""
        for strategy_cls in DEFAULT_STRATEGIES:
            strategy = strategy_cls()
            self._strategies[strategy.resolution] = strategy

    def register_strategy(self, strategy: ResolutionStrategy):
        """Register a custom resolution strategy."""
        self._strategies[strategy.resolution] = strategy
        logger.info(f"Registered custom strategy for {strategy.resolution.value}")

    def resolve(
        self,
        operations: list[Operation],
        conflicts: list[Conflict],
        conflict_index: int,
        resolution: Resolution | str,
        manual_values: dict[str, Any] | None = None,
    ) -> tuple[list[Operation], list[Conflict]]:
        """
        Resolve a single conflict.

        Args:
            operations: Current operation list
            conflicts: Conflicts computed for ``operations``
            conflict_index: Position of the conflict to resolve
            resolution: Strategy to apply; must be legal for the conflict
            manual_values: Field values for ``manual_resolve``

        Returns:
            Tuple of (new operations, recomputed conflicts). A missing
            ``conflict_index`` returns the inputs unchanged.

        Raises:
            InvalidResolutionError: If the resolution is not legal for the conflict
        """
        if not 0 <= conflict_index < len(conflicts):
            logger.warning(f"No conflict at index {conflict_index}, nothing to resolve")
            return operations, conflicts

        conflict = conflicts[conflict_index]

        if not conflict.allows(resolution):
            raise InvalidResolutionError(
                f"Resolution '{getattr(resolution, 'value', resolution)}' is not valid "
                f"for {conflict.conflict_type.value}",
                details={
                    "conflict_index": conflict_index,
                    "allowed": [r.value for r in conflict.resolutions],
                },
            )

        strategy = self._strategies.get(Resolution(resolution))
        if strategy is None or not strategy.can_resolve(conflict):
            raise InvalidResolutionError(
                f"No strategy for '{Resolution(resolution).value}' handles "
                f"{conflict.conflict_type.value}",
                details={"conflict_index": conflict_index},
            )

        logger.info(
            f"Resolving {conflict.conflict_type.value} at {conflict.indices} "
            f"with {strategy.resolution.value}"
        )

        working = [op.model_copy(deep=True) for op in operations]
        new_operations = strategy.apply(working, conflict, dict(manual_values or {}))
        new_conflicts = self._detector.detect(new_operations)

        logger.info(
            f"Resolution complete: {len(new_operations)} operations, "
            f"{len(new_conflicts)} conflicts remaining"
        )
        return new_operations, new_conflicts


def resolve_conflict(
    operations: list[Operation],
    conflict_index: int,
    resolution: Resolution | str,
    manual_values: dict[str, Any] | None = None,
) -> tuple[list[Operation], list[Conflict]]:
    """Convenience function to resolve a conflict.

    Conflicts are detected from ``operations`` before resolving.

    Returns:
        Tuple of (new operations, recomputed conflicts).
    """
    resolver = ConflictResolver()
    conflicts = ConflictDetector().detect(operations)
    return resolver.resolve(operations, conflicts, conflict_index, resolution, manual_values)
