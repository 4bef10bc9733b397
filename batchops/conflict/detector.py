"""
Conflict Detection for batch operations

Detects problems between proposed operations before execution:
- User conflicts (two operations target the same record)
- Circular dependencies (dependency edges that close a loop)
- Field conflicts (two operations set the same field to different values)

Conflicts reference operations by their position in the current list,
so they are recomputed from scratch whenever that list changes.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from loguru import logger

from batchops.operations.models import Operation


class ConflictType(str, Enum):
    """Types of conflicts that block execution."""

    USER_CONFLICT = "user_conflict"  # Same target record
    FIELD_CONFLICT = "field_conflict"  # Same field, different values
    CIRCULAR_DEPENDENCY = "circular_dependency"  # Dependency loop


class Resolution(str, Enum):
    """Resolution strategies a caller can apply to a conflict."""

    MERGE = "merge"
    KEEP_FIRST = "keep_first"
    KEEP_LAST = "keep_last"
    MANUAL_RESOLVE = "manual_resolve"
    REMOVE_DEPENDENCY = "remove_dependency"
    REORDER = "reorder"


LEGAL_RESOLUTIONS: dict[ConflictType, tuple[Resolution, ...]] = {
    ConflictType.USER_CONFLICT: (
        Resolution.MERGE,
        Resolution.KEEP_FIRST,
        Resolution.KEEP_LAST,
    ),
    ConflictType.FIELD_CONFLICT: (
        Resolution.MERGE,
        Resolution.KEEP_FIRST,
        Resolution.KEEP_LAST,
        Resolution.MANUAL_RESOLVE,
    ),
    ConflictType.CIRCULAR_DEPENDENCY: (
        Resolution.REMOVE_DEPENDENCY,
        Resolution.REORDER,
    ),
}


@dataclass
class Conflict:
    """Represents a detected conflict."""

    conflict_type: ConflictType
    indices: list[int]
    message: str
    fields: list[str] = field(default_factory=list)
    resolutions: tuple[Resolution, ...] = ()

    def __post_init__(self):
        if not self.resolutions:
            self.resolutions = LEGAL_RESOLUTIONS[self.conflict_type]

    def allows(self, resolution: Resolution | str) -> bool:
        """Check if a resolution is legal for this conflict."""
        try:
            return Resolution(resolution) in self.resolutions
        except ValueError:
            return False

    def to_dict(self) -> dict[str, Any]:
        """Convert conflict to dictionary."""
        data: dict[str, Any] = {
            "type": self.conflict_type.value,
            "indices": list(self.indices),
            "message": self.message,
            "resolutions": [r.value for r in self.resolutions],
        }
        if self.conflict_type == ConflictType.FIELD_CONFLICT:
            data["fields"] = list(self.fields)
        return data


class ConflictDetector:
    """
    Detects conflicts in an ordered list of operations.

    Stateless: every call to ``detect`` recomputes the full conflict list.
    The result is ordered by pass (user, circular, field) and, within a
    pass, by scan order. Callers resolve conflicts by index into it.

    Usage:
        detector = ConflictDetector()
        conflicts = detector.detect(operations)

        if conflicts:
            # Resolve before executing
            pass
    """

    def detect(self, operations: list[Operation]) -> list[Conflict]:
        """
        Detect all conflicts among operations.

        Args:
            operations: Operations in their current order

        Returns:
            Conflicts in pass order
        """
        conflicts: list[Conflict] = []

        conflicts.extend(self._detect_user_conflicts(operations))
        conflicts.extend(self._detect_circular_dependencies(operations))
        conflicts.extend(self._detect_field_conflicts(operations, conflicts))

        if conflicts:
            logger.info(f"Detected {len(conflicts)} conflicts among {len(operations)} operations")
        else:
            logger.debug(f"No conflicts among {len(operations)} operations")

        return conflicts

    def _detect_user_conflicts(self, operations: list[Operation]) -> list[Conflict]:
        """
        Flag operations that target an already-seen record.

        Every repeat is paired with the first occurrence of its target.
        """
        conflicts: list[Conflict] = []
        first_seen: dict[str, int] = {}

        for index, op in enumerate(operations):
            if op.target_id in first_seen:
                first = first_seen[op.target_id]
                conflicts.append(
                    Conflict(
                        conflict_type=ConflictType.USER_CONFLICT,
                        indices=[first, index],
                        message=(
                            f"Operations {first} and {index} target the same user "
                            f"({op.target_id})"
                        ),
                    )
                )
            else:
                first_seen[op.target_id] = index

        logger.debug(f"User pass: {len(conflicts)} conflicts")
        return conflicts

    def _detect_circular_dependencies(self, operations: list[Operation]) -> list[Conflict]:
        """
        Find dependency cycles with an iterative depth-first search.

        Each back-edge into the current path yields one conflict whose
        indices run from the back-edge target along the path and back to
        it, e.g. ``[0, 1, 0]``. The traversal from a root stops at its
        first back-edge.
        """
        graph = build_dependency_graph(operations)
        conflicts: list[Conflict] = []
        visited: set[int] = set()

        for root in range(len(operations)):
            if root in visited:
                continue

            path: list[int] = [root]
            on_path: set[int] = {root}
            stack: list[tuple[int, int]] = [(root, 0)]
            visited.add(root)

            while stack:
                node, next_child = stack[-1]
                neighbors = graph[node]

                if next_child >= len(neighbors):
                    stack.pop()
                    path.pop()
                    on_path.discard(node)
                    continue

                stack[-1] = (node, next_child + 1)
                neighbor = neighbors[next_child]

                if neighbor in on_path:
                    cycle = path[path.index(neighbor) :] + [neighbor]
                    chain = " -> ".join(str(i) for i in cycle)
                    conflicts.append(
                        Conflict(
                            conflict_type=ConflictType.CIRCULAR_DEPENDENCY,
                            indices=cycle,
                            message=f"Circular dependency detected in operations: {chain}",
                        )
                    )
                    break

                if neighbor not in visited:
                    visited.add(neighbor)
                    path.append(neighbor)
                    on_path.add(neighbor)
                    stack.append((neighbor, 0))

        logger.debug(f"Circular pass: {len(conflicts)} conflicts")
        return conflicts

    def _detect_field_conflicts(
        self,
        operations: list[Operation],
        existing: list[Conflict],
    ) -> list[Conflict]:
        """
        Flag pairs that set a shared field to different values.

        Pairs already covered by a user conflict are skipped.
        """
        covered = {
            (c.indices[0], c.indices[1])
            for c in existing
            if c.conflict_type == ConflictType.USER_CONFLICT
        }
        conflicts: list[Conflict] = []

        for i, first in enumerate(operations):
            for j in range(i + 1, len(operations)):
                if (i, j) in covered:
                    continue

                second = operations[j]
                common = [
                    key
                    for key in first.data
                    if key in second.data and values_differ(first.data[key], second.data[key])
                ]

                if common:
                    conflicts.append(
                        Conflict(
                            conflict_type=ConflictType.FIELD_CONFLICT,
                            indices=[i, j],
                            fields=common,
                            message=(
                                f"Operations {i} and {j} modify the same fields with "
                                f"different values: {', '.join(common)}"
                            ),
                        )
                    )

        logger.debug(f"Field pass: {len(conflicts)} conflicts")
        return conflicts


def values_differ(first: Any, second: Any) -> bool:
    """
    Compare two field values without Python's cross-type equality.

    ``1``, ``1.0`` and ``True`` are different values here. Mappings and
    sequences are compared element by element under the same rule.
    """
    if type(first) is not type(second):
        return True
    if isinstance(first, dict):
        return first.keys() != second.keys() or any(
            values_differ(first[key], second[key]) for key in first
        )
    if isinstance(first, (list, tuple)):
        return len(first) != len(second) or any(
            values_differ(a, b) for a, b in zip(first, second)
        )
    return first != second


def build_dependency_graph(operations: list[Operation]) -> list[list[int]]:
    """
    Map each operation index to the indices it depends on.

    A dependency resolves to the first operation with that target;
    dependencies on targets outside the batch are ignored.
    """
    first_index: dict[str, int] = {}
    for index, op in enumerate(operations):
        first_index.setdefault(op.target_id, index)

    return [
        [first_index[dep] for dep in op.depends_on if dep in first_index]
        for op in operations
    ]


def detect_conflicts(operations: list[Operation]) -> list[Conflict]:
    """Convenience function to detect conflicts.

    Args:
        operations: Operations in their current order.

    Returns:
        List of Conflict objects.
    """
    return ConflictDetector().detect(operations)
