"""Dependency scheduler - orders operations so dependencies run first.

The scheduler is the authoritative cycle check: the detector reports
cycles for display, but a cycle that reaches execution is caught here and
fails the whole batch.
"""

from loguru import logger

from batchops.core.errors import CircularDependencyError
from batchops.operations.models import Operation


class DependencyScheduler:
    """
    Produce a dependency-respecting execution order.

    Repeatedly picks the first pending operation (in current order) whose
    dependencies have all been applied. This is Kahn's algorithm with
    FIFO tie-breaking, so the result is stable and deterministic.

    Example:
        >>> scheduler = DependencyScheduler()
        >>> order = scheduler.schedule(operations)
        >>> [op.target_id for op in order]
        ["a", "b", "c"]
    """

    def schedule(self, operations: list[Operation]) -> list[Operation]:
        """
        Order operations so each runs after the targets it depends on.

        Dependencies on targets outside the batch are treated as already
        satisfied, matching the dependency graph used by the detector.

        Args:
            operations: Operations in their current order.

        Returns:
            The same operations in execution order.

        Raises:
            CircularDependencyError: If the remaining operations form a cycle.
                No partial order is returned.
        """
        targets = {op.target_id for op in operations}
        external = {dep for op in operations for dep in op.depends_on if dep not in targets}
        if external:
            logger.warning(f"Ignoring dependencies outside the batch: {sorted(external)}")

        pending = list(operations)
        completed: set[str] = set(external)
        order: list[Operation] = []

        while pending:
            index = next(
                (i for i, op in enumerate(pending) if op.is_ready(completed)),
                None,
            )

            if index is None:
                remaining = [op.target_id for op in pending]
                logger.error(f"Cannot schedule remaining operations: {remaining}")
                raise CircularDependencyError(remaining)

            op = pending.pop(index)
            order.append(op)
            completed.add(op.target_id)

        logger.debug(f"Scheduled {len(order)} operations: {[op.target_id for op in order]}")
        return order

    def waves(self, operations: list[Operation]) -> list[list[str]]:
        """
        Group target IDs into waves of mutually independent operations.

        Wave ``n`` only depends on waves before it. Used for previews.

        Raises:
            CircularDependencyError: If the operations form a cycle.
        """
        targets = {op.target_id for op in operations}
        assigned: set[str] = set()
        pending = list(operations)
        waves: list[list[str]] = []

        while pending:
            wave = [
                op
                for op in pending
                if all(dep in assigned or dep not in targets for dep in op.depends_on)
            ]
            if not wave:
                raise CircularDependencyError([op.target_id for op in pending])

            waves.append([op.target_id for op in wave])
            assigned.update(op.target_id for op in wave)
            scheduled = {id(op) for op in wave}
            pending = [op for op in pending if id(op) not in scheduled]

        return waves


def schedule_operations(operations: list[Operation]) -> list[Operation]:
    """Convenience function to compute an execution order.

    Args:
        operations: Operations to order.

    Returns:
        Operations in execution order.
    """
    return DependencyScheduler().schedule(operations)
