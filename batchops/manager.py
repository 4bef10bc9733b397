"""
Batch operation manager.

Facade that owns the operation list, the conflict list and the state of
the current run, and composes the detector, resolver and executor.
Every mutation of the operation list recomputes conflicts from scratch.
"""

from collections.abc import Callable, Iterable
from typing import Any

from loguru import logger

from batchops.conflict.detector import Conflict, ConflictDetector, Resolution
from batchops.conflict.resolver import ConflictResolver
from batchops.core.config import Settings, get_settings
from batchops.core.errors import BatchAlreadyRunningError
from batchops.core.state import BatchRun, BatchStatus, ErrorDetails, OperationResult
from batchops.execution.cancellation import CancellationToken
from batchops.execution.executor import BatchExecutor, ProgressCallback, UpdateFn
from batchops.operations.models import BatchOptions, Operation

CompleteCallback = Callable[[list[OperationResult]], None]
ErrorCallback = Callable[[ErrorDetails], None]


class BatchOperationManager:
    """
    Manage a batch of user record updates.

    Usage:
        async with BatchOperationManager(store.apply_update) as manager:
            manager.add_operations([...])
            if manager.conflicts:
                manager.resolve_conflict(0, "keep_last")
            run = await manager.execute_batch(transactional=False)

    At most one batch runs per manager; starting another while one is in
    flight raises BatchAlreadyRunningError.
    """

    def __init__(
        self,
        update: UpdateFn,
        settings: Settings | None = None,
        on_complete: CompleteCallback | None = None,
        on_error: ErrorCallback | None = None,
        on_progress: ProgressCallback | None = None,
    ):
        """
        Initialize the manager.

        Args:
            update: Async update capability ``(target_id, data, merge_strategy)``.
            settings: Settings providing default run options.
            on_complete: Called with the results of a successful run.
            on_error: Called with the error details of a failed or rejected run.
            on_progress: Called whenever run progress increases.
        """
        self.settings = settings or get_settings()
        self.on_complete = on_complete
        self.on_error = on_error
        self.on_progress = on_progress

        self._detector = ConflictDetector()
        self._resolver = ConflictResolver(self._detector)
        self._executor = BatchExecutor(update)

        self._operations: list[Operation] = []
        self._conflicts: list[Conflict] = []
        self._run = BatchRun()
        self._token: CancellationToken | None = None
        self._running = False

    async def __aenter__(self) -> "BatchOperationManager":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def operations(self) -> list[Operation]:
        """Copy of the current operation list."""
        return [op.model_copy(deep=True) for op in self._operations]

    @property
    def conflicts(self) -> list[Conflict]:
        """Conflicts for the current operation list."""
        return list(self._conflicts)

    @property
    def run(self) -> BatchRun:
        """State of the current or most recent run."""
        return self._run

    @property
    def status(self) -> BatchStatus:
        return self._run.status

    @property
    def progress(self) -> int:
        return self._run.progress

    @property
    def results(self) -> list[OperationResult]:
        return list(self._run.results)

    @property
    def error_details(self) -> ErrorDetails | None:
        return self._run.error_details

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def can_execute(self) -> bool:
        """Whether the batch is non-empty and conflict-free."""
        return bool(self._operations) and not self._conflicts

    # =========================================================================
    # OPERATION LIST
    # =========================================================================

    def add_operation(self, operation: Operation | dict[str, Any]) -> list[Conflict]:
        """Add one operation and recompute conflicts."""
        return self.add_operations([operation])

    def add_operations(
        self,
        operations: Iterable[Operation | dict[str, Any]],
    ) -> list[Conflict]:
        """
        Add several operations and recompute conflicts once.

        Args:
            operations: Operation models or dictionaries accepted by Operation.

        Returns:
            The recomputed conflicts.
        """
        added = [self._coerce(op) for op in operations]
        self._set_operations(self._operations + added)
        logger.info(f"Added {len(added)} operations ({len(self._operations)} total)")
        return self.conflicts

    def clear_operations(self) -> None:
        """Clear operations, conflicts and run state; cancels an in-flight run."""
        if self._running and self._token is not None:
            self._token.cancel()

        self._operations = []
        self._conflicts = []
        self._run = BatchRun()
        logger.info("Cleared batch state")

    def resolve_conflict(
        self,
        conflict_index: int,
        resolution: Resolution | str,
        manual_values: dict[str, Any] | None = None,
    ) -> list[Conflict]:
        """
        Resolve the conflict at ``conflict_index``.

        Returns:
            The recomputed conflicts.

        Raises:
            InvalidResolutionError: If the resolution is not legal for the conflict.
        """
        self._operations, self._conflicts = self._resolver.resolve(
            self._operations,
            self._conflicts,
            conflict_index,
            resolution,
            manual_values,
        )
        return self.conflicts

    # =========================================================================
    # EXECUTION
    # =========================================================================

    async def execute_batch(
        self,
        options: BatchOptions | None = None,
        **overrides: Any,
    ) -> BatchRun:
        """
        Execute the current batch.

        Args:
            options: Run options; built from settings if omitted. ``overrides``
                apply on top either way.
            **overrides: ``transactional``, ``retry_count``, ``parallel_ops``,
                ``backoff_base_ms``.

        Returns:
            The finished run (also exposed through the state properties).

        Raises:
            BatchAlreadyRunningError: If a batch is already in flight.
        """
        if self._running:
            raise BatchAlreadyRunningError()

        if options is None:
            options = BatchOptions.from_settings(self.settings, **overrides)
        elif overrides:
            options = options.with_overrides(**overrides)
        token = CancellationToken()
        run = BatchRun()

        self._running = True
        self._token = token
        self._run = run

        try:
            await self._executor.execute(
                self._operations,
                self._conflicts,
                options,
                token=token,
                on_progress=self.on_progress,
                run=run,
            )
        finally:
            self._running = False
            if self._token is token:
                self._token = None

        self._notify(run)
        return run

    def cancel_batch(self) -> bool:
        """
        Cancel the in-flight batch.

        The run stops before its next operation, attempt or backoff wait;
        it keeps the results gathered so far.

        Returns:
            True if a running batch was signalled.
        """
        if not self._running or self._token is None:
            return False

        self._token.cancel()
        self._run.status = BatchStatus.IDLE
        self._run.error_details = ErrorDetails(
            message="Batch operation cancelled by user",
            kind="cancelled",
        )
        logger.info("Batch cancellation requested")
        return True

    async def close(self) -> None:
        """Tear down: cancel any in-flight batch."""
        if self.cancel_batch():
            logger.debug("Cancelled in-flight batch on close")

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _set_operations(self, operations: list[Operation]) -> None:
        self._operations = operations
        self._conflicts = self._detector.detect(operations)

    @staticmethod
    def _coerce(operation: Operation | dict[str, Any]) -> Operation:
        if isinstance(operation, Operation):
            return operation.model_copy(deep=True)
        return Operation.model_validate(operation)

    def _notify(self, run: BatchRun) -> None:
        """Invoke completion callbacks for a finished run."""
        try:
            if run.status == BatchStatus.SUCCESS:
                if self.on_complete is not None:
                    self.on_complete(list(run.results))
            elif run.error_details is not None and self.on_error is not None:
                self.on_error(run.error_details)
        except Exception as e:
            logger.warning(f"Callback error: {e}")
