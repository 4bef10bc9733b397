"""
Batch executor for user record updates.

Runs a conflict-free operation list against an update capability one
operation at a time, with per-operation retry and exponential backoff,
cooperative cancellation and optional transactional abort.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger

from batchops.core.errors import (
    BatchCancelledError,
    BatchFailedError,
    BatchOperationError,
    BatchValidationError,
    OperationFailedError,
    is_retryable,
)
from batchops.core.state import BatchRun, BatchStatus, OperationResult
from batchops.execution.cancellation import CancellationToken
from batchops.execution.scheduler import DependencyScheduler
from batchops.operations.models import BatchOptions, MergeStrategy, Operation

# =============================================================================
# CALLBACK TYPES
# =============================================================================


UpdateFn = Callable[[str, dict[str, Any], MergeStrategy], Awaitable[Any]]
ProgressCallback = Callable[[int], None]


# =============================================================================
# BATCH EXECUTOR
# =============================================================================


class BatchExecutor:
    """
    Execute a batch of operations against an update capability.

    Operations always run one at a time. ``parallel_ops`` only changes the
    order: input order with dependencies ignored, instead of the
    dependency-respecting schedule.

    Attributes:
        update: Async callable applying one update to one record.

    Example:
        >>> executor = BatchExecutor(store.apply_update)
        >>> run = await executor.execute(operations, conflicts=[])
        >>> run.status
        <BatchStatus.SUCCESS: 'success'>
    """

    def __init__(
        self,
        update: UpdateFn,
        scheduler: DependencyScheduler | None = None,
    ):
        """
        Initialize batch executor.

        Args:
            update: Async update capability ``(target_id, data, merge_strategy)``.
            scheduler: Scheduler used when dependencies are respected.
        """
        self.update = update
        self._scheduler = scheduler or DependencyScheduler()

    async def execute(
        self,
        operations: list[Operation],
        conflicts: list[Any],
        options: BatchOptions | None = None,
        token: CancellationToken | None = None,
        on_progress: ProgressCallback | None = None,
        run: BatchRun | None = None,
    ) -> BatchRun:
        """
        Execute a batch.

        Pre-flight failures (empty batch, unresolved conflicts, dependency
        cycle) end the run in ``error`` before any update is issued.
        Per-operation failures are captured in the results.

        Args:
            operations: Operations to apply; snapshotted before execution.
            conflicts: Current conflicts; must be empty.
            options: Run options (defaults from settings).
            token: Cancellation token polled between steps.
            on_progress: Called whenever progress increases.
            run: Run state to update in place, for callers watching it live.

        Returns:
            The finished BatchRun.
        """
        options = options or BatchOptions.from_settings()
        token = token or CancellationToken()
        run = run or BatchRun()

        run.status = BatchStatus.RUNNING
        run.progress = 0
        run.results = []
        run.error_details = None
        run.order = []

        try:
            await self._run(operations, conflicts, options, token, on_progress, run)
        except BatchOperationError as e:
            logger.error(f"Batch failed: {e.get_user_message()}")
            run.fail(e)
        except asyncio.CancelledError:
            logger.warning("Batch task cancelled")
            run.fail(BatchCancelledError())
            raise

        return run

    async def _run(
        self,
        operations: list[Operation],
        conflicts: list[Any],
        options: BatchOptions,
        token: CancellationToken,
        on_progress: ProgressCallback | None,
        run: BatchRun,
    ) -> None:
        """Run the batch, raising BatchOperationError on run-level failure."""
        self._validate(operations, conflicts)

        # Snapshot so callers mutating their list cannot affect this run
        batch = [op.model_copy(deep=True) for op in operations]

        sequence = batch if options.parallel_ops else self._scheduler.schedule(batch)
        run.order = [op.target_id for op in sequence]

        logger.info(
            f"Executing {len(sequence)} operations "
            f"(transactional={options.transactional}, retry_count={options.retry_count}, "
            f"parallel_ops={options.parallel_ops})"
        )

        total = len(sequence)
        for index, op in enumerate(sequence):
            token.raise_if_cancelled()
            self._report_progress(run, index * 100 // total, on_progress)

            result = await self._execute_with_retry(op, options, token)
            run.results.append(result)

            if not result.success:
                logger.error(
                    f"Operation for {op.target_id} failed after {result.attempts} attempts: "
                    f"{result.error}"
                )
                if options.transactional:
                    raise OperationFailedError(op.target_id, result.attempts, result.error)

        # A cancel that lands during the last update still cancels the run
        token.raise_if_cancelled()

        if run.failed:
            raise BatchFailedError(run.failed)

        run.status = BatchStatus.SUCCESS
        self._report_progress(run, 100, on_progress)
        logger.info(f"Batch complete: {len(run.succeeded)}/{total} operations succeeded")

    def _validate(self, operations: list[Operation], conflicts: list[Any]) -> None:
        """Reject batches that must not touch the update capability."""
        if not operations:
            raise BatchValidationError("No operations to execute")

        if conflicts:
            raise BatchValidationError(
                "Cannot execute batch with unresolved conflicts",
                details={"conflicts": len(conflicts)},
            )

    async def _execute_with_retry(
        self,
        op: Operation,
        options: BatchOptions,
        token: CancellationToken,
    ) -> OperationResult:
        """
        Apply one operation with up to ``retry_count + 1`` attempts.

        Retry ``n`` waits ``2^n * backoff_base_ms`` first. Non-retryable
        update errors end the loop early.

        Raises:
            BatchCancelledError: If cancelled before an attempt or during backoff.
        """
        attempts = 0
        last_error: BaseException | None = None

        for attempt in range(options.retry_count + 1):
            if attempt > 0:
                delay = options.backoff_seconds(attempt)
                logger.warning(
                    f"Retrying {op.target_id} in {delay:.2f}s "
                    f"(attempt {attempt + 1}/{options.retry_count + 1})"
                )
                if await token.sleep(delay):
                    raise BatchCancelledError()

            token.raise_if_cancelled()
            attempts += 1

            try:
                value = await self.update(op.target_id, dict(op.data), op.merge_strategy)
            except Exception as e:
                last_error = e
                logger.warning(f"Update for {op.target_id} failed (attempt {attempts}): {e}")
                if not is_retryable(e):
                    logger.debug(f"{type(e).__name__} is not retryable, giving up")
                    break
                continue

            logger.debug(f"Updated {op.target_id} in {attempts} attempt(s)")
            return OperationResult(
                target_id=op.target_id,
                success=True,
                attempts=attempts,
                value=value,
            )

        return OperationResult(
            target_id=op.target_id,
            success=False,
            attempts=attempts,
            error=last_error,
        )

    @staticmethod
    def _report_progress(
        run: BatchRun,
        progress: int,
        on_progress: ProgressCallback | None,
    ) -> None:
        """Advance progress and notify the listener on change."""
        if run.advance(progress) and on_progress is not None:
            try:
                on_progress(run.progress)
            except Exception as e:
                logger.warning(f"Progress callback error: {e}")
