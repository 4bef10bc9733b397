"""Unit tests for the batch executor."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from batchops.conflict.detector import Conflict, ConflictType
from batchops.core.errors import (
    BatchCancelledError,
    BatchFailedError,
    NetworkError,
    OperationFailedError,
    RecordNotFoundError,
)
from batchops.core.state import BatchRun, BatchStatus
from batchops.execution.cancellation import CancellationToken
from batchops.execution.executor import BatchExecutor
from batchops.operations.models import BatchOptions, MergeStrategy, Operation

# =============================================================================
# FIXTURES
# =============================================================================


class RecordingToken(CancellationToken):
    """Token that records backoff waits instead of sleeping."""

    def __init__(self) -> None:
        super().__init__()
        self.sleeps: list[float] = []

    async def sleep(self, seconds: float) -> bool:
        self.sleeps.append(seconds)
        return self.cancelled


def failing_for(*failing: str) -> AsyncMock:
    """Update capability that always fails for the given targets."""

    async def apply(target_id, data, merge_strategy):
        if target_id in failing:
            raise NetworkError(target_id, f"boom {target_id}")
        return {"id": target_id, **data}

    return AsyncMock(side_effect=apply)


def called_targets(update: AsyncMock) -> list[str]:
    return [call.args[0] for call in update.await_args_list]


# =============================================================================
# PRE-FLIGHT
# =============================================================================


class TestPreflight:
    """Tests for rejections before any update is issued."""

    @pytest.mark.asyncio
    async def test_empty_batch(self, update_fn: AsyncMock, fast_options: BatchOptions) -> None:
        """Test an empty batch errors without calling the capability."""
        run = await BatchExecutor(update_fn).execute([], [], fast_options)

        assert run.status == BatchStatus.ERROR
        assert run.error_details.kind == "validation"
        assert run.error_details.message == "No operations to execute"
        update_fn.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unresolved_conflicts(
        self,
        update_fn: AsyncMock,
        sample_operations: list[Operation],
        fast_options: BatchOptions,
    ) -> None:
        """Test a non-empty conflict list errors without calling the capability."""
        conflicts = [Conflict(ConflictType.USER_CONFLICT, [0, 1], "dup")]

        run = await BatchExecutor(update_fn).execute(sample_operations, conflicts, fast_options)

        assert run.status == BatchStatus.ERROR
        assert "unresolved conflicts" in run.error_details.message
        update_fn.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cycle_at_schedule_time(
        self, update_fn: AsyncMock, fast_options: BatchOptions
    ) -> None:
        """Test a cycle that reaches the scheduler fails the whole batch."""
        operations = [
            Operation(target_id="A", data={"x": 1}, depends_on=["B"]),
            Operation(target_id="B", data={"y": 1}, depends_on=["A"]),
        ]

        run = await BatchExecutor(update_fn).execute(operations, [], fast_options)

        assert run.status == BatchStatus.ERROR
        assert run.error_details.kind == "circular_dependency"
        assert run.results == []
        update_fn.assert_not_awaited()


# =============================================================================
# SUCCESSFUL RUNS
# =============================================================================


class TestSuccess:
    """Tests for runs where every operation succeeds."""

    @pytest.mark.asyncio
    async def test_all_succeed(
        self,
        update_fn: AsyncMock,
        sample_operations: list[Operation],
        fast_options: BatchOptions,
    ) -> None:
        """Test results, status and progress of a clean run."""
        run = await BatchExecutor(update_fn).execute(
            list(reversed(sample_operations)), [], fast_options
        )

        assert run.status == BatchStatus.SUCCESS
        assert run.progress == 100
        assert run.error_details is None
        assert run.order == ["user-1", "user-2", "user-3"]
        assert [r.target_id for r in run.results] == ["user-1", "user-2", "user-3"]
        assert all(r.success and r.attempts == 1 for r in run.results)
        assert run.results[0].value == {"id": "user-1", "role": "admin"}

    @pytest.mark.asyncio
    async def test_update_arguments(self, update_fn: AsyncMock, fast_options: BatchOptions) -> None:
        """Test the capability receives target, data and merge strategy."""
        operations = [
            Operation(target_id="A", data={"profile": {"city": "Oslo"}}, merge_strategy="deep")
        ]

        await BatchExecutor(update_fn).execute(operations, [], fast_options)

        update_fn.assert_awaited_once_with("A", {"profile": {"city": "Oslo"}}, MergeStrategy.DEEP)

    @pytest.mark.asyncio
    async def test_parallel_ops_uses_input_order(
        self,
        update_fn: AsyncMock,
        sample_operations: list[Operation],
    ) -> None:
        """Test parallel_ops ignores dependencies but still runs one at a time."""
        options = BatchOptions(parallel_ops=True, backoff_base_ms=0)

        run = await BatchExecutor(update_fn).execute(
            list(reversed(sample_operations)), [], options
        )

        assert run.status == BatchStatus.SUCCESS
        assert called_targets(update_fn) == ["user-3", "user-2", "user-1"]

    @pytest.mark.asyncio
    async def test_progress_callback(
        self, update_fn: AsyncMock, fast_options: BatchOptions
    ) -> None:
        """Test progress rises monotonically and reaches 100 on success."""
        operations = [Operation(target_id=f"u{i}", data={"n": i}) for i in range(4)]
        seen: list[int] = []

        await BatchExecutor(update_fn).execute(
            operations, [], fast_options, on_progress=seen.append
        )

        assert seen == [25, 50, 75, 100]

    @pytest.mark.asyncio
    async def test_updates_given_run_in_place(
        self,
        update_fn: AsyncMock,
        sample_operations: list[Operation],
        fast_options: BatchOptions,
    ) -> None:
        """Test a caller-supplied run object is the one returned."""
        run = BatchRun(progress=40)

        returned = await BatchExecutor(update_fn).execute(
            sample_operations, [], fast_options, run=run
        )

        assert returned is run
        assert run.status == BatchStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_snapshot_isolated_from_caller(self, fast_options: BatchOptions) -> None:
        """Test mutating the caller's list during a run does not affect it."""
        operations = [
            Operation(target_id="A", data={"x": 1}),
            Operation(target_id="B", data={"x": 2}),
        ]
        seen: list[dict] = []

        async def apply(target_id, data, merge_strategy):
            seen.append(data)
            operations[1].data["x"] = 99
            operations.append(Operation(target_id="C", data={"x": 3}))
            return data

        await BatchExecutor(AsyncMock(side_effect=apply)).execute(operations, [], fast_options)

        assert seen == [{"x": 1}, {"x": 2}]


# =============================================================================
# RETRIES
# =============================================================================


class TestRetry:
    """Tests for per-operation retry and backoff."""

    @pytest.mark.asyncio
    async def test_recovers_after_failures(self, fast_options: BatchOptions) -> None:
        """Test an operation succeeding on its third attempt."""
        update = AsyncMock(
            side_effect=[NetworkError("A", "down"), RuntimeError("flaky"), {"id": "A"}]
        )

        run = await BatchExecutor(update).execute(
            [Operation(target_id="A", data={"x": 1})], [], fast_options
        )

        assert run.status == BatchStatus.SUCCESS
        assert run.results[0].attempts == 3
        assert run.results[0].value == {"id": "A"}

    @pytest.mark.asyncio
    async def test_attempts_are_retry_count_plus_one(self) -> None:
        """Test exhausting retries records every attempt."""
        update = failing_for("A")
        options = BatchOptions(retry_count=2, backoff_base_ms=0)

        run = await BatchExecutor(update).execute(
            [Operation(target_id="A", data={"x": 1})], [], options
        )

        assert update.await_count == 3
        assert run.results[0].attempts == 3
        assert isinstance(run.results[0].error, NetworkError)

    @pytest.mark.asyncio
    async def test_zero_retries(self) -> None:
        """Test retry_count=0 means a single attempt."""
        update = failing_for("A")

        run = await BatchExecutor(update).execute(
            [Operation(target_id="A", data={"x": 1})],
            [],
            BatchOptions(retry_count=0, backoff_base_ms=0),
        )

        assert update.await_count == 1
        assert run.results[0].attempts == 1

    @pytest.mark.asyncio
    async def test_exponential_backoff(self) -> None:
        """Test retry n waits 2^n * base before the attempt."""
        token = RecordingToken()
        options = BatchOptions(retry_count=3, backoff_base_ms=500)

        await BatchExecutor(failing_for("A")).execute(
            [Operation(target_id="A", data={"x": 1})], [], options, token=token
        )

        assert token.sleeps == [1.0, 2.0, 4.0]

    @pytest.mark.asyncio
    async def test_non_retryable_error_stops_early(self, fast_options: BatchOptions) -> None:
        """Test errors marked non-retryable are attempted once."""
        update = AsyncMock(side_effect=RecordNotFoundError("A"))

        run = await BatchExecutor(update).execute(
            [Operation(target_id="A", data={"x": 1})], [], fast_options
        )

        assert update.await_count == 1
        assert run.results[0].attempts == 1
        assert run.status == BatchStatus.ERROR


# =============================================================================
# FAILURE POLICY
# =============================================================================


class TestFailurePolicy:
    """Tests for transactional and non-transactional failure handling."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("k", [1, 2, 3])
    async def test_transactional_stops_at_kth(self, k: int) -> None:
        """Test exactly k operations are attempted when the k-th fails."""
        operations = [Operation(target_id=f"u{i}", data={"n": i}) for i in range(1, 4)]
        update = failing_for(f"u{k}")
        options = BatchOptions(transactional=True, retry_count=2, backoff_base_ms=0)

        run = await BatchExecutor(update).execute(operations, [], options)

        assert sorted(set(called_targets(update))) == [f"u{i}" for i in range(1, k + 1)]
        assert run.status == BatchStatus.ERROR
        assert len(run.results) == k
        assert run.results[-1].success is False
        assert isinstance(run.error_details.cause, OperationFailedError)
        assert run.error_details.cause.target_id == f"u{k}"
        assert run.progress < 100

    @pytest.mark.asyncio
    async def test_non_transactional_attempts_all(self) -> None:
        """Test every operation runs and the batch still reports error."""
        operations = [Operation(target_id=f"u{i}", data={"n": i}) for i in range(1, 5)]
        update = failing_for("u2")
        options = BatchOptions(transactional=False, retry_count=1, backoff_base_ms=0)

        run = await BatchExecutor(update).execute(operations, [], options)

        assert [r.target_id for r in run.results] == ["u1", "u2", "u3", "u4"]
        assert run.status == BatchStatus.ERROR
        assert len(run.succeeded) == 3
        assert run.failed == ["u2"]
        assert isinstance(run.error_details.cause, BatchFailedError)
        assert run.error_details.message == "Batch failed due to one or more errors"
        assert len(run.error_details.results) == 4


# =============================================================================
# CANCELLATION
# =============================================================================


class TestCancellation:
    """Tests for cooperative cancellation."""

    @pytest.mark.asyncio
    async def test_cancelled_before_start(
        self,
        update_fn: AsyncMock,
        sample_operations: list[Operation],
        fast_options: BatchOptions,
    ) -> None:
        """Test a pre-cancelled token issues no updates."""
        token = CancellationToken()
        token.cancel()

        run = await BatchExecutor(update_fn).execute(
            sample_operations, [], fast_options, token=token
        )

        assert run.status == BatchStatus.ERROR
        assert run.error_details.kind == "cancelled"
        update_fn.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancel_between_operations(self, fast_options: BatchOptions) -> None:
        """Test the in-flight update finishes and nothing further starts."""
        token = CancellationToken()
        operations = [Operation(target_id=f"u{i}", data={"n": i}) for i in range(3)]

        async def apply(target_id, data, merge_strategy):
            token.cancel()
            return data

        update = AsyncMock(side_effect=apply)
        run = await BatchExecutor(update).execute(operations, [], fast_options, token=token)

        assert update.await_count == 1
        assert [r.target_id for r in run.results] == ["u0"]
        assert run.results[0].success is True
        assert isinstance(run.error_details.cause, BatchCancelledError)

    @pytest.mark.asyncio
    async def test_cancel_interrupts_backoff(self) -> None:
        """Test cancelling during a long backoff wait ends the run promptly."""
        token = CancellationToken()

        async def apply(target_id, data, merge_strategy):
            asyncio.get_running_loop().call_later(0.05, token.cancel)
            raise NetworkError(target_id, "down")

        update = AsyncMock(side_effect=apply)
        options = BatchOptions(retry_count=3, backoff_base_ms=10_000)

        run = await asyncio.wait_for(
            BatchExecutor(update).execute(
                [Operation(target_id="A", data={"x": 1})], [], options, token=token
            ),
            timeout=5,
        )

        assert update.await_count == 1
        assert run.error_details.kind == "cancelled"
        assert run.results == []

    @pytest.mark.asyncio
    async def test_task_cancel_marks_run_cancelled(self, fast_options: BatchOptions) -> None:
        """Test cancelling the surrounding task fails the run before propagating."""
        started = asyncio.Event()

        async def apply(target_id, data, merge_strategy):
            started.set()
            await asyncio.Event().wait()

        run = BatchRun()
        task = asyncio.create_task(
            BatchExecutor(AsyncMock(side_effect=apply)).execute(
                [Operation(target_id="A", data={"x": 1})], [], fast_options, run=run
            )
        )
        await started.wait()

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert run.status == BatchStatus.ERROR
        assert run.error_details.kind == "cancelled"

    @pytest.mark.asyncio
    async def test_cancel_during_last_update(self, fast_options: BatchOptions) -> None:
        """Test a cancel observed after the final update still ends in error."""
        token = CancellationToken()

        async def apply(target_id, data, merge_strategy):
            token.cancel()
            return data

        run = await BatchExecutor(AsyncMock(side_effect=apply)).execute(
            [Operation(target_id="A", data={"x": 1})], [], fast_options, token=token
        )

        assert run.status == BatchStatus.ERROR
        assert run.error_details.kind == "cancelled"
        assert run.succeeded == ["A"]
        assert run.progress < 100
