"""Exception hierarchy for batch operations.

Two families live here:

- ``BatchOperationError`` and its subclasses describe why a batch could not
  run or did not finish (validation, cycles, failed operations, cancellation,
  concurrent invocation).
- ``UpdateError`` and its subclasses are raised by an update capability when
  a single record update is rejected. The executor captures them into the
  per-operation results instead of propagating them.
"""

from typing import Any


class BatchOperationError(Exception):
    """Base exception for all batch operation errors."""

    kind = "batch_error"

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        original_error: BaseException | None = None,
    ):
        """Initialize batch operation error.

        Args:
            message: Main error message
            details: Structured context about the failure
            original_error: Underlying exception, if any
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    def get_user_message(self) -> str:
        """Get user-friendly error message."""
        if self.original_error is not None:
            return f"{self.message}: {self.original_error}"
        return self.message


class BatchValidationError(BatchOperationError):
    """Raised when a batch is rejected before any update is issued."""

    kind = "validation"


class InvalidResolutionError(BatchValidationError):
    """Raised when a resolution is not legal for the targeted conflict."""

    kind = "invalid_resolution"


class CircularDependencyError(BatchOperationError):
    """Raised when operations cannot be ordered because of a dependency cycle."""

    kind = "circular_dependency"

    def __init__(self, pending: list[str], message: str | None = None):
        self.pending = pending
        super().__init__(
            message or f"Circular dependency detected among: {', '.join(pending)}",
            details={"pending": pending},
        )


class OperationFailedError(BatchOperationError):
    """Raised when an operation exhausted its retries in transactional mode."""

    kind = "operation_failure"

    def __init__(self, target_id: str, attempts: int, original_error: BaseException | None):
        self.target_id = target_id
        self.attempts = attempts
        reason = str(original_error) if original_error else "Unknown error"
        super().__init__(
            f"Operation failed for user {target_id}: {reason}",
            details={"target_id": target_id, "attempts": attempts},
            original_error=original_error,
        )


class BatchFailedError(BatchOperationError):
    """Raised at the end of a non-transactional run in which operations failed."""

    kind = "operation_failure"

    def __init__(self, failed: list[str]):
        self.failed = failed
        super().__init__(
            "Batch failed due to one or more errors",
            details={"failed": failed},
        )


class BatchCancelledError(BatchOperationError):
    """Raised when a run observes its cancellation token."""

    kind = "cancelled"

    def __init__(self, message: str = "Batch operation was cancelled"):
        super().__init__(message)


class BatchAlreadyRunningError(BatchOperationError):
    """Raised when a second batch is started while one is in flight."""

    kind = "already_running"

    def __init__(self) -> None:
        super().__init__("A batch is already running on this manager")


# =============================================================================
# UPDATE CAPABILITY ERRORS
# =============================================================================


class UpdateError(Exception):
    """Base class for failures reported by an update capability."""

    retryable = True

    def __init__(self, target_id: str, message: str):
        super().__init__(message)
        self.target_id = target_id
        self.message = message


class RecordNotFoundError(UpdateError):
    """The target record does not exist."""

    retryable = False

    def __init__(self, target_id: str):
        super().__init__(target_id, f"User {target_id} not found")


class UnauthorizedError(UpdateError):
    """The caller is not allowed to update the record."""

    retryable = False

    def __init__(self, target_id: str, message: str = "Unauthorized"):
        super().__init__(target_id, message)


class RecordConflictError(UpdateError):
    """The record changed underneath the update."""


class NetworkError(UpdateError):
    """Transport failure while applying the update."""


class RecordValidationError(UpdateError):
    """The update payload was rejected."""

    retryable = False


def is_retryable(error: BaseException) -> bool:
    """Check whether an update failure should be retried.

    Errors outside the ``UpdateError`` hierarchy are always retried.
    """
    return getattr(error, "retryable", True)
