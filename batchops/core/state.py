"""Run state types for batch execution."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from batchops.core.errors import BatchOperationError


class BatchStatus(str, Enum):
    """Status of a batch run."""

    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class OperationResult:
    """Outcome of one executed operation."""

    target_id: str
    success: bool
    attempts: int
    value: Any = None
    error: BaseException | None = None
    completed_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data: dict[str, Any] = {
            "target_id": self.target_id,
            "success": self.success,
            "attempts": self.attempts,
            "completed_at": self.completed_at,
        }
        if self.success:
            data["value"] = self.value
        else:
            data["error"] = str(self.error) if self.error else None
            data["error_type"] = type(self.error).__name__ if self.error else None
        return data


@dataclass
class ErrorDetails:
    """Run-level failure: a readable message plus the structured cause."""

    message: str
    kind: str
    cause: BaseException | None = None
    results: list[OperationResult] = field(default_factory=list)

    @classmethod
    def from_exception(
        cls,
        error: BatchOperationError,
        results: list[OperationResult] | None = None,
    ) -> "ErrorDetails":
        """Build details from a batch error."""
        return cls(
            message=error.message,
            kind=error.kind,
            cause=error,
            results=list(results or []),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "message": self.message,
            "kind": self.kind,
            "cause": str(self.cause) if self.cause else None,
            "results": [r.to_dict() for r in self.results],
        }


@dataclass
class BatchRun:
    """Ephemeral state of one batch execution."""

    status: BatchStatus = BatchStatus.IDLE
    progress: int = 0
    results: list[OperationResult] = field(default_factory=list)
    error_details: ErrorDetails | None = None
    order: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> list[str]:
        """Target IDs of successful operations."""
        return [r.target_id for r in self.results if r.success]

    @property
    def failed(self) -> list[str]:
        """Target IDs of failed operations."""
        return [r.target_id for r in self.results if not r.success]

    def advance(self, progress: int) -> bool:
        """Raise progress; never moves backwards within a run.

        Returns:
            True if progress changed.
        """
        progress = max(0, min(100, progress))
        if progress > self.progress:
            self.progress = progress
            return True
        return False

    def fail(self, error: BatchOperationError) -> None:
        """Mark the run failed with the given cause."""
        self.status = BatchStatus.ERROR
        self.error_details = ErrorDetails.from_exception(error, self.results)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "status": self.status.value,
            "progress": self.progress,
            "results": [r.to_dict() for r in self.results],
            "error_details": self.error_details.to_dict() if self.error_details else None,
            "order": list(self.order),
        }
