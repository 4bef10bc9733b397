"""Execution module - dependency scheduling, cancellation and the batch executor."""

from batchops.execution.cancellation import CancellationToken
from batchops.execution.executor import BatchExecutor, ProgressCallback, UpdateFn
from batchops.execution.scheduler import DependencyScheduler, schedule_operations

__all__ = [
    "BatchExecutor",
    "CancellationToken",
    "DependencyScheduler",
    "ProgressCallback",
    "UpdateFn",
    "schedule_operations",
]
