"""Operation and run option models."""

from batchops.operations.models import BatchOptions, MergeStrategy, Operation

__all__ = [
    "BatchOptions",
    "MergeStrategy",
    "Operation",
]
