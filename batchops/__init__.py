"""
batchops - conflict-aware batch updates for user records.

Detects conflicts between proposed updates, resolves them with explicit
strategies and executes the batch in dependency order with retries.
"""

__version__ = "0.1.0"

from batchops.conflict import Conflict, ConflictType, Resolution
from batchops.core.state import BatchRun, BatchStatus
from batchops.manager import BatchOperationManager
from batchops.operations import BatchOptions, MergeStrategy, Operation

__all__ = [
    "BatchOperationManager",
    "BatchOptions",
    "BatchRun",
    "BatchStatus",
    "Conflict",
    "ConflictType",
    "MergeStrategy",
    "Operation",
    "Resolution",
    "__version__",
]
