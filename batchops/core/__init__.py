"""Core module - configuration, logging, errors and run state."""

from batchops.core.config import Settings, get_settings
from batchops.core.state import BatchRun, BatchStatus, ErrorDetails, OperationResult

__all__ = [
    "BatchRun",
    "BatchStatus",
    "ErrorDetails",
    "OperationResult",
    "Settings",
    "get_settings",
]
