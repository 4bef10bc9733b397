"""
Conflict Detection and Resolution for batch operations

- ConflictDetector: Pre-execution conflict analysis
- ConflictResolver: Strategy-based conflict resolution
"""

from batchops.conflict.detector import (
    LEGAL_RESOLUTIONS,
    Conflict,
    ConflictDetector,
    ConflictType,
    Resolution,
    build_dependency_graph,
    detect_conflicts,
)
from batchops.conflict.resolver import ConflictResolver, resolve_conflict
from batchops.conflict.strategies import (
    KeepFirstStrategy,
    KeepLastStrategy,
    ManualResolveStrategy,
    MergeOperationsStrategy,
    RemoveDependencyStrategy,
    ReorderStrategy,
    ResolutionStrategy,
)

__all__ = [
    # Detector
    "LEGAL_RESOLUTIONS",
    "Conflict",
    "ConflictDetector",
    "ConflictType",
    "Resolution",
    "build_dependency_graph",
    "detect_conflicts",
    # Resolver
    "ConflictResolver",
    "resolve_conflict",
    # Strategies
    "KeepFirstStrategy",
    "KeepLastStrategy",
    "ManualResolveStrategy",
    "MergeOperationsStrategy",
    "RemoveDependencyStrategy",
    "ReorderStrategy",
    "ResolutionStrategy",
]
