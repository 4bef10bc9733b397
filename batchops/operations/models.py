"""Pydantic models for batch operations.

This module defines the data structures shared by the detector,
resolver, scheduler and executor: the proposed ``Operation`` and the
``BatchOptions`` that configure a run.
"""

from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from batchops.core.config import Settings, get_settings

# =============================================================================
# ENUMS
# =============================================================================


class MergeStrategy(str, Enum):
    """How a partial update is combined with the existing record."""

    SHALLOW = "shallow"
    DEEP = "deep"


# =============================================================================
# OPERATIONS
# =============================================================================


class Operation(BaseModel):
    """A proposed change to a single user record.

    ``target_id`` is the key used for conflict and dependency matching.
    ``merged_from`` and ``manually_resolved`` are only ever set by the
    conflict resolver.

    Example:
        >>> op = Operation(target_id="u-1", data={"role": "admin"}, depends_on=["u-0"])
        >>> op.merge_strategy
        <MergeStrategy.SHALLOW: 'shallow'>
    """

    model_config = ConfigDict(frozen=False, populate_by_name=True)

    target_id: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("target_id", "targetId", "userId"),
        description="Identifier of the record to modify",
    )
    data: dict[str, Any] = Field(
        default_factory=dict,
        description="Field name -> new value",
    )
    depends_on: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("depends_on", "dependsOn"),
        description="Target identifiers that must be applied first",
    )
    merge_strategy: MergeStrategy = Field(
        default=MergeStrategy.SHALLOW,
        validation_alias=AliasChoices("merge_strategy", "mergeStrategy"),
    )
    merged_from: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("merged_from", "mergedFrom"),
    )
    manually_resolved: bool = Field(
        default=False,
        validation_alias=AliasChoices("manually_resolved", "manuallyResolved"),
    )

    @field_validator("depends_on", mode="before")
    @classmethod
    def validate_depends_on(cls, v: Any) -> Any:
        """Treat a missing dependency list as empty."""
        return [] if v is None else v

    def is_ready(self, completed: set[str]) -> bool:
        """Check if every dependency target has been applied."""
        return all(dep in completed for dep in self.depends_on)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return self.model_dump(mode="json")


# =============================================================================
# RUN OPTIONS
# =============================================================================


class BatchOptions(BaseModel):
    """Options controlling a single batch run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    transactional: bool = Field(
        default=True,
        description="Stop issuing operations after the first exhausted failure",
    )
    retry_count: int = Field(
        default=3,
        ge=0,
        description="Retries per operation; each operation gets retry_count + 1 attempts",
    )
    parallel_ops: bool = Field(
        default=False,
        description="Use input order and ignore dependencies",
    )
    backoff_base_ms: int = Field(
        default=500,
        ge=0,
        description="Wait before retry n is 2^n * backoff_base_ms",
    )

    @classmethod
    def from_settings(cls, settings: Settings | None = None, **overrides: Any) -> "BatchOptions":
        """Build options from settings defaults, applying explicit overrides."""
        settings = settings or get_settings()
        values: dict[str, Any] = {
            "transactional": settings.transactional,
            "retry_count": settings.retry_count,
            "parallel_ops": settings.parallel_ops,
            "backoff_base_ms": settings.backoff_base_ms,
        }
        return cls(**values).with_overrides(**overrides)

    def with_overrides(self, **overrides: Any) -> "BatchOptions":
        """Return validated options with the non-None ``overrides`` applied."""
        values = self.model_dump()
        values.update({k: v for k, v in overrides.items() if v is not None})
        return type(self).model_validate(values)

    def backoff_seconds(self, attempt: int) -> float:
        """Delay before retry ``attempt`` (1-based)."""
        return (2**attempt) * self.backoff_base_ms / 1000.0
