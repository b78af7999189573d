"""Pydantic data model for tasks, phase results and persisted snapshots.

Every timestamp is a timezone-aware ``datetime``. Models round-trip through
JSON with ``model_dump_json`` / ``model_validate_json``, which re-hydrates the
timestamps on load.
"""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field

from ralph.core.constants import PERSISTED_STATE_VERSION
from ralph.core.enums import StepStatus, StepType, SupervisorState

# Serializable scalars only, so the snapshot format stays stable
MetadataValue = str | int | float | bool
Metadata = dict[str, MetadataValue]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


class PlanStep(BaseModel):
    """A single step of a task plan."""

    index: int
    description: str
    type: StepType = StepType.OTHER
    status: StepStatus = StepStatus.PENDING
    file_path: str | None = None
    command: str | None = None
    result: str | None = None


class TaskPlan(BaseModel):
    """Plan generated during the PLAN phase."""

    id: str
    steps: list[PlanStep] = Field(default_factory=list)
    success_criteria: list[str] = Field(default_factory=list)
    estimated_duration_s: float | None = None
    created_at: datetime = Field(default_factory=utc_now)


class ExecutionResult(BaseModel):
    """Outcome of executing one plan step."""

    step_index: int
    success: bool
    output: str | None = None
    error: str | None = None
    duration_ms: float = 0.0
    timestamp: datetime = Field(default_factory=utc_now)


class CriterionResult(BaseModel):
    """Pass/fail result for one success criterion."""

    criterion: str
    passed: bool
    details: str | None = None


class VerificationResult(BaseModel):
    """Outcome of the VERIFY phase."""

    passed: bool
    criteria_results: list[CriterionResult] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utc_now)


class TaskContext(BaseModel):
    """The single in-flight task owned by a state machine."""

    id: str
    description: str
    iteration: int = 0
    max_iterations: int
    started_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    plan: TaskPlan | None = None
    execution_results: list[ExecutionResult] | None = None
    verification_result: VerificationResult | None = None
    error: str | None = None
    metadata: Metadata = Field(default_factory=dict)


class StateTransition(BaseModel):
    """Immutable record of one state change."""

    model_config = ConfigDict(frozen=True)

    from_state: SupervisorState
    to_state: SupervisorState
    reason: str
    timestamp: datetime = Field(default_factory=utc_now)
    context: Metadata = Field(default_factory=dict)


class PersistedState(BaseModel):
    """Durable snapshot used for crash recovery."""

    task_context: TaskContext
    current_state: SupervisorState
    state_history: list[StateTransition] = Field(default_factory=list)
    persisted_at: datetime = Field(default_factory=utc_now)
    version: str = PERSISTED_STATE_VERSION
