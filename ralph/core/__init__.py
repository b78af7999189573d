"""Core enums, constants and data model for the supervisor.

The leaf modules here have no imports from other ralph modules outside core/.
"""

from ralph.core.enums import DecisionOutcome, StepStatus, StepType, SupervisorState
from ralph.core.models import (
    CriterionResult,
    ExecutionResult,
    Metadata,
    PersistedState,
    PlanStep,
    StateTransition,
    TaskContext,
    TaskPlan,
    VerificationResult,
    utc_now,
)

__all__ = [
    "CriterionResult",
    "DecisionOutcome",
    "ExecutionResult",
    "Metadata",
    "PersistedState",
    "PlanStep",
    "StateTransition",
    "StepStatus",
    "StepType",
    "SupervisorState",
    "TaskContext",
    "TaskPlan",
    "VerificationResult",
    "utc_now",
]
