"""Ralph Loop supervisor: plan -> execute -> verify -> iterate control core."""

from ralph.config import (
    DecisionConfig,
    DecisionThresholds,
    MachineConfig,
    Settings,
    SupervisorConfig,
    load_config,
)
from ralph.core import (
    CriterionResult,
    DecisionOutcome,
    ExecutionResult,
    PersistedState,
    PlanStep,
    StateTransition,
    StepStatus,
    StepType,
    SupervisorState,
    TaskContext,
    TaskPlan,
    VerificationResult,
)
from ralph.errors import (
    InvalidTransitionError,
    MissingHandlerError,
    PhaseInterruptedError,
    ResumeError,
    SupervisorError,
)
from ralph.supervisor import (
    DecisionEngine,
    LoopResult,
    PhaseContext,
    ProgressReport,
    RecoveryInfo,
    StateMachine,
    StatePersistence,
    SupervisorLoop,
)

__all__ = [
    "CriterionResult",
    "DecisionConfig",
    "DecisionEngine",
    "DecisionOutcome",
    "DecisionThresholds",
    "ExecutionResult",
    "InvalidTransitionError",
    "LoopResult",
    "MachineConfig",
    "MissingHandlerError",
    "PersistedState",
    "PhaseContext",
    "PhaseInterruptedError",
    "PlanStep",
    "ProgressReport",
    "RecoveryInfo",
    "ResumeError",
    "Settings",
    "StateMachine",
    "StatePersistence",
    "StateTransition",
    "StepStatus",
    "StepType",
    "SupervisorConfig",
    "SupervisorError",
    "SupervisorLoop",
    "SupervisorState",
    "TaskContext",
    "TaskPlan",
    "VerificationResult",
    "load_config",
]
