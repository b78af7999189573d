"""Supervisor core: state machine, persistence, decision engine and loop."""

from ralph.supervisor.builders import (
    create_execution_results,
    create_simple_plan,
    create_verification_result,
)
from ralph.supervisor.decision import (
    DecisionEngine,
    DecisionLogEntry,
    DecisionResult,
    DecisionStatistics,
    PhaseEvaluation,
)
from ralph.supervisor.events import Listeners, StateListeners, Subscription
from ralph.supervisor.loop import (
    LoopResult,
    PhaseContext,
    ProgressReport,
    RecoveryInfo,
    SupervisorLoop,
)
from ralph.supervisor.machine import StateMachine
from ralph.supervisor.persistence import StatePersistence
from ralph.supervisor.transitions import (
    STATE_DESCRIPTIONS,
    STATE_DISPLAY_NAMES,
    STATE_PROGRESS,
    VALID_TRANSITIONS,
    can_pause,
    get_next_state,
    get_valid_transitions,
    is_active_state,
    is_terminal_state,
    is_valid_transition,
)

__all__ = [
    "DecisionEngine",
    "DecisionLogEntry",
    "DecisionResult",
    "DecisionStatistics",
    "Listeners",
    "LoopResult",
    "PhaseContext",
    "PhaseEvaluation",
    "ProgressReport",
    "RecoveryInfo",
    "STATE_DESCRIPTIONS",
    "STATE_DISPLAY_NAMES",
    "STATE_PROGRESS",
    "StateListeners",
    "StateMachine",
    "StatePersistence",
    "Subscription",
    "SupervisorLoop",
    "VALID_TRANSITIONS",
    "can_pause",
    "create_execution_results",
    "create_simple_plan",
    "create_verification_result",
    "get_next_state",
    "get_valid_transitions",
    "is_active_state",
    "is_terminal_state",
    "is_valid_transition",
]
