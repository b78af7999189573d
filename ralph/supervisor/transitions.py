"""Static transition table for the supervisor state machine.

Normal flow: IDLE -> PLAN -> EXECUTE -> VERIFY -> COMPLETE
Iteration:   VERIFY -> ITERATE -> EXECUTE -> VERIFY
Failure:     any active state -> FAILED
Pause:       any active state -> PAUSED -> the state it was paused from

``reset`` is not a transition; it discards the task from any state.
"""

from __future__ import annotations

from types import MappingProxyType

from ralph.core.enums import SupervisorState as S

VALID_TRANSITIONS: MappingProxyType[S, frozenset[S]] = MappingProxyType({
    S.IDLE: frozenset({S.PLAN}),
    S.PLAN: frozenset({S.EXECUTE, S.FAILED, S.PAUSED}),
    S.EXECUTE: frozenset({S.VERIFY, S.FAILED, S.PAUSED}),
    S.VERIFY: frozenset({S.COMPLETE, S.ITERATE, S.FAILED, S.PAUSED}),
    S.ITERATE: frozenset({S.EXECUTE, S.FAILED, S.PAUSED}),
    # Every state a task can be paused from; the machine narrows a resume
    # to the recorded paused-from state.
    S.PAUSED: frozenset({S.PLAN, S.EXECUTE, S.VERIFY, S.ITERATE, S.FAILED}),
    S.COMPLETE: frozenset(),
    S.FAILED: frozenset(),
})

ACTIVE_STATES = frozenset({S.PLAN, S.EXECUTE, S.VERIFY, S.ITERATE})
TERMINAL_STATES = frozenset({S.COMPLETE, S.FAILED})

_NORMAL_FLOW: dict[S, S] = {
    S.IDLE: S.PLAN,
    S.PLAN: S.EXECUTE,
    S.EXECUTE: S.VERIFY,
    S.VERIFY: S.COMPLETE,
    S.ITERATE: S.EXECUTE,
}

STATE_DISPLAY_NAMES: dict[S, str] = {
    S.IDLE: "Idle",
    S.PLAN: "Planning",
    S.EXECUTE: "Executing",
    S.VERIFY: "Verifying",
    S.ITERATE: "Iterating",
    S.COMPLETE: "Complete",
    S.FAILED: "Failed",
    S.PAUSED: "Paused",
}

STATE_DESCRIPTIONS: dict[S, str] = {
    S.IDLE: "Waiting for a task to begin",
    S.PLAN: "Generating implementation plan",
    S.EXECUTE: "Executing plan steps",
    S.VERIFY: "Verifying results against criteria",
    S.ITERATE: "Fixing issues and preparing for re-execution",
    S.COMPLETE: "Task completed successfully",
    S.FAILED: "Task failed",
    S.PAUSED: "Task paused by user or system",
}

# PAUSED has no entry: it reports the percentage of the paused-from state
STATE_PROGRESS: dict[S, int] = {
    S.IDLE: 0,
    S.PLAN: 20,
    S.EXECUTE: 50,
    S.VERIFY: 80,
    S.ITERATE: 40,
    S.COMPLETE: 100,
    S.FAILED: 100,
}


def is_valid_transition(from_state: S, to_state: S) -> bool:
    """Check if the table allows moving from from_state to to_state."""
    return to_state in VALID_TRANSITIONS[from_state]


def get_valid_transitions(from_state: S) -> frozenset[S]:
    """Get every legal successor of from_state."""
    return VALID_TRANSITIONS[from_state]


def is_terminal_state(state: S) -> bool:
    """Check if state is terminal (COMPLETE or FAILED)."""
    return state in TERMINAL_STATES


def is_active_state(state: S) -> bool:
    """Check if state is one of the working phases."""
    return state in ACTIVE_STATES


def can_pause(state: S) -> bool:
    """Check if a task in state may be paused."""
    return is_active_state(state)


def get_next_state(current: S) -> S | None:
    """Get the expected successor in the normal flow, if any."""
    return _NORMAL_FLOW.get(current)
