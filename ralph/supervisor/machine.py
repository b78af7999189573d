"""Finite state machine that owns a single supervised task.

Every state change goes through :meth:`StateMachine.transition`, which runs
in a fixed order::

    validate -> cancel timeout -> exit callbacks -> flip state
             -> append history -> entry callbacks -> transition callbacks
             -> arm timeout for the new state

Example usage:
    >>> machine = StateMachine(MachineConfig(max_iterations=2))
    >>> machine.initialize("Add input validation")
    >>> machine.start_execution()
    >>> machine.start_verification()
    >>> machine.complete()
    >>> machine.state
    <SupervisorState.COMPLETE: 'complete'>

Per-state timeouts are scheduled on the running asyncio event loop. Outside
an event loop the machine still works, but no timeouts fire.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Callable
from typing import Any

from ralph.config import MachineConfig
from ralph.core.constants import PERSISTED_STATE_VERSION
from ralph.core.enums import SupervisorState
from ralph.core.models import (
    Metadata,
    PersistedState,
    StateTransition,
    TaskContext,
    utc_now,
)
from ralph.errors import InvalidTransitionError, ResumeError, SupervisorError
from ralph.supervisor.events import Listeners, StateListeners, Subscription
from ralph.supervisor.transitions import (
    STATE_DISPLAY_NAMES,
    can_pause,
    get_valid_transitions,
    is_active_state,
    is_terminal_state,
    is_valid_transition,
)

logger = logging.getLogger(__name__)

type TransitionCallback = Callable[[StateTransition], Any]
type EntryCallback = Callable[[SupervisorState, Metadata | None], Any]
type ExitCallback = Callable[[SupervisorState, SupervisorState], Any]

PAUSED_FROM_KEY = "paused_from"


def generate_task_id() -> str:
    """Unique task identifier: ``task_<epoch ms>_<random>``."""
    return f"task_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class StateMachine:
    """Tracks one task through PLAN -> EXECUTE -> VERIFY (-> ITERATE).

    Invalid transitions raise :class:`InvalidTransitionError` before anything
    is mutated. Callback exceptions propagate to the caller of the operation
    that triggered them.
    """

    def __init__(self, config: MachineConfig | None = None) -> None:
        self.config = config or MachineConfig()

        self._state = SupervisorState.IDLE
        self._previous_state: SupervisorState | None = None
        self._history: list[StateTransition] = []
        self._task: TaskContext | None = None

        self._transition_listeners: Listeners[TransitionCallback] = Listeners()
        self._entry_listeners: StateListeners[SupervisorState, EntryCallback] = (
            StateListeners()
        )
        self._exit_listeners: StateListeners[SupervisorState, ExitCallback] = (
            StateListeners()
        )

        self._timeout_handle: asyncio.TimerHandle | None = None
        self._entered_at: float | None = None

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def previous_state(self) -> SupervisorState | None:
        return self._previous_state

    @property
    def display_name(self) -> str:
        return STATE_DISPLAY_NAMES[self._state]

    @property
    def history(self) -> list[StateTransition]:
        """Copy of the transition history, oldest first."""
        return list(self._history)

    @property
    def task_context(self) -> TaskContext | None:
        return self._task

    @property
    def is_terminal(self) -> bool:
        return is_terminal_state(self._state)

    @property
    def paused_from(self) -> SupervisorState | None:
        """State recorded by the most recent pause, while paused."""
        if self._state != SupervisorState.PAUSED:
            return None
        for record in reversed(self._history):
            if record.to_state == SupervisorState.PAUSED:
                value = record.context.get(PAUSED_FROM_KEY)
                return SupervisorState(value) if isinstance(value, str) else None
        return None

    def can_transition_to(self, target: SupervisorState) -> bool:
        """Check the transition table for current state -> target."""
        return is_valid_transition(self._state, target)

    def valid_transitions(self) -> frozenset[SupervisorState]:
        return get_valid_transitions(self._state)

    def time_in_state_ms(self) -> float:
        """Milliseconds since the current state was entered."""
        if self._entered_at is None:
            return 0.0
        return (time.monotonic() - self._entered_at) * 1000

    def is_timed_out(self) -> bool:
        """Check if the current state has outlived its configured timeout."""
        timeout = self.config.state_timeouts_ms.get(self._state)
        if not timeout:
            return False
        return self.time_in_state_ms() > timeout

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def on_transition(self, callback: TransitionCallback) -> Subscription:
        """Call callback with every StateTransition after it is recorded."""
        return self._transition_listeners.subscribe(callback)

    def on_state_entry(
        self, state: SupervisorState, callback: EntryCallback
    ) -> Subscription:
        """Call callback(state, context) whenever state is entered."""
        return self._entry_listeners.subscribe(state, callback)

    def on_state_exit(
        self, state: SupervisorState, callback: ExitCallback
    ) -> Subscription:
        """Call callback(state, next_state) whenever state is left."""
        return self._exit_listeners.subscribe(state, callback)

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def transition(
        self,
        target: SupervisorState,
        reason: str,
        context: Metadata | None = None,
    ) -> StateTransition:
        """Move to target, running callbacks and timers in order.

        From PAUSED, only the recorded paused-from state (or FAILED) is
        reachable even though the table lists every active state.

        Raises:
            InvalidTransitionError: If the move is not allowed.
        """
        self._validate(target)
        self._cancel_timeout()

        old_state = self._state
        record = StateTransition(
            from_state=old_state,
            to_state=target,
            reason=reason,
            context=dict(context) if context else {},
        )

        self._exit_listeners.emit(old_state, old_state, target)

        self._previous_state = old_state
        self._state = target
        self._entered_at = time.monotonic()
        if self._task is not None:
            self._task.updated_at = utc_now()
        self._history.append(record)
        logger.info("Transition %s -> %s: %s", old_state, target, reason)

        self._entry_listeners.emit(target, target, context)
        self._transition_listeners.emit(record)

        self._arm_timeout(target)
        return record

    def initialize(
        self, description: str, metadata: Metadata | None = None
    ) -> TaskContext:
        """Create a fresh task and enter PLAN. Only legal from IDLE."""
        if self._state != SupervisorState.IDLE:
            raise InvalidTransitionError(
                self._state,
                SupervisorState.PLAN,
                f"Cannot initialize in state {self._state}; must be idle",
            )

        now = utc_now()
        self._task = TaskContext(
            id=generate_task_id(),
            description=description,
            iteration=0,
            max_iterations=self.config.max_iterations,
            started_at=now,
            updated_at=now,
            metadata=dict(metadata or {}),
        )
        logger.info("Initialized task %s: %s", self._task.id, description)
        self.transition(SupervisorState.PLAN, "Task initialized, starting planning")
        return self._task

    def start_execution(self) -> None:
        """PLAN or ITERATE -> EXECUTE."""
        self._require(
            {SupervisorState.PLAN, SupervisorState.ITERATE}, SupervisorState.EXECUTE
        )
        self.transition(SupervisorState.EXECUTE, "Plan ready, starting execution")

    def start_verification(self) -> None:
        """EXECUTE -> VERIFY."""
        self._require({SupervisorState.EXECUTE}, SupervisorState.VERIFY)
        self.transition(
            SupervisorState.VERIFY, "Execution complete, starting verification"
        )

    def complete(self) -> None:
        """VERIFY -> COMPLETE."""
        self._require({SupervisorState.VERIFY}, SupervisorState.COMPLETE)
        self.transition(SupervisorState.COMPLETE, "Verification passed, task complete")

    def iterate(self, reason: str) -> None:
        """VERIFY -> ITERATE, or FAILED once the iteration budget is spent.

        The iteration counter is incremented before the budget check, so the
        failing call is itself counted.
        """
        self._require({SupervisorState.VERIFY}, SupervisorState.ITERATE)

        if self._task is not None:
            self._task.iteration += 1
            if self._task.iteration >= self._task.max_iterations:
                self.fail(f"Max iterations ({self._task.max_iterations}) reached")
                return

        self.transition(SupervisorState.ITERATE, reason)

    def fail(self, reason: str) -> None:
        """Record reason as the task error and enter FAILED."""
        self._validate(SupervisorState.FAILED)
        if self._task is not None:
            self._task.error = reason
        self.transition(SupervisorState.FAILED, reason)

    def pause(self, reason: str = "Paused by user") -> None:
        """Enter PAUSED, remembering the current state for resume."""
        if not can_pause(self._state):
            raise InvalidTransitionError(
                self._state,
                SupervisorState.PAUSED,
                f"Cannot pause from state {self._state}",
            )
        self.transition(
            SupervisorState.PAUSED, reason, {PAUSED_FROM_KEY: self._state.value}
        )

    def resume(self) -> SupervisorState:
        """Return to the state recorded at pause time.

        Raises:
            ResumeError: If not paused or no paused-from state was recorded.
        """
        if self._state != SupervisorState.PAUSED:
            raise ResumeError(f"Cannot resume from state {self._state}")

        target = self.paused_from
        if target is None:
            raise ResumeError("Cannot determine state to resume to")

        self.transition(target, "Resumed from pause")
        return target

    def reset(self) -> None:
        """Discard the task and history and return to IDLE from any state."""
        self._cancel_timeout()
        self._state = SupervisorState.IDLE
        self._previous_state = None
        self._history = []
        self._task = None
        self._entered_at = None
        logger.info("State machine reset")

    def update_task(self, **fields: Any) -> TaskContext:
        """Store phase output on the task and refresh ``updated_at``.

        Raises:
            SupervisorError: If there is no active task.
            AttributeError: If a field name is not part of TaskContext.
        """
        if self._task is None:
            raise SupervisorError("No active task to update")
        for name, value in fields.items():
            if name not in TaskContext.model_fields:
                raise AttributeError(f"TaskContext has no field {name!r}")
            setattr(self._task, name, value)
        self._task.updated_at = utc_now()
        return self._task

    # -------------------------------------------------------------------------
    # Snapshots
    # -------------------------------------------------------------------------

    def get_persisted_state(self) -> PersistedState | None:
        """Deep-copied snapshot of the task, or None when idle."""
        if self._task is None:
            return None
        return PersistedState(
            task_context=self._task.model_copy(deep=True),
            current_state=self._state,
            state_history=[t.model_copy(deep=True) for t in self._history],
            persisted_at=utc_now(),
            version=PERSISTED_STATE_VERSION,
        )

    def restore_from_persisted_state(self, snapshot: PersistedState) -> None:
        """Install a snapshot verbatim and re-arm the restored state's timeout."""
        self._cancel_timeout()
        self._task = snapshot.task_context.model_copy(deep=True)
        self._state = snapshot.current_state
        self._history = [t.model_copy(deep=True) for t in snapshot.state_history]
        self._previous_state = (
            self._history[-1].from_state if self._history else None
        )
        self._entered_at = time.monotonic()
        logger.info(
            "Restored task %s in state %s (iteration %d)",
            self._task.id,
            self._state,
            self._task.iteration,
        )
        self._arm_timeout(self._state)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _validate(self, target: SupervisorState) -> None:
        if not self.can_transition_to(target):
            allowed = ", ".join(sorted(self.valid_transitions())) or "none"
            raise InvalidTransitionError(
                self._state,
                target,
                f"Invalid transition from {self._state} to {target}. "
                f"Valid transitions: {allowed}",
            )
        if self._state == SupervisorState.PAUSED and is_active_state(target):
            paused_from = self.paused_from
            if target != paused_from:
                raise InvalidTransitionError(
                    self._state,
                    target,
                    f"Cannot resume to {target}; task was paused from {paused_from}",
                )

    def _require(
        self, allowed: set[SupervisorState], target: SupervisorState
    ) -> None:
        if self._state not in allowed:
            raise InvalidTransitionError(
                self._state,
                target,
                f"Cannot move to {target} from state {self._state}",
            )

    def _arm_timeout(self, state: SupervisorState) -> None:
        timeout = self.config.state_timeouts_ms.get(state)
        if not timeout or timeout <= 0 or is_terminal_state(state):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, %s timeout not armed", state)
            return
        self._timeout_handle = loop.call_later(
            timeout / 1000, self._on_timeout, state, timeout
        )

    def _cancel_timeout(self) -> None:
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None

    def _on_timeout(self, state: SupervisorState, timeout: int) -> None:
        self._timeout_handle = None
        # A timer that fires after the state already changed is a no-op
        if self._state != state or is_terminal_state(state):
            return
        logger.warning("State %s timed out after %dms", state, timeout)
        try:
            self.fail(f"State {state} timed out after {timeout}ms")
        except Exception:
            logger.exception("Timeout handler for state %s failed", state)
