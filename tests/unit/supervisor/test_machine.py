"""Tests for the supervisor StateMachine."""

from __future__ import annotations

import asyncio
import re
import time

import pytest

from ralph.config import MachineConfig
from ralph.core import StateTransition, SupervisorState
from ralph.errors import InvalidTransitionError, ResumeError, SupervisorError
from ralph.supervisor import StateMachine
from tests.factories import make_plan

S = SupervisorState


def drive_to(machine: StateMachine, state: SupervisorState) -> None:
    """Walk a fresh machine along the normal flow until it reaches state."""
    machine.initialize("Add input validation")
    if state == S.PLAN:
        return
    machine.start_execution()
    if state == S.EXECUTE:
        return
    machine.start_verification()
    if state == S.VERIFY:
        return
    if state == S.ITERATE:
        machine.iterate("Fix tests")
        return
    raise ValueError(state)


def snapshot_of(machine: StateMachine) -> tuple:
    task = machine.task_context
    return (
        machine.state,
        machine.previous_state,
        machine.history,
        task.model_copy(deep=True) if task else None,
    )


class TestInitialize:
    """Tests for initialize()."""

    def test_creates_task_and_enters_plan(self, machine: StateMachine) -> None:
        task = machine.initialize("Add input validation", {"user": "ada"})

        assert machine.state == S.PLAN
        assert machine.previous_state == S.IDLE
        assert task is machine.task_context
        assert task.description == "Add input validation"
        assert task.iteration == 0
        assert task.max_iterations == 3
        assert task.metadata == {"user": "ada"}
        assert re.fullmatch(r"task_\d+_[0-9a-f]{9}", task.id)
        assert [(t.from_state, t.to_state) for t in machine.history] == [
            (S.IDLE, S.PLAN)
        ]

    def test_rejected_outside_idle(self, machine: StateMachine) -> None:
        machine.initialize("first")
        before = snapshot_of(machine)

        with pytest.raises(InvalidTransitionError):
            machine.initialize("second")

        assert snapshot_of(machine) == before

    def test_task_ids_are_unique(self, machine: StateMachine) -> None:
        first = machine.initialize("a").id
        machine.reset()
        second = machine.initialize("b").id

        assert first != second


class TestTransitions:
    """Tests for the transition primitives."""

    def test_happy_path(self, machine: StateMachine) -> None:
        drive_to(machine, S.VERIFY)
        machine.complete()

        assert machine.state == S.COMPLETE
        assert machine.is_terminal
        assert [t.to_state for t in machine.history] == [
            S.PLAN,
            S.EXECUTE,
            S.VERIFY,
            S.COMPLETE,
        ]

    @pytest.mark.parametrize("target", [S.IDLE, S.VERIFY, S.COMPLETE, S.ITERATE])
    def test_invalid_transition_mutates_nothing(
        self, machine: StateMachine, target: SupervisorState
    ) -> None:
        drive_to(machine, S.PLAN)
        before = snapshot_of(machine)

        with pytest.raises(InvalidTransitionError) as exc_info:
            machine.transition(target, "nope")

        assert exc_info.value.from_state == S.PLAN
        assert exc_info.value.to_state == target
        assert snapshot_of(machine) == before

    def test_can_transition_to_matches_table(self, machine: StateMachine) -> None:
        drive_to(machine, S.VERIFY)

        assert machine.valid_transitions() == frozenset(
            {S.COMPLETE, S.ITERATE, S.FAILED, S.PAUSED}
        )
        assert machine.can_transition_to(S.ITERATE)
        assert not machine.can_transition_to(S.PLAN)

    def test_start_verification_requires_execute(self, machine: StateMachine) -> None:
        drive_to(machine, S.PLAN)

        with pytest.raises(InvalidTransitionError):
            machine.start_verification()

    def test_complete_requires_verify(self, machine: StateMachine) -> None:
        drive_to(machine, S.EXECUTE)

        with pytest.raises(InvalidTransitionError):
            machine.complete()

    def test_updated_at_refreshed(self, machine: StateMachine) -> None:
        task = machine.initialize("t")
        before = task.updated_at

        time.sleep(0.001)
        machine.start_execution()

        assert task.updated_at > before

    def test_display_name(self, machine: StateMachine) -> None:
        drive_to(machine, S.EXECUTE)

        assert machine.display_name == "Executing"


class TestIterate:
    """Tests for the iteration budget."""

    def test_budget_converts_last_iteration_to_failure(
        self, machine: StateMachine
    ) -> None:
        drive_to(machine, S.VERIFY)

        for expected in (1, 2):
            machine.iterate("Fix tests")
            assert machine.state == S.ITERATE
            assert machine.task_context.iteration == expected
            machine.start_execution()
            machine.start_verification()

        machine.iterate("Fix tests again")

        assert machine.state == S.FAILED
        assert machine.task_context.iteration == 3
        assert machine.task_context.error == "Max iterations (3) reached"
        assert machine.history[-1].reason == "Max iterations (3) reached"

    def test_single_iteration_budget_fails_immediately(self) -> None:
        machine = StateMachine(MachineConfig(max_iterations=1, state_timeouts_ms={}))
        drive_to(machine, S.VERIFY)

        machine.iterate("retry")

        assert machine.state == S.FAILED
        assert machine.task_context.iteration == 1

    def test_wrong_state_does_not_count(self, machine: StateMachine) -> None:
        drive_to(machine, S.EXECUTE)

        with pytest.raises(InvalidTransitionError):
            machine.iterate("too early")

        assert machine.task_context.iteration == 0


class TestFail:
    """Tests for fail()."""

    @pytest.mark.parametrize("state", [S.PLAN, S.EXECUTE, S.VERIFY, S.ITERATE])
    def test_from_active_state(
        self, machine: StateMachine, state: SupervisorState
    ) -> None:
        drive_to(machine, state)

        machine.fail("boom")

        assert machine.state == S.FAILED
        assert machine.task_context.error == "boom"

    def test_from_paused(self, machine: StateMachine) -> None:
        drive_to(machine, S.EXECUTE)
        machine.pause()

        machine.fail("gave up")

        assert machine.state == S.FAILED

    @pytest.mark.parametrize("finish", ["complete", "fail"])
    def test_from_terminal_raises(self, machine: StateMachine, finish: str) -> None:
        drive_to(machine, S.VERIFY)
        if finish == "complete":
            machine.complete()
        else:
            machine.fail("first")
        before = snapshot_of(machine)

        with pytest.raises(InvalidTransitionError):
            machine.fail("second")

        assert snapshot_of(machine) == before

    def test_from_idle_raises(self, machine: StateMachine) -> None:
        with pytest.raises(InvalidTransitionError):
            machine.fail("no task")

        assert machine.state == S.IDLE


class TestPauseResume:
    """Tests for pause() / resume()."""

    @pytest.mark.parametrize("state", [S.PLAN, S.EXECUTE, S.VERIFY, S.ITERATE])
    def test_round_trip(self, machine: StateMachine, state: SupervisorState) -> None:
        drive_to(machine, state)
        history_before = len(machine.history)

        machine.pause()
        assert machine.state == S.PAUSED
        assert machine.paused_from == state
        assert machine.history[-1].context == {"paused_from": state.value}

        resumed_to = machine.resume()

        assert resumed_to == state
        assert machine.state == state
        assert machine.paused_from is None
        assert len(machine.history) == history_before + 2
        assert machine.history[-1].reason == "Resumed from pause"

    def test_callback_order(self, machine: StateMachine) -> None:
        drive_to(machine, S.EXECUTE)
        events: list[tuple] = []
        for state in (S.EXECUTE, S.PAUSED):
            machine.on_state_exit(
                state,
                lambda old, new: events.append(
                    ("exit", old, new, len(machine.history))
                ),
            )
            machine.on_state_entry(
                state,
                lambda new, ctx: events.append(
                    ("entry", new, ctx, len(machine.history))
                ),
            )
        machine.on_transition(
            lambda t: events.append(("transition", t.to_state, len(machine.history)))
        )
        start = len(machine.history)

        machine.pause("coffee")
        machine.resume()

        assert events == [
            ("exit", S.EXECUTE, S.PAUSED, start),
            ("entry", S.PAUSED, {"paused_from": "execute"}, start + 1),
            ("transition", S.PAUSED, start + 1),
            ("exit", S.PAUSED, S.EXECUTE, start + 1),
            ("entry", S.EXECUTE, None, start + 2),
            ("transition", S.EXECUTE, start + 2),
        ]

    @pytest.mark.parametrize("finish", [S.COMPLETE, S.FAILED])
    def test_cannot_pause_terminal(
        self, machine: StateMachine, finish: SupervisorState
    ) -> None:
        drive_to(machine, S.VERIFY)
        if finish == S.COMPLETE:
            machine.complete()
        else:
            machine.fail("x")

        with pytest.raises(InvalidTransitionError):
            machine.pause()

    def test_cannot_pause_idle_or_paused(self, machine: StateMachine) -> None:
        with pytest.raises(InvalidTransitionError):
            machine.pause()

        drive_to(machine, S.PLAN)
        machine.pause()
        with pytest.raises(InvalidTransitionError):
            machine.pause()

    def test_resume_when_not_paused(self, machine: StateMachine) -> None:
        drive_to(machine, S.PLAN)

        with pytest.raises(ResumeError):
            machine.resume()

    def test_paused_only_returns_to_recorded_state(
        self, machine: StateMachine
    ) -> None:
        drive_to(machine, S.EXECUTE)
        machine.pause()

        with pytest.raises(InvalidTransitionError):
            machine.transition(S.PLAN, "wrong target")

        assert machine.state == S.PAUSED

    def test_resume_without_record(self, machine: StateMachine) -> None:
        drive_to(machine, S.PLAN)
        snapshot = machine.get_persisted_state()
        snapshot.current_state = S.PAUSED
        machine.restore_from_persisted_state(snapshot)

        with pytest.raises(ResumeError):
            machine.resume()


class TestCallbacks:
    """Tests for callback registration."""

    def test_unsubscribe(self, machine: StateMachine) -> None:
        seen: list[StateTransition] = []
        subscription = machine.on_transition(seen.append)
        machine.initialize("t")

        subscription.cancel()
        machine.start_execution()

        assert len(seen) == 1

    def test_entry_callback_only_for_its_state(self, machine: StateMachine) -> None:
        entered: list[SupervisorState] = []
        machine.on_state_entry(S.VERIFY, lambda state, _ctx: entered.append(state))

        drive_to(machine, S.VERIFY)

        assert entered == [S.VERIFY]

    def test_callback_exceptions_propagate(self, machine: StateMachine) -> None:
        def explode(_transition: StateTransition) -> None:
            raise RuntimeError("callback failed")

        machine.on_transition(explode)

        with pytest.raises(RuntimeError, match="callback failed"):
            machine.initialize("t")


class TestReset:
    """Tests for reset()."""

    def test_discards_everything(self, machine: StateMachine) -> None:
        drive_to(machine, S.ITERATE)

        machine.reset()

        assert machine.state == S.IDLE
        assert machine.previous_state is None
        assert machine.history == []
        assert machine.task_context is None
        assert machine.get_persisted_state() is None

    def test_allowed_from_terminal(self, machine: StateMachine) -> None:
        drive_to(machine, S.VERIFY)
        machine.complete()

        machine.reset()
        machine.initialize("next task")

        assert machine.state == S.PLAN


class TestSnapshots:
    """Tests for get_persisted_state / restore_from_persisted_state."""

    def test_none_without_task(self, machine: StateMachine) -> None:
        assert machine.get_persisted_state() is None

    def test_snapshot_contents(self, machine: StateMachine) -> None:
        drive_to(machine, S.EXECUTE)

        snapshot = machine.get_persisted_state()

        assert snapshot.current_state == S.EXECUTE
        assert snapshot.task_context == machine.task_context
        assert snapshot.state_history == machine.history
        assert snapshot.version == "1.0.0"

    def test_snapshot_is_a_copy(self, machine: StateMachine) -> None:
        drive_to(machine, S.EXECUTE)
        snapshot = machine.get_persisted_state()

        snapshot.task_context.description = "changed"
        snapshot.state_history.clear()

        assert machine.task_context.description == "Add input validation"
        assert len(machine.history) == 2

    def test_restore(self, machine: StateMachine) -> None:
        drive_to(machine, S.VERIFY)
        machine.update_task(plan=make_plan())
        snapshot = machine.get_persisted_state()

        other = StateMachine(MachineConfig(state_timeouts_ms={}))
        other.restore_from_persisted_state(snapshot)

        assert other.state == S.VERIFY
        assert other.previous_state == S.EXECUTE
        assert other.task_context == machine.task_context
        assert other.task_context is not snapshot.task_context
        assert other.history == machine.history

        other.complete()
        assert other.state == S.COMPLETE


class TestUpdateTask:
    """Tests for update_task()."""

    def test_stores_fields(self, machine: StateMachine) -> None:
        machine.initialize("t")
        plan = make_plan()

        machine.update_task(plan=plan)

        assert machine.task_context.plan is plan

    def test_unknown_field(self, machine: StateMachine) -> None:
        machine.initialize("t")

        with pytest.raises(AttributeError):
            machine.update_task(nonsense=1)

    def test_requires_task(self, machine: StateMachine) -> None:
        with pytest.raises(SupervisorError):
            machine.update_task(plan=make_plan())


class TestTimeouts:
    """Tests for per-state timeouts."""

    @pytest.mark.asyncio
    async def test_timeout_fails_task(self) -> None:
        machine = StateMachine(MachineConfig(state_timeouts_ms={S.PLAN: 20}))
        machine.initialize("slow")

        await asyncio.sleep(0.1)

        assert machine.state == S.FAILED
        assert machine.task_context.error == "State plan timed out after 20ms"

    @pytest.mark.asyncio
    async def test_leaving_state_cancels_timeout(self) -> None:
        machine = StateMachine(MachineConfig(state_timeouts_ms={S.PLAN: 20}))
        machine.initialize("quick")
        machine.start_execution()

        await asyncio.sleep(0.1)

        assert machine.state == S.EXECUTE

    @pytest.mark.asyncio
    async def test_stale_timer_is_noop(self) -> None:
        """A timer firing after its state changed leaves the machine alone."""
        machine = StateMachine(MachineConfig(state_timeouts_ms={S.PLAN: 20}))
        machine.initialize("quick")
        machine.start_execution()

        machine._on_timeout(S.PLAN, 20)

        assert machine.state == S.EXECUTE
        assert machine.task_context.error is None

    @pytest.mark.asyncio
    async def test_reset_cancels_timeout(self) -> None:
        machine = StateMachine(MachineConfig(state_timeouts_ms={S.PLAN: 20}))
        machine.initialize("abandoned")
        machine.reset()

        await asyncio.sleep(0.1)

        assert machine.state == S.IDLE

    @pytest.mark.asyncio
    async def test_pause_suspends_timeout(self) -> None:
        machine = StateMachine(MachineConfig(state_timeouts_ms={S.PLAN: 30}))
        machine.initialize("paused")
        machine.pause()

        await asyncio.sleep(0.1)

        assert machine.state == S.PAUSED

    @pytest.mark.asyncio
    async def test_restore_rearms_timeout(self) -> None:
        source = StateMachine(MachineConfig(state_timeouts_ms={}))
        drive_to(source, S.EXECUTE)
        machine = StateMachine(MachineConfig(state_timeouts_ms={S.EXECUTE: 20}))

        machine.restore_from_persisted_state(source.get_persisted_state())
        await asyncio.sleep(0.1)

        assert machine.state == S.FAILED

    @pytest.mark.asyncio
    async def test_timeout_handler_errors_are_logged(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        machine = StateMachine(MachineConfig(state_timeouts_ms={S.PLAN: 20}))

        def explode(_old: SupervisorState, _new: SupervisorState) -> None:
            raise RuntimeError("exit hook broke")

        machine.on_state_exit(S.PLAN, explode)
        machine.initialize("t")

        await asyncio.sleep(0.1)

        assert machine.state == S.PLAN
        assert "Timeout handler for state plan failed" in caplog.text

    def test_no_event_loop_means_no_timer(self) -> None:
        machine = StateMachine(MachineConfig(state_timeouts_ms={S.PLAN: 1}))
        machine.initialize("sync")

        time.sleep(0.01)

        assert machine.state == S.PLAN
        assert machine.is_timed_out()
        assert machine.time_in_state_ms() >= 10

    def test_is_timed_out_without_timeout(self, machine: StateMachine) -> None:
        drive_to(machine, S.PLAN)

        assert not machine.is_timed_out()
