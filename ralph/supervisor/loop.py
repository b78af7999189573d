"""Supervisor loop: drives plan -> execute -> verify -> iterate to completion.

The loop wires three caller-supplied phase handlers to a :class:`StateMachine`
and keeps going until the task reaches COMPLETE or FAILED. Handlers may be
plain functions or coroutines; each receives a :class:`PhaseContext` and
returns a TaskPlan, a list of ExecutionResult, or a VerificationResult (model
instances or equivalent dicts).

Example usage:
    >>> loop = SupervisorLoop(plan, execute, verify, config=SupervisorConfig())
    >>> loop.on_progress(lambda report: print(report.percentage, report.message))
    >>> result = await loop.run("Add input validation")
    >>> result.success, result.final_state
    (True, <SupervisorState.COMPLETE: 'complete'>)

Only one phase handler runs at a time. A handler that is still running when
its state times out (or the task is failed or reset from outside) is
cancelled. Plain functions run in a worker thread so a blocking handler
cannot stall the state timers; such a handler is abandoned rather than
stopped, and must not call back into the loop or its state machine.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import TypeAdapter

from ralph.config import SupervisorConfig
from ralph.core.enums import SupervisorState
from ralph.core.models import (
    ExecutionResult,
    Metadata,
    TaskPlan,
    VerificationResult,
)
from ralph.errors import (
    InvalidTransitionError,
    MissingHandlerError,
    PhaseInterruptedError,
    SupervisorError,
)
from ralph.supervisor.events import Listeners, Subscription
from ralph.supervisor.machine import StateMachine
from ralph.supervisor.persistence import StatePersistence
from ralph.supervisor.transitions import STATE_PROGRESS
from ralph.support.directory import get_state_path

logger = logging.getLogger(__name__)

_EXECUTION_RESULTS = TypeAdapter(list[ExecutionResult])


@dataclass(frozen=True)
class PhaseContext:
    """Input handed to every phase handler."""

    task: str
    iteration: int
    max_iterations: int
    previous_plan: TaskPlan | None = None
    previous_results: list[ExecutionResult] | None = None
    previous_verification: VerificationResult | None = None
    metadata: Metadata | None = None


@dataclass(frozen=True)
class ProgressReport:
    """Snapshot of loop progress delivered to progress callbacks."""

    state: SupervisorState
    percentage: int
    message: str
    elapsed_ms: float
    iteration: int
    details: dict[str, Any] | None = None


@dataclass
class LoopResult:
    """Outcome of one :meth:`SupervisorLoop.run`."""

    success: bool
    final_state: SupervisorState
    plan: TaskPlan | None = None
    execution_results: list[ExecutionResult] | None = None
    verification_result: VerificationResult | None = None
    iterations: int = 0
    duration_ms: float = 0.0
    error: str | None = None
    exception: BaseException | None = None


@dataclass
class RecoveryInfo:
    """What a persisted snapshot holds, for deciding whether to resume it."""

    exists: bool
    age_ms: float | None = None
    task: str | None = None
    state: SupervisorState | None = None
    iteration: int | None = None
    persisted_at: datetime | None = None


type PhaseHandler[T] = Callable[[PhaseContext], T | Awaitable[T]]
type ProgressCallback = Callable[[ProgressReport], Any]


class SupervisorLoop:
    """Runs one task at a time through its phase handlers."""

    def __init__(
        self,
        plan_handler: PhaseHandler[TaskPlan] | None = None,
        execute_handler: PhaseHandler[list[ExecutionResult]] | None = None,
        verify_handler: PhaseHandler[VerificationResult] | None = None,
        *,
        config: SupervisorConfig | None = None,
        persistence: StatePersistence | None = None,
    ) -> None:
        """Initialize the loop.

        Args:
            plan_handler: Produces the TaskPlan in PLAN.
            execute_handler: Produces one ExecutionResult per step in EXECUTE.
            verify_handler: Produces the VerificationResult in VERIFY.
            config: Loop, timeout and persistence settings.
            persistence: Snapshot store. When omitted and persistence is
                enabled, one is built from ``config.persistence_path``.
        """
        self.config = config or SupervisorConfig()
        self.machine = StateMachine(self.config)

        self._plan_handler = plan_handler
        self._execute_handler = execute_handler
        self._verify_handler = verify_handler

        if persistence is not None:
            self._persistence: StatePersistence | None = persistence
        elif self.config.enable_persistence:
            self._persistence = StatePersistence(
                get_state_path(configured=self.config.persistence_path)
            )
        else:
            self._persistence = None

        self._progress_listeners: Listeners[ProgressCallback] = Listeners()
        self._running = False
        self._started = time.monotonic()
        self._resume_event = asyncio.Event()
        self._resume_event.set()
        self._terminated: asyncio.Event | None = None
        self._background: list[asyncio.Task[None]] = []

    # -------------------------------------------------------------------------
    # Wiring
    # -------------------------------------------------------------------------

    def set_plan_handler(self, handler: PhaseHandler[TaskPlan]) -> None:
        self._plan_handler = handler

    def set_execute_handler(self, handler: PhaseHandler[list[ExecutionResult]]) -> None:
        self._execute_handler = handler

    def set_verify_handler(self, handler: PhaseHandler[VerificationResult]) -> None:
        self._verify_handler = handler

    def on_progress(self, callback: ProgressCallback) -> Subscription:
        """Register a progress callback. Its exceptions are logged, not raised."""
        return self._progress_listeners.subscribe(callback)

    @property
    def state(self) -> SupervisorState:
        return self.machine.state

    @property
    def persistence(self) -> StatePersistence | None:
        return self._persistence

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_paused(self) -> bool:
        return self.machine.state == SupervisorState.PAUSED

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    async def run(self, task: str, metadata: Metadata | None = None) -> LoopResult:
        """Drive task to a terminal state.

        A task restored with :meth:`recover` is continued from its recorded
        state instead of starting over; task and metadata are then ignored.

        Raises:
            MissingHandlerError: If any phase handler is not set.
            SupervisorError: If the loop is already running.
        """
        if not (self._plan_handler and self._execute_handler and self._verify_handler):
            raise MissingHandlerError("All phase handlers must be set before running")
        if self._running:
            raise SupervisorError("Supervisor loop is already running")

        self._running = True
        self._started = time.monotonic()
        self._terminated = asyncio.Event()
        # Events bind to the first event loop that waits on them.
        self._resume_event = asyncio.Event()
        self._resume_event.set()

        subscriptions = [
            self.machine.on_state_entry(SupervisorState.FAILED, self._on_failed)
        ]
        if self._persistence is not None and self.config.auto_persist:
            subscriptions.append(
                self.machine.on_transition(self._persist_on_transition)
            )
        self._start_background_tasks()

        try:
            return await self._drive(task, metadata)
        finally:
            for subscription in subscriptions:
                subscription.cancel()
            await self._stop_background_tasks()
            self._running = False

    async def _drive(self, task: str, metadata: Metadata | None) -> LoopResult:
        machine = self.machine
        try:
            if machine.is_terminal:
                logger.info("Discarding finished task in state %s", machine.state)
                machine.reset()

            if machine.state == SupervisorState.IDLE:
                machine.initialize(task, metadata)
                self._report("Starting planning phase")
            else:
                context = machine.task_context
                logger.info(
                    "Continuing recovered task %s in state %s",
                    context.id if context else "?",
                    machine.state,
                )
                if machine.state == SupervisorState.PAUSED:
                    machine.resume()
                self._report(f"Resuming task in {machine.display_name} state")

            while not machine.is_terminal:
                await self._wait_while_paused()

                match machine.state:
                    case SupervisorState.PLAN:
                        await self._run_plan_phase()
                    case SupervisorState.EXECUTE:
                        await self._run_execute_phase()
                    case SupervisorState.VERIFY:
                        await self._run_verify_phase()
                    case SupervisorState.ITERATE:
                        iteration = machine.task_context.iteration
                        self._report(f"Starting iteration {iteration}")
                        machine.start_execution()
                    case SupervisorState.IDLE:
                        logger.info("Task was reset, stopping loop")
                        return self._result(error="Supervisor loop was reset")
                    case _:
                        break

        except PhaseInterruptedError as e:
            logger.warning("Phase interrupted: %s", e)
            if machine.state == SupervisorState.IDLE:
                return self._result(error="Supervisor loop was reset", exception=e)
            return self._result(exception=e)

        except Exception as e:
            return self._abort(e)

        if machine.state == SupervisorState.COMPLETE and self._persistence is not None:
            self._persistence.clear()

        result = self._result()
        logger.info(
            "Loop finished: state=%s iterations=%d duration=%.0fms",
            result.final_state,
            result.iterations,
            result.duration_ms,
        )
        return result

    async def _run_plan_phase(self) -> None:
        self._report("Generating implementation plan")
        outcome = await self._call_handler(self._plan_handler)
        plan = TaskPlan.model_validate(outcome)
        self.machine.update_task(plan=plan)
        self._report(f"Plan generated with {len(plan.steps)} steps")

        if await self._still_in(SupervisorState.PLAN):
            self.machine.start_execution()

    async def _run_execute_phase(self) -> None:
        self._report("Executing plan")
        outcome = await self._call_handler(self._execute_handler)
        results = _EXECUTION_RESULTS.validate_python(outcome)
        self.machine.update_task(execution_results=results)
        succeeded = sum(1 for r in results if r.success)
        self._report(
            f"Execution complete: {succeeded}/{len(results)} steps succeeded",
            {"succeeded": succeeded, "total": len(results)},
        )

        if await self._still_in(SupervisorState.EXECUTE):
            self.machine.start_verification()

    async def _run_verify_phase(self) -> None:
        self._report("Verifying results")
        outcome = await self._call_handler(self._verify_handler)
        verification = VerificationResult.model_validate(outcome)
        self.machine.update_task(verification_result=verification)

        if verification.passed:
            self._report("Verification passed - task complete")
            if await self._still_in(SupervisorState.VERIFY):
                self.machine.complete()
            return

        failed = sum(1 for c in verification.criteria_results if not c.passed)
        self._report(f"Verification failed: {failed} criteria not met")
        if await self._still_in(SupervisorState.VERIFY):
            self.machine.iterate(
                ", ".join(verification.suggestions) or "Verification failed"
            )

    def _phase_context(self) -> PhaseContext:
        task = self.machine.task_context
        if task is None:
            raise SupervisorError("No active task")
        return PhaseContext(
            task=task.description,
            iteration=task.iteration,
            max_iterations=task.max_iterations,
            previous_plan=task.plan,
            previous_results=task.execution_results,
            previous_verification=task.verification_result,
            metadata=dict(task.metadata),
        )

    async def _call_handler(self, handler: PhaseHandler[Any] | None) -> Any:
        """Run handler, racing it against task termination."""
        if handler is None:
            raise MissingHandlerError("Phase handler is not set")

        state = self.machine.state
        context = self._phase_context()
        if inspect.iscoroutinefunction(handler):
            outcome = await self._race_termination(handler(context), state)
        else:
            outcome = await self._race_termination(
                asyncio.to_thread(handler, context), state
            )
            if inspect.isawaitable(outcome):
                outcome = await self._race_termination(outcome, state)

        if self._terminated is not None and self._terminated.is_set():
            raise PhaseInterruptedError(f"Task terminated during {state} phase")
        return outcome

    async def _race_termination(
        self, awaitable: Awaitable[Any], state: SupervisorState
    ) -> Any:
        handler_task = asyncio.ensure_future(awaitable)
        if self._terminated is None:
            return await handler_task

        terminated = asyncio.create_task(self._terminated.wait())
        try:
            done, _ = await asyncio.wait(
                {handler_task, terminated}, return_when=asyncio.FIRST_COMPLETED
            )
            if handler_task in done:
                return handler_task.result()
            raise PhaseInterruptedError(f"Task terminated during {state} phase")
        finally:
            terminated.cancel()
            if not handler_task.done():
                handler_task.cancel()
                await asyncio.gather(handler_task, return_exceptions=True)

    async def _still_in(self, state: SupervisorState) -> bool:
        """Wait out a pause, then check the task is still in state."""
        await self._wait_while_paused()
        return self.machine.state == state

    def _abort(self, exc: Exception) -> LoopResult:
        message = str(exc) or type(exc).__name__
        logger.exception("Phase failed in state %s: %s", self.machine.state, message)

        self._persist()
        try:
            self.machine.fail(message)
        except InvalidTransitionError:
            logger.debug("Task already in state %s, not failing", self.machine.state)

        return self._result(error=message, exception=exc)

    def _result(
        self, *, error: str | None = None, exception: BaseException | None = None
    ) -> LoopResult:
        task = self.machine.task_context
        state = self.machine.state
        return LoopResult(
            success=state == SupervisorState.COMPLETE,
            final_state=state,
            plan=task.plan if task else None,
            execution_results=task.execution_results if task else None,
            verification_result=task.verification_result if task else None,
            iterations=task.iteration if task else 0,
            duration_ms=(time.monotonic() - self._started) * 1000,
            error=error or (task.error if task else None),
            exception=exception,
        )

    # -------------------------------------------------------------------------
    # Pause / resume / reset
    # -------------------------------------------------------------------------

    def pause(self, reason: str = "Paused by user") -> None:
        """Pause the task. A no-op if already paused.

        A running handler is allowed to finish; the loop then waits for
        :meth:`resume` before moving on.

        Raises:
            InvalidTransitionError: If the current state cannot be paused.
        """
        if self.is_paused:
            return
        self.machine.pause(reason)
        self._resume_event.clear()
        self._report("Loop paused")

    def resume(self) -> None:
        """Resume to the state recorded at pause time. A no-op if not paused."""
        if not self.is_paused:
            return
        self.machine.resume()
        self._resume_event.set()
        self._report("Loop resumed")

    def reset(self) -> None:
        """Abandon the task: stop timers, release waits, clear the snapshot."""
        for task in self._background:
            task.cancel()
        self.machine.reset()
        if self._terminated is not None:
            self._terminated.set()
        self._resume_event.set()
        if self._persistence is not None:
            self._persistence.clear()

    async def _wait_while_paused(self) -> None:
        while self.machine.state == SupervisorState.PAUSED:
            logger.debug("Loop waiting for resume")
            self._resume_event.clear()
            await self._resume_event.wait()

    def _on_failed(self, _state: SupervisorState, _context: Metadata | None) -> None:
        if self._terminated is not None:
            self._terminated.set()
        self._resume_event.set()

    # -------------------------------------------------------------------------
    # Progress
    # -------------------------------------------------------------------------

    def _report(self, message: str, details: dict[str, Any] | None = None) -> None:
        if not self.config.enable_progress:
            return

        state = self.machine.state
        if state == SupervisorState.PAUSED:
            paused_from = self.machine.paused_from
            percentage = STATE_PROGRESS.get(paused_from, 0) if paused_from else 0
        else:
            percentage = STATE_PROGRESS.get(state, 0)

        task = self.machine.task_context
        report = ProgressReport(
            state=state,
            percentage=percentage,
            message=message,
            elapsed_ms=(time.monotonic() - self._started) * 1000,
            iteration=task.iteration if task else 0,
            details=details,
        )
        for callback in self._progress_listeners.callbacks():
            try:
                callback(report)
            except Exception:
                logger.exception("Progress callback failed")

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def _persist(self) -> None:
        if self._persistence is None:
            return
        snapshot = self.machine.get_persisted_state()
        if snapshot is None:
            return
        try:
            self._persistence.save(snapshot)
        except OSError as e:
            logger.warning("Failed to persist supervisor state: %s", e)

    def _persist_on_transition(self, _transition: Any) -> None:
        self._persist()

    def _start_background_tasks(self) -> None:
        if self.config.enable_progress and self.config.progress_interval_ms > 0:
            self._background.append(
                asyncio.create_task(
                    self._every(self.config.progress_interval_ms, self._report_state)
                )
            )
        if (
            self._persistence is not None
            and self.config.auto_persist
            and self.config.persist_interval_ms > 0
        ):
            self._background.append(
                asyncio.create_task(
                    self._every(self.config.persist_interval_ms, self._persist)
                )
            )

    async def _stop_background_tasks(self) -> None:
        tasks, self._background = self._background, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _report_state(self) -> None:
        self._report(f"In {self.machine.display_name} state")

    @staticmethod
    async def _every(interval_ms: int, action: Callable[[], None]) -> None:
        while True:
            await asyncio.sleep(interval_ms / 1000)
            action()

    # -------------------------------------------------------------------------
    # Recovery
    # -------------------------------------------------------------------------

    def has_recoverable_state(self) -> bool:
        """Check for a snapshot younger than ``recovery_max_age_ms``."""
        if self._persistence is None:
            return False
        return self._persistence.exists() and not self._persistence.is_stale(
            self.config.recovery_max_age_ms
        )

    async def recover(self) -> bool:
        """Restore the persisted task into the state machine.

        Call before :meth:`run` to continue a task left behind by a crashed
        process. The restored state's timeout starts counting immediately.

        Returns:
            True if a snapshot was restored.

        Raises:
            SupervisorError: If the loop is running.
        """
        if self._running:
            raise SupervisorError("Cannot recover while the loop is running")
        if self._persistence is None or not self.has_recoverable_state():
            return False

        snapshot = self._persistence.load()
        if snapshot is None:
            return False

        self.machine.restore_from_persisted_state(snapshot)
        logger.info(
            "Recovered task %s (%s) in state %s",
            snapshot.task_context.id,
            snapshot.task_context.description,
            snapshot.current_state,
        )
        return True

    def get_recovery_info(self) -> RecoveryInfo | None:
        """Describe the persisted snapshot, or None when persistence is off."""
        if self._persistence is None:
            return None

        snapshot = self._persistence.load()
        if snapshot is None:
            return RecoveryInfo(exists=False)

        return RecoveryInfo(
            exists=True,
            age_ms=self._persistence.get_age_ms(),
            task=snapshot.task_context.description,
            state=snapshot.current_state,
            iteration=snapshot.task_context.iteration,
            persisted_at=snapshot.persisted_at,
        )
