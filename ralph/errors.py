"""Exception hierarchy for the supervisor core."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ralph.core.enums import SupervisorState


class SupervisorError(Exception):
    """Base class for supervisor failures."""


class InvalidTransitionError(SupervisorError):
    """Raised when a state change is not allowed by the transition table."""

    def __init__(
        self,
        from_state: SupervisorState,
        to_state: SupervisorState,
        message: str | None = None,
    ) -> None:
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            message or f"Invalid transition: {from_state} -> {to_state}"
        )


class ResumeError(SupervisorError):
    """Raised when a paused task has no recorded state to resume to."""


class MissingHandlerError(SupervisorError):
    """Raised when the loop is started without all phase handlers."""


class PhaseInterruptedError(SupervisorError):
    """Raised when a phase handler is cut short by task termination."""
