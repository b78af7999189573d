"""Core enums for the supervisor loop."""

from enum import StrEnum


class SupervisorState(StrEnum):
    """States of the plan → execute → verify → iterate loop."""

    IDLE = "idle"  # Waiting for a task
    PLAN = "plan"
    EXECUTE = "execute"
    VERIFY = "verify"
    ITERATE = "iterate"  # Fixing issues found during verification
    COMPLETE = "complete"
    FAILED = "failed"
    PAUSED = "paused"


class DecisionOutcome(StrEnum):
    """Control decisions produced by the decision engine."""

    CONTINUE = "continue"
    RETRY = "retry"
    ITERATE = "iterate"
    COMPLETE = "complete"
    ABORT = "abort"
    PAUSE = "pause"


class StepType(StrEnum):
    """Kind of work a plan step performs."""

    CODE = "code"
    FILE = "file"
    COMMAND = "command"
    TEST = "test"
    RESEARCH = "research"
    OTHER = "other"


class StepStatus(StrEnum):
    """Status of an individual plan step."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
