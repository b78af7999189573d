"""Centralized default settings."""

from dataclasses import dataclass


@dataclass(frozen=True)
class LoopDefaults:
    """Supervisor loop settings."""

    max_iterations: int = 3
    persist_interval_ms: int = 5_000
    progress_interval_ms: int = 1_000


@dataclass(frozen=True)
class StateTimeouts:
    """Per-state timeouts in milliseconds."""

    plan: int = 60_000
    execute: int = 300_000
    verify: int = 60_000
    iterate: int = 300_000


@dataclass(frozen=True)
class RetentionConfig:
    """Retention periods."""

    logs_days: int = 7
    state_hours: int = 24


# Singleton configs
LOOP = LoopDefaults()
TIMEOUTS = StateTimeouts()
RETENTION = RetentionConfig()

PERSISTED_STATE_VERSION = "1.0.0"
STATE_DIR_NAME = ".ralph"
STATE_FILE_NAME = "supervisor-state.json"
