"""Configuration for the state machine, supervisor loop and decision engine.

Settings are plain dataclasses with ``to_dict`` / ``from_dict`` so they can be
round-tripped through a human-editable YAML file::

    supervisor:
      max_iterations: 5
      state_timeouts_ms:
        execute: 600000
        verify: null        # disable the VERIFY timeout
      persist_interval_ms: 2000
    decision:
      auto_retry: false
      thresholds:
        min_success_rate: 0.8
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Self

import yaml

from ralph.core.constants import LOOP, RETENTION, TIMEOUTS
from ralph.core.enums import DecisionOutcome, SupervisorState

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "ralph.yaml"
LOG_LEVELS = ("debug", "info", "warn", "error")


def default_state_timeouts() -> dict[SupervisorState, int]:
    """Fresh copy of the default per-state timeouts."""
    return {
        SupervisorState.PLAN: TIMEOUTS.plan,
        SupervisorState.EXECUTE: TIMEOUTS.execute,
        SupervisorState.VERIFY: TIMEOUTS.verify,
        SupervisorState.ITERATE: TIMEOUTS.iterate,
    }


def _parse_timeouts(raw: dict[str, int | None] | None) -> dict[SupervisorState, int]:
    timeouts = default_state_timeouts()
    for name, value in (raw or {}).items():
        state = SupervisorState(name)
        if value is None:
            timeouts.pop(state, None)
        else:
            timeouts[state] = int(value)
    return timeouts


@dataclass
class MachineConfig:
    """State machine configuration.

    States missing from ``state_timeouts_ms`` have no timeout.
    """

    max_iterations: int = LOOP.max_iterations
    state_timeouts_ms: dict[SupervisorState, int] = field(
        default_factory=default_state_timeouts
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_iterations": self.max_iterations,
            "state_timeouts_ms": {
                state.value: ms for state, ms in self.state_timeouts_ms.items()
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        return cls(
            max_iterations=data.get("max_iterations", LOOP.max_iterations),
            state_timeouts_ms=_parse_timeouts(data.get("state_timeouts_ms")),
        )


@dataclass
class SupervisorConfig(MachineConfig):
    """Supervisor loop configuration."""

    enable_persistence: bool = True
    persistence_path: Path | None = None  # None: .ralph/ under the cwd
    auto_persist: bool = True
    persist_interval_ms: int = LOOP.persist_interval_ms
    enable_progress: bool = True
    progress_interval_ms: int = LOOP.progress_interval_ms
    recovery_max_age_ms: int = RETENTION.state_hours * 60 * 60 * 1000

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "enable_persistence": self.enable_persistence,
            "persistence_path": (
                str(self.persistence_path) if self.persistence_path else None
            ),
            "auto_persist": self.auto_persist,
            "persist_interval_ms": self.persist_interval_ms,
            "enable_progress": self.enable_progress,
            "progress_interval_ms": self.progress_interval_ms,
            "recovery_max_age_ms": self.recovery_max_age_ms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        path = data.get("persistence_path")
        return cls(
            max_iterations=data.get("max_iterations", LOOP.max_iterations),
            state_timeouts_ms=_parse_timeouts(data.get("state_timeouts_ms")),
            enable_persistence=data.get("enable_persistence", True),
            persistence_path=Path(path) if path else None,
            auto_persist=data.get("auto_persist", True),
            persist_interval_ms=data.get(
                "persist_interval_ms", LOOP.persist_interval_ms
            ),
            enable_progress=data.get("enable_progress", True),
            progress_interval_ms=data.get(
                "progress_interval_ms", LOOP.progress_interval_ms
            ),
            recovery_max_age_ms=data.get(
                "recovery_max_age_ms", RETENTION.state_hours * 60 * 60 * 1000
            ),
        )


@dataclass
class DecisionThresholds:
    """Rates and budgets the decision engine compares evaluations against."""

    min_success_rate: float = 0.9  # At or above: phase succeeded
    partial_success_rate: float = 0.5  # At or above (below min): partial
    max_critical_failures: int = 0  # More than this forces abort
    max_retries: int = 2  # Per phase
    confidence_threshold: float = 0.8  # Informational only

    def to_dict(self) -> dict[str, Any]:
        return {
            "min_success_rate": self.min_success_rate,
            "partial_success_rate": self.partial_success_rate,
            "max_critical_failures": self.max_critical_failures,
            "max_retries": self.max_retries,
            "confidence_threshold": self.confidence_threshold,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        defaults = cls()
        return cls(
            min_success_rate=data.get("min_success_rate", defaults.min_success_rate),
            partial_success_rate=data.get(
                "partial_success_rate", defaults.partial_success_rate
            ),
            max_critical_failures=data.get(
                "max_critical_failures", defaults.max_critical_failures
            ),
            max_retries=data.get("max_retries", defaults.max_retries),
            confidence_threshold=data.get(
                "confidence_threshold", defaults.confidence_threshold
            ),
        )


@dataclass
class DecisionConfig:
    """Decision engine configuration."""

    thresholds: DecisionThresholds = field(default_factory=DecisionThresholds)
    auto_retry: bool = True
    allow_partial_success: bool = True
    require_confirmation: list[DecisionOutcome] = field(
        default_factory=lambda: [DecisionOutcome.ABORT]
    )
    enable_logging: bool = True
    log_level: str = "info"

    def __post_init__(self) -> None:
        if self.log_level not in LOG_LEVELS:
            raise ValueError(
                f"Unknown log level {self.log_level!r}, expected one of {LOG_LEVELS}"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "thresholds": self.thresholds.to_dict(),
            "auto_retry": self.auto_retry,
            "allow_partial_success": self.allow_partial_success,
            "require_confirmation": [o.value for o in self.require_confirmation],
            "enable_logging": self.enable_logging,
            "log_level": self.log_level,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        confirm = data.get("require_confirmation", [DecisionOutcome.ABORT.value])
        return cls(
            thresholds=DecisionThresholds.from_dict(data.get("thresholds") or {}),
            auto_retry=data.get("auto_retry", True),
            allow_partial_success=data.get("allow_partial_success", True),
            require_confirmation=[DecisionOutcome(o) for o in confirm],
            enable_logging=data.get("enable_logging", True),
            log_level=data.get("log_level", "info"),
        )


@dataclass
class Settings:
    """Top-level settings file contents."""

    supervisor: SupervisorConfig = field(default_factory=SupervisorConfig)
    decision: DecisionConfig = field(default_factory=DecisionConfig)

    def to_dict(self) -> dict[str, Any]:
        return {
            "supervisor": self.supervisor.to_dict(),
            "decision": self.decision.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        return cls(
            supervisor=SupervisorConfig.from_dict(data.get("supervisor") or {}),
            decision=DecisionConfig.from_dict(data.get("decision") or {}),
        )


def load_config(path: Path | None = None) -> Settings:
    """Load settings from a YAML file.

    Args:
        path: Settings file. Defaults to ``ralph.yaml`` in the cwd.

    Returns:
        Parsed settings, or defaults when the file does not exist.

    Raises:
        ValueError: If the file is not a YAML mapping or holds unknown
            state/outcome names.
        yaml.YAMLError: If the file is not valid YAML.
    """
    path = path or Path.cwd() / CONFIG_FILE_NAME
    if not path.exists():
        logger.debug("Config file not found, using defaults: %s", path)
        return Settings()

    data = yaml.safe_load(path.read_text()) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")

    settings = Settings.from_dict(data)
    logger.debug("Loaded config from %s", path)
    return settings


def save_config(settings: Settings, path: Path) -> None:
    """Write settings to a YAML file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        yaml.safe_dump(settings.to_dict(), default_flow_style=False, sort_keys=False)
    )
    logger.debug("Saved config to %s", path)
