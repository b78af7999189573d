"""Decision engine: turns phase results into control decisions.

The engine summarizes the raw output of a phase into a :class:`PhaseEvaluation`
and maps it to one of the :class:`DecisionOutcome` values with a confidence
score. It never raises on evaluation; the worst case is a low-confidence
ITERATE.

Retry counters are keyed by phase, not by task. Use one engine per task (or
call :meth:`DecisionEngine.reset_retries` between tasks) to keep budgets
task-scoped.
"""

from __future__ import annotations

import logging
import re
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime

from ralph.config import DecisionConfig
from ralph.core.enums import DecisionOutcome, SupervisorState
from ralph.core.models import ExecutionResult, VerificationResult, utc_now
from ralph.supervisor.transitions import get_next_state

logger = logging.getLogger(__name__)

# Execution error text that no retry will fix
CRITICAL_ERROR_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"syntax\s*error",
        r"type\s*error",
        r"compilation\s*failed",
        r"cannot\s*find\s*module",
        r"undefined\s*is\s*not",
        r"null\s*reference",
        r"permission\s*denied",
        r"out\s*of\s*memory",
        r"stack\s*overflow",
        r"segmentation\s*fault",
    )
)

CRITICAL_CRITERION_KEYWORDS = (
    "build",
    "compile",
    "type check",
    "typecheck",
    "syntax",
    "parse",
    "security",
    "critical",
)

# Rate a non-VERIFY phase needs for its partial success to be accepted
PARTIAL_CONTINUE_RATE = 0.7

# Higher is better for the task
OUTCOME_FAVORABILITY: dict[DecisionOutcome, int] = {
    DecisionOutcome.ABORT: 0,
    DecisionOutcome.PAUSE: 1,
    DecisionOutcome.ITERATE: 1,
    DecisionOutcome.RETRY: 1,
    DecisionOutcome.CONTINUE: 2,
    DecisionOutcome.COMPLETE: 3,
}

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}

_STATUS_MARKS = {
    DecisionOutcome.COMPLETE: "✓",
    DecisionOutcome.ABORT: "✗",
}


@dataclass
class PhaseEvaluation:
    """Summary of one phase's raw results."""

    phase: SupervisorState
    success: bool
    success_rate: float
    success_count: int
    failure_count: int
    total_count: int
    partial_success: bool
    skipped_count: int = 0
    critical_failures: list[str] = field(default_factory=list)
    recoverable_failures: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)


@dataclass
class DecisionResult:
    """Outcome chosen for a phase evaluation."""

    outcome: DecisionOutcome
    reason: str
    evaluation: PhaseEvaluation
    confidence: float
    retry_attempt: int
    max_retries: int
    suggested_state: SupervisorState | None = None
    timestamp: datetime = field(default_factory=utc_now)
    log_id: str | None = None  # Set when decision logging is enabled

    @property
    def should_retry(self) -> bool:
        return self.outcome == DecisionOutcome.RETRY


@dataclass
class DecisionLogEntry:
    """Audit record of one decision."""

    id: str
    phase: SupervisorState
    evaluation: PhaseEvaluation
    decision: DecisionResult
    timestamp: datetime = field(default_factory=utc_now)
    user_confirmed: bool = False
    user_override: DecisionOutcome | None = None


@dataclass
class DecisionStatistics:
    """Aggregate view over the decision log."""

    total_decisions: int
    outcome_distribution: dict[DecisionOutcome, int]
    average_confidence: float
    total_retries: int
    abort_count: int
    complete_count: int


def is_critical_error(error: str) -> bool:
    """Check if execution error text matches a non-recoverable pattern."""
    return any(pattern.search(error) for pattern in CRITICAL_ERROR_PATTERNS)


def is_critical_criterion(criterion: str) -> bool:
    """Check if a success criterion guards something that must not fail."""
    lowered = criterion.lower()
    return any(keyword in lowered for keyword in CRITICAL_CRITERION_KEYWORDS)


class DecisionEngine:
    """Evaluates phase outcomes against configured thresholds."""

    def __init__(self, config: DecisionConfig | None = None) -> None:
        self.config = config or DecisionConfig()
        self._logs: list[DecisionLogEntry] = []
        self._retry_counters: dict[SupervisorState, int] = {}

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    def evaluate_plan(self, plan_generated: bool, step_count: int) -> DecisionResult:
        """Decide on a PLAN phase. An unusable plan is always critical."""
        ok = plan_generated and step_count > 0
        critical: list[str] = []
        if not plan_generated:
            critical.append("Failed to generate plan")
        elif step_count <= 0:
            critical.append("Plan contains no steps")

        evaluation = PhaseEvaluation(
            phase=SupervisorState.PLAN,
            success=ok,
            success_rate=1.0 if ok else 0.0,
            success_count=1 if ok else 0,
            failure_count=0 if ok else 1,
            total_count=1,
            partial_success=False,
            critical_failures=critical,
            suggestions=[] if ok else ["Retry plan generation with simpler prompt"],
        )
        return self._decide_and_log(evaluation)

    def evaluate_execution(self, results: Sequence[ExecutionResult]) -> DecisionResult:
        """Decide on an EXECUTE phase from its per-step results."""
        return self._decide_and_log(self._evaluate_execution_results(results))

    def evaluate_verification(self, result: VerificationResult) -> DecisionResult:
        """Decide on a VERIFY phase from its criteria results."""
        return self._decide_and_log(self._evaluate_verification_result(result))

    # -------------------------------------------------------------------------
    # Evaluation
    # -------------------------------------------------------------------------

    def _evaluate_execution_results(
        self, results: Sequence[ExecutionResult]
    ) -> PhaseEvaluation:
        total = len(results)
        passed = sum(1 for r in results if r.success)
        rate = passed / total if total else 0.0

        critical: list[str] = []
        recoverable: list[str] = []
        suggestions: list[str] = []
        for result in results:
            if result.success:
                continue
            if result.error and is_critical_error(result.error):
                critical.append(f"Step {result.step_index}: {result.error}")
            else:
                error = result.error or "failed without error output"
                recoverable.append(f"Step {result.step_index}: {error}")
                suggestions.append(f"Retry step {result.step_index}")

        return PhaseEvaluation(
            phase=SupervisorState.EXECUTE,
            success=rate >= self.config.thresholds.min_success_rate,
            success_rate=rate,
            success_count=passed,
            failure_count=total - passed,
            total_count=total,
            partial_success=self._in_partial_band(rate),
            critical_failures=critical,
            recoverable_failures=recoverable,
            suggestions=suggestions,
        )

    def _evaluate_verification_result(
        self, result: VerificationResult
    ) -> PhaseEvaluation:
        criteria = result.criteria_results
        total = len(criteria)
        passed = sum(1 for c in criteria if c.passed)
        rate = passed / total if total else 0.0

        critical: list[str] = []
        recoverable: list[str] = []
        for criterion in criteria:
            if criterion.passed:
                continue
            if is_critical_criterion(criterion.criterion):
                critical.append(criterion.criterion)
            else:
                recoverable.append(criterion.criterion)

        return PhaseEvaluation(
            phase=SupervisorState.VERIFY,
            success=result.passed,
            success_rate=rate,
            success_count=passed,
            failure_count=total - passed,
            total_count=total,
            partial_success=self._in_partial_band(rate),
            critical_failures=critical,
            recoverable_failures=recoverable,
            suggestions=list(result.suggestions),
        )

    def _in_partial_band(self, rate: float) -> bool:
        thresholds = self.config.thresholds
        return thresholds.partial_success_rate <= rate < thresholds.min_success_rate

    # -------------------------------------------------------------------------
    # Decision
    # -------------------------------------------------------------------------

    def _decide(self, evaluation: PhaseEvaluation) -> DecisionResult:
        phase = evaluation.phase
        thresholds = self.config.thresholds
        attempt = self._retry_counters.get(phase, 0)
        max_retries = thresholds.max_retries

        def decision(
            outcome: DecisionOutcome,
            reason: str,
            confidence: float,
            *,
            retry_attempt: int = attempt,
            suggested: SupervisorState | None = None,
        ) -> DecisionResult:
            return DecisionResult(
                outcome=outcome,
                reason=reason,
                evaluation=evaluation,
                confidence=confidence,
                retry_attempt=retry_attempt,
                max_retries=max_retries,
                suggested_state=suggested,
            )

        if len(evaluation.critical_failures) > thresholds.max_critical_failures:
            return decision(
                DecisionOutcome.ABORT,
                "Critical failures exceeded threshold: "
                + ", ".join(evaluation.critical_failures),
                0.95,
            )

        if evaluation.success:
            outcome = (
                DecisionOutcome.COMPLETE
                if phase == SupervisorState.VERIFY
                else DecisionOutcome.CONTINUE
            )
            return decision(
                outcome, "All criteria met", 0.95, suggested=get_next_state(phase)
            )

        percent = round(evaluation.success_rate * 100)
        if evaluation.partial_success and self.config.allow_partial_success:
            if phase == SupervisorState.VERIFY:
                return decision(
                    DecisionOutcome.ITERATE,
                    f"Partial success ({percent}%), needs improvement",
                    0.7,
                    suggested=SupervisorState.ITERATE,
                )
            if evaluation.success_rate >= PARTIAL_CONTINUE_RATE:
                return decision(
                    DecisionOutcome.CONTINUE,
                    f"Partial success accepted ({percent}%)",
                    0.6,
                    suggested=get_next_state(phase),
                )

        if (
            self.config.auto_retry
            and attempt < max_retries
            and evaluation.recoverable_failures
            and not evaluation.critical_failures
        ):
            self._retry_counters[phase] = attempt + 1
            return decision(
                DecisionOutcome.RETRY,
                "Retrying due to recoverable failures "
                f"(attempt {attempt + 1}/{max_retries})",
                0.7,
                retry_attempt=attempt + 1,
            )

        if phase == SupervisorState.VERIFY:
            return decision(
                DecisionOutcome.ITERATE,
                "Verification failed: " + ", ".join(evaluation.recoverable_failures),
                0.8,
                suggested=SupervisorState.ITERATE,
            )

        if attempt >= max_retries:
            return decision(
                DecisionOutcome.ABORT, f"Max retries ({max_retries}) exceeded", 0.9
            )

        return decision(
            DecisionOutcome.ITERATE,
            "Phase needs improvement",
            0.5,
            suggested=SupervisorState.ITERATE,
        )

    def _decide_and_log(self, evaluation: PhaseEvaluation) -> DecisionResult:
        result = self._decide(evaluation)
        if not self.config.enable_logging:
            return result

        entry = DecisionLogEntry(
            id=f"decision_{uuid.uuid4().hex[:12]}",
            phase=evaluation.phase,
            evaluation=evaluation,
            decision=result,
        )
        result.log_id = entry.id
        self._logs.append(entry)

        logger.log(
            _LOG_LEVELS[self.config.log_level],
            "Decision %s %s: %s - %s",
            _STATUS_MARKS.get(result.outcome, "→"),
            evaluation.phase,
            result.outcome,
            result.reason,
        )
        logger.debug(
            "Decision %s: success rate %d%%, confidence %d%%",
            entry.id,
            round(evaluation.success_rate * 100),
            round(result.confidence * 100),
        )
        return result

    # -------------------------------------------------------------------------
    # Log, retries and overrides
    # -------------------------------------------------------------------------

    @property
    def logs(self) -> list[DecisionLogEntry]:
        """Copy of the decision log, in evaluation order."""
        return list(self._logs)

    def clear_logs(self) -> None:
        self._logs = []

    def reset_retries(self) -> None:
        """Zero every phase's retry counter (start of a new task)."""
        self._retry_counters.clear()

    def get_retry_count(self, phase: SupervisorState) -> int:
        return self._retry_counters.get(phase, 0)

    def requires_confirmation(self, result: DecisionResult) -> bool:
        """Check if a human should confirm result before it is acted on."""
        return result.outcome in self.config.require_confirmation

    def override_decision(
        self, log_id: str, outcome: DecisionOutcome, reason: str
    ) -> DecisionResult | None:
        """Replace a logged decision with a user-chosen outcome.

        Returns:
            The overriding decision with confidence 1.0, or None if log_id
            is unknown.
        """
        entry = next((e for e in self._logs if e.id == log_id), None)
        if entry is None:
            logger.warning("Cannot override unknown decision %s", log_id)
            return None

        entry.user_confirmed = True
        entry.user_override = outcome
        logger.info("Decision %s overridden: %s (%s)", log_id, outcome, reason)
        return replace(
            entry.decision,
            outcome=outcome,
            reason=f"User override: {reason}",
            confidence=1.0,
            timestamp=utc_now(),
        )

    def get_statistics(self) -> DecisionStatistics:
        distribution = dict.fromkeys(DecisionOutcome, 0)
        for entry in self._logs:
            distribution[entry.decision.outcome] += 1

        total = len(self._logs)
        confidence = sum(e.decision.confidence for e in self._logs)
        return DecisionStatistics(
            total_decisions=total,
            outcome_distribution=distribution,
            average_confidence=confidence / total if total else 0.0,
            total_retries=sum(1 for e in self._logs if e.decision.should_retry),
            abort_count=distribution[DecisionOutcome.ABORT],
            complete_count=distribution[DecisionOutcome.COMPLETE],
        )
