"""Convenience constructors for phase results.

Handy for phase handlers that produce loose data (dicts from an LLM
response, test runner output) rather than model instances.
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Mapping
from typing import Any

from ralph.core.enums import StepType
from ralph.core.models import (
    CriterionResult,
    ExecutionResult,
    PlanStep,
    TaskPlan,
    VerificationResult,
)


def create_simple_plan(
    success_criteria: Iterable[str],
    steps: Iterable[tuple[str, StepType | str]],
) -> TaskPlan:
    """Build a plan of pending steps, indexed in the order given.

    Args:
        success_criteria: Free-text criteria checked during VERIFY.
        steps: ``(description, type)`` pairs.
    """
    return TaskPlan(
        id=f"plan_{int(time.time() * 1000)}",
        steps=[
            PlanStep(index=index, description=description, type=StepType(step_type))
            for index, (description, step_type) in enumerate(steps)
        ],
        success_criteria=list(success_criteria),
    )


def create_execution_results(
    step_results: Iterable[Mapping[str, Any]],
) -> list[ExecutionResult]:
    """Build one ExecutionResult per mapping, numbering steps from zero.

    Each mapping needs ``success`` and may carry ``output``, ``error`` and
    ``duration_ms``.
    """
    return [
        ExecutionResult.model_validate({**result, "step_index": index})
        for index, result in enumerate(step_results)
    ]


def create_verification_result(
    criteria_results: Iterable[CriterionResult | Mapping[str, Any]],
    suggestions: Iterable[str] | None = None,
) -> VerificationResult:
    """Build a VerificationResult that passes only if every criterion passed."""
    criteria = [
        c if isinstance(c, CriterionResult) else CriterionResult.model_validate(c)
        for c in criteria_results
    ]
    return VerificationResult(
        passed=all(c.passed for c in criteria),
        criteria_results=criteria,
        suggestions=list(suggestions or []),
    )
