"""Tests for the phase result builders."""

import re

import pytest
from pydantic import ValidationError

from ralph.core import CriterionResult, StepStatus, StepType
from ralph.supervisor import (
    create_execution_results,
    create_simple_plan,
    create_verification_result,
)


class TestCreateSimplePlan:
    """Tests for create_simple_plan()."""

    def test_builds_indexed_pending_steps(self) -> None:
        plan = create_simple_plan(
            ["Tests pass"],
            [("Write the validator", StepType.CODE), ("Run pytest", "test")],
        )

        assert re.fullmatch(r"plan_\d+", plan.id)
        assert plan.success_criteria == ["Tests pass"]
        assert [(s.index, s.type, s.status) for s in plan.steps] == [
            (0, StepType.CODE, StepStatus.PENDING),
            (1, StepType.TEST, StepStatus.PENDING),
        ]
        assert plan.steps[1].description == "Run pytest"

    def test_unknown_step_type(self) -> None:
        with pytest.raises(ValueError):
            create_simple_plan([], [("Do it", "dance")])


class TestCreateExecutionResults:
    """Tests for create_execution_results()."""

    def test_numbers_steps_from_zero(self) -> None:
        results = create_execution_results([
            {"success": True, "output": "ok", "duration_ms": 12.5},
            {"success": False, "error": "Timeout"},
        ])

        assert [r.step_index for r in results] == [0, 1]
        assert results[0].duration_ms == 12.5
        assert results[1].error == "Timeout"
        assert results[1].output is None

    def test_requires_success_flag(self) -> None:
        with pytest.raises(ValidationError):
            create_execution_results([{"output": "no verdict"}])


class TestCreateVerificationResult:
    """Tests for create_verification_result()."""

    def test_passes_when_every_criterion_passes(self) -> None:
        result = create_verification_result([
            CriterionResult(criterion="Tests pass", passed=True),
            {"criterion": "Lint is clean", "passed": True, "details": "0 issues"},
        ])

        assert result.passed
        assert result.criteria_results[1].details == "0 issues"
        assert result.suggestions == []

    def test_fails_when_any_criterion_fails(self) -> None:
        result = create_verification_result(
            [
                {"criterion": "Tests pass", "passed": False},
                {"criterion": "Lint is clean", "passed": True},
            ],
            suggestions=["Fix test_validator"],
        )

        assert not result.passed
        assert result.suggestions == ["Fix test_validator"]

    def test_no_criteria_passes(self) -> None:
        assert create_verification_result([]).passed
