"""Unit test fixtures.

Unit tests drive the state machine, decision engine and persistence layer
directly, without a running supervisor loop. Shared fixtures live in the
root conftest.py.
"""

import pytest

from ralph.config import MachineConfig
from ralph.supervisor import DecisionEngine, StateMachine


@pytest.fixture
def machine() -> StateMachine:
    """State machine with a three-iteration budget and no timeouts."""
    return StateMachine(MachineConfig(max_iterations=3, state_timeouts_ms={}))


@pytest.fixture
def engine() -> DecisionEngine:
    """Decision engine with default thresholds."""
    return DecisionEngine()
