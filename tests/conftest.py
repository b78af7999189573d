"""Root test fixtures shared across unit and integration tests.

Module-specific fixtures are in:
- tests/unit/conftest.py (unit test documentation)
- tests/integration/conftest.py (integration test documentation)

This file contains fixtures used by both test categories.
"""

import logging
from collections.abc import Generator
from pathlib import Path

import pytest

from ralph.config import SupervisorConfig
from ralph.supervisor import StatePersistence, SupervisorLoop
from tests.factories import ScriptedHandlers

# ============================================================================
# Path Fixtures
# ============================================================================


@pytest.fixture
def state_file(tmp_path: Path) -> Path:
    """Snapshot path inside the test's temporary directory."""
    return tmp_path / ".ralph" / "supervisor-state.json"


@pytest.fixture
def persistence(state_file: Path) -> StatePersistence:
    """StatePersistence writing to a temporary file."""
    return StatePersistence(state_file)


@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's RALPH_STATE_FILE out of the tests."""
    monkeypatch.delenv("RALPH_STATE_FILE", raising=False)


# ============================================================================
# Supervisor Fixtures
# ============================================================================


@pytest.fixture
def fast_config(state_file: Path) -> SupervisorConfig:
    """Config with no state timeouts and no periodic timers."""
    return SupervisorConfig(
        state_timeouts_ms={},
        persistence_path=state_file,
        persist_interval_ms=0,
        progress_interval_ms=0,
    )


@pytest.fixture
def handlers() -> ScriptedHandlers:
    """Phase handlers that succeed on the first pass."""
    return ScriptedHandlers()


@pytest.fixture
def make_loop(
    fast_config: SupervisorConfig, persistence: StatePersistence
):
    """Build a SupervisorLoop wired to the given scripted handlers."""

    def _make(
        scripted: ScriptedHandlers, config: SupervisorConfig | None = None
    ) -> SupervisorLoop:
        return SupervisorLoop(
            scripted.plan_handler,
            scripted.execute_handler,
            scripted.verify_handler,
            config=config or fast_config,
            persistence=persistence,
        )

    return _make


# ============================================================================
# Logging Cleanup (autouse)
# ============================================================================


@pytest.fixture(autouse=True)
def cleanup_logging_handlers() -> Generator[None]:
    """Clean up logging handlers after each test to prevent test pollution.

    This prevents tests that call setup_logging() from polluting other tests
    with FileHandlers that write to real log files.
    """
    yield
    logger = logging.getLogger("ralph")
    for handler in logger.handlers[:]:
        handler.close()
    logger.handlers.clear()
