"""Crash-recovery snapshots of the supervisor state on disk.

The snapshot is a single JSON document written atomically (temp file then
rename) so a crash mid-write never leaves a truncated file behind.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path

from pydantic import ValidationError

from ralph.core.models import PersistedState
from ralph.support.directory import get_state_path

logger = logging.getLogger(__name__)


class StatePersistence:
    """Reads and writes one PersistedState file."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or get_state_path()

    @property
    def path(self) -> Path:
        return self._path

    def save(self, snapshot: PersistedState) -> None:
        """Persist snapshot atomically, creating parent directories.

        Raises:
            OSError: If the file cannot be written.
        """
        self._path.parent.mkdir(parents=True, exist_ok=True)

        # Atomic write: temp file then rename
        temp_path = self._path.with_suffix(".tmp")
        try:
            temp_path.write_text(snapshot.model_dump_json(indent=2))
            temp_path.replace(self._path)
        except OSError:
            temp_path.unlink(missing_ok=True)
            raise
        logger.debug(
            "Saved state snapshot: task=%s state=%s",
            snapshot.task_context.id,
            snapshot.current_state,
        )

    def load(self) -> PersistedState | None:
        """Load the snapshot.

        Returns:
            PersistedState if the file exists and is valid, None otherwise.
        """
        if not self._path.exists():
            return None

        try:
            snapshot = PersistedState.model_validate_json(self._path.read_bytes())
        except (OSError, ValidationError, ValueError) as e:
            logger.warning("Failed to load state snapshot %s: %s", self._path, e)
            return None

        logger.debug(
            "Loaded state snapshot: task=%s state=%s",
            snapshot.task_context.id,
            snapshot.current_state,
        )
        return snapshot

    def exists(self) -> bool:
        """Check if a snapshot file exists."""
        return self._path.exists()

    def get_age_ms(self) -> float | None:
        """Milliseconds since the snapshot was last written, or None."""
        try:
            mtime = self._path.stat().st_mtime
        except FileNotFoundError:
            return None
        return max(0.0, (time.time() - mtime) * 1000)

    def is_stale(self, max_age_ms: float) -> bool:
        """Check if the snapshot is missing or older than max_age_ms."""
        age = self.get_age_ms()
        return age is None or age > max_age_ms

    def clear(self) -> None:
        """Delete the snapshot file."""
        if self._path.exists():
            self._path.unlink()
            logger.info("Cleared state snapshot %s", self._path)
