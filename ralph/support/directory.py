"""Project directory management for the supervisor's .ralph/ folder."""

import os
from datetime import datetime, timedelta
from pathlib import Path

from ralph.core.constants import RETENTION, STATE_DIR_NAME, STATE_FILE_NAME

RALPH_GITIGNORE_ENTRY = f"{STATE_DIR_NAME}/\n"
STATE_FILE_ENV = "RALPH_STATE_FILE"


def get_state_dir(root: Path | None = None) -> Path:
    """Get the .ralph/ directory under root without creating it."""
    root = root or Path.cwd()
    return root / STATE_DIR_NAME


def get_state_path(
    root: Path | None = None, configured: Path | None = None
) -> Path:
    """Resolve the supervisor snapshot path.

    Precedence: ``RALPH_STATE_FILE``, then the configured path, then
    ``<root>/.ralph/supervisor-state.json``.
    """
    override = os.environ.get(STATE_FILE_ENV)
    if override:
        return Path(override).expanduser()
    if configured:
        return configured
    return get_state_dir(root) / STATE_FILE_NAME


def get_logs_dir(root: Path | None = None) -> Path:
    """Get logs directory, creating .ralph/logs/ if needed.

    Also adds `.ralph/` to the root .gitignore if not already present.

    Args:
        root: Root path where `.ralph/` should be created.
            Defaults to current working directory.

    Returns:
        Path to the logs directory.
    """
    root = root or Path.cwd()
    logs_dir = get_state_dir(root) / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    _ensure_gitignore(root)
    return logs_dir


def cleanup_old_logs(logs_dir: Path, retention_days: int = RETENTION.logs_days) -> int:
    """Remove log files older than retention_days.

    Args:
        logs_dir: Directory containing log files.
        retention_days: Number of days to retain logs.

    Returns:
        Number of files deleted.
    """
    if not logs_dir.exists():
        return 0

    cutoff = datetime.now() - timedelta(days=retention_days)
    deleted = 0

    for log_file in logs_dir.glob("*.log"):
        try:
            # Parse date from filename: YYYY-MM-DD-HH:MM.log
            file_date = datetime.strptime(log_file.stem[:10], "%Y-%m-%d")
            if file_date < cutoff:
                log_file.unlink()
                deleted += 1
        except (ValueError, OSError):
            continue  # Skip files with unexpected format

    return deleted


def _ensure_gitignore(root: Path) -> None:
    """Add .ralph/ to root .gitignore if not already present."""
    gitignore = root / ".gitignore"
    if gitignore.exists():
        content = gitignore.read_text()
        if STATE_DIR_NAME not in content:
            gitignore.write_text(content.rstrip("\n") + "\n" + RALPH_GITIGNORE_ENTRY)
    else:
        gitignore.write_text(RALPH_GITIGNORE_ENTRY)
