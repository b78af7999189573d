"""Filesystem support helpers for the supervisor."""

from ralph.support.directory import (
    cleanup_old_logs,
    get_logs_dir,
    get_state_dir,
    get_state_path,
)

__all__ = ["cleanup_old_logs", "get_logs_dir", "get_state_dir", "get_state_path"]
