"""Utility functions for the ralph supervisor."""

import logging
from datetime import datetime
from pathlib import Path

from rich.logging import RichHandler

from ralph.console import console


def setup_logging(log_dir: Path, *, verbose: bool = False) -> Path:
    """Configure logging for the ralph package.

    Uses delayed file creation - log file only created when first message written.

    Args:
        log_dir: Directory to store log files.
        verbose: Also echo INFO and above to the terminal through rich.

    Returns:
        Path to the log file (may not exist until first log message).
    """
    logger = logging.getLogger("ralph")
    logger.handlers.clear()

    timestamp = datetime.now().strftime("%Y-%m-%d-%H:%M")
    _log_path = log_dir / f"{timestamp}.log"

    file_handler = logging.FileHandler(_log_path, delay=True)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    logger.addHandler(file_handler)

    if verbose:
        rich_handler = RichHandler(console=console, show_path=False)
        rich_handler.setLevel(logging.INFO)
        logger.addHandler(rich_handler)

    # Always capture DEBUG to file; logger must allow messages through
    logger.setLevel(logging.DEBUG)

    # Silence noisy third-party loggers
    for name in ("asyncio",):
        logging.getLogger(name).setLevel(logging.WARNING)

    return _log_path


def truncate(text: str, limit: int = 60) -> str:
    """Shorten text to limit characters, marking the cut with an ellipsis."""
    if len(text) <= limit:
        return text
    return text[: limit - 1] + "…"


def format_duration(ms: float) -> str:
    """Render a millisecond duration as a short human string."""
    seconds = ms / 1000
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, seconds = divmod(int(seconds), 60)
    if minutes < 60:
        return f"{minutes}m {seconds}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes}m"
