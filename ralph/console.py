"""Shared Rich console with the supervisor's theme.

Supervisor states have their own ``state.<name>`` styles so that every view
(progress lines, history tables, recovery panels) colors a state the same way.
"""

from rich.console import Console
from rich.theme import Theme

from ralph.core.enums import SupervisorState

custom_theme = Theme({
    "heading": "bold cyan",
    "success": "green",
    "warning": "yellow",
    "error": "bold red",
    "muted": "dim",
    "path": "cyan",
    "state.idle": "dim",
    "state.plan": "bold blue",
    "state.execute": "bold magenta",
    "state.verify": "bold cyan",
    "state.iterate": "bold yellow",
    "state.paused": "yellow",
    "state.complete": "bold green",
    "state.failed": "bold red",
})

console = Console(theme=custom_theme)


def state_style(state: SupervisorState) -> str:
    """Theme style name for state."""
    return f"state.{state.value}"


def print_banner(version: str) -> None:
    console.print(f"[heading]ralph[/heading] [muted](v{version})[/muted]")


def print_success(text: str) -> None:
    console.print(f"[success]✓[/success] {text}")


def print_warning(text: str) -> None:
    console.print(f"[warning]![/warning] {text}")


def print_error(text: str) -> None:
    console.print(f"[error]✗[/error] {text}")


def print_path(label: str, path: str) -> None:
    """Print labeled path with muted style."""
    console.print(f"[muted]{label}:[/muted] [path]{path}[/path]")
