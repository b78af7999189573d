"""Rich renderables for supervisor progress, results and recovery state.

The ralph CLI only inspects snapshots, so it uses the recovery and history
renderables. :func:`progress_printer` and :func:`render_result` are for
applications that embed :class:`SupervisorLoop` and run it themselves:

    >>> loop.on_progress(progress_printer())
    >>> console.print(render_result(await loop.run("Add input validation")))
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ralph.console import console as default_console
from ralph.console import state_style
from ralph.core.enums import SupervisorState
from ralph.core.models import StateTransition
from ralph.supervisor.loop import LoopResult, ProgressReport, RecoveryInfo
from ralph.supervisor.transitions import STATE_DISPLAY_NAMES, is_terminal_state
from ralph.utils import format_duration, truncate

BAR_WIDTH = 20


def state_label(state: SupervisorState) -> Text:
    """Display name of state in its theme style."""
    return Text(STATE_DISPLAY_NAMES[state], style=state_style(state))


def render_progress(report: ProgressReport) -> Text:
    """One-line progress bar: ``[####------]  40% Iterating  message``."""
    filled = round(report.percentage / 100 * BAR_WIDTH)
    line = Text()
    line.append("[" + "#" * filled + "-" * (BAR_WIDTH - filled) + "]", style="muted")
    line.append(f" {report.percentage:>3}% ")
    line.append_text(state_label(report.state))
    line.append(f"  {report.message}")
    if report.iteration:
        line.append(f"  (iteration {report.iteration})", style="muted")
    return line


def progress_printer(
    console: Console | None = None,
) -> Callable[[ProgressReport], None]:
    """Progress callback that prints each report on its own line."""
    target = console or default_console

    def _print(report: ProgressReport) -> None:
        target.print(render_progress(report))

    return _print


def render_result(result: LoopResult) -> Panel:
    """Summary panel for a finished run."""
    lines = [
        f"[muted]State:[/muted] {STATE_DISPLAY_NAMES[result.final_state]}",
        f"[muted]Iterations:[/muted] {result.iterations}",
        f"[muted]Duration:[/muted] {format_duration(result.duration_ms)}",
    ]
    if result.plan is not None:
        lines.append(f"[muted]Plan steps:[/muted] {len(result.plan.steps)}")
    if result.execution_results is not None:
        passed = sum(1 for r in result.execution_results if r.success)
        lines.append(
            f"[muted]Steps passed:[/muted] {passed}/{len(result.execution_results)}"
        )
    if result.verification_result is not None:
        criteria = result.verification_result.criteria_results
        met = sum(1 for c in criteria if c.passed)
        lines.append(f"[muted]Criteria met:[/muted] {met}/{len(criteria)}")
    if result.error:
        lines.append(f"[error]Error:[/error] {result.error}")

    if result.success:
        title, border = "[success]Task Complete[/success]", "green"
    else:
        title, border = "[error]Task Failed[/error]", "red"
    return Panel("\n".join(lines), title=title, border_style=border)


def render_recovery(info: RecoveryInfo, *, stale: bool = False) -> Panel:
    """Panel describing a persisted snapshot."""
    if not info.exists:
        return Panel("[muted]No saved supervisor state[/muted]", title="Recovery")

    state = info.state or SupervisorState.IDLE
    lines = [
        f"[muted]Task:[/muted] {truncate(info.task or '', 70)}",
        f"[muted]State:[/muted] {STATE_DISPLAY_NAMES[state]}",
        f"[muted]Iteration:[/muted] {info.iteration or 0}",
    ]
    if info.age_ms is not None:
        lines.append(f"[muted]Saved:[/muted] {format_duration(info.age_ms)} ago")
    if is_terminal_state(state):
        lines.append("[muted]Task already finished; a new run starts fresh[/muted]")
    elif stale:
        lines.append("[warning]Snapshot is too old to be recovered[/warning]")
    else:
        lines.append("[success]Recoverable[/success]")
    return Panel("\n".join(lines), title="Recovery", border_style="cyan")


def render_history(history: Sequence[StateTransition]) -> Table:
    """Table of recorded transitions, oldest first."""
    table = Table(title="Transition History")
    table.add_column("#", justify="right", style="muted")
    table.add_column("Time", style="muted")
    table.add_column("From")
    table.add_column("To")
    table.add_column("Reason")

    for index, record in enumerate(history, start=1):
        table.add_row(
            str(index),
            _format_time(record.timestamp),
            state_label(record.from_state),
            state_label(record.to_state),
            truncate(record.reason, 60),
        )
    return table


def _format_time(value: datetime) -> str:
    return value.astimezone().strftime("%Y-%m-%d %H:%M:%S")
