"""Rich-based live progress display for the build scheduler.

Renders one line per unit the scheduler touches, showing its current phase:

    Waiting -> Fetching -> Building (spinner) cmd/tool -> Built (checkmark) 1.4s
    -> Installing -> Installed

Thread-safe: speculative worker threads can call on_progress() concurrently
while the display renders in the main thread.
"""

import threading
import time
from typing import Any

from rich.console import Console, Group
from rich.live import Live
from rich.table import Table
from rich.text import Text

from .models import TERMINAL_PHASES, UnitPhase

# Braille spinner frames for the active phases
_SPINNER_FRAMES = ("⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏")

_ACTIVE_PHASES = (UnitPhase.FETCHING, UnitPhase.BUILDING, UnitPhase.INSTALLING, UnitPhase.TESTING)

_PHASE_LABELS = {
    UnitPhase.WAITING: ("Waiting", "dim"),
    UnitPhase.FETCHING: ("Fetching", "blue"),
    UnitPhase.BUILDING: ("Building", "yellow"),
    UnitPhase.BUILT: ("Built", "green"),
    UnitPhase.UP_TO_DATE: ("Up to date", "dim green"),
    UnitPhase.INSTALLING: ("Installing", "magenta"),
    UnitPhase.INSTALLED: ("Installed", "green"),
    UnitPhase.CLEANED: ("Cleaned", "cyan"),
    UnitPhase.TESTING: ("Testing", "blue"),
    UnitPhase.PASSED: ("Passed", "green"),
    UnitPhase.FAILED: ("Failed", "red bold"),
}


class _UnitDisplayState:
    """Internal state for a single unit's display line.

    Attributes:
        name: Unit target name.
        phase: Current scheduler phase.
        detail: Human-readable status text.
        elapsed: Elapsed time in seconds.
        start_time: Monotonic timestamp when the unit entered an active phase.
    """

    __slots__ = ("name", "phase", "detail", "elapsed", "start_time")

    def __init__(self, name: str) -> None:
        self.name = name
        self.phase = UnitPhase.WAITING
        self.detail: str = ""
        self.elapsed: float = 0.0
        self.start_time: float | None = None


class BuildProgressDisplay:
    """Live table of unit phases using Rich.

    Implements ProgressCallback and renders a live-updating table with one
    row per unit.

    Args:
        console: Rich Console instance for rendering. If None, creates a new one.
        title: Header line (e.g. the workspace directory).
        refresh_per_second: Display refresh rate.
    """

    def __init__(self, console: Console | None, title: str, refresh_per_second: int = 10) -> None:
        self._console = console if console is not None else Console()
        self._title = title
        self._refresh_per_second = refresh_per_second
        self._states: dict[str, _UnitDisplayState] = {}
        self._order: list[str] = []
        self._lock = threading.Lock()
        self._live: Live | None = None

    def register_unit(self, name: str) -> None:
        """Register a unit before the run starts so it shows up as Waiting."""
        with self._lock:
            if name not in self._states:
                self._states[name] = _UnitDisplayState(name)
                self._order.append(name)

    def on_progress(self, task_name: str, phase: UnitPhase, detail: str) -> None:
        """Update the display state for a unit. Thread-safe."""
        with self._lock:
            state = self._states.get(task_name)
            if state is None:
                state = _UnitDisplayState(task_name)
                self._states[task_name] = state
                self._order.append(task_name)

            if phase in _ACTIVE_PHASES and (state.start_time is None or state.phase in TERMINAL_PHASES):
                state.start_time = time.monotonic()

            state.phase = phase
            state.detail = detail
            if state.start_time is not None:
                state.elapsed = time.monotonic() - state.start_time

        if self._live is not None:
            self._live.update(self._render_display())

    def start(self) -> None:
        """Start the live display."""
        self._live = Live(
            self._render_display(),
            console=self._console,
            refresh_per_second=self._refresh_per_second,
            transient=False,
        )
        self._live.start()

    def stop(self) -> None:
        """Stop the live display after a final render."""
        if self._live is not None:
            self._live.update(self._render_display())
            self._live.stop()
            self._live = None

    def _render_display(self) -> Group:
        header = Text(f"\n{self._title}\n", style="bold")
        return Group(header, self._render_table(), self._render_footer())

    def _render_table(self) -> Table:
        table = Table(
            show_header=False,
            show_edge=False,
            show_lines=False,
            box=None,
            padding=(0, 1),
            expand=False,
        )
        table.add_column("Unit", style="bold", no_wrap=True, min_width=28)
        table.add_column("Phase", no_wrap=True, min_width=12)
        table.add_column("Status", no_wrap=True, min_width=40)

        with self._lock:
            for name in self._order:
                state = self._states[name]
                table.add_row(self._format_name(state), self._format_phase(state), self._format_status(state))
        return table

    def _render_footer(self) -> Text:
        with self._lock:
            phases = [s.phase for s in self._states.values()]

        parts = [f"{len(phases)} units"]
        active = sum(1 for p in phases if p in _ACTIVE_PHASES)
        done = sum(1 for p in phases if p in TERMINAL_PHASES and p is not UnitPhase.FAILED)
        failed = sum(1 for p in phases if p is UnitPhase.FAILED)
        if active:
            parts.append(f"{active} active")
        if done:
            parts.append(f"{done} done")
        if failed:
            parts.append(f"{failed} failed")
        return Text(f"\n  {', '.join(parts)}", style="dim")

    def _format_name(self, state: _UnitDisplayState) -> Text:
        if state.phase is UnitPhase.FAILED:
            return Text(state.name, style="red")
        if state.phase is UnitPhase.WAITING:
            return Text(state.name, style="dim")
        if state.phase in TERMINAL_PHASES:
            return Text(state.name, style="green")
        return Text(state.name, style="bold cyan")

    def _format_phase(self, state: _UnitDisplayState) -> Text:
        label, style = _PHASE_LABELS.get(state.phase, ("Unknown", "dim"))
        return Text(label, style=style)

    def _format_status(self, state: _UnitDisplayState) -> Text:
        if state.phase is UnitPhase.WAITING:
            return Text("")
        if state.phase in _ACTIVE_PHASES:
            spinner = _SPINNER_FRAMES[int(time.monotonic() * 8) % len(_SPINNER_FRAMES)]
            return Text(f"{spinner} {state.detail}", style="magenta")
        if state.phase is UnitPhase.FAILED:
            return Text(f"✗ {state.detail or 'Error'}", style="red")
        elapsed = f"{state.elapsed:.1f}s" if state.elapsed > 0 else ""
        return Text(f"✓ {elapsed}", style="green")

    def get_snapshot(self) -> list[dict[str, Any]]:
        """Get a snapshot of current display states for testing."""
        with self._lock:
            return [
                {"name": s.name, "phase": s.phase, "detail": s.detail, "elapsed": s.elapsed}
                for s in (self._states[name] for name in self._order)
            ]

    def __enter__(self) -> "BuildProgressDisplay":
        self.start()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.stop()
