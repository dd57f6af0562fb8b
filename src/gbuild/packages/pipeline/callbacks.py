"""Progress callback protocol for the incremental build scheduler.

Defines the callback interface the scheduler uses to report per-unit phase
changes to the TUI display layer.
"""

from typing import Protocol, runtime_checkable

from .models import UnitPhase


@runtime_checkable
class ProgressCallback(Protocol):
    """Protocol for receiving progress updates from the scheduler.

    Implementations receive real-time updates as units move through fetch,
    build, test and install phases. Calls arrive from worker threads when
    speculative concurrency is enabled.
    """

    def on_progress(self, task_name: str, phase: UnitPhase, detail: str) -> None:
        """Called when a unit changes phase.

        Args:
            task_name: Target name of the unit (e.g. "util").
            phase: New phase.
            detail: Human-readable status detail (e.g. "cmd/tool", a failure reason).
        """
        ...


class NullCallback:
    """No-op callback implementation for testing and non-interactive use.

    Silently discards all progress updates.
    """

    def on_progress(self, task_name: str, phase: UnitPhase, detail: str) -> None:
        """Discard progress update."""
        pass
