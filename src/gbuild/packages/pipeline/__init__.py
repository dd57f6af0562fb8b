"""Incremental build scheduling with an optional Rich progress display.

Public API:
    BuildScheduler: Memoised build / install / clean / test over a resolved registry.
    BuildProgressDisplay: Live per-unit phase table (a ProgressCallback).
"""

from .callbacks import NullCallback, ProgressCallback
from .models import TERMINAL_PHASES, RunStats, UnitPhase
from .pools import BackendSlots, SpeculativePool
from .progress_display import BuildProgressDisplay
from .scheduler import BuildScheduler

__all__ = [
    "BackendSlots",
    "BuildProgressDisplay",
    "BuildScheduler",
    "NullCallback",
    "ProgressCallback",
    "RunStats",
    "SpeculativePool",
    "TERMINAL_PHASES",
    "UnitPhase",
]
