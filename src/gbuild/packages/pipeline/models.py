"""Data models for the incremental build scheduler.

- UnitPhase: Enum tracking what the scheduler is doing with a unit
- RunStats: Thread-safe counters aggregated over a whole run
"""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class UnitPhase(Enum):
    """Phase of a unit as reported to progress callbacks."""

    WAITING = "waiting"
    FETCHING = "fetching"
    BUILDING = "building"
    BUILT = "built"
    UP_TO_DATE = "up_to_date"
    INSTALLING = "installing"
    INSTALLED = "installed"
    CLEANED = "cleaned"
    TESTING = "testing"
    PASSED = "passed"
    FAILED = "failed"


TERMINAL_PHASES = frozenset(
    {UnitPhase.BUILT, UnitPhase.UP_TO_DATE, UnitPhase.INSTALLED, UnitPhase.CLEANED, UnitPhase.PASSED, UnitPhase.FAILED}
)


@dataclass
class RunStats:
    """Counters for one run. Incremented from any worker thread.

    Attributes:
        built: Units whose backend build succeeded
        installed: Units copied into the install tree
        cleaned: Units that had artifacts removed
        tested: Units whose tests ran
        tests_failed: Units whose tests ran and failed
        broken: Units whose own build failed (inherited failures excluded)
        install_failed: Units whose install step failed
    """

    built: int = 0
    installed: int = 0
    cleaned: int = 0
    tested: int = 0
    tests_failed: int = 0
    broken: int = 0
    install_failed: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def increment(self, counter: str, amount: int = 1) -> None:
        with self._lock:
            setattr(self, counter, getattr(self, counter) + amount)

    @property
    def success(self) -> bool:
        """True if nothing broke and every test run passed."""
        return self.broken == 0 and self.tests_failed == 0 and self.install_failed == 0

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        with self._lock:
            return {
                "built": self.built,
                "installed": self.installed,
                "cleaned": self.cleaned,
                "tested": self.tested,
                "tests_failed": self.tests_failed,
                "broken": self.broken,
                "install_failed": self.install_failed,
            }
