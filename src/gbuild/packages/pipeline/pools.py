"""Concurrency primitives for the incremental build scheduler.

Provides two resource-isolated pieces:
- BackendSlots: A bounded counting semaphore capping how many external tool
  processes run at once, across all units and threads.
- SpeculativePool: A ThreadPoolExecutor that starts dependency builds early.
  Its work is advisory; the scheduler's per-unit guards make a speculative
  build and the synchronous build of the same unit collapse into one.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable

logger = logging.getLogger(__name__)


class BackendSlots:
    """Global cap on concurrent backend invocations.

    Usage:
        slots = BackendSlots(max_jobs=4)
        with slots:
            backend.build(unit)

    Args:
        max_jobs: Maximum concurrent backend processes (at least 1).
    """

    def __init__(self, max_jobs: int) -> None:
        self._max_jobs = max(1, max_jobs)
        self._semaphore = threading.BoundedSemaphore(self._max_jobs)
        self._lock = threading.Lock()
        self._active = 0
        self._peak = 0

    def __enter__(self) -> "BackendSlots":
        self._semaphore.acquire()
        with self._lock:
            self._active += 1
            self._peak = max(self._peak, self._active)
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        with self._lock:
            self._active -= 1
        self._semaphore.release()

    @property
    def max_jobs(self) -> int:
        return self._max_jobs

    @property
    def peak(self) -> int:
        """Highest number of simultaneously held slots seen so far."""
        with self._lock:
            return self._peak


class SpeculativePool:
    """Thread pool running speculative dependency builds.

    Exceptions raised by speculative work are logged, not propagated: the
    same unit is always also built synchronously by the caller that needs
    it, which observes the recorded outcome through the unit's state.

    Args:
        max_workers: Maximum concurrent speculative builds.
    """

    def __init__(self, max_workers: int) -> None:
        self._max_workers = max(1, max_workers)
        self._executor = ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="speculative")
        self._shutdown = False
        self._lock = threading.Lock()
        self._submitted: set[str] = set()

    def submit(self, fn: Callable[[str], bool], target: str) -> "Future[bool] | None":
        """Start `fn(target)` in the background, at most once per target.

        Returns:
            The future, or None if the target was already submitted or the
            pool has been shut down.
        """
        with self._lock:
            if self._shutdown or target in self._submitted:
                return None
            self._submitted.add(target)
            future = self._executor.submit(fn, target)
        future.add_done_callback(lambda f: self._on_done(target, f))
        return future

    @staticmethod
    def _on_done(target: str, future: "Future[bool]") -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Speculative build of %s raised %s: %s", target, type(exc).__name__, exc)

    def shutdown(self, wait: bool = True) -> None:
        """Shut down the thread pool.

        Args:
            wait: Wait for running speculative builds to finish.
        """
        with self._lock:
            self._shutdown = True
        self._executor.shutdown(wait=wait, cancel_futures=not wait)

    @property
    def max_workers(self) -> int:
        """Maximum number of concurrent speculative workers."""
        return self._max_workers

    def __enter__(self) -> "SpeculativePool":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.shutdown(wait=exc_type is None)
