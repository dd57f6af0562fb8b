"""Incremental build scheduler.

Walks the validated dependency graph on demand and brings units up to date:
- build: dependencies first, then the unit's backend only if its artifact is
  older than its sources, its dependencies' artifacts or its prebuilt inputs
- install: dependencies first, then copy when the binary is newer than the
  installed copy (toolchain-owned units are never installed here)
- clean: remove artifacts and force the next build
- test: build test dependencies and the unit, then build and run the
  generated test entry point

Every action runs at most once per unit per run. The once-marker check and
the work happen under the unit's re-entrant guard, so a second caller for
the same unit (a speculative worker, or a sibling that shares the
dependency) blocks until the first finishes and then sees its result. The
guard of a unit is held while its dependencies are processed; the graph is
acyclic, so guards are always taken in dependency order and cannot deadlock.

A separate BackendSlots semaphore caps concurrent external processes.
"""

import logging
import threading
from typing import Callable, Optional

from gbuild.backend.base import BackendSet
from gbuild.backend.fetch import Fetcher
from gbuild.backend.testmain import build_test_suite
from gbuild.build.build_context import RunConfig
from gbuild.build.error_collector import ErrorCollector
from gbuild.output import log_unit

from ..errors import BackendError, BuildFailure, GBuildError, InheritedFailure
from ..models import Action, FailureKind, Unit
from ..registry import UnitRegistry
from .callbacks import NullCallback, ProgressCallback
from .models import RunStats, UnitPhase
from .pools import BackendSlots, SpeculativePool

logger = logging.getLogger(__name__)


class BuildScheduler:
    """Memoised, concurrency-safe build / install / clean / test over a UnitRegistry.

    Usage:
        scheduler = BuildScheduler(registry, config, backends, collector)
        scheduler.check_status()
        for unit in listed:
            scheduler.build(unit.target)
        print(scheduler.stats.built)

    Args:
        registry: Resolved, cycle-free unit registry.
        config: Run configuration.
        backends: Backend per strategy.
        collector: Receives every per-unit error.
        fetcher: Fetches remote dependencies (required when units need fetching).
        callback: Progress receiver (defaults to NullCallback).
        slots: Global cap on concurrent backend invocations.
        speculative: Pool for speculative dependency builds (used when
            config.concurrent is set).
        confirm: Asks the user a yes/no question; used before nuking installed
            artifacts unless config.force is set.
    """

    def __init__(
        self,
        registry: UnitRegistry,
        config: RunConfig,
        backends: BackendSet,
        collector: ErrorCollector,
        fetcher: Optional[Fetcher] = None,
        callback: Optional[ProgressCallback] = None,
        slots: Optional[BackendSlots] = None,
        speculative: Optional[SpeculativePool] = None,
        confirm: Optional[Callable[[str], bool]] = None,
    ) -> None:
        self.registry = registry
        self.config = config
        self.backends = backends
        self.collector = collector
        self.fetcher = fetcher
        self.callback: ProgressCallback = callback if callback is not None else NullCallback()
        self.slots = slots if slots is not None else BackendSlots(config.max_jobs)
        self.speculative = speculative
        self.confirm = confirm
        self.stats = RunStats()
        self._test_results: dict[str, bool] = {}
        self._test_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Staleness
    # ------------------------------------------------------------------

    def touched(self, target: str, memo: Optional[dict[str, tuple[bool, bool]]] = None) -> tuple[bool, bool]:
        """Whether a unit needs (build, install), judged from current timestamps.

        A unit needs building when it is flagged, when any dependency needs
        building, or when its newest input is newer than its artifact. Only
        force_build and timestamps decide whether build() runs the backend. It
        needs installing when its install copy is older than its binary or
        its inputs, when any dependency needs installing, or whenever it
        needs building.
        """
        memo = {} if memo is None else memo
        if target in memo:
            return memo[target]

        unit = self.registry[target]
        build = unit.needs_build
        install = unit.needs_install
        in_time = unit.prebuilt_time
        for dep_target in unit.dep_targets:
            dep_build, dep_install = self.touched(dep_target, memo)
            build = build or dep_build
            install = install or dep_install
            in_time = max(in_time, self.registry[dep_target].bin_time)

        in_time = max(in_time, unit.source_time)
        if in_time > unit.bin_time:
            build = True
        if unit.install_time < unit.bin_time or unit.install_time < in_time:
            install = True
        if build:
            install = True

        memo[target] = (build, install)
        return build, install

    def check_status(self) -> None:
        """Fold the current staleness of every unit into its needs_* flags."""
        memo: dict[str, tuple[bool, bool]] = {}
        for unit in self.registry.units():
            build, install = self.touched(unit.target, memo)
            with unit.guard:
                unit.needs_build = unit.needs_build or build
                unit.needs_install = unit.needs_install or install

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    def build(self, target: str) -> bool:
        """Bring one unit (and everything it depends on) up to date.

        Returns:
            True if the unit's artifact can be relied on, False if it or one
            of its dependencies failed.
        """
        unit = self.registry[target]
        with unit.guard:
            if unit.failed:
                return False
            if unit.was_attempted(Action.BUILD):
                return True
            unit.mark_attempted(Action.BUILD)
            try:
                return self._build_locked(unit)
            except KeyboardInterrupt:
                raise
            except Exception as e:
                self._fail(unit, FailureKind.BUILD, e, "build")
                raise

    def _build_locked(self, unit: Unit) -> bool:
        if self.config.concurrent and self.speculative is not None:
            for dep_target in unit.dep_targets:
                self.speculative.submit(self.build, dep_target)

        in_time = unit.prebuilt_time
        for dep_target in unit.dep_targets:
            if not self.build(dep_target):
                self._fail(unit, FailureKind.INHERITED, InheritedFailure(unit.target, dep_target), "build")
                return False
            dep = self.registry[dep_target]
            with dep.guard:
                in_time = max(in_time, dep.bin_time)

        for dep in unit.fetch_deps:
            if self.fetcher is None:
                self._fail(unit, FailureKind.BUILD, BuildFailure(f'cannot fetch "{dep}": fetching is disabled'), "fetch")
                return False
            self.callback.on_progress(unit.target, UnitPhase.FETCHING, dep)
            try:
                in_time = max(in_time, self.fetcher.fetch(dep))
            except BackendError as e:
                self._fail(unit, FailureKind.BUILD, e, "fetch")
                return False
        unit.needs_fetch = False

        if not unit.active:
            return True

        in_time = max(in_time, unit.source_time)
        if not unit.force_build and in_time <= unit.bin_time:
            unit.needs_build = False
            self.callback.on_progress(unit.target, UnitPhase.UP_TO_DATE, unit.dir)
            return True

        log_unit(unit.dir, "building", unit.kind_label, unit.target)
        self.callback.on_progress(unit.target, UnitPhase.BUILDING, unit.dir)
        backend = self.backends.for_unit(unit)
        try:
            with self.slots:
                backend.build(unit)
            unit.stat()
            if unit.bin_time == 0:
                raise BuildFailure(f'(in {unit.dir}) could not build "{unit.target}": {unit.result_path} was not produced')
            if unit.bin_time < in_time:
                raise BuildFailure(f'(in {unit.dir}) could not build "{unit.target}": {unit.result_path} is older than its inputs')
        except (GBuildError, OSError) as e:
            self._fail(unit, FailureKind.BUILD, e, "build")
            return False

        self.stats.increment("built")
        unit.needs_build = False
        unit.force_build = False
        unit.needs_install = True
        self.callback.on_progress(unit.target, UnitPhase.BUILT, unit.dir)
        return True

    def _fail(self, unit: Unit, kind: FailureKind, error: BaseException, phase: str) -> None:
        """Record a failure. Only a unit's own failure counts it as broken."""
        if unit.failed:
            return
        unit.mark_failed(kind, str(error))
        unit.needs_build = True
        unit.needs_install = True
        if kind is not FailureKind.INHERITED:
            self.stats.increment("broken")
        if not isinstance(error, GBuildError) and not isinstance(error, OSError):
            logger.exception("Unexpected error while building %s", unit.target)
        self.collector.add_exception(error, phase, unit.dir, unit.target)
        self.callback.on_progress(unit.target, UnitPhase.FAILED, str(error))

    # ------------------------------------------------------------------
    # Install
    # ------------------------------------------------------------------

    def install(self, target: str) -> bool:
        """Install a unit's artifact after installing its dependencies.

        Returns:
            False if the unit is broken or its own install failed.
        """
        unit = self.registry[target]
        with unit.guard:
            if unit.was_attempted(Action.INSTALL):
                return not unit.failed
            unit.mark_attempted(Action.INSTALL)

            for dep_target in unit.dep_targets:
                self.install(dep_target)

            if unit.failed:
                return False
            if not unit.active or unit.is_toolchain_owned:
                return True
            if not unit.bin_time or unit.install_time >= unit.bin_time:
                unit.needs_install = False
                return True

            self.callback.on_progress(unit.target, UnitPhase.INSTALLING, unit.dir)
            try:
                with self.slots:
                    self.backends.for_unit(unit).install(unit)
            except (GBuildError, OSError) as e:
                self.stats.increment("install_failed")
                self.collector.add_exception(e, "install", unit.dir, unit.target)
                self.callback.on_progress(unit.target, UnitPhase.FAILED, str(e))
                return False

            unit.stat()
            unit.needs_install = False
            self.stats.increment("installed")
            self.callback.on_progress(unit.target, UnitPhase.INSTALLED, unit.dir)
            return True

    # ------------------------------------------------------------------
    # Clean
    # ------------------------------------------------------------------

    def clean(self, target: str) -> bool:
        """Remove a unit's artifacts (dependencies first) and force its next build."""
        unit = self.registry[target]
        with unit.guard:
            if unit.was_attempted(Action.CLEAN):
                return True
            unit.mark_attempted(Action.CLEAN)

            for dep_target in unit.dep_targets:
                self.clean(dep_target)

            if not unit.active:
                return True

            backend = self.backends.for_unit(unit)
            ok = True
            removed = False
            try:
                removed = backend.clean(unit)
                if self.config.nuke and unit.install_path is not None and unit.install_path.exists():
                    if self._confirm_nuke(unit):
                        removed = backend.nuke(unit) or removed
            except (GBuildError, OSError) as e:
                ok = False
                self.collector.add_exception(e, "clean", unit.dir, unit.target)
            finally:
                unit.stat()
                unit.needs_build = True
                unit.force_build = True
                unit.needs_install = True
                unit.reset_attempts(Action.BUILD, Action.INSTALL, Action.TEST)
                with self._test_lock:
                    self._test_results.pop(unit.target, None)

            if removed:
                self.stats.increment("cleaned")
                self.callback.on_progress(unit.target, UnitPhase.CLEANED, unit.dir)
            return ok

    def _confirm_nuke(self, unit: Unit) -> bool:
        if self.config.force or self.confirm is None:
            return self.config.force
        return self.confirm(f"Really nuke installed binary '{unit.install_path}'?")

    # ------------------------------------------------------------------
    # Test
    # ------------------------------------------------------------------

    def test(self, target: str) -> bool:
        """Build a unit and its test dependencies, then build and run its tests.

        Returns:
            True if the tests passed (or the unit has none to run).
        """
        unit = self.registry[target]
        with self._test_lock:
            if target in self._test_results:
                return self._test_results[target]
        for dep_target in unit.test_dep_targets:
            if dep_target == target:
                continue
            if not self.build(dep_target):
                return self._record_test(unit, False, InheritedFailure(unit.target, dep_target))
        if not self.build(target):
            return False

        with unit.guard:
            if unit.was_attempted(Action.TEST):
                with self._test_lock:
                    return self._test_results.get(target, True)
            unit.mark_attempted(Action.TEST)

            if unit.name == "main" or not unit.test_sources:
                return True

            suite = build_test_suite(unit)
            log_unit(unit.dir, "testing", "", unit.target)
            self.callback.on_progress(unit.target, UnitPhase.TESTING, f"{suite.test_count} tests")
            try:
                with self.slots:
                    passed = self.backends.for_unit(unit).test(unit, suite)
            except (GBuildError, OSError) as e:
                return self._record_test(unit, False, e)
            unit.stat()
            return self._record_test(unit, passed, None)

    def _record_test(self, unit: Unit, passed: bool, error: Optional[BaseException]) -> bool:
        with self._test_lock:
            self._test_results[unit.target] = passed
        self.stats.increment("tested")
        if passed:
            self.callback.on_progress(unit.target, UnitPhase.PASSED, unit.dir)
            return True

        self.stats.increment("tests_failed")
        if error is None:
            error = BuildFailure(f'(in {unit.dir}) tests failed for "{unit.target}"')
        self.collector.add_exception(error, "test", unit.dir, unit.target)
        self.callback.on_progress(unit.target, UnitPhase.FAILED, str(error))
        return False
