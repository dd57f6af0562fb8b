"""
Workspace build orchestration.

Runs one gbuild invocation end to end:
1. Locate the toolchain programs
2. Walk the workspace into a UnitRegistry
3. Resolve dependencies and select backend strategies
4. Reject dependency cycles before touching anything on disk
5. Fold current timestamps into each unit's needs_* flags
6. Clean, build, test, install the listed units, in that order
7. Print the end-of-run summary and the collected errors
"""

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from gbuild.backend import BackendSet, Fetcher, Toolchain, create_backends
from gbuild.output import log, log_error, log_warning
from gbuild.packages.cycles import check_cycles
from gbuild.packages.errors import CycleError
from gbuild.packages.models import Unit
from gbuild.packages.pipeline import BuildProgressDisplay, BuildScheduler, NullCallback, RunStats, SpeculativePool
from gbuild.packages.pipeline.callbacks import ProgressCallback
from gbuild.packages.registry import UnitRegistry, scan_workspace
from gbuild.packages.resolver import DependencyResolver
from gbuild.packages.targets import BUILD_DIR_PKG

from .build_context import RunConfig, ToolchainEnv
from .error_collector import ErrorCollector, ErrorSeverity

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


@dataclass
class RunResult:
    """Outcome of one run.

    Attributes:
        exit_code: Process exit status (0 ok, 1 broken units or failed tests,
            2 configuration or cycle error)
        stats: Run counters
        errors: Everything recorded during the run
        registry: Discovered units (None if the run stopped before scanning)
    """

    exit_code: int
    stats: RunStats
    errors: ErrorCollector
    registry: Optional[UnitRegistry] = None

    @property
    def success(self) -> bool:
        return self.exit_code == EXIT_OK


class WorkspaceOrchestrator:
    """
    Drives scanning, resolution and scheduling for one workspace.

    Args:
        workspace: Workspace root directory
        env: Toolchain environment
        config: Run configuration
        toolchain: Toolchain to use (located on PATH when omitted)
        backends: Backends to use (created from the toolchain when omitted)
        confirm: Yes/no prompt used before nuking installed artifacts
        callback: Progress receiver; a live display is created when omitted
            and config.use_tui is set
    """

    def __init__(
        self,
        workspace: Path,
        env: ToolchainEnv,
        config: RunConfig,
        toolchain: Optional[Toolchain] = None,
        backends: Optional[BackendSet] = None,
        confirm: Optional[Callable[[str], bool]] = None,
        callback: Optional[ProgressCallback] = None,
    ):
        self.workspace = workspace
        self.env = env
        self.config = config
        self.toolchain = toolchain
        self.backends = backends
        self.confirm = confirm
        self.callback = callback
        self.collector = ErrorCollector()
        self.stats = RunStats()

    def run(self) -> RunResult:
        """Execute the run.

        Returns:
            RunResult with the exit code and counters

        Raises:
            ConfigurationError: If the toolchain cannot be located
            KeyboardInterrupt: Always propagated
        """
        if not self.config.scan and self.backends is None:
            if self.toolchain is None:
                self.toolchain = Toolchain.for_arch(self.env.goarch).locate(need_make=self.config.makefiles)
            self.backends = create_backends(self.toolchain, self.env, self.config, self.workspace)

        registry = scan_workspace(self.workspace, self.env, self.config, self.collector)
        listed = [unit for unit in registry.units() if self.config.is_listed(unit.dir)]

        resolver = DependencyResolver(registry, self.env, self.config, self.collector)
        unresolved = resolver.resolve_all()

        try:
            check_cycles(registry, include_tests=self.config.test)
        except CycleError as e:
            log_error(str(e))
            self.collector.add_exception(e, "resolve")
            return RunResult(EXIT_CONFIG, self.stats, self.collector, registry)

        scheduler = self._create_scheduler(registry)
        scheduler.check_status()
        if logger.isEnabledFor(logging.DEBUG):
            for unit in registry:
                logger.debug("Unit %s: %s", unit.target, unit.to_dict())

        if self.config.scan:
            ScanPrinter(registry, self.config).print_units(listed)
            self._print_scan_problems()
            return RunResult(EXIT_OK, self.stats, self.collector, registry)

        # Units broken by resolution count as broken when the run acts on them
        self.stats.increment("broken", sum(1 for u in unresolved if u.active and u in listed))

        display = None
        if self.callback is None and self.config.use_tui:
            display = BuildProgressDisplay(console=None, title=f"gbuild {self.workspace}")
            for unit in listed:
                if unit.active:
                    display.register_unit(unit.target)
            scheduler.callback = display
            display.start()
        try:
            self._run_actions(scheduler, listed)
        finally:
            if display is not None:
                display.stop()
            if scheduler.speculative is not None:
                scheduler.speculative.shutdown(wait=True)

        self._merge_stats(scheduler.stats)
        self._print_summary()
        exit_code = EXIT_OK if self.stats.success else EXIT_FAILED
        return RunResult(exit_code, self.stats, self.collector, registry)

    def _create_scheduler(self, registry: UnitRegistry) -> BuildScheduler:
        config = self.config
        fetcher = None
        if (config.fetch or config.fetch_update) and self.toolchain is not None:
            fetcher = Fetcher(self.toolchain, self.env, config, self.workspace)
        speculative = SpeculativePool(config.max_jobs) if config.concurrent and not config.scan else None
        return BuildScheduler(
            registry,
            config,
            self.backends if self.backends is not None else BackendSet({}),
            self.collector,
            fetcher=fetcher,
            callback=self.callback if self.callback is not None else NullCallback(),
            speculative=speculative,
            confirm=self.confirm,
        )

    def _run_actions(self, scheduler: BuildScheduler, listed: list[Unit]) -> None:
        config = self.config

        if config.clean and not config.has_listing:
            obj_dir = self.workspace / BUILD_DIR_PKG
            log(f"Removing {BUILD_DIR_PKG}")
            shutil.rmtree(obj_dir, ignore_errors=True)

        if config.clean:
            for unit in listed:
                scheduler.clean(unit.target)

        if config.build:
            if config.concurrent and scheduler.speculative is not None:
                for unit in listed:
                    scheduler.speculative.submit(scheduler.build, unit.target)
            for unit in listed:
                scheduler.build(unit.target)

        if config.test:
            for unit in listed:
                if unit.active and unit.name != "main" and unit.test_sources:
                    scheduler.test(unit.target)

        if config.install:
            for unit in listed:
                scheduler.install(unit.target)

    def _print_scan_problems(self) -> None:
        for phase in ("scan", "parse", "resolve"):
            for error in self.collector.get_errors_by_phase(phase):
                log_warning(f"{phase}: {error.error_message}")
        if self.collector.get_errors():
            log(self.collector.format_summary())

    def _merge_stats(self, stats: RunStats) -> None:
        for counter, value in stats.to_dict().items():
            if value:
                self.stats.increment(counter, value)

    def _print_summary(self) -> None:
        stats = self.stats
        if self.config.clean and not self.config.build:
            if stats.cleaned == 0:
                log("No mess to clean")
        else:
            if stats.built:
                log(f"Built {stats.built} {_plural(stats.built, 'target')}")
            if stats.installed:
                log(f"Installed {stats.installed} {_plural(stats.installed, 'target')}")
            if stats.built == 0 and stats.installed == 0 and stats.broken == 0:
                log("Up to date")
            if stats.broken:
                log(f"{stats.broken} broken {_plural(stats.broken, 'target')}")
            if stats.tested:
                passed = stats.tested - stats.tests_failed
                log(f"Tested {stats.tested} {_plural(stats.tested, 'target')}, {passed} passed")

        if self.collector.has_errors():
            log(self.collector.format_errors())
        else:
            for warning in self.collector.get_errors(ErrorSeverity.WARNING):
                log_warning(f"{warning.phase}: {warning.error_message}")


def _plural(count: int, word: str) -> str:
    return word if count == 1 else f"{word}s"


class ScanPrinter:
    """Prints discovered units, dependencies first, the way `-s` lists them.

    Output format:
        in pkg/util: pkg "util" (up to date)
         util Deps: [fmt os]
        	util.go
        	*util_windows.go
    """

    def __init__(self, registry: UnitRegistry, config: RunConfig, write: Callable[[str], None] = print):
        self.registry = registry
        self.config = config
        self.write = write
        self._printed: set[str] = set()

    def print_units(self, units: list[Unit]) -> None:
        for unit in units:
            self.print_unit(unit)

    def print_unit(self, unit: Unit) -> None:
        if unit.target in self._printed:
            return
        self._printed.add(unit.target)
        for dep_target in unit.dep_targets:
            self.print_unit(self.registry[dep_target])

        state = ""
        if not unit.needs_build:
            state = " (up to date)"
        if not unit.needs_install:
            state = " (installed)"

        prefix = "" if unit.is_foreign else f"in {unit.dir}: "
        self.write(f'{prefix}{scan_label(unit)} "{unit.target}"{state}')
        if self.config.scan_list:
            self.write(f" {unit.name} Deps: [{' '.join(unit.deps)}]")
            if self.config.test:
                self.write(f" {unit.name} TestDeps: [{' '.join(unit.test_deps)}]")
        if self.config.list_files:
            for line in list_files(unit):
                self.write(line)


def scan_label(unit: Unit) -> str:
    """Kind label of a unit in scan listings, e.g. "cgo" or "goroot pkg"."""
    label = unit.kind_label
    if unit.is_cgo and not unit.is_cmd:
        label = "cgo"
    if unit.is_toolchain_owned:
        return f"goroot {label}"
    if unit.is_foreign:
        return f"gopath {label}"
    return label


def list_files(unit: Unit) -> list[str]:
    """Per-unit file listing: build files, sources by kind, then starred dead sources."""
    lines = [f"\t{name}" for name in ("Makefile", "README") if (unit.abs_dir / name).exists()]
    for group in (unit.cgo_sources + unit.go_sources, unit.asm_sources, unit.c_sources):
        lines.extend(f"\t{name}" for name in sorted(group))
    lines.extend(f"\t*{name}" for name in unit.dead_sources)
    return lines

