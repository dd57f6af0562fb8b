"""
Workspace discovery and the unit registry.

The registry is an arena of Unit records keyed by target name. Every
cross-unit reference elsewhere (dependency edges, cycle paths, scheduler
recursion) is a target name looked up here, so units never hold each other.

After the walk the registry is only read; the per-unit scheduling fields
are mutated under each unit's own guard.
"""

import logging
import posixpath
import threading
from pathlib import Path
from typing import Iterator, Optional

from gbuild.build.build_context import RunConfig, ToolchainEnv
from gbuild.build.error_collector import ErrorCollector, ErrorSeverity

from .errors import ConfigurationError, ScanError
from .models import RootKind, Unit, stat_time
from .source_deps import extract_dependencies
from .source_scanner import SourceScanner, target_matches_platform
from .targets import OPT_OUT_VALUES, assign_paths, locate_root, read_marker, resolve_target

logger = logging.getLogger(__name__)

MAKEFILE_NAMES = ("Makefile", "makefile")
# Directory names never treated as units; "src" holds a unit's private sources
SKIPPED_DIRS = ("src",)


class UnitRegistry:
    """Arena of discovered units keyed by target name.

    Usage:
        registry = UnitRegistry()
        registry.add(unit)
        dep = registry.get("fmt")
    """

    def __init__(self) -> None:
        self._units: dict[str, Unit] = {}
        self._lock = threading.Lock()

    def add(self, unit: Unit) -> None:
        """Register a unit.

        Raises:
            ConfigurationError: If another unit already has the same target.
        """
        with self._lock:
            existing = self._units.get(unit.target)
            if existing is not None:
                raise ConfigurationError(
                    f"(in {unit.dir}) duplicate target \"{unit.target}\", already defined in {existing.dir}"
                )
            self._units[unit.target] = unit

    def get(self, target: str) -> Optional[Unit]:
        return self._units.get(target)

    def __getitem__(self, target: str) -> Unit:
        return self._units[target]

    def __contains__(self, target: object) -> bool:
        return target in self._units

    def __iter__(self) -> Iterator[Unit]:
        return iter(self.units())

    def __len__(self) -> int:
        return len(self._units)

    def units(self) -> list[Unit]:
        """All units in directory order."""
        return sorted(self._units.values(), key=lambda u: (u.dir, u.target))

    def targets(self) -> list[str]:
        return sorted(self._units)

    def by_dir(self, directory: str) -> Optional[Unit]:
        for unit in self._units.values():
            if unit.dir == directory:
                return unit
        return None


def _join(base: str, name: str) -> str:
    return name if base in ("", ".") else posixpath.join(base, name)


def _subdirs(directory: Path) -> list[str]:
    try:
        entries = sorted(directory.iterdir(), key=lambda p: p.name)
    except OSError:
        return []
    return [
        e.name
        for e in entries
        if e.is_dir() and not e.is_symlink() and e.name not in SKIPPED_DIRS and not e.name.startswith((".", "_"))
    ]


class WorkspaceScanner:
    """
    Walks a workspace tree and reads every unit directory into a UnitRegistry.

    Directory-level problems are recorded in the ErrorCollector and the walk
    continues; a directory without source is simply not a unit.
    """

    def __init__(self, workspace: Path, env: ToolchainEnv, config: RunConfig, collector: ErrorCollector):
        """
        Initialize workspace scanner.

        Args:
            workspace: Workspace root (unit directories are stored relative to it)
            env: Toolchain environment
            config: Run configuration (kind and directory selection)
            collector: Error collector for per-directory errors
        """
        self.workspace = workspace
        self.env = env
        self.config = config
        self.collector = collector

    def scan(self) -> UnitRegistry:
        """Walk the whole workspace.

        Returns:
            Registry holding every discovered unit
        """
        registry = UnitRegistry()
        self._walk(".", ".", registry)
        logger.debug("Discovered %d units under %s", len(registry), self.workspace)
        return registry

    def _walk(self, base: str, rel_dir: str, registry: UnitRegistry) -> None:
        abs_dir = self.workspace if rel_dir == "." else self.workspace / rel_dir
        unit: Optional[Unit] = None
        try:
            unit = self.read_unit(base, rel_dir)
        except ScanError as e:
            logger.debug("Skipping %s: %s", rel_dir, e)
        except ConfigurationError as e:
            if e.opt_out:
                logger.debug("Skipping %s: %s", rel_dir, e)
            else:
                self.collector.add_exception(e, "scan", rel_dir)

        if unit is not None:
            try:
                registry.add(unit)
                base = unit.base
            except ConfigurationError as e:
                self.collector.add_exception(e, "scan", rel_dir, unit.target)
        else:
            # A marker in a directory that is not a unit still names its subtree
            try:
                marker = read_marker(abs_dir)
            except ConfigurationError as e:
                self.collector.add_exception(e, "scan", rel_dir, severity=ErrorSeverity.WARNING)
                marker = None
            if marker and marker not in OPT_OUT_VALUES:
                base = posixpath.normpath(marker)

        for name in _subdirs(abs_dir):
            self._walk(_join(base, name), _join(rel_dir, name), registry)

    def read_unit(self, base: str, rel_dir: str) -> Unit:
        """
        Read one directory into a Unit.

        Args:
            base: Namespace base inherited from the parent directory
            rel_dir: Workspace-relative directory

        Returns:
            The populated Unit (target, paths, timestamps and active flag set)

        Raises:
            ScanError: If the directory holds no usable source
            ConfigurationError: If the directory opts out or cannot be a unit
        """
        env = self.env
        abs_dir = self.workspace if rel_dir == "." else self.workspace / rel_dir
        unit = Unit(dir=rel_dir, abs_dir=abs_dir, base=base)
        unit.root_kind, unit.gopath = locate_root(abs_dir.resolve(), env)

        marker = read_marker(abs_dir)
        if marker in OPT_OUT_VALUES:
            raise ConfigurationError(f"(in {rel_dir}) directory opts out", opt_out=True)

        collection = SourceScanner(abs_dir, env.goos, env.goarch).scan()
        extraction = extract_dependencies(unit, collection, env.goos, env.goarch)
        for error in extraction.errors:
            self.collector.add_exception(error, "parse", rel_dir, severity=ErrorSeverity.WARNING)

        unit.has_makefile = any((abs_dir / name).is_file() for name in MAKEFILE_NAMES)
        if unit.root_kind is RootKind.GOROOT and not unit.has_makefile:
            raise ConfigurationError(f"(in {rel_dir}) GOROOT pkg without makefile - not meant to be built")

        if not unit.sources:
            raise ScanError(f"No source files in {abs_dir}")

        for src in unit.sources:
            t = stat_time(abs_dir / src)
            if t == 0:
                raise ScanError(f"'{abs_dir / src}' just disappeared")
            unit.source_time = max(unit.source_time, t)

        unit.is_cmd = unit.name == "main"
        resolve_target(unit, env, marker, extraction.target_directive)

        if not target_matches_platform(unit.target, env.goos, env.goarch):
            raise ConfigurationError(f"(in {rel_dir}) filtered based on GOOS/GOARCH", opt_out=True)
        if unit.is_cmd and unit.is_cgo:
            raise ConfigurationError(f"(in {rel_dir}) cannot have a cgo cmd")

        assign_paths(unit, env, self.workspace)
        unit.active = self.config.selects_kind(unit.is_cmd) and (
            not self.config.exclusive or self.config.is_listed(unit.dir)
        )
        unit.stat()
        logger.debug("Read %s unit %r in %s", unit.kind_label, unit.target, rel_dir)
        return unit


def scan_workspace(workspace: Path, env: ToolchainEnv, config: RunConfig, collector: ErrorCollector) -> UnitRegistry:
    """Walk a workspace and return its unit registry."""
    return WorkspaceScanner(workspace, env, config, collector).scan()
