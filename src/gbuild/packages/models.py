"""Data models for workspace units.

Defines the core types used throughout scanning, resolution and scheduling:
- SourceRole: Classification of a file inside a unit directory
- RootKind: Which root a unit lives under (workspace, toolchain, external workspace)
- Strategy: Which backend builds a unit (selected once during resolution)
- Action: Scheduler actions guarded by per-unit once markers
- FailureKind: Why a unit is broken
- Unit: One buildable directory
"""

import os
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional


class SourceRole(Enum):
    """Role of a file found in a unit directory."""

    PRIMARY = "primary"
    TEST = "test"
    ASSEMBLY = "assembly"
    NATIVE = "native"
    FILTERED = "filtered"
    IGNORED = "ignored"


class RootKind(Enum):
    """Root a unit directory lives under."""

    LOCAL = "local"
    GOROOT = "goroot"
    GOPATH = "gopath"


class Strategy(Enum):
    """Backend strategy used to build a unit."""

    DIRECT = "direct"
    MAKEFILE = "makefile"
    CGO = "cgo"


class Action(Enum):
    """Scheduler action; each runs at most once per unit per run."""

    BUILD = "build"
    INSTALL = "install"
    CLEAN = "clean"
    TEST = "test"


class FailureKind(Enum):
    """Why a unit is broken."""

    UNRESOLVED = "unresolved"
    BUILD = "build"
    INHERITED = "inherited"


def stat_time(path: Optional[Path]) -> int:
    """Modification time of a path in nanoseconds, 0 if it does not exist."""
    if path is None:
        return 0
    try:
        return os.stat(path).st_mtime_ns
    except OSError:
        return 0


@dataclass(eq=False)
class Unit:
    """One buildable directory.

    Dependency edges are stored as target names and resolved through the
    UnitRegistry at walk time; a unit never holds references to other units.
    The mutable scheduling fields (timestamps, needs_* flags, failure, once
    markers) are only touched while holding `guard`.

    Attributes:
        dir: Workspace-relative directory ("." for the workspace root)
        abs_dir: Absolute directory
        base: Namespace prefix inherited by subdirectories
        name: Declared package identity
        target: Externally visible build/install name
        is_cmd: True for command units (package main)
        active: Whether this run acts on the unit (kind and directory selection)
        is_cgo: Whether the unit has foreign-interop sources
        root_kind: Root the unit lives under
        gopath: External workspace root when root_kind is GOPATH
        has_makefile: Directory holds a Makefile
        must_use_makefile: Unit can only be built through its Makefile
        pkg_sources: Primary sources per declared package name
        cgo_sources: Interop sources of the unit's package
        c_sources: Native C sources
        asm_sources: Assembly sources
        test_sources: All test sources
        test_pkg_sources: Test sources per declared package name
        test_funcs: Test and benchmark function names per package name
        dead_sources: Sources that will not be part of the build
        parse_errors: Per-file parse error messages
        cgo_cflags: Native compiler flags collected from interop sources
        cgo_ldflags: Native linker flags collected from interop sources
        deps: Raw build dependency identifiers
        test_deps: Raw test dependency identifiers
        dep_targets: Resolved build dependencies (registry targets)
        test_dep_targets: Resolved test dependencies (registry targets)
        fetch_deps: Dependencies satisfied by fetching
        unresolved: Dependencies that could not be resolved
        source_time: Newest modification time among compiled sources
        bin_time: Modification time of the built artifact (0 if absent)
        install_time: Modification time of the installed artifact (0 if absent)
        prebuilt_time: Newest prebuilt dependency archive time
        needs_build: Stale, either forced or through an input newer than the artifact
        force_build: Rebuild regardless of timestamps (set by clean and fetch)
        needs_install: Forced reinstall
        needs_fetch: Some dependency must be fetched first
        failed: Sticky failure flag
        failure_kind: Why the unit failed
        failure_reason: Human-readable failure detail
        result_path: Build output artifact
        install_path: Install destination
        objects: Intermediate object files in the unit directory
        strategy: Selected backend strategy
    """

    dir: str
    abs_dir: Path
    base: str = ""
    name: str = ""
    target: str = ""
    is_cmd: bool = False
    active: bool = True
    is_cgo: bool = False
    root_kind: RootKind = RootKind.LOCAL
    gopath: Optional[Path] = None
    has_makefile: bool = False
    must_use_makefile: bool = False
    pkg_sources: dict[str, list[str]] = field(default_factory=dict)
    cgo_sources: list[str] = field(default_factory=list)
    c_sources: list[str] = field(default_factory=list)
    asm_sources: list[str] = field(default_factory=list)
    test_sources: list[str] = field(default_factory=list)
    test_pkg_sources: dict[str, list[str]] = field(default_factory=dict)
    test_funcs: dict[str, list[str]] = field(default_factory=dict)
    dead_sources: list[str] = field(default_factory=list)
    parse_errors: list[str] = field(default_factory=list)
    cgo_cflags: list[str] = field(default_factory=list)
    cgo_ldflags: list[str] = field(default_factory=list)
    deps: list[str] = field(default_factory=list)
    test_deps: list[str] = field(default_factory=list)
    dep_targets: list[str] = field(default_factory=list)
    test_dep_targets: list[str] = field(default_factory=list)
    fetch_deps: list[str] = field(default_factory=list)
    unresolved: list[str] = field(default_factory=list)
    source_time: int = 0
    bin_time: int = 0
    install_time: int = 0
    prebuilt_time: int = 0
    needs_build: bool = False
    force_build: bool = False
    needs_install: bool = False
    needs_fetch: bool = False
    failed: bool = False
    failure_kind: Optional[FailureKind] = None
    failure_reason: str = ""
    result_path: Optional[Path] = None
    install_path: Optional[Path] = None
    objects: list[str] = field(default_factory=list)
    strategy: Strategy = Strategy.DIRECT
    guard: threading.RLock = field(default_factory=threading.RLock, repr=False)
    _attempted: set[Action] = field(default_factory=set, repr=False)

    @property
    def go_sources(self) -> list[str]:
        """Plain (non-interop) primary sources of the unit's own package."""
        return self.pkg_sources.get(self.name, [])

    @property
    def sources(self) -> list[str]:
        """Every source compiled into the unit's artifact."""
        return sorted({*self.go_sources, *self.cgo_sources, *self.c_sources, *self.asm_sources})

    @property
    def kind_label(self) -> str:
        return "cmd" if self.is_cmd else "pkg"

    @property
    def is_foreign(self) -> bool:
        """Unit lives under a root whose build convention is authoritative."""
        return self.root_kind is not RootKind.LOCAL

    @property
    def is_toolchain_owned(self) -> bool:
        """Unit belongs to the toolchain itself and is never installed by gbuild."""
        return self.root_kind is RootKind.GOROOT

    def stat(self) -> None:
        """Refresh binary and install timestamps from disk."""
        self.bin_time = stat_time(self.result_path)
        self.install_time = stat_time(self.install_path)

    def was_attempted(self, action: Action) -> bool:
        return action in self._attempted

    def mark_attempted(self, action: Action) -> None:
        self._attempted.add(action)

    def reset_attempts(self, *actions: Action) -> None:
        for action in actions:
            self._attempted.discard(action)

    def mark_failed(self, kind: FailureKind, reason: str) -> None:
        """Record a failure. The first recorded kind and reason are kept."""
        if not self.failed:
            self.failure_kind = kind
            self.failure_reason = reason
        self.failed = True

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "dir": self.dir,
            "base": self.base,
            "name": self.name,
            "target": self.target,
            "kind": self.kind_label,
            "root": self.root_kind.value,
            "cgo": self.is_cgo,
            "active": self.active,
            "strategy": self.strategy.value,
            "sources": self.sources,
            "test_sources": list(self.test_sources),
            "dead_sources": list(self.dead_sources),
            "deps": list(self.deps),
            "test_deps": list(self.test_deps),
            "dep_targets": list(self.dep_targets),
            "test_dep_targets": list(self.test_dep_targets),
            "unresolved": list(self.unresolved),
            "result_path": str(self.result_path) if self.result_path else None,
            "install_path": str(self.install_path) if self.install_path else None,
            "source_time": self.source_time,
            "bin_time": self.bin_time,
            "install_time": self.install_time,
            "failed": self.failed,
            "failure_kind": self.failure_kind.value if self.failure_kind else None,
            "failure_reason": self.failure_reason,
        }
