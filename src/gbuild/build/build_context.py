"""Build Context - immutable run configuration.

This module defines:
- ToolchainEnv: Where the toolchain lives and which platform pair is targeted
  (GOROOT, GOOS, GOARCH, GOPATH, GOBIN).
- RunConfig: What this run does (build/test/install/clean/scan), which units it
  acts on, and how (makefiles, fetching, concurrency, verbosity).

Design:
    Both values are created once by the CLI and passed explicitly into the
    orchestrator, the scanner, the resolver, the scheduler and the backends.
    Nothing below the CLI reads the process environment or global flags, so
    every component behaves the same under test as it does in a real run.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import FrozenSet, Mapping, Optional, Tuple

import psutil

from gbuild.packages.errors import ConfigurationError


def default_job_count() -> int:
    """Number of concurrent backend processes allowed by default (logical CPUs)."""
    return psutil.cpu_count(logical=True) or 1


@dataclass(frozen=True)
class ToolchainEnv:
    """Location of the toolchain and the target platform pair.

    Attributes:
        goroot: Root of the toolchain installation; its units are toolchain-owned.
        goos: Target operating system (e.g. "linux").
        goarch: Target architecture (e.g. "amd64").
        gopaths: Registered external workspace roots, in search order.
        gobin: Install directory for toolchain-owned commands.
    """

    goroot: Path
    goos: str
    goarch: str
    gopaths: Tuple[Path, ...] = ()
    gobin: Optional[Path] = None

    @classmethod
    def from_environ(cls, environ: Optional[Mapping[str, str]] = None) -> "ToolchainEnv":
        """Read the toolchain environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ).

        Returns:
            The resolved ToolchainEnv.

        Raises:
            ConfigurationError: If GOROOT, GOOS or GOARCH is not set.
        """
        env = os.environ if environ is None else environ
        missing = [name for name in ("GOOS", "GOARCH", "GOROOT") if not env.get(name)]
        if missing:
            raise ConfigurationError(f"Environment variable {missing[0]} not set")

        gopaths = tuple(Path(p).resolve() for p in env.get("GOPATH", "").split(os.pathsep) if p)
        gobin = env.get("GOBIN")
        return cls(
            goroot=Path(env["GOROOT"]).resolve(),
            goos=env["GOOS"],
            goarch=env["GOARCH"],
            gopaths=gopaths,
            gobin=Path(gobin).resolve() if gobin else None,
        )

    @property
    def platform_dir(self) -> str:
        """Platform pair directory name, e.g. "linux_amd64"."""
        return f"{self.goos}_{self.goarch}"

    @property
    def goroot_src(self) -> Path:
        return self.goroot / "src"

    @property
    def goroot_pkg_dir(self) -> Path:
        """Install directory of library archives for the target platform."""
        return self.goroot / "pkg" / self.platform_dir

    @property
    def goroot_bin_dir(self) -> Path:
        """Install directory of commands."""
        return self.goroot / "bin"

    @property
    def cmd_install_dir(self) -> Path:
        """Install directory of toolchain-owned commands ($GOBIN, else $GOROOT/bin)."""
        return self.gobin if self.gobin is not None else self.goroot_bin_dir

    def gopath_pkg_dir(self, gopath: Path) -> Path:
        return gopath / "pkg" / self.platform_dir

    @property
    def exe_suffix(self) -> str:
        return ".exe" if self.goos == "windows" else ""


@dataclass(frozen=True)
class RunConfig:
    """Immutable configuration for one gbuild run.

    Attributes:
        build: Build listed units (and their dependencies).
        install: Install built artifacts into the toolchain tree.
        clean: Remove build artifacts first.
        test: Build and run tests of listed library units; resolve test imports.
        scan: Only list discovered units, do not build.
        scan_list: With scan, also list dependencies.
        list_files: With scan, also list each unit's source files.
        do_cmds: Act on command units.
        do_pkgs: Act on library units.
        listed_dirs: Directories named on the command line (empty = all).
        exclusive: Exact-match listed_dirs instead of prefix match.
        makefiles: Prefer an existing Makefile over direct tool invocation.
        fetch: Fetch missing remote dependencies on demand.
        fetch_update: Refetch remote dependencies and rebuild their dependents.
        concurrent: Speculatively build independent dependency subtrees in parallel.
        max_jobs: Cap on concurrently running external tool processes.
        verbose: Echo tool command lines and pass tool output through.
        force: Never ask for confirmation.
        nuke: Clean also removes installed artifacts.
        use_tui: Show the live progress table.
    """

    build: bool = True
    install: bool = False
    clean: bool = False
    test: bool = False
    scan: bool = False
    scan_list: bool = False
    list_files: bool = False
    do_cmds: bool = True
    do_pkgs: bool = True
    listed_dirs: FrozenSet[str] = field(default_factory=frozenset)
    exclusive: bool = False
    makefiles: bool = False
    fetch: bool = False
    fetch_update: bool = False
    concurrent: bool = False
    max_jobs: int = 1
    verbose: bool = False
    force: bool = False
    nuke: bool = False
    use_tui: bool = False

    @classmethod
    def create(
        cls,
        build: bool = False,
        install: bool = False,
        clean: bool = False,
        test: bool = False,
        scan: bool = False,
        scan_list: bool = False,
        listed_dirs: Optional[list[str]] = None,
        max_jobs: Optional[int] = None,
        **options: bool,
    ) -> "RunConfig":
        """Create a RunConfig with the implied build flag and normalised directory list.

        A run builds unless it only cleans; installing and testing always
        imply building first.
        """
        return cls(
            build=build or not clean or install or test,
            install=install,
            clean=clean,
            test=test,
            scan=scan or scan_list,
            scan_list=scan_list,
            listed_dirs=frozenset(normalize_dir(d) for d in (listed_dirs or [])),
            max_jobs=max_jobs if max_jobs is not None else default_job_count(),
            **options,
        )

    @property
    def has_listing(self) -> bool:
        return bool(self.listed_dirs)

    def is_listed(self, directory: str) -> bool:
        """Whether a unit directory is selected by the directory list."""
        if not self.listed_dirs:
            return True
        if self.exclusive:
            return directory in self.listed_dirs
        return any(directory == d or d == "." or directory.startswith(d.rstrip("/") + "/") for d in self.listed_dirs)

    def selects_kind(self, is_cmd: bool) -> bool:
        """Whether this run acts on units of the given kind."""
        return (self.do_cmds and is_cmd) or (self.do_pkgs and not is_cmd)


def normalize_dir(directory: str) -> str:
    """Normalise a workspace-relative directory the way unit directories are stored."""
    cleaned = os.path.normpath(directory).replace(os.sep, "/")
    return cleaned[2:] if cleaned.startswith("./") else cleaned
