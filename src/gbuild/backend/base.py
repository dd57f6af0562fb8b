"""Build backend interface and shared file handling.

A backend turns one unit into its artifact by running external toolchain
programs. The scheduler treats it as a black box: it calls build only for
stale, active units and re-stats the artifact itself afterwards, so a tool
that exits zero without writing its output still counts as a failure.
"""

import logging
import shutil
from pathlib import Path
from typing import Mapping, Protocol, runtime_checkable

from gbuild.build.build_context import RunConfig, ToolchainEnv
from gbuild.output import log, log_detail
from gbuild.packages.errors import BackendError
from gbuild.packages.models import Strategy, Unit, stat_time
from gbuild.packages.targets import BUILD_DIR_PKG
from gbuild.subprocess_utils import run_external

from .testmain import TestSuite
from .toolchain import Toolchain

logger = logging.getLogger(__name__)

TEST_DIR = "_test"
CGO_DIR = "_cgo"


@runtime_checkable
class Backend(Protocol):
    """Operations every backend strategy provides.

    All methods raise BackendError when an external tool fails.
    """

    def build(self, unit: Unit) -> int:
        """Produce unit.result_path. Returns the artifact's modification time."""
        ...

    def install(self, unit: Unit) -> bool:
        """Copy the artifact to unit.install_path."""
        ...

    def clean(self, unit: Unit) -> bool:
        """Remove build artifacts. Returns True if anything was removed."""
        ...

    def nuke(self, unit: Unit) -> bool:
        """Remove the installed artifact. Returns True if it existed."""
        ...

    def test(self, unit: Unit, suite: TestSuite) -> bool:
        """Build and run the unit's tests. Returns True if they passed."""
        ...


class ToolBackend:
    """Shared plumbing for backends that run toolchain programs.

    Args:
        toolchain: Resolved toolchain programs
        env: Toolchain environment
        config: Run configuration (verbosity)
        workspace: Workspace root; local archives are collected in <workspace>/_obj
    """

    def __init__(self, toolchain: Toolchain, env: ToolchainEnv, config: RunConfig, workspace: Path) -> None:
        self.toolchain = toolchain
        self.env = env
        self.config = config
        self.workspace = workspace

    @property
    def local_pkg_dir(self) -> Path:
        return self.workspace / BUILD_DIR_PKG

    def include_dirs(self, unit: Unit) -> list[str]:
        """Extra -I/-L directories: toolchain-owned units only see the toolchain tree."""
        return [] if unit.is_toolchain_owned else [str(self.local_pkg_dir)]

    def run(self, program: str, unit: Unit, args: list[str], phase: str, check: bool = True) -> int:
        """Run a toolchain program in the unit directory.

        Returns:
            The program's exit status (always 0 when check is set).
        """
        argv = [Path(program).name, *args]
        return run_external(program, unit.abs_dir, argv, self.config.verbose, phase=phase, check=check).returncode

    def artifact_time(self, unit: Unit) -> int:
        return stat_time(unit.result_path)

    def install(self, unit: Unit) -> bool:
        assert unit.result_path is not None and unit.install_path is not None
        if unit.result_path == unit.install_path:
            return True
        log(f'Installing {unit.kind_label} "{unit.target}"')
        log_detail(f"Copying {unit.result_path} to {unit.install_path}", verbose_only=True)
        copy_artifact(unit.result_path, unit.install_path, phase="install")
        return True

    def nuke(self, unit: Unit) -> bool:
        path = unit.install_path
        if path is None or not path.exists():
            return False
        return self.remove(path)

    def clean(self, unit: Unit) -> bool:
        """Remove objects, the artifact, test and interop scratch directories."""
        candidates = [unit.abs_dir / obj for obj in self.object_names(unit)]
        if unit.result_path is not None:
            candidates.append(unit.result_path)
            if unit.is_cmd:
                # A command linked by hand in its own directory
                candidates.append(unit.abs_dir / unit.result_path.name)
        candidates += [unit.abs_dir / TEST_DIR, unit.abs_dir / CGO_DIR]

        existing = list(dict.fromkeys(p for p in candidates if p.exists()))
        if not existing:
            return False
        log(f"Cleaning {unit.dir}")
        for path in existing:
            self.remove(path)
        return True

    def object_names(self, unit: Unit) -> list[str]:
        """Intermediate object files a build leaves in the unit directory."""
        suffix = self.toolchain.obj_suffix
        return [self.toolchain.intermediate_name] + [Path(src).stem + suffix for src in unit.asm_sources]

    def remove(self, path: Path) -> bool:
        log_detail(f"Removing {path}", verbose_only=True)
        try:
            if path.is_dir() and not path.is_symlink():
                shutil.rmtree(path)
            else:
                path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise BackendError(f"could not remove {path}: {e}", phase="clean") from e
        return True

    def test(self, unit: Unit, suite: TestSuite) -> bool:
        raise BackendError(f'(in {unit.dir}) testing is not supported for "{unit.target}"', phase="test")

    def make_test(self, unit: Unit) -> bool:
        """Delegate testing to the unit's Makefile."""
        status = self.run(self.toolchain.make, unit, ["test"], "test", check=False)
        return status == 0


def copy_artifact(src: Path, dst: Path, phase: str = "build") -> None:
    """Copy a tool-produced artifact to where gbuild expects it."""
    try:
        dst.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy(src, dst)
    except OSError as e:
        raise BackendError(f"could not copy {src} to {dst}: {e}", phase=phase) from e


class BackendSet:
    """Backend per strategy. The scheduler only ever reads unit.strategy to pick one.

    Usage:
        backends = BackendSet({Strategy.DIRECT: DirectBackend(...), ...})
        backends.for_unit(unit).build(unit)
    """

    def __init__(self, backends: Mapping[Strategy, Backend]) -> None:
        self._backends = dict(backends)

    def for_unit(self, unit: Unit) -> Backend:
        try:
            return self._backends[unit.strategy]
        except KeyError:
            raise BackendError(f"no backend for strategy {unit.strategy.value}") from None
