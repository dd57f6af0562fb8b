"""
Unit target naming and artifact path resolution.

A unit's target is taken, in priority order, from:
1. a target.gb marker file in the unit directory (first line)
2. the first //target:<name> directive found in its sources
3. the unit's position relative to the known roots

Units under the toolchain root ($GOROOT/src) or a registered external
workspace ($GOPATH/src) are "foreign": their build convention is
authoritative, so their build output and install destination coincide.
"""

import logging
import posixpath
from pathlib import Path
from typing import Optional

from gbuild.build.build_context import ToolchainEnv

from .errors import ConfigurationError
from .models import RootKind, Unit

logger = logging.getLogger(__name__)

TARGET_MARKER = "target.gb"
OPT_OUT_VALUES = ("-", "--")
BUILD_DIR_PKG = "_obj"


def read_marker(directory: Path) -> Optional[str]:
    """Read the first line of a directory's target.gb, if present.

    Returns:
        The stripped first line, or None when there is no marker file.
    """
    marker = directory / TARGET_MARKER
    try:
        with open(marker, encoding="utf-8") as f:
            return f.readline().strip()
    except FileNotFoundError:
        return None
    except OSError as e:
        raise ConfigurationError(f"cannot read {marker}: {e}") from e


def relative_to(path: Path, root: Path) -> Optional[str]:
    """Slash-separated path of `path` below `root`, or None if outside it."""
    try:
        rel = path.relative_to(root)
    except ValueError:
        return None
    return rel.as_posix()


def locate_root(abs_dir: Path, env: ToolchainEnv) -> tuple[RootKind, Optional[Path]]:
    """Find which root a unit directory lives under.

    The last matching GOPATH entry wins, as the toolchain itself resolves it.
    """
    if relative_to(abs_dir, env.goroot_src) is not None:
        return RootKind.GOROOT, None
    found: Optional[Path] = None
    for gopath in env.gopaths:
        if relative_to(abs_dir, gopath / "src") is not None:
            found = gopath
    if found is not None:
        return RootKind.GOPATH, found
    return RootKind.LOCAL, None


def _derive_goroot_target(unit: Unit, env: ToolchainEnv) -> str:
    cmd_rel = relative_to(unit.abs_dir, env.goroot_src / "cmd")
    if cmd_rel is not None:
        if not unit.is_cmd:
            # Toolchain commands written in C with helper Go files
            if unit.is_cgo:
                raise ConfigurationError(f"(in {unit.dir}) gbuild can't compile the GOROOT C commands")
            unit.is_cmd = True
            unit.must_use_makefile = True
        return cmd_rel

    if unit.is_cmd:
        return unit.abs_dir.name

    pkg_rel = relative_to(unit.abs_dir, env.goroot_src / "pkg")
    if pkg_rel is None:
        raise ConfigurationError(f"(in {unit.dir}) GOROOT pkg is not in $GOROOT/src/pkg")
    return pkg_rel


def _derive_local_target(unit: Unit) -> str:
    if unit.is_cmd:
        name = posixpath.basename(unit.dir)
        return "main" if name in ("", ".") else name

    if unit.base == ".":
        return "localpkg"
    if unit.base == unit.dir and unit.dir.startswith("pkg/"):
        return unit.dir[len("pkg/") :]
    return unit.base


def derive_target(unit: Unit, env: ToolchainEnv) -> str:
    """Target implied by the unit's position relative to the known roots.

    For toolchain commands that are not Go programs this also flags the unit
    as a command that can only be built through its Makefile.
    """
    if unit.root_kind is RootKind.GOROOT:
        return _derive_goroot_target(unit, env)
    if unit.root_kind is RootKind.GOPATH and not unit.is_cmd:
        assert unit.gopath is not None
        rel = relative_to(unit.abs_dir, unit.gopath / "src")
        if rel is None:
            raise ConfigurationError(f"(in {unit.dir}) GOPATH pkg is not in $GOPATH/src for GOPATH={unit.gopath}")
        return rel
    if unit.root_kind is RootKind.GOPATH:
        return unit.abs_dir.name
    return _derive_local_target(unit)


def check_target(target: str, directory: str) -> str:
    """Clean a target name and reject empty or placeholder values."""
    cleaned = posixpath.normpath(target) if target else ""
    if cleaned in ("", "."):
        raise ConfigurationError(
            f"(in {directory}) package has no name specified; either create '{TARGET_MARKER}' or run gbuild from above"
        )
    return cleaned


def resolve_target(unit: Unit, env: ToolchainEnv, marker: Optional[str], directive: Optional[str]) -> None:
    """Set unit.target and unit.base.

    Args:
        unit: Unit with dir, base, name, is_cmd and root_kind already set
        env: Toolchain environment
        marker: First line of the unit's target.gb, if any
        directive: First //target: directive found in the unit's sources, if any

    Raises:
        ConfigurationError: If the marker opts the directory out (opt_out=True)
            or the resulting target is empty
    """
    if marker is not None and marker in OPT_OUT_VALUES:
        raise ConfigurationError(f"(in {unit.dir}) directory opts out", opt_out=True)

    # Root-derived naming runs first: it can turn a unit into a Makefile-only command
    derived = derive_target(unit, env)
    if marker:
        target, source = marker, TARGET_MARKER
    elif directive:
        target, source = directive, "directive"
    else:
        target, source = derived, "position"

    unit.target = check_target(target, unit.dir)
    if source != "position":
        unit.base = unit.target
    unit.base = posixpath.normpath(unit.base) if unit.base else unit.base
    if unit.is_cmd:
        unit.target += env.exe_suffix
    logger.debug("Target for %s is %r (from %s)", unit.dir, unit.target, source)


def assign_paths(unit: Unit, env: ToolchainEnv, workspace: Path) -> None:
    """Compute result_path and install_path from the target, kind and root.

    Args:
        unit: Unit with target, is_cmd and root_kind set
        env: Toolchain environment
        workspace: Workspace root directory (local build outputs live here)
    """
    if unit.root_kind is RootKind.GOROOT:
        if unit.is_cmd:
            unit.install_path = env.cmd_install_dir / unit.target
        else:
            unit.install_path = env.goroot_pkg_dir / f"{unit.target}.a"
        unit.result_path = unit.install_path
    elif unit.root_kind is RootKind.GOPATH:
        assert unit.gopath is not None
        if unit.is_cmd:
            unit.install_path = unit.gopath / "bin" / unit.target
        else:
            unit.install_path = env.gopath_pkg_dir(unit.gopath) / f"{unit.target}.a"
        unit.result_path = unit.install_path
    elif unit.is_cmd:
        unit.install_path = env.goroot_bin_dir / unit.target
        unit.result_path = workspace / unit.target
    else:
        unit.install_path = env.goroot_pkg_dir / f"{unit.target}.a"
        unit.result_path = workspace / BUILD_DIR_PKG / f"{unit.target}.a"
