"""Subprocess utilities for running external toolchain programs.

This module provides wrappers around the subprocess module that apply
platform-specific flags (no console window flashing on Windows, no stdin
inheritance) and a `run_external` helper implementing the backend process
boundary: a working directory, a program, and an argument vector, where
success is a zero exit status.
"""

import subprocess
import sys
from pathlib import Path
from typing import Any

from gbuild.output import log_command
from gbuild.packages.errors import BackendError


def get_subprocess_creation_flags() -> int:
    """Get platform-specific subprocess creation flags.

    Returns:
        - Windows: subprocess.CREATE_NO_WINDOW (prevents console window)
        - Other platforms: 0 (no special flags)
    """
    if sys.platform == "win32":
        return subprocess.CREATE_NO_WINDOW
    return 0


def safe_run(cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess:
    """Execute subprocess.run with platform-specific flags.

    Automatically applies:
    - CREATE_NO_WINDOW on Windows (prevents console window)
    - stdin=DEVNULL (prevents console input handle inheritance)

    Args:
        cmd: Command and arguments (same as subprocess.run)
        **kwargs: Additional arguments passed to subprocess.run

    Returns:
        CompletedProcess result from subprocess.run

    Note:
        - If 'creationflags' is explicitly provided in kwargs,
          it will be OR'd with platform defaults to preserve custom flags.
        - If 'stdin' is explicitly provided in kwargs, it will be used as-is.
          Otherwise, stdin is automatically redirected to subprocess.DEVNULL.
    """
    default_flags = get_subprocess_creation_flags()

    if "creationflags" in kwargs:
        kwargs["creationflags"] = kwargs["creationflags"] | default_flags
    elif default_flags:
        kwargs["creationflags"] = default_flags

    if "stdin" not in kwargs:
        kwargs["stdin"] = subprocess.DEVNULL

    return subprocess.run(cmd, **kwargs)


def run_external(
    program: str, cwd: Path, argv: list[str], verbose: bool, phase: str = "build", check: bool = True
) -> subprocess.CompletedProcess:
    """Run one external toolchain program.

    In verbose mode the command line is echoed and the tool's output is
    passed straight through to the user's terminal. Otherwise output is
    captured and attached to the raised error on failure.

    Args:
        program: Resolved executable path (or name found on PATH).
        cwd: Working directory for the tool.
        argv: Full argument vector; argv[0] is the display name of the tool.
        verbose: Whether to echo and pass through tool output.
        phase: Short label ("compile", "link", "pack", ...) for error reports.
        check: Raise on a non-zero exit status (False returns the result as is).

    Returns:
        The CompletedProcess of a successful run.

    Raises:
        BackendError: If the program cannot be started, or exits non-zero
            while check is set.
    """
    log_command(argv)
    cmd = [program, *argv[1:]]
    try:
        if verbose:
            result = safe_run(cmd, cwd=str(cwd))
        else:
            result = safe_run(cmd, cwd=str(cwd), capture_output=True, text=True)
    except OSError as e:
        raise BackendError(f"could not run {argv[0]}: {e}", phase=phase) from e

    if check and result.returncode != 0:
        raise BackendError(
            f"{argv[0]} exited with status {result.returncode}",
            phase=phase,
            stdout=result.stdout if not verbose else None,
            stderr=result.stderr if not verbose else None,
        )
    return result
