"""
Centralized console output for gbuild.

All user-facing progress lines are prefixed with the elapsed time since
program launch in MM:SS.cc format (minutes:seconds.centiseconds), which makes
it easy to see where a workspace build spends its time.

Example output:
    00:00.02 gbuild workspace builder v0.3.0
    00:00.31 (in pkg/util) building pkg "util"
    00:01.12 (in cmd/tool) building cmd "tool"
    00:01.40 Built 2 targets

Usage:
    from gbuild.output import log, log_detail, init_timer

    init_timer()
    log('(in pkg/util) building pkg "util"')
    log_detail("6g -o _go_.6 util.go", verbose_only=True)

Worker threads of the scheduler write through the same functions, so every
line is emitted under a lock and never interleaves with another.
"""

import sys
import threading
import time
from typing import Optional, TextIO

_start_time: Optional[float] = None
_output_stream: Optional[TextIO] = None
_verbose: bool = False
_output_file: Optional[TextIO] = None
_write_lock = threading.Lock()


def init_timer(output_stream: Optional[TextIO] = None) -> None:
    """
    Initialize the program timer.

    Call this at program startup to set the reference time for all timestamps.
    If not called explicitly, it will be called automatically on first log.

    Args:
        output_stream: Optional output stream (defaults to the current sys.stdout)
    """
    global _start_time, _output_stream
    _start_time = time.time()
    if output_stream is not None:
        _output_stream = output_stream


def set_verbose(verbose: bool) -> None:
    """
    Set verbose mode for logging.

    Args:
        verbose: If True, verbose-only messages (tool command lines,
            removed files) are printed as well.
    """
    global _verbose
    _verbose = verbose


def set_output_file(output_file: Optional[TextIO]) -> None:
    """
    Set a file to receive all log output (in addition to stdout).

    Args:
        output_file: File object to receive output, or None to disable file output
    """
    global _output_file
    _output_file = output_file


def get_elapsed() -> float:
    """
    Get elapsed time since timer initialization.

    Returns:
        Elapsed time in seconds
    """
    if _start_time is None:
        init_timer()
    return time.time() - _start_time  # type: ignore


def format_timestamp() -> str:
    """
    Format the current elapsed time as MM:SS.cc.

    Returns:
        Formatted timestamp string
    """
    elapsed = get_elapsed()
    minutes = int(elapsed // 60)
    seconds = elapsed % 60
    return f"{minutes:02d}:{seconds:05.2f}"


def _print(message: str, end: str = "\n") -> None:
    line = f"{format_timestamp()} {message}{end}"
    # Resolved per call so a live display's stdout redirection is honoured
    stream = _output_stream if _output_stream is not None else sys.stdout
    with _write_lock:
        stream.write(line)
        stream.flush()

        if _output_file is not None:
            _output_file.write(line)
            _output_file.flush()


def log(message: str, verbose_only: bool = False) -> None:
    """
    Log a message with timestamp.

    Args:
        message: Message to log
        verbose_only: If True, only print if verbose mode is enabled
    """
    if verbose_only and not _verbose:
        return
    _print(message)


def log_detail(message: str, indent: int = 1, verbose_only: bool = False) -> None:
    """
    Log a detail message (indented).

    Args:
        message: Detail message
        indent: Number of spaces to indent (default 1, like tool echo lines)
        verbose_only: If True, only print if verbose mode is enabled
    """
    if verbose_only and not _verbose:
        return
    _print(f"{' ' * indent}{message}")


def log_command(argv: list[str]) -> None:
    """Echo an external tool invocation in verbose mode."""
    log_detail(" ".join(argv), verbose_only=True)


def log_unit(directory: str, verb: str, kind: str, target: str) -> None:
    """
    Log an action on a unit.

    Format: (in dir) verb kind "target"

    Args:
        directory: Workspace-relative unit directory (already display-formatted)
        verb: Action being performed, e.g. "building" or "testing"
        kind: Unit kind label, "cmd" or "pkg"; empty to omit
        target: Target name of the unit
    """
    kind_part = f"{kind} " if kind else ""
    _print(f'(in {directory}) {verb} {kind_part}"{target}"')


def log_header(title: str, version: str) -> None:
    """
    Log a header message (e.g., program startup).

    Args:
        title: Program title
        version: Version string
    """
    _print(f"{title} v{version}")


def log_error(message: str) -> None:
    """
    Log an error message.

    Args:
        message: Error message
    """
    _print(f"ERROR: {message}")


def log_warning(message: str) -> None:
    """
    Log a warning message.

    Args:
        message: Warning message
    """
    _print(f"WARNING: {message}")

