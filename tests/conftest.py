"""Pytest configuration and fixtures for gbuild tests.

Besides the shared workspace fixtures, this conftest keeps stdout/stderr
usable across tests: the live progress display and the console output module
both write to whatever sys.stdout is at call time, and a test that closes or
replaces it must not break the next one.
"""

import os
import sys
import warnings
from pathlib import Path
from typing import Callable

import pytest

from gbuild import output
from gbuild.build.build_context import RunConfig, ToolchainEnv

# Suppress ResourceWarnings from file cleanup in Python 3.13
if sys.version_info >= (3, 13):
    warnings.filterwarnings("ignore", category=ResourceWarning)


@pytest.fixture(autouse=True)
def _restore_stdio():  # noqa: PT004
    """Ensure stdout/stderr are always restored after each test."""
    yield

    if sys.stdout.closed:
        sys.stdout = sys.__stdout__
    if sys.stderr.closed:
        sys.stderr = sys.__stderr__


@pytest.fixture(autouse=True)
def _reset_output():  # noqa: PT004
    """Reset module-level console output state between tests."""
    yield
    output.set_verbose(False)
    output.set_output_file(None)
    output._output_stream = None


@pytest.fixture
def goroot(tmp_path: Path) -> Path:
    """An empty toolchain tree with the standard source and archive directories."""
    root = tmp_path / "goroot"
    (root / "src" / "pkg").mkdir(parents=True)
    (root / "src" / "cmd").mkdir(parents=True)
    (root / "pkg" / "linux_amd64").mkdir(parents=True)
    (root / "bin").mkdir()
    return root


@pytest.fixture
def env(goroot: Path) -> ToolchainEnv:
    return ToolchainEnv(goroot=goroot, goos="linux", goarch="amd64")


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    ws = tmp_path / "ws"
    ws.mkdir()
    return ws


@pytest.fixture
def write_file(workspace: Path) -> Callable[..., Path]:
    """Write a file below the workspace, creating parent directories.

    Usage:
        write_file("pkg/util/util.go", "package util\\n")
        write_file("/abs/path.go", "package x\\n")   # absolute paths are kept
    """

    def _write(rel_path: str, text: str) -> Path:
        path = Path(rel_path) if os.path.isabs(rel_path) else workspace / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def make_config() -> Callable[..., RunConfig]:
    """RunConfig factory with a fixed job count."""

    def _make(**options) -> RunConfig:
        options.setdefault("max_jobs", 2)
        return RunConfig.create(**options)

    return _make


@pytest.hookimpl(hookwrapper=True, tryfirst=True)
def pytest_runtest_call(item):  # noqa: ARG001
    """Wrap test execution to handle stdout/stderr closure gracefully."""
    yield

    if hasattr(sys.stdout, "closed") and sys.stdout.closed:
        sys.stdout = sys.__stdout__
    if hasattr(sys.stderr, "closed") and sys.stderr.closed:
        sys.stderr = sys.__stderr__
