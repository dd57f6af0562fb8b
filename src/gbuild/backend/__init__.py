"""
Build backends for gbuild.

One backend per strategy, selected for each unit during resolution:
- DirectBackend: compile, assemble, link or pack by running the tools directly
- MakefileBackend: delegate to the unit's own Makefile
- CgoBackend: foreign-interop units (cgo, C compiler, then pack)

Fetcher runs the remote package fetcher for dependencies that are not
part of the workspace.
"""

from pathlib import Path

from gbuild.build.build_context import RunConfig, ToolchainEnv
from gbuild.packages.models import Strategy

from .base import Backend, BackendSet, ToolBackend
from .cgo import CgoBackend
from .direct import DirectBackend
from .fetch import Fetcher
from .makefile import MakefileBackend
from .testmain import TestSuite, build_test_suite, render_testmain
from .toolchain import Toolchain


def create_backends(toolchain: Toolchain, env: ToolchainEnv, config: RunConfig, workspace: Path) -> BackendSet:
    """Instantiate one backend per strategy, sharing the toolchain and configuration."""
    return BackendSet(
        {
            Strategy.DIRECT: DirectBackend(toolchain, env, config, workspace),
            Strategy.MAKEFILE: MakefileBackend(toolchain, env, config, workspace),
            Strategy.CGO: CgoBackend(toolchain, env, config, workspace),
        }
    )


__all__ = [
    "Backend",
    "BackendSet",
    "CgoBackend",
    "DirectBackend",
    "Fetcher",
    "MakefileBackend",
    "TestSuite",
    "ToolBackend",
    "Toolchain",
    "build_test_suite",
    "create_backends",
    "render_testmain",
]
