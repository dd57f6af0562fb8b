"""Unit model, discovery and dependency graph for gbuild.

This package turns a directory tree into a graph of buildable units:
- Source discovery and classification (source_scanner)
- Header inspection for package identity and imports (source_deps)
- Target naming and artifact paths (targets)
- Workspace walk and unit registry (registry)
- Dependency resolution and cycle detection (resolver, cycles)
- Incremental build scheduling (pipeline)
"""

from .errors import (
    BackendError,
    BuildFailure,
    ConfigurationError,
    CycleError,
    GBuildError,
    InheritedFailure,
    ScanError,
    SourceParseError,
    ToolNotFoundError,
    UnresolvedDependencyError,
)
from .models import Action, FailureKind, RootKind, SourceRole, Strategy, Unit

__all__ = [
    "Action",
    "BackendError",
    "BuildFailure",
    "ConfigurationError",
    "CycleError",
    "FailureKind",
    "GBuildError",
    "InheritedFailure",
    "RootKind",
    "ScanError",
    "SourceParseError",
    "SourceRole",
    "Strategy",
    "ToolNotFoundError",
    "Unit",
    "UnresolvedDependencyError",
]
