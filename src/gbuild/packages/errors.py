"""Exception types raised while scanning, resolving and building units.

Per-unit errors (configuration, scan, parse, unresolved dependency, build
failures) are recorded and reported at the end of a run without stopping
unrelated units. CycleError is structural and aborts a run before any
backend side effect.
"""

from typing import Optional, Sequence


class GBuildError(Exception):
    """Base class for all gbuild errors."""

    pass


class ConfigurationError(GBuildError):
    """Raised for invalid configuration: bad environment, empty target, opt-out.

    Attributes:
        opt_out: True when a directory deliberately opted out of being a unit.
            An opt-out is a clean exit, not a failure, and is never reported.
    """

    def __init__(self, message: str, opt_out: bool = False) -> None:
        super().__init__(message)
        self.opt_out = opt_out


class ToolNotFoundError(ConfigurationError):
    """Raised when a mandatory toolchain program cannot be found on PATH."""

    pass


class ScanError(GBuildError):
    """Raised when a directory holds no usable source for a unit."""

    pass


class SourceParseError(GBuildError):
    """Raised when a source file header cannot be parsed."""

    def __init__(self, path: str, message: str, line: Optional[int] = None) -> None:
        where = f"{path}:{line}" if line is not None else path
        super().__init__(f"{where}: {message}")
        self.path = path
        self.line = line


class UnresolvedDependencyError(GBuildError):
    """Raised when a unit imports something that is neither a unit, prebuilt, nor fetchable."""

    def __init__(self, target: str, missing: Sequence[str], hint: str = "") -> None:
        detail = f" ({hint})" if hint else ""
        super().__init__(f"can't resolve {', '.join(missing)} for \"{target}\"{detail}")
        self.target = target
        self.missing = list(missing)


class CycleError(GBuildError):
    """Raised when the dependency graph contains at least one cycle.

    Attributes:
        cycles: Every detected cycle as a target path ending where it started.
        blocked: Targets lying on any detected cycle.
    """

    def __init__(self, cycles: Sequence[Sequence[str]]) -> None:
        self.cycles = [list(c) for c in cycles]
        self.blocked = sorted({t for c in self.cycles for t in c})
        rendered = "; ".join(" -> ".join(c) for c in self.cycles)
        super().__init__(f"Cyclic dependency detected: {rendered}")


class BackendError(GBuildError):
    """Raised by a build backend when an external tool invocation fails."""

    def __init__(
        self,
        message: str,
        phase: str = "build",
        stdout: Optional[str] = None,
        stderr: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.phase = phase
        self.stdout = stdout
        self.stderr = stderr


class BuildFailure(GBuildError):
    """A unit's own backend invocation failed or produced no artifact."""

    pass


class InheritedFailure(GBuildError):
    """A unit could not be built because one of its dependencies failed."""

    def __init__(self, target: str, dependency: str) -> None:
        super().__init__(f"\"{target}\" not built: dependency \"{dependency}\" failed")
        self.target = target
        self.dependency = dependency
