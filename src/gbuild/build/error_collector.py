"""
Error Collector - Structured error collection for a gbuild run.

Per-unit problems (opt-outs aside) never stop unrelated units. They are
recorded here as they happen, from any worker thread, and reported together
at the end of the run.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from gbuild.packages.errors import BackendError

logger = logging.getLogger(__name__)


class ErrorSeverity(Enum):
    """Severity level of a build error."""

    WARNING = "warning"
    ERROR = "error"
    FATAL = "fatal"


@dataclass
class BuildError:
    """Single recorded error."""

    severity: ErrorSeverity
    phase: str  # "scan", "parse", "resolve", "fetch", "build", "test", "install", "clean"
    kind: str  # exception class name, e.g. "InheritedFailure"
    directory: Optional[str]
    target: Optional[str]
    error_message: str
    stderr: Optional[str] = None
    stdout: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

    def format(self) -> str:
        """Format error as human-readable string.

        Returns:
            Formatted error message
        """
        where = f"(in {self.directory}) " if self.directory else ""
        lines = [f"[{self.severity.value.upper()}] {self.phase}: {where}{self.error_message}"]

        if self.target:
            lines.append(f"  Target: {self.target} ({self.kind})")

        if self.stderr:
            # Truncate stderr to reasonable length
            stderr_preview = self.stderr[:500]
            if len(self.stderr) > 500:
                stderr_preview += "... (truncated)"
            lines.append(f"  stderr: {stderr_preview}")

        return "\n".join(lines)


class ErrorCollector:
    """Collects errors from every phase of a run."""

    def __init__(self, max_errors: int = 500):
        """Initialize error collector.

        Args:
            max_errors: Maximum number of errors to collect
        """
        self.errors: list[BuildError] = []
        self.lock = threading.RLock()
        self.max_errors = max_errors

        logger.debug(f"ErrorCollector initialized (max_errors={max_errors})")

    def add_error(self, error: BuildError) -> None:
        """Add error to collection.

        Args:
            error: Build error to add
        """
        with self.lock:
            if len(self.errors) >= self.max_errors:
                logger.warning(f"ErrorCollector full ({self.max_errors} errors), dropping oldest")
                self.errors.pop(0)

            self.errors.append(error)

        logger.debug(f"Added {error.severity.value} error in phase {error.phase}: {error.error_message}")

    def add_exception(
        self,
        exc: BaseException,
        phase: str,
        directory: Optional[str] = None,
        target: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
    ) -> BuildError:
        """Record an exception, keeping captured tool output of backend errors.

        Returns:
            The recorded BuildError
        """
        stderr = stdout = None
        if isinstance(exc, BackendError):
            stderr, stdout = exc.stderr, exc.stdout
        error = BuildError(
            severity=severity,
            phase=phase,
            kind=type(exc).__name__,
            directory=directory,
            target=target,
            error_message=str(exc),
            stderr=stderr,
            stdout=stdout,
        )
        self.add_error(error)
        return error

    def get_errors(self, severity: Optional[ErrorSeverity] = None) -> list[BuildError]:
        """Get all errors, optionally filtered by severity.

        Args:
            severity: Filter by severity (None = all errors)

        Returns:
            List of build errors
        """
        with self.lock:
            if severity:
                return [e for e in self.errors if e.severity == severity]
            return self.errors.copy()

    def get_errors_by_phase(self, phase: str) -> list[BuildError]:
        """Get errors for a specific phase.

        Args:
            phase: Phase to filter by

        Returns:
            List of build errors for the phase
        """
        with self.lock:
            return [e for e in self.errors if e.phase == phase]

    def get_errors_by_kind(self, kind: str) -> list[BuildError]:
        with self.lock:
            return [e for e in self.errors if e.kind == kind]

    def has_errors(self) -> bool:
        """Check if any errors (non-warning) occurred.

        Returns:
            True if errors exist
        """
        with self.lock:
            return any(e.severity in (ErrorSeverity.ERROR, ErrorSeverity.FATAL) for e in self.errors)

    def get_error_count(self) -> dict[str, int]:
        """Get count of errors by severity.

        Returns:
            Dictionary with counts by severity
        """
        with self.lock:
            counts = {
                "warnings": sum(1 for e in self.errors if e.severity == ErrorSeverity.WARNING),
                "errors": sum(1 for e in self.errors if e.severity == ErrorSeverity.ERROR),
                "fatal": sum(1 for e in self.errors if e.severity == ErrorSeverity.FATAL),
                "total": len(self.errors),
            }
        return counts

    def format_errors(self, max_errors: Optional[int] = None) -> str:
        """Format all errors as human-readable string.

        Args:
            max_errors: Maximum number of errors to include (None = all)

        Returns:
            Formatted error report
        """
        with self.lock:
            if not self.errors:
                return "No errors"

            errors_to_show = self.errors if max_errors is None else self.errors[:max_errors]
            lines = [err.format() for err in errors_to_show]

            if max_errors and len(self.errors) > max_errors:
                lines.append(f"... and {len(self.errors) - max_errors} more errors")

            counts = self.get_error_count()
            lines.append(f"Summary: {counts['fatal']} fatal, {counts['errors']} errors, {counts['warnings']} warnings")

            return "\n\n".join(lines)

    def format_summary(self) -> str:
        """Format a brief summary of errors.

        Returns:
            Brief error summary
        """
        counts = self.get_error_count()
        if counts["total"] == 0:
            return "No errors"

        parts = []
        if counts["fatal"] > 0:
            parts.append(f"{counts['fatal']} fatal")
        if counts["errors"] > 0:
            parts.append(f"{counts['errors']} errors")
        if counts["warnings"] > 0:
            parts.append(f"{counts['warnings']} warnings")

        return ", ".join(parts)
