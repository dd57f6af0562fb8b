"""
Source file discovery for a single unit directory.

This module handles:
- Classifying a file name into a source role (pure, no filesystem access)
- Platform filtering by the _<os>, _<arch> and _<os>_<arch> file name suffixes
- Enumerating the regular files directly inside a unit directory
"""

from dataclasses import dataclass, field
from pathlib import Path

from .errors import ScanError
from .models import SourceRole

KNOWN_OS = frozenset(
    {
        "aix",
        "android",
        "darwin",
        "dragonfly",
        "freebsd",
        "illumos",
        "ios",
        "js",
        "linux",
        "nacl",
        "netbsd",
        "openbsd",
        "plan9",
        "solaris",
        "windows",
    }
)

KNOWN_ARCH = frozenset(
    {
        "386",
        "amd64",
        "arm",
        "arm64",
        "loong64",
        "mips",
        "mips64",
        "mips64le",
        "mipsle",
        "ppc64",
        "ppc64le",
        "riscv64",
        "s390x",
        "wasm",
    }
)

# Files written into the unit directory by the interop generator
_GENERATED_NAMES = frozenset(
    {
        "_cgo_gotypes.go",
        "_cgo_import.c",
        "__cgo_import.c",
        "_cgo_main.c",
        "_cgo_defun.c",
        "_cgo_export.c",
        "_cgo_export.h",
        "_testmain.go",
    }
)
_GENERATED_SUFFIXES = (".cgo1.go", ".cgo2.c")
_SOURCE_SUFFIXES = (".go", ".s", ".c")


def matches_platform(filename: str, goos: str, goarch: str) -> bool:
    """Check a file name's platform suffix against the build target.

    Examples (building for linux/amd64):
        sys_linux.go        -> True
        sys_darwin.go       -> False
        asm_386.s           -> False
        zerrors_linux_amd64.go -> True
        linux.go            -> True (no underscore, no constraint)

    Args:
        filename: Bare file name
        goos: Target operating system
        goarch: Target architecture

    Returns:
        True if the file should be built for this target.
    """
    stem = filename.rsplit(".", 1)[0]
    if stem.endswith("_test"):
        stem = stem[: -len("_test")]
    parts = stem.split("_")
    if len(parts) < 2:
        return True

    last = parts[-1]
    if len(parts) >= 3 and parts[-2] in KNOWN_OS and last in KNOWN_ARCH:
        return parts[-2] == goos and last == goarch
    if last in KNOWN_OS:
        return last == goos
    if last in KNOWN_ARCH:
        return last == goarch
    return True


def target_matches_platform(target: str, goos: str, goarch: str) -> bool:
    """Check that no path element of a target names a different platform.

    Toolchain trees keep per-platform support code in directories such as
    runtime/darwin or syscall/windows; those units are skipped on other targets.
    """
    for element in target.split("/")[1:]:
        if element in KNOWN_OS and element != goos:
            return False
        if element in KNOWN_ARCH and element != goarch:
            return False
    return True


def classify_source(filename: str, goos: str, goarch: str) -> SourceRole:
    """Classify a file found in a unit directory.

    Args:
        filename: Bare file name (no directory part)
        goos: Target operating system
        goarch: Target architecture

    Returns:
        The file's SourceRole.
    """
    if not filename or filename.startswith((".", "#")):
        return SourceRole.IGNORED
    if filename in _GENERATED_NAMES or filename.endswith(_GENERATED_SUFFIXES):
        return SourceRole.IGNORED
    if not filename.endswith(_SOURCE_SUFFIXES):
        return SourceRole.IGNORED

    if not matches_platform(filename, goos, goarch):
        return SourceRole.FILTERED

    if filename.endswith("_test.go"):
        return SourceRole.TEST
    if filename.endswith(".go"):
        return SourceRole.PRIMARY
    if filename.endswith(".s"):
        return SourceRole.ASSEMBLY
    return SourceRole.NATIVE


@dataclass
class SourceCollection:
    """Files of one unit directory grouped by role (names relative to the directory)."""

    primary: list[str] = field(default_factory=list)
    test: list[str] = field(default_factory=list)
    assembly: list[str] = field(default_factory=list)
    native: list[str] = field(default_factory=list)
    filtered: list[str] = field(default_factory=list)

    @property
    def has_unit_source(self) -> bool:
        """A directory is a unit only if it holds Go, test or assembly source."""
        return bool(self.primary or self.test or self.assembly)

    def all_sources(self) -> list[str]:
        return sorted(self.primary + self.test + self.assembly + self.native)


class SourceScanner:
    """
    Enumerates and classifies the files of a unit directory.

    Only regular files directly inside the directory are considered; nested
    directories are separate units and are discovered by the registry walk.
    """

    def __init__(self, directory: Path, goos: str, goarch: str):
        """
        Initialize source scanner.

        Args:
            directory: Unit directory to scan
            goos: Target operating system
            goarch: Target architecture
        """
        self.directory = directory
        self.goos = goos
        self.goarch = goarch

    def scan(self) -> SourceCollection:
        """
        Scan the directory.

        Returns:
            SourceCollection with files grouped by role, each list sorted

        Raises:
            ScanError: If the directory cannot be read or holds no unit source
        """
        collection = SourceCollection()
        buckets = {
            SourceRole.PRIMARY: collection.primary,
            SourceRole.TEST: collection.test,
            SourceRole.ASSEMBLY: collection.assembly,
            SourceRole.NATIVE: collection.native,
            SourceRole.FILTERED: collection.filtered,
        }

        try:
            entries = sorted(self.directory.iterdir(), key=lambda p: p.name)
        except OSError as e:
            raise ScanError(f"cannot read {self.directory}: {e}") from e

        for entry in entries:
            if not entry.is_file():
                continue
            role = classify_source(entry.name, self.goos, self.goarch)
            bucket = buckets.get(role)
            if bucket is not None:
                bucket.append(entry.name)

        if not collection.has_unit_source:
            raise ScanError(f"No source files in {self.directory}")

        return collection
