"""
Source header inspection.

Reads just enough of each Go-style source file to learn:
- the package clause
- an optional //target:<name> directive placed before the package clause
- the imported paths
- the top-level function names (test and benchmark discovery)
- interop flags from #cgo annotations in the comment preamble of import "C"

and folds the per-file results into a Unit's source sets and raw dependency
lists.
"""

import logging
import re
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from .errors import SourceParseError
from .models import Unit
from .source_scanner import SourceCollection

logger = logging.getLogger(__name__)

INTEROP_IMPORT = "C"
INTEROP_RUNTIME = "runtime/cgo"
DOCUMENTATION_PACKAGE = "documentation"

_PACKAGE_RE = re.compile(r"^package\s+([A-Za-z_]\w*)\s*(?:;\s*)?$")
_TARGET_RE = re.compile(r"^//\s*target:\s*(\S+)\s*$")
_IMPORT_SPEC_RE = re.compile(r'^(?:([A-Za-z_]\w*|\.|_)\s+)?"([^"]*)"\s*;?$')
_FUNC_RE = re.compile(r"^func\s+([A-Za-z_]\w*)\s*[\(\[]")
_IMPORT_RE = re.compile(r"^import\b")
_CGO_RE = re.compile(
    r"^#cgo\s+(?:(?P<cond>[^:]*?)\s+)?(?P<kind>CFLAGS|CPPFLAGS|LDFLAGS)\s*:\s*(?P<flags>.*)$"
)


@dataclass
class SourceInfo:
    """What one source file declares.

    Attributes:
        package: Package clause name
        target: Target directive value, if any
        imports: Imported paths in file order (includes "C" for interop)
        funcs: Top-level function names
        cgo_cflags: Native compiler flags from #cgo annotations
        cgo_ldflags: Native linker flags from #cgo annotations
    """

    package: str
    target: Optional[str] = None
    imports: list[str] = field(default_factory=list)
    funcs: list[str] = field(default_factory=list)
    cgo_cflags: list[str] = field(default_factory=list)
    cgo_ldflags: list[str] = field(default_factory=list)

    @property
    def uses_interop(self) -> bool:
        return INTEROP_IMPORT in self.imports

    @property
    def dependencies(self) -> list[str]:
        """Imports that name other units (the interop pseudo-import excluded)."""
        return [imp for imp in self.imports if imp != INTEROP_IMPORT]


def _cgo_condition_holds(cond: str, goos: str, goarch: str) -> bool:
    # "linux,amd64 darwin" = (linux AND amd64) OR darwin; "!windows" negates
    if not cond.strip():
        return True
    for option in cond.split():
        terms = option.split(",")
        if all((t[1:] not in (goos, goarch)) if t.startswith("!") else (t in (goos, goarch)) for t in terms):
            return True
    return False


def _parse_cgo_preamble(comment: list[str], info: SourceInfo, path: str, goos: str, goarch: str) -> None:
    for raw in comment:
        line = raw.strip().lstrip("*").strip()
        if not line.startswith("#cgo"):
            continue
        match = _CGO_RE.match(line)
        if match is None:
            raise SourceParseError(path, f"malformed #cgo directive: {line}")
        if not _cgo_condition_holds(match.group("cond") or "", goos, goarch):
            continue
        try:
            flags = shlex.split(match.group("flags"))
        except ValueError as e:
            raise SourceParseError(path, f"malformed #cgo flags: {e}") from e
        if match.group("kind") == "LDFLAGS":
            info.cgo_ldflags.extend(flags)
        else:
            info.cgo_cflags.extend(flags)


def _strip_inline_block_comments(line: str) -> tuple[str, bool]:
    """Remove /* ... */ segments from a code line.

    Returns:
        (code, opened) where opened is True if a block comment starts on this
        line and continues onto the next one.
    """
    out = []
    rest = line
    while True:
        start = rest.find("/*")
        if start < 0:
            out.append(rest)
            return "".join(out), False
        out.append(rest[:start])
        end = rest.find("*/", start + 2)
        if end < 0:
            return "".join(out), True
        rest = rest[end + 2 :]


def _strip_line_comment(line: str) -> str:
    quote = ""
    i = 0
    while i < len(line):
        ch = line[i]
        if quote:
            if ch == "\\" and quote != "`":
                i += 1
            elif ch == quote:
                quote = ""
        elif ch in ('"', "'", "`"):
            quote = ch
        elif line.startswith("//", i):
            return line[:i]
        i += 1
    return line


def _split_specs(code: str) -> list[str]:
    return [spec.strip() for spec in code.split(";") if spec.strip()]


def parse_source_text(text: str, path: str, goos: str, goarch: str) -> SourceInfo:
    """
    Parse a source file's text.

    Args:
        text: File contents
        path: Path used in error messages
        goos: Target operating system (for #cgo conditions)
        goarch: Target architecture (for #cgo conditions)

    Returns:
        SourceInfo for the file

    Raises:
        SourceParseError: If no package clause is found or an import
            declaration or block comment is malformed
    """
    package: Optional[str] = None
    target: Optional[str] = None
    imports: list[str] = []
    funcs: list[str] = []
    flags = SourceInfo(package="")

    comment: list[str] = []
    in_block_comment = False
    block_start = 0
    in_import_group = False
    group_comment: list[str] = []
    group_start = 0
    imports_done = False

    def add_import(spec: str, lineno: int, preamble: list[str]) -> None:
        match = _IMPORT_SPEC_RE.match(spec.strip())
        if match is None:
            raise SourceParseError(path, f"malformed import: {spec.strip()}", lineno)
        imported = match.group(2)
        if not imported:
            raise SourceParseError(path, "empty import path", lineno)
        imports.append(imported)
        if imported == INTEROP_IMPORT:
            _parse_cgo_preamble(preamble, flags, path, goos, goarch)

    for lineno, raw in enumerate(text.splitlines(), start=1):
        if in_block_comment:
            end = raw.find("*/")
            if end < 0:
                comment.append(raw)
                continue
            comment.append(raw[:end])
            in_block_comment = False
            raw = raw[end + 2 :]
            if not raw.strip():
                continue

        stripped = raw.strip()
        if not stripped:
            comment = []
            continue

        if stripped.startswith("//"):
            if package is None and target is None:
                directive = _TARGET_RE.match(stripped)
                if directive is not None:
                    target = directive.group(1)
            comment.append(stripped[2:])
            continue

        if stripped.startswith("/*"):
            body = stripped[2:]
            end = body.find("*/")
            if end < 0:
                comment.append(body)
                in_block_comment = True
                block_start = lineno
                continue
            comment.append(body[:end])
            stripped = body[end + 2 :].strip()
            if not stripped:
                continue

        code, opened = _strip_inline_block_comments(stripped)
        if opened:
            in_block_comment = True
            block_start = lineno
        code = _strip_line_comment(code).strip()
        if not code:
            continue

        if package is None:
            match = _PACKAGE_RE.match(code)
            if match is None:
                raise SourceParseError(path, "expected package clause", lineno)
            package = match.group(1)
            comment = []
            continue

        if in_import_group:
            closing = code.endswith(")")
            for spec in _split_specs(code.rstrip(")")):
                add_import(spec, lineno, comment or group_comment)
            comment = []
            in_import_group = not closing
            continue

        if not imports_done and _IMPORT_RE.match(code):
            rest = code[len("import") :].strip()
            if rest.startswith("("):
                inner = rest[1:].strip()
                closing = inner.endswith(")")
                for spec in _split_specs(inner.rstrip(")")):
                    add_import(spec, lineno, comment)
                if not closing:
                    in_import_group = True
                    group_comment = comment
                    group_start = lineno
            else:
                add_import(rest, lineno, comment)
            comment = []
            continue

        imports_done = True
        comment = []
        func = _FUNC_RE.match(raw)
        if func is not None:
            funcs.append(func.group(1))

    if in_block_comment:
        raise SourceParseError(path, "unterminated block comment", block_start)
    if in_import_group:
        raise SourceParseError(path, "unterminated import group", group_start)
    if package is None:
        raise SourceParseError(path, "no package clause")

    return SourceInfo(
        package=package,
        target=target,
        imports=imports,
        funcs=funcs,
        cgo_cflags=flags.cgo_cflags,
        cgo_ldflags=flags.cgo_ldflags,
    )


def parse_source(path: Path, goos: str, goarch: str) -> SourceInfo:
    """Read and parse one source file.

    Raises:
        SourceParseError: If the file cannot be read or parsed
    """
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        raise SourceParseError(str(path), f"cannot read: {e}") from e
    return parse_source_text(text, str(path), goos, goarch)


def remove_dups(items: Iterable[str]) -> list[str]:
    """Drop repeated entries, keeping first occurrences in order."""
    return list(dict.fromkeys(items))


@dataclass
class ExtractionResult:
    """Outcome of folding a directory's source headers into a Unit.

    Attributes:
        target_directive: First //target: directive found (primary sources
            first, then test sources)
        errors: Per-file parse errors; reported, never fatal
    """

    target_directive: Optional[str] = None
    errors: list[SourceParseError] = field(default_factory=list)


def extract_dependencies(unit: Unit, collection: SourceCollection, goos: str, goarch: str) -> ExtractionResult:
    """
    Populate a unit's identity, source partitions and raw dependency lists.

    Interop sources (importing "C") are moved out of the plain source set into
    unit.cgo_sources and gain the implicit runtime/cgo dependency. A file that
    fails to parse contributes no dependencies but is still compiled as part
    of the unit's own package.

    Args:
        unit: Unit to populate (dir/abs_dir already set)
        collection: Scanned files of the unit directory
        goos: Target operating system
        goarch: Target architecture

    Returns:
        ExtractionResult with the target directive and collected parse errors
    """
    result = ExtractionResult()
    src_deps: dict[str, list[str]] = {}
    pkg_sources: dict[str, list[str]] = {}
    cgo_sources: dict[str, list[str]] = {}
    cflags: dict[str, list[str]] = {}
    ldflags: dict[str, list[str]] = {}
    unparsed: list[str] = []
    name = ""

    for src in collection.primary:
        try:
            info = parse_source(unit.abs_dir / src, goos, goarch)
        except SourceParseError as e:
            result.errors.append(e)
            unparsed.append(src)
            continue

        deps = info.dependencies
        if info.target and result.target_directive is None:
            result.target_directive = info.target
        if info.package != DOCUMENTATION_PACKAGE and (info.package != "main" or not name):
            name = info.package

        if info.uses_interop:
            unit.is_cgo = True
            cflags.setdefault(info.package, []).extend(info.cgo_cflags)
            ldflags.setdefault(info.package, []).extend(info.cgo_ldflags)
            deps.append(INTEROP_RUNTIME)
            cgo_sources.setdefault(info.package, []).append(src)
        else:
            pkg_sources.setdefault(info.package, []).append(src)
        src_deps[src] = deps

    if unparsed:
        pkg_sources.setdefault(name, []).extend(unparsed)

    unit.name = name
    unit.pkg_sources = pkg_sources
    unit.cgo_sources = cgo_sources.get(name, [])
    unit.c_sources = list(collection.native)
    unit.asm_sources = list(collection.assembly)
    unit.cgo_cflags = remove_dups(cflags.get(name, []))
    unit.cgo_ldflags = remove_dups(ldflags.get(name, []))
    unit.is_cgo = unit.is_cgo or bool(collection.native)

    own = pkg_sources.get(name, []) + unit.cgo_sources
    unit.deps = remove_dups(dep for src in own for dep in src_deps.get(src, []))

    foreign = [src for pkg, srcs in {**pkg_sources, **cgo_sources}.items() if pkg != name for src in srcs]
    unit.dead_sources = sorted(set(collection.filtered) | set(foreign))

    test_deps: list[str] = []
    for src in collection.test:
        try:
            info = parse_source(unit.abs_dir / src, goos, goarch)
        except SourceParseError as e:
            result.errors.append(e)
            continue
        if info.uses_interop:
            logger.warning("Test source %s in %s imports \"C\"; interop is not supported in tests", src, unit.dir)
        if info.target and result.target_directive is None:
            result.target_directive = info.target
        unit.test_pkg_sources.setdefault(info.package, []).append(src)
        unit.test_funcs.setdefault(info.package, []).extend(info.funcs)
        test_deps.extend(info.dependencies)

    unit.test_sources = list(collection.test)
    unit.test_deps = remove_dups(test_deps)
    unit.parse_errors = [str(e) for e in result.errors]
    return result
