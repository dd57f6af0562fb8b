"""Toolchain program names for the target architecture.

Tool names follow the classic per-architecture convention (6g/6l/6a for
amd64, 8g/8l/8a for 386, 5g/5l/5a for arm). Every name can be overridden
through a GBUILD_* environment variable, which also makes architectures
outside the table usable.
"""

import dataclasses
import logging
import os
import shutil
from dataclasses import dataclass
from typing import Mapping, Optional

from gbuild.packages.errors import ConfigurationError, ToolNotFoundError

logger = logging.getLogger(__name__)

# GOARCH -> (tool letter, object suffix)
_ARCH_TOOLS = {
    "amd64": ("6", ".6"),
    "386": ("8", ".8"),
    "arm": ("5", ".5"),
}

_OVERRIDES = {
    "compiler": "GBUILD_GC",
    "linker": "GBUILD_GL",
    "assembler": "GBUILD_AS",
    "archiver": "GBUILD_PACK",
    "make": "GBUILD_MAKE",
    "cgo": "GBUILD_CGO",
    "cc": "GBUILD_CC",
    "fetcher": "GBUILD_FETCH",
}


@dataclass(frozen=True)
class Toolchain:
    """Names (or resolved paths) of the external programs a build may run.

    Attributes:
        compiler: Go compiler (e.g. "6g").
        linker: Linker (e.g. "6l").
        assembler: Assembler (e.g. "6a").
        archiver: Archive packer ("gopack").
        make: Make program used for units delegating to a Makefile.
        cgo: Interop source generator.
        cc: Native C compiler used for interop sources.
        fetcher: Remote package fetcher ("goinstall").
        obj_suffix: Object file suffix for the architecture (e.g. ".6").
    """

    compiler: str
    linker: str
    assembler: str
    obj_suffix: str
    archiver: str = "gopack"
    make: str = "make"
    cgo: str = "cgo"
    cc: str = "gcc"
    fetcher: str = "goinstall"

    @classmethod
    def for_arch(cls, goarch: str, environ: Optional[Mapping[str, str]] = None) -> "Toolchain":
        """Build the default toolchain for an architecture, applying overrides.

        Raises:
            ConfigurationError: If the architecture is unknown and no compiler,
                linker and assembler overrides are given.
        """
        env = os.environ if environ is None else environ
        letter, suffix = _ARCH_TOOLS.get(goarch, ("", ""))
        names = {
            "compiler": f"{letter}g" if letter else "",
            "linker": f"{letter}l" if letter else "",
            "assembler": f"{letter}a" if letter else "",
        }
        for attr, var in _OVERRIDES.items():
            if env.get(var):
                names[attr] = env[var]

        if not (names["compiler"] and names["linker"] and names["assembler"]):
            raise ConfigurationError(f"No toolchain known for GOARCH={goarch}; set GBUILD_GC, GBUILD_GL and GBUILD_AS")

        return cls(obj_suffix=env.get("GBUILD_OBJ_SUFFIX") or suffix or ".o", **names)

    @property
    def intermediate_name(self) -> str:
        """Name of the per-unit compiled object, e.g. "_go_.6"."""
        return f"_go_{self.obj_suffix}"

    def locate(self, need_make: bool = False) -> "Toolchain":
        """Resolve every program on PATH.

        The compiler, linker and archiver are mandatory (and make, when
        Makefiles are requested); the others keep their bare name when
        missing and only fail if a unit actually needs them.

        Returns:
            A copy with resolved absolute program paths.

        Raises:
            ToolNotFoundError: If a mandatory program is not on PATH.
        """
        mandatory = {"compiler", "linker", "archiver"}
        if need_make:
            mandatory.add("make")

        resolved: dict[str, str] = {}
        for attr in _OVERRIDES:
            name = getattr(self, attr)
            found = shutil.which(name)
            if found is None:
                if attr in mandatory:
                    raise ToolNotFoundError(f"Could not find {name} in path")
                logger.info("Could not find %s in path", name)
                continue
            resolved[attr] = found
        return dataclasses.replace(self, **resolved)
