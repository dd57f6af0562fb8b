"""Foreign-interop builds.

Steps, all inside the unit directory:
1. cgo translates every interop source into _cgo/<stem>.cgo1.go (Go side)
   and _cgo/<stem>.cgo2.c (C side), plus _cgo/_cgo_gotypes.go
2. the Go compiler builds the plain sources together with the translated ones
3. the C compiler builds the translated C files and the unit's own .c files
4. the C objects are linked into _cgo/_cgo_.so with the #cgo LDFLAGS
5. the Go object and the C objects are packed into the unit archive

The shared object is installed next to the archive as cgo_<target>.so.
"""

from pathlib import Path

from gbuild.packages.errors import BackendError
from gbuild.packages.models import Unit

from .base import CGO_DIR, copy_artifact
from .direct import DirectBackend
from .testmain import TestSuite

GOTYPES = "_cgo_gotypes.go"
SHARED_OBJECT = "_cgo_.so"


class CgoBackend(DirectBackend):
    """Builds units that import "C"."""

    def generated_sources(self, unit: Unit) -> tuple[list[str], list[str]]:
        """Names (relative to the unit directory) of the Go and C files cgo writes."""
        stems = [Path(src).name[: -len(".go")] for src in unit.cgo_sources]
        go_files = [f"{CGO_DIR}/{GOTYPES}"] + [f"{CGO_DIR}/{stem}.cgo1.go" for stem in stems]
        c_files = [f"{CGO_DIR}/{stem}.cgo2.c" for stem in stems]
        return go_files, c_files

    def shared_install_path(self, unit: Unit) -> Path:
        assert unit.install_path is not None
        return unit.install_path.parent / f"cgo_{unit.target.replace('/', '_')}.so"

    def build(self, unit: Unit) -> int:
        tc = self.toolchain
        (unit.abs_dir / CGO_DIR).mkdir(exist_ok=True)
        if unit.cgo_sources:
            self.run(tc.cgo, unit, ["-objdir", CGO_DIR, "--", *unit.cgo_cflags, *unit.cgo_sources], "cgo")

        go_files, c_files = self.generated_sources(unit) if unit.cgo_sources else ([], [])
        objects = self.compile_objects(unit, extra_go=go_files)

        c_objects = []
        for src in [*c_files, *unit.c_sources]:
            obj = f"{CGO_DIR}/{Path(src).stem}.o"
            self.run(tc.cc, unit, [*unit.cgo_cflags, "-fPIC", "-I.", f"-I{CGO_DIR}", "-c", "-o", obj, src], "cc")
            c_objects.append(obj)

        if c_objects:
            self.run(
                tc.cc,
                unit,
                ["-shared", "-o", f"{CGO_DIR}/{SHARED_OBJECT}", *c_objects, *unit.cgo_ldflags],
                "cc",
            )

        unit.objects = objects + c_objects
        self.link_or_pack(unit, unit.objects)
        return self.artifact_time(unit)

    def install(self, unit: Unit) -> bool:
        super().install(unit)
        shared = unit.abs_dir / CGO_DIR / SHARED_OBJECT
        if shared.exists() and not unit.is_foreign:
            copy_artifact(shared, self.shared_install_path(unit), phase="install")
        return True

    def nuke(self, unit: Unit) -> bool:
        removed = super().nuke(unit)
        shared = self.shared_install_path(unit)
        if shared.exists():
            removed = self.remove(shared) or removed
        return removed

    def test(self, unit: Unit, suite: TestSuite) -> bool:
        if not unit.has_makefile:
            raise BackendError(f'(in {unit.dir}) testing cgo unit "{unit.target}" needs a Makefile', phase="test")
        return self.make_test(unit)
