"""Direct toolchain invocation: compile, assemble, then link or pack.

Library units are packed into <workspace>/_obj/<target>.a so every other
local unit can import them with a single -I directory; commands are linked
against the same directory.
"""

from pathlib import Path
from typing import Sequence

from gbuild.packages.errors import BackendError
from gbuild.packages.models import Unit

from .base import TEST_DIR, ToolBackend
from .testmain import TESTMAIN_NAME, TestSuite, render_testmain


def _flags(flag: str, dirs: list[str]) -> list[str]:
    return [arg for d in dirs for arg in (flag, d)]


class DirectBackend(ToolBackend):
    """Builds a unit by running the compiler, assembler, linker and archiver itself."""

    def compile_objects(self, unit: Unit, extra_go: Sequence[str] = ()) -> list[str]:
        """Compile the unit's Go sources and assemble its .s files.

        Returns:
            Object file names relative to the unit directory, Go object first.
        """
        tc = self.toolchain
        ib = tc.intermediate_name
        self.run(
            tc.compiler,
            unit,
            [*_flags("-I", self.include_dirs(unit)), "-o", ib, *unit.go_sources, *extra_go],
            "compile",
        )
        if not (unit.abs_dir / ib).exists():
            raise BackendError(f"(in {unit.dir}) compile error: {ib} not produced", phase="compile")

        objects = [ib]
        for src in unit.asm_sources:
            obj = Path(src).stem + tc.obj_suffix
            self.run(tc.assembler, unit, ["-o", obj, src], "assemble")
            objects.append(obj)
        return objects

    def link_or_pack(self, unit: Unit, objects: list[str]) -> None:
        assert unit.result_path is not None
        tc = self.toolchain
        unit.result_path.parent.mkdir(parents=True, exist_ok=True)
        if unit.is_cmd:
            self.run(tc.linker, unit, [*_flags("-L", self.include_dirs(unit)), "-o", str(unit.result_path), *objects], "link")
        else:
            self.run(tc.archiver, unit, ["grc", str(unit.result_path), *objects], "pack")

    def build(self, unit: Unit) -> int:
        unit.objects = self.compile_objects(unit)
        self.link_or_pack(unit, unit.objects)
        return self.artifact_time(unit)

    def test(self, unit: Unit, suite: TestSuite) -> bool:
        """Compile the unit together with its tests, link the generated entry point, run it.

        Layout inside the unit directory:
            _test/_testmain.go          generated entry point
            _test/_gotest_<suffix>      unit + tests object
            _test/_obj/<target>.a       unit + tests archive
            _test/_testmain<suffix>     entry point object
            _test/_testmain[.exe]       test binary
        """
        tc = self.toolchain
        suffix = tc.obj_suffix
        test_dir = unit.abs_dir / TEST_DIR
        self.remove(test_dir)
        test_obj_dir = test_dir / "_obj"
        archive = test_obj_dir / f"{unit.target}.a"
        archive.parent.mkdir(parents=True, exist_ok=True)
        (test_dir / TESTMAIN_NAME).write_text(render_testmain(suite), encoding="utf-8")

        includes = self.include_dirs(unit)
        test_ib = f"{TEST_DIR}/_gotest_{suffix}"
        self.run(
            tc.compiler,
            unit,
            [*_flags("-I", includes), "-o", test_ib, *unit.go_sources, *unit.test_sources],
            "compile",
        )
        self.run(tc.archiver, unit, ["grc", str(archive), test_ib], "pack")

        main_ib = f"{TEST_DIR}/_testmain{suffix}"
        search = [str(test_obj_dir), *includes]
        self.run(tc.compiler, unit, [*_flags("-I", search), "-o", main_ib, f"{TEST_DIR}/{TESTMAIN_NAME}"], "compile")

        binary = test_dir / f"_testmain{self.env.exe_suffix}"
        self.run(tc.linker, unit, [*_flags("-L", search), "-o", str(binary), main_ib], "link")
        if not binary.exists():
            raise BackendError(f"(in {unit.dir}) test binary not produced", phase="link")

        return self.run(str(binary), unit, [], "test", check=False) == 0

