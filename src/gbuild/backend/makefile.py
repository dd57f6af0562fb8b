"""Delegation to a unit's own Makefile.

Foreign units (toolchain tree, external workspaces) run `make install`,
which builds straight into their install location. Local units run plain
`make` and the artifact it leaves behind (_obj/<target>.a for libraries,
<target> for commands) is copied to the unit's result path so dependents
find it where direct builds would have put it.
"""

from pathlib import Path

from gbuild.packages.errors import BackendError
from gbuild.packages.models import Unit

from .base import ToolBackend, copy_artifact
from .testmain import TestSuite


class MakefileBackend(ToolBackend):
    """Builds a unit by running make in its directory."""

    def produced_artifact(self, unit: Unit) -> Path:
        """Where the standard Makefile rules leave the unit's artifact."""
        if unit.is_cmd:
            return unit.abs_dir / unit.target
        return unit.abs_dir / "_obj" / f"{unit.target}.a"

    def build(self, unit: Unit) -> int:
        assert unit.result_path is not None
        args = ["install"] if unit.is_foreign else []
        self.run(self.toolchain.make, unit, args, "make")
        if unit.is_foreign:
            return self.artifact_time(unit)

        produced = self.produced_artifact(unit)
        if not produced.exists():
            raise BackendError(f"(in {unit.dir}) make did not produce {produced.name}", phase="make")
        if produced != unit.result_path:
            copy_artifact(produced, unit.result_path)
        return self.artifact_time(unit)

    def clean(self, unit: Unit) -> bool:
        self.run(self.toolchain.make, unit, ["clean"], "clean")
        if not unit.is_foreign and unit.result_path is not None and unit.result_path.exists():
            self.remove(unit.result_path)
        return True

    def test(self, unit: Unit, suite: TestSuite) -> bool:
        return self.make_test(unit)
