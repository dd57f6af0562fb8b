"""Synthetic test entry point generation.

Collects the Test* and Benchmark* functions discovered in a unit's test
sources, grouped by the package that declares them, and renders the
_testmain.go program that runs them.
"""

from dataclasses import dataclass, field

from gbuild.packages.models import Unit

TESTMAIN_NAME = "_testmain.go"
MAIN_ALIAS = "__main__"


@dataclass
class TestPackage:
    """One package contributing tests to a suite.

    Attributes:
        alias: Import alias used inside the generated program
        name: Declared package name
        target: Import path the generated program imports
        tests: Test function names
        benchmarks: Benchmark function names
    """

    __test__ = False

    alias: str
    name: str
    target: str
    tests: list[str] = field(default_factory=list)
    benchmarks: list[str] = field(default_factory=list)


@dataclass
class TestSuite:
    """Everything the generated entry point must run."""

    __test__ = False

    packages: list[TestPackage] = field(default_factory=list)

    @property
    def test_count(self) -> int:
        return sum(len(p.tests) for p in self.packages)

    @property
    def benchmark_count(self) -> int:
        return sum(len(p.benchmarks) for p in self.packages)


def build_test_suite(unit: Unit) -> TestSuite:
    """Group a unit's discovered test and benchmark functions by package.

    The unit's own package is imported under its target name; a package
    named "main" is imported as __main__ so it does not clash with the
    generated program itself.
    """
    suite = TestSuite()
    for name in sorted(unit.test_funcs):
        tests = [f for f in unit.test_funcs[name] if f.startswith("Test")]
        benchmarks = [f for f in unit.test_funcs[name] if f.startswith("Benchmark")]
        if not tests and not benchmarks:
            continue
        target = unit.target if name == unit.name else name
        alias = MAIN_ALIAS if name == "main" else name
        suite.packages.append(TestPackage(alias=alias, name=name, target=target, tests=tests, benchmarks=benchmarks))
    return suite


def render_testmain(suite: TestSuite) -> str:
    """Render the _testmain.go source for a suite."""
    lines = ["package main", "", 'import "testing"', 'import __regexp__ "regexp"']
    for pkg in suite.packages:
        lines.append(f'import {pkg.alias} "{pkg.target}"')

    lines += ["", "var tests = []testing.InternalTest{"]
    for pkg in suite.packages:
        lines += [f'\t{{"{pkg.name}.{fn}", {pkg.alias}.{fn}}},' for fn in pkg.tests]
    lines += ["}", "var benchmarks = []testing.InternalBenchmark{"]
    for pkg in suite.packages:
        lines += [f'\t{{"{pkg.name}.{fn}", {pkg.alias}.{fn}}},' for fn in pkg.benchmarks]
    lines += [
        "}",
        "",
        "func main() {",
        "\ttesting.Main(__regexp__.MatchString, tests)",
        "\ttesting.RunBenchmarks(__regexp__.MatchString, benchmarks)",
        "}",
        "",
    ]
    return "\n".join(lines)
