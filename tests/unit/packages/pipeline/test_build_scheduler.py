"""Unit tests for the incremental build scheduler.

A fake backend writes real artifact files with controlled modification
times, so staleness is judged exactly as in a real run, without a toolchain.
"""

import os
import threading
import time
from pathlib import Path

import pytest

from gbuild.build.error_collector import ErrorCollector
from gbuild.packages.errors import BackendError
from gbuild.packages.models import FailureKind, RootKind, Unit, stat_time
from gbuild.packages.pipeline.models import UnitPhase
from gbuild.packages.pipeline.pools import BackendSlots, SpeculativePool
from gbuild.packages.pipeline.scheduler import BuildScheduler
from gbuild.packages.registry import UnitRegistry

SECOND = 10**9
SOURCE_TIME = 1_000 * SECOND

# ─── Helpers ──────────────────────────────────────────────────────────────────


class FakeClock:
    """Hands out strictly increasing modification times."""

    def __init__(self) -> None:
        self._now = 2_000 * SECOND
        self._lock = threading.Lock()

    def tick(self) -> int:
        with self._lock:
            self._now += SECOND
            return self._now


def touch(path: Path, ns: int) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"artifact")
    os.utime(path, ns=(ns, ns))


class FakeBackend:
    """Backend double recording every call; writes artifacts stamped by a FakeClock."""

    def __init__(self, clock: FakeClock, fail: tuple[str, ...] = (), produce: bool = True, delay: float = 0.0):
        self.clock = clock
        self.fail = set(fail)
        self.produce = produce
        self.delay = delay
        self.failing_tests: set[str] = set()
        self.calls: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def _record(self, action: str, unit: Unit) -> None:
        with self._lock:
            self.calls.append((action, unit.target))

    def actions(self, action: str) -> list[str]:
        with self._lock:
            return [target for a, target in self.calls if a == action]

    def build(self, unit: Unit) -> int:
        self._record("build", unit)
        if self.delay:
            time.sleep(self.delay)
        if unit.target in self.fail:
            raise BackendError(f"compile error in {unit.target}", stderr="x.go:1: syntax error")
        if self.produce:
            touch(unit.result_path, self.clock.tick())
        return stat_time(unit.result_path)

    def install(self, unit: Unit) -> bool:
        self._record("install", unit)
        touch(unit.install_path, self.clock.tick())
        return True

    def clean(self, unit: Unit) -> bool:
        self._record("clean", unit)
        if unit.result_path.exists():
            unit.result_path.unlink()
            return True
        return False

    def nuke(self, unit: Unit) -> bool:
        self._record("nuke", unit)
        if unit.install_path.exists():
            unit.install_path.unlink()
            return True
        return False

    def test(self, unit: Unit, suite) -> bool:
        self._record("test", unit)
        return unit.target not in self.failing_tests


class SingleBackendSet:
    def __init__(self, backend: FakeBackend) -> None:
        self.backend = backend

    def for_unit(self, unit: Unit) -> FakeBackend:
        return self.backend


class RecordingCallback:
    """Callback that records all on_progress calls for assertions."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, UnitPhase, str]] = []
        self._lock = threading.Lock()

    def on_progress(self, task_name: str, phase: UnitPhase, detail: str) -> None:
        with self._lock:
            self.calls.append((task_name, phase, detail))

    def phases(self, task_name: str) -> list[UnitPhase]:
        with self._lock:
            return [p for name, p, _ in self.calls if name == task_name]


def make_registry(tmp_path: Path, edges: dict[str, list[str]], source_times: dict[str, int] | None = None) -> UnitRegistry:
    """Build a fresh registry (as a new run would) over artifacts under tmp_path."""
    registry = UnitRegistry()
    for target, deps in edges.items():
        unit = Unit(
            dir=f"src/{target}",
            abs_dir=tmp_path / "src" / target,
            name="main" if target.startswith("cmd") else target,
            target=target,
            is_cmd=target.startswith("cmd"),
            dep_targets=list(deps),
            source_time=(source_times or {}).get(target, SOURCE_TIME),
            result_path=tmp_path / "obj" / f"{target}.a",
            install_path=tmp_path / "inst" / f"{target}.a",
        )
        unit.stat()
        registry.add(unit)
    return registry


def make_scheduler(registry, backend, config, **kwargs) -> BuildScheduler:
    return BuildScheduler(registry, config, SingleBackendSet(backend), ErrorCollector(), **kwargs)


CHAIN = {"a": [], "b": ["a"], "cmdc": ["b"]}


# ─── Build ────────────────────────────────────────────────────────────────────


class TestBuild:
    """Build ordering, staleness and memoisation."""

    def test_fresh_chain_builds_in_dependency_order(self, tmp_path, make_config):
        registry = make_registry(tmp_path, CHAIN)
        backend = FakeBackend(FakeClock())
        scheduler = make_scheduler(registry, backend, make_config())
        scheduler.check_status()

        assert scheduler.build("cmdc")

        assert backend.actions("build") == ["a", "b", "cmdc"]
        assert scheduler.stats.built == 3
        for unit in registry:
            assert not unit.needs_build
            assert unit.needs_install
            assert unit.bin_time > 0
        assert registry["a"].bin_time < registry["b"].bin_time < registry["cmdc"].bin_time

    def test_second_run_is_up_to_date(self, tmp_path, make_config):
        clock = FakeClock()
        first = make_scheduler(make_registry(tmp_path, CHAIN), FakeBackend(clock), make_config())
        first.check_status()
        first.build("cmdc")

        backend = FakeBackend(clock)
        callback = RecordingCallback()
        second = make_scheduler(make_registry(tmp_path, CHAIN), backend, make_config(), callback=callback)
        second.check_status()

        assert second.build("cmdc")
        assert backend.calls == []
        assert second.stats.built == 0
        assert callback.phases("a") == [UnitPhase.UP_TO_DATE]

    def test_touching_a_source_rebuilds_dependents_only(self, tmp_path, make_config):
        clock = FakeClock()
        edges = {"a": [], "b": ["a"], "cmdc": ["b"], "sibling": []}
        first = make_scheduler(make_registry(tmp_path, edges), FakeBackend(clock), make_config())
        for target in edges:
            first.build(target)

        backend = FakeBackend(clock)
        registry = make_registry(tmp_path, edges, source_times={"a": clock.tick()})
        second = make_scheduler(registry, backend, make_config())
        second.check_status()
        for target in edges:
            second.build(target)

        assert backend.actions("build") == ["a", "b", "cmdc"]
        assert second.stats.built == 3

    def test_build_is_memoised_per_run(self, tmp_path, make_config):
        registry = make_registry(tmp_path, {"a": [], "b": ["a"], "c": ["a"]})
        backend = FakeBackend(FakeClock())
        scheduler = make_scheduler(registry, backend, make_config())

        scheduler.build("b")
        scheduler.build("c")
        scheduler.build("b")

        assert backend.actions("build").count("a") == 1
        assert scheduler.stats.built == 3

    def test_prebuilt_dependency_newer_than_artifact(self, tmp_path, make_config):
        clock = FakeClock()
        make_scheduler(make_registry(tmp_path, {"a": []}), FakeBackend(clock), make_config()).build("a")

        registry = make_registry(tmp_path, {"a": []})
        registry["a"].prebuilt_time = clock.tick()
        backend = FakeBackend(clock)
        make_scheduler(registry, backend, make_config()).build("a")

        assert backend.actions("build") == ["a"]

    def test_inactive_unit_is_never_built(self, tmp_path, make_config):
        registry = make_registry(tmp_path, CHAIN)
        registry["a"].active = False
        backend = FakeBackend(FakeClock())
        scheduler = make_scheduler(registry, backend, make_config())

        assert scheduler.build("cmdc")
        assert backend.actions("build") == ["b", "cmdc"]

    def test_stale_inactive_dependency_does_not_rebuild_dependent(self, tmp_path, make_config):
        clock = FakeClock()
        edges = {"a": [], "cmdc": ["a"]}
        first = make_scheduler(make_registry(tmp_path, edges), FakeBackend(clock), make_config())
        first.check_status()
        assert first.build("cmdc")

        changed = {"a": clock.tick()}
        for _ in range(2):
            registry = make_registry(tmp_path, edges, source_times=changed)
            registry["a"].active = False
            backend = FakeBackend(clock)
            scheduler = make_scheduler(registry, backend, make_config())
            scheduler.check_status()
            assert registry["cmdc"].needs_build

            assert scheduler.build("cmdc")
            assert backend.calls == []
            assert scheduler.stats.built == 0
            assert not registry["cmdc"].needs_build


class TestBuildFailures:
    """Local versus inherited failures."""

    def test_dependency_failure_is_inherited(self, tmp_path, make_config):
        registry = make_registry(tmp_path, CHAIN)
        backend = FakeBackend(FakeClock(), fail=("a",))
        scheduler = make_scheduler(registry, backend, make_config())

        assert not scheduler.build("cmdc")

        assert backend.actions("build") == ["a"]
        assert registry["a"].failure_kind is FailureKind.BUILD
        assert registry["b"].failure_kind is FailureKind.INHERITED
        assert registry["cmdc"].failure_kind is FailureKind.INHERITED
        assert registry["b"].needs_build and registry["cmdc"].needs_build
        assert scheduler.stats.broken == 1
        assert scheduler.stats.built == 0

    def test_failure_recorded_with_tool_output(self, tmp_path, make_config):
        registry = make_registry(tmp_path, {"a": []})
        scheduler = make_scheduler(registry, FakeBackend(FakeClock(), fail=("a",)), make_config())

        scheduler.build("a")

        errors = scheduler.collector.get_errors_by_kind("BackendError")
        assert len(errors) == 1
        assert errors[0].stderr == "x.go:1: syntax error"
        assert errors[0].target == "a"

    def test_missing_artifact_after_success_is_failure(self, tmp_path, make_config):
        registry = make_registry(tmp_path, {"a": []})
        scheduler = make_scheduler(registry, FakeBackend(FakeClock(), produce=False), make_config())

        assert not scheduler.build("a")
        assert registry["a"].failure_kind is FailureKind.BUILD
        assert scheduler.collector.get_errors_by_kind("BuildFailure")

    def test_stale_artifact_after_success_is_failure(self, tmp_path, make_config):
        touch(tmp_path / "obj" / "a.a", 100 * SECOND)
        registry = make_registry(tmp_path, {"a": []}, source_times={"a": 5_000 * SECOND})
        scheduler = make_scheduler(registry, FakeBackend(FakeClock(), produce=False), make_config())

        assert not scheduler.build("a")

        assert registry["a"].failure_kind is FailureKind.BUILD
        assert "older than its inputs" in registry["a"].failure_reason
        assert scheduler.stats.built == 0
        assert scheduler.stats.broken == 1

    def test_failed_unit_short_circuits(self, tmp_path, make_config):
        registry = make_registry(tmp_path, {"a": [], "b": ["a"], "c": ["a"]})
        backend = FakeBackend(FakeClock(), fail=("a",))
        scheduler = make_scheduler(registry, backend, make_config())

        scheduler.build("b")
        scheduler.build("c")

        assert backend.actions("build") == ["a"]
        assert scheduler.stats.broken == 1

    def test_unresolved_unit_is_not_built(self, tmp_path, make_config):
        registry = make_registry(tmp_path, {"a": []})
        registry["a"].mark_failed(FailureKind.UNRESOLVED, "can't resolve x")
        backend = FakeBackend(FakeClock())

        assert not make_scheduler(registry, backend, make_config()).build("a")
        assert backend.calls == []

    def test_unrelated_units_continue(self, tmp_path, make_config):
        registry = make_registry(tmp_path, {"a": [], "z": []})
        backend = FakeBackend(FakeClock(), fail=("a",))
        scheduler = make_scheduler(registry, backend, make_config())

        assert not scheduler.build("a")
        assert scheduler.build("z")
        assert scheduler.stats.built == 1


# ─── Install / Clean / Test ───────────────────────────────────────────────────


class TestInstall:
    def test_install_after_build(self, tmp_path, make_config):
        registry = make_registry(tmp_path, CHAIN)
        backend = FakeBackend(FakeClock())
        scheduler = make_scheduler(registry, backend, make_config(install=True))
        scheduler.build("cmdc")

        assert scheduler.install("cmdc")

        assert backend.actions("install") == ["a", "b", "cmdc"]
        assert scheduler.stats.installed == 3
        assert all(not u.needs_install for u in registry)

    def test_installed_copy_up_to_date(self, tmp_path, make_config):
        clock = FakeClock()
        first = make_scheduler(make_registry(tmp_path, {"a": []}), FakeBackend(clock), make_config())
        first.build("a")
        first.install("a")

        backend = FakeBackend(clock)
        second = make_scheduler(make_registry(tmp_path, {"a": []}), backend, make_config())
        second.check_status()
        second.build("a")
        second.install("a")

        assert backend.calls == []

    def test_toolchain_units_never_installed(self, tmp_path, make_config):
        registry = make_registry(tmp_path, {"a": []})
        registry["a"].root_kind = RootKind.GOROOT
        backend = FakeBackend(FakeClock())
        scheduler = make_scheduler(registry, backend, make_config())
        scheduler.build("a")

        assert scheduler.install("a")
        assert backend.actions("install") == []

    def test_broken_unit_not_installed(self, tmp_path, make_config):
        registry = make_registry(tmp_path, {"a": []})
        backend = FakeBackend(FakeClock(), fail=("a",))
        scheduler = make_scheduler(registry, backend, make_config())
        scheduler.build("a")

        assert not scheduler.install("a")
        assert backend.actions("install") == []


class TestClean:
    def test_clean_forces_rebuild(self, tmp_path, make_config):
        registry = make_registry(tmp_path, CHAIN)
        backend = FakeBackend(FakeClock())
        scheduler = make_scheduler(registry, backend, make_config(clean=True, build=True))
        scheduler.build("cmdc")

        assert scheduler.clean("cmdc")
        assert scheduler.stats.cleaned == 3
        assert all(u.needs_build and u.force_build and u.bin_time == 0 for u in registry)

        scheduler.build("cmdc")
        assert backend.actions("build") == ["a", "b", "cmdc", "a", "b", "cmdc"]

    def test_nothing_to_clean(self, tmp_path, make_config):
        registry = make_registry(tmp_path, {"a": []})
        scheduler = make_scheduler(registry, FakeBackend(FakeClock()), make_config(clean=True))

        scheduler.clean("a")

        assert scheduler.stats.cleaned == 0

    def test_nuke_asks_first(self, tmp_path, make_config):
        registry = make_registry(tmp_path, {"a": []})
        touch(registry["a"].install_path, 5_000 * SECOND)
        backend = FakeBackend(FakeClock())
        questions = []

        def refuse(question: str) -> bool:
            questions.append(question)
            return False

        make_scheduler(registry, backend, make_config(clean=True, nuke=True), confirm=refuse).clean("a")

        assert len(questions) == 1
        assert "Really nuke" in questions[0]
        assert backend.actions("nuke") == []
        assert registry["a"].install_path.exists()

    def test_nuke_forced(self, tmp_path, make_config):
        registry = make_registry(tmp_path, {"a": []})
        touch(registry["a"].install_path, 5_000 * SECOND)
        backend = FakeBackend(FakeClock())

        make_scheduler(registry, backend, make_config(clean=True, nuke=True, force=True)).clean("a")

        assert backend.actions("nuke") == ["a"]
        assert not registry["a"].install_path.exists()


class TestTest:
    def _unit_with_tests(self, registry, target):
        unit = registry[target]
        unit.test_sources = [f"{target}_test.go"]
        unit.test_pkg_sources = {unit.name: [f"{target}_test.go"]}
        unit.test_funcs = {unit.name: ["TestX"]}
        return unit

    def test_passing_tests(self, tmp_path, make_config):
        registry = make_registry(tmp_path, {"a": [], "b": ["a"]})
        self._unit_with_tests(registry, "b")
        backend = FakeBackend(FakeClock())
        scheduler = make_scheduler(registry, backend, make_config(test=True))

        assert scheduler.test("b")

        assert backend.calls == [("build", "a"), ("build", "b"), ("test", "b")]
        assert scheduler.stats.tested == 1
        assert scheduler.stats.tests_failed == 0

    def test_failing_tests(self, tmp_path, make_config):
        registry = make_registry(tmp_path, {"a": []})
        self._unit_with_tests(registry, "a")
        backend = FakeBackend(FakeClock())
        backend.failing_tests.add("a")
        scheduler = make_scheduler(registry, backend, make_config(test=True))

        assert not scheduler.test("a")
        assert not scheduler.test("a")

        assert backend.actions("test") == ["a"]
        assert scheduler.stats.tests_failed == 1
        assert not scheduler.stats.success

    def test_own_build_failure_is_not_a_test_failure(self, tmp_path, make_config):
        registry = make_registry(tmp_path, {"a": []})
        self._unit_with_tests(registry, "a")
        backend = FakeBackend(FakeClock(), fail=("a",))
        scheduler = make_scheduler(registry, backend, make_config(test=True))

        assert not scheduler.test("a")

        assert backend.actions("test") == []
        assert scheduler.stats.broken == 1
        assert scheduler.stats.tested == 0
        assert scheduler.stats.tests_failed == 0
        assert [e.phase for e in scheduler.collector.get_errors()] == ["build"]

    def test_test_dependencies_built_first(self, tmp_path, make_config):
        registry = make_registry(tmp_path, {"a": [], "helper": []})
        unit = self._unit_with_tests(registry, "a")
        unit.test_dep_targets = ["helper", "a"]
        backend = FakeBackend(FakeClock())

        make_scheduler(registry, backend, make_config(test=True)).test("a")

        assert backend.calls == [("build", "helper"), ("build", "a"), ("test", "a")]

    def test_units_without_tests_are_skipped(self, tmp_path, make_config):
        registry = make_registry(tmp_path, {"a": []})
        backend = FakeBackend(FakeClock())
        scheduler = make_scheduler(registry, backend, make_config(test=True))

        assert scheduler.test("a")
        assert backend.actions("test") == []
        assert scheduler.stats.tested == 0


# ─── Concurrency ──────────────────────────────────────────────────────────────


@pytest.mark.concurrent
class TestConcurrentBuild:
    """Per-unit guards collapse concurrent requests into one backend call."""

    def test_concurrent_callers_share_one_build(self, tmp_path, make_config):
        registry = make_registry(tmp_path, {"a": []})
        backend = FakeBackend(FakeClock(), delay=0.05)
        scheduler = make_scheduler(registry, backend, make_config())
        results: list[bool] = []
        times: list[int] = []
        lock = threading.Lock()

        def worker():
            ok = scheduler.build("a")
            with lock:
                results.append(ok)
                times.append(registry["a"].bin_time)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert backend.actions("build") == ["a"]
        assert results == [True] * 8
        assert len(set(times)) == 1

    def test_speculative_pool_builds_diamond_once(self, tmp_path, make_config):
        edges = {"base": [], "left": ["base"], "right": ["base"], "top": ["left", "right"]}
        registry = make_registry(tmp_path, edges)
        backend = FakeBackend(FakeClock(), delay=0.01)
        config = make_config(concurrent=True, max_jobs=4)

        with SpeculativePool(4) as pool:
            scheduler = make_scheduler(registry, backend, config, speculative=pool)
            assert scheduler.build("top")

        builds = backend.actions("build")
        assert sorted(builds) == ["base", "left", "right", "top"]
        assert builds[0] == "base"
        assert builds[-1] == "top"
        assert scheduler.stats.built == 4

    def test_backend_slots_cap_parallelism(self, tmp_path, make_config):
        edges = {f"u{i}": [] for i in range(6)}
        registry = make_registry(tmp_path, edges)
        backend = FakeBackend(FakeClock(), delay=0.02)
        slots = BackendSlots(2)
        scheduler = make_scheduler(registry, backend, make_config(), slots=slots)

        threads = [threading.Thread(target=scheduler.build, args=(t,)) for t in edges]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert slots.peak <= 2
        assert scheduler.stats.built == 6
