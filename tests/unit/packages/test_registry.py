"""Tests for workspace discovery into a UnitRegistry."""

import pytest

from gbuild.build.error_collector import ErrorCollector, ErrorSeverity
from gbuild.packages.errors import ConfigurationError
from gbuild.packages.models import Unit
from gbuild.packages.registry import UnitRegistry, scan_workspace


@pytest.fixture
def scan(workspace, env, make_config):
    def _scan(**options):
        collector = ErrorCollector()
        registry = scan_workspace(workspace, env, make_config(**options), collector)
        return registry, collector

    return _scan


class TestUnitRegistry:
    def test_duplicate_target_raises(self, tmp_path):
        registry = UnitRegistry()
        registry.add(Unit(dir="a", abs_dir=tmp_path / "a", target="util"))
        with pytest.raises(ConfigurationError, match="duplicate target"):
            registry.add(Unit(dir="b", abs_dir=tmp_path / "b", target="util"))

    def test_units_in_directory_order(self, tmp_path):
        registry = UnitRegistry()
        registry.add(Unit(dir="z", abs_dir=tmp_path / "z", target="a"))
        registry.add(Unit(dir="a", abs_dir=tmp_path / "a", target="z"))
        assert [u.dir for u in registry] == ["a", "z"]
        assert registry.targets() == ["a", "z"]
        assert registry.by_dir("z").target == "a"
        assert "a" in registry and len(registry) == 2


class TestWorkspaceScan:
    """Walking a workspace tree."""

    def test_library_and_command(self, scan, write_file, workspace):
        write_file("pkg/util/util.go", 'package util\nimport "fmt"\n')
        write_file("cmd/tool/main.go", 'package main\nimport "util"\n')

        registry, collector = scan()

        assert registry.targets() == ["tool", "util"]
        util = registry["util"]
        assert util.dir == "pkg/util"
        assert util.result_path == workspace / "_obj" / "util.a"
        assert util.source_time > 0
        assert util.bin_time == 0
        tool = registry["tool"]
        assert tool.is_cmd
        assert tool.deps == ["util"]
        assert not collector.has_errors()

    def test_readme_only_directory_is_not_a_unit(self, scan, write_file):
        write_file("docs/README", "Project notes\n")
        write_file("pkg/util/util.go", "package util\n")

        registry, collector = scan()

        assert registry.targets() == ["util"]
        assert registry.by_dir("docs") is None
        assert not collector.get_errors()

    def test_skipped_directories(self, scan, write_file):
        write_file("src/x.go", "package x\n")
        write_file(".git/y.go", "package y\n")
        write_file("_obj/z.go", "package z\n")
        write_file("lib/a/a.go", "package a\n")

        registry, _ = scan()

        assert [u.dir for u in registry] == ["lib/a"]

    def test_nested_units_inherit_base(self, scan, write_file):
        write_file("lib/lib.go", "package lib\n")
        write_file("lib/sub/sub.go", "package sub\n")

        registry, _ = scan()

        assert registry.targets() == ["lib", "lib/sub"]

    def test_marker_in_plain_directory_renames_subtree(self, scan, write_file):
        write_file("vendor/target.gb", "thirdparty\n")
        write_file("vendor/json/json.go", "package json\n")

        registry, _ = scan()

        assert registry.targets() == ["thirdparty/json"]

    def test_opt_out_skips_directory_only(self, scan, write_file):
        write_file("lib/target.gb", "-\n")
        write_file("lib/lib.go", "package lib\n")
        write_file("lib/sub/sub.go", "package sub\n")

        registry, collector = scan()

        assert registry.targets() == ["lib/sub"]
        assert not collector.has_errors()

    def test_duplicate_target_reported(self, scan, write_file):
        write_file("a/target.gb", "same\n")
        write_file("a/a.go", "package a\n")
        write_file("b/target.gb", "same\n")
        write_file("b/b.go", "package b\n")

        registry, collector = scan()

        assert registry.targets() == ["same"]
        assert registry["same"].dir == "a"
        assert len(collector.get_errors_by_phase("scan")) == 1

    def test_parse_error_is_a_warning(self, scan, write_file):
        write_file("lib/good.go", "package lib\n")
        write_file("lib/bad.go", "garbage\n")

        registry, collector = scan()

        assert "lib" in registry
        errors = collector.get_errors(ErrorSeverity.WARNING)
        assert len(errors) == 1
        assert errors[0].phase == "parse"

    def test_cgo_command_rejected(self, scan, write_file):
        write_file("cmd/c/main.go", 'package main\nimport "C"\n')

        registry, collector = scan()

        assert len(registry) == 0
        assert "cannot have a cgo cmd" in collector.format_errors()

    def test_platform_named_target_skipped(self, scan, write_file):
        write_file("sys/windows/w.go", "package windows\n")
        write_file("sys/linux/l.go", "package linux\n")

        registry, collector = scan()

        assert registry.targets() == ["sys/linux"]
        assert not collector.has_errors()

    def test_kind_selection_sets_active(self, scan, write_file):
        write_file("pkg/util/util.go", "package util\n")
        write_file("cmd/tool/main.go", "package main\n")

        registry, _ = scan(do_cmds=False)

        assert registry["util"].active
        assert not registry["tool"].active

    def test_exclusive_listing_deactivates_others(self, scan, write_file):
        write_file("pkg/util/util.go", "package util\n")
        write_file("pkg/util/sub/sub.go", "package sub\n")

        registry, _ = scan(listed_dirs=["pkg/util"], exclusive=True)

        assert registry["util"].active
        assert not registry["util/sub"].active
