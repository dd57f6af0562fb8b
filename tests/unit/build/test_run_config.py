"""Tests for ToolchainEnv and RunConfig."""

from pathlib import Path
from unittest.mock import patch

import pytest

from gbuild.build.build_context import RunConfig, ToolchainEnv, default_job_count, normalize_dir
from gbuild.packages.errors import ConfigurationError


class TestToolchainEnv:
    def test_from_environ(self, tmp_path):
        env = ToolchainEnv.from_environ(
            {
                "GOROOT": str(tmp_path / "go"),
                "GOOS": "linux",
                "GOARCH": "arm",
                "GOPATH": f"{tmp_path / 'a'}:{tmp_path / 'b'}",
            }
        )
        assert env.goroot == (tmp_path / "go").resolve()
        assert env.platform_dir == "linux_arm"
        assert env.gopaths == ((tmp_path / "a").resolve(), (tmp_path / "b").resolve())
        assert env.goroot_pkg_dir == env.goroot / "pkg" / "linux_arm"
        assert env.cmd_install_dir == env.goroot / "bin"
        assert env.exe_suffix == ""

    @pytest.mark.parametrize("missing", ["GOROOT", "GOOS", "GOARCH"])
    def test_required_variables(self, missing):
        environ = {"GOROOT": "/go", "GOOS": "linux", "GOARCH": "amd64"}
        del environ[missing]
        with pytest.raises(ConfigurationError, match=f"{missing} not set"):
            ToolchainEnv.from_environ(environ)

    def test_gobin_and_windows(self):
        env = ToolchainEnv(goroot=Path("/go"), goos="windows", goarch="386", gobin=Path("/bin/go"))
        assert env.cmd_install_dir == Path("/bin/go")
        assert env.exe_suffix == ".exe"
        assert env.gopath_pkg_dir(Path("/gp")) == Path("/gp/pkg/windows_386")


class TestRunConfig:
    @pytest.mark.parametrize(
        "options, builds",
        [
            ({}, True),
            ({"clean": True}, False),
            ({"clean": True, "build": True}, True),
            ({"clean": True, "install": True}, True),
            ({"clean": True, "test": True}, True),
        ],
    )
    def test_implied_build(self, options, builds):
        assert RunConfig.create(max_jobs=1, **options).build is builds

    def test_scan_list_implies_scan(self):
        assert RunConfig.create(max_jobs=1, scan_list=True).scan

    def test_default_jobs_from_cpu_count(self):
        with patch("gbuild.build.build_context.psutil.cpu_count", return_value=6):
            assert default_job_count() == 6
            assert RunConfig.create().max_jobs == 6
        with patch("gbuild.build.build_context.psutil.cpu_count", return_value=None):
            assert default_job_count() == 1

    def test_prefix_listing(self):
        config = RunConfig.create(max_jobs=1, listed_dirs=["./pkg/util/"])
        assert config.listed_dirs == frozenset({"pkg/util"})
        assert config.is_listed("pkg/util")
        assert config.is_listed("pkg/util/sub")
        assert not config.is_listed("pkg/utility")
        assert not config.is_listed("pkg")

    def test_exclusive_listing(self):
        config = RunConfig.create(max_jobs=1, listed_dirs=["pkg/util"], exclusive=True)
        assert config.is_listed("pkg/util")
        assert not config.is_listed("pkg/util/sub")

    def test_dot_lists_everything(self):
        config = RunConfig.create(max_jobs=1, listed_dirs=["."])
        assert config.is_listed("cmd/tool")

    def test_no_listing(self):
        config = RunConfig.create(max_jobs=1)
        assert not config.has_listing
        assert config.is_listed("anything")

    def test_selects_kind(self):
        config = RunConfig.create(max_jobs=1, do_cmds=False)
        assert config.selects_kind(is_cmd=False)
        assert not config.selects_kind(is_cmd=True)


def test_normalize_dir():
    assert normalize_dir("./a/b/") == "a/b"
    assert normalize_dir("a//b/../c") == "a/c"
    assert normalize_dir(".") == "."
