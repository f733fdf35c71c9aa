"""Tests for the Docker executor and the CI pipeline — docker is never invoked."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from cpx.backends.base import Mount
from cpx.ci.executor import DockerExecutor
from cpx.ci.pipeline import CIPipeline
from cpx.config.ci import CITarget, add_target, derive_target
from cpx.exceptions import CIError, UnsupportedPlatformError


class TestDockerExecutor:
    def test_existing_image_is_reused(self, tmp_path: Path, runner):
        runner.outputs["docker images -q"] = "3f2a1b\n"
        built = DockerExecutor(runner).ensure_image(tmp_path / "Dockerfile.x", "cpx-x")
        assert built is False
        assert runner.lines() == ["docker images -q cpx-x"]

    def test_buildx_with_platform(self, tmp_path: Path, runner):
        dockerfile = tmp_path / "Dockerfile.linux-arm64"
        dockerfile.write_text("FROM ubuntu:24.04\n")
        assert DockerExecutor(runner).ensure_image(dockerfile, "cpx-linux-arm64", "linux/arm64")
        build = runner.calls[1].args
        assert build[:3] == ["docker", "buildx", "build"]
        assert ["--platform", "linux/arm64"] == build[build.index("--platform") : build.index("--platform") + 2]
        assert "--load" in build
        assert build[-1] == str(tmp_path.resolve())

    def test_rebuild_skips_existence_check(self, tmp_path: Path, runner):
        runner.outputs["docker images -q"] = "3f2a1b\n"
        DockerExecutor(runner).ensure_image(tmp_path / "Dockerfile", "img", rebuild=True)
        assert runner.calls[0].args[:3] == ["docker", "buildx", "build"]

    def test_falls_back_to_plain_build(self, tmp_path: Path, runner):
        runner.fail_on["buildx"] = 1
        DockerExecutor(runner).ensure_image(tmp_path / "Dockerfile", "img")
        assert runner.calls[-1].args[:2] == ["docker", "build"]
        assert "--load" not in runner.calls[-1].args

    def test_both_builds_fail(self, tmp_path: Path, runner):
        runner.fail_on["docker build"] = 1
        runner.fail_on["buildx"] = 1
        with pytest.raises(CIError, match="failed to build Docker image img"):
            DockerExecutor(runner).ensure_image(tmp_path / "Dockerfile", "img")

    def test_run_args(self, tmp_path: Path, runner):
        mounts = [Mount(tmp_path, "/workspace", read_only=True), Mount(tmp_path / "o", "/output")]
        DockerExecutor(runner).execute("img", mounts, "echo hi", platform="linux/amd64")
        assert runner.calls[0].args == [
            "docker",
            "run",
            "--rm",
            "--platform",
            "linux/amd64",
            "-v",
            f"{tmp_path}:/workspace:ro",
            "-v",
            f"{tmp_path / 'o'}:/output",
            "-w",
            "/workspace",
            "img",
            "bash",
            "-c",
            "echo hi",
        ]

    def test_run_failure(self, tmp_path: Path, runner):
        runner.fail_on["docker run"] = 125
        with pytest.raises(CIError, match="exit code 125"):
            DockerExecutor(runner).execute("img", [], "true")


class TestCIPipeline:
    @pytest.fixture
    def ci_project(self, cmake_project: Path, config_store) -> Path:
        add_target(cmake_project / "cpx.ci", "linux-amd64")
        add_target(cmake_project / "cpx.ci", "linux-arm64")
        config_store.dockerfiles_dir.mkdir(parents=True)
        for name in ("linux-amd64", "linux-arm64"):
            (config_store.dockerfiles_dir / f"Dockerfile.{name}").write_text("FROM ubuntu\n")
        return cmake_project

    def _pipeline(self, root: Path, runner, config_store) -> CIPipeline:
        return CIPipeline(root, config_store=config_store, runner=runner)

    def test_builds_every_target(self, ci_project: Path, runner, config_store):
        runner.outputs["docker images -q"] = "abc\n"
        built = self._pipeline(ci_project, runner, config_store).build()
        assert built == ["linux-amd64", "linux-arm64"]
        runs = runner.matching("docker run")
        assert len(runs) == 2
        assert "cpx-linux-arm64" in runs[1].args
        # writable mount sources exist before docker sees them
        assert (ci_project / ".cache" / "ci" / "linux-amd64").is_dir()
        assert (ci_project / ".bin" / "ci").is_dir()

    def test_single_target(self, ci_project: Path, runner, config_store):
        built = self._pipeline(ci_project, runner, config_store).build("linux-arm64", rebuild=True)
        assert built == ["linux-arm64"]
        assert runner.matching("docker images") == []

    def test_unknown_target(self, ci_project: Path, runner, config_store):
        with pytest.raises(CIError, match="target 'windows-amd64' not found in cpx.ci"):
            self._pipeline(ci_project, runner, config_store).build("windows-amd64")
        assert runner.calls == []

    def test_missing_manifest(self, cmake_project: Path, runner, config_store):
        with pytest.raises(CIError, match="cpx.ci not found"):
            self._pipeline(cmake_project, runner, config_store).build()

    def test_missing_dockerfiles_dir(self, cmake_project: Path, runner, config_store):
        add_target(cmake_project / "cpx.ci", "linux-amd64")
        with pytest.raises(CIError, match="dockerfiles directory not found"):
            self._pipeline(cmake_project, runner, config_store).build()

    def test_missing_dockerfile(self, ci_project: Path, runner, config_store):
        (config_store.dockerfiles_dir / "Dockerfile.linux-amd64").unlink()
        with pytest.raises(CIError, match="dockerfile not found"):
            self._pipeline(ci_project, runner, config_store).build()

    def test_run_appends_execute_step(self, ci_project: Path, runner, config_store):
        self._pipeline(ci_project, runner, config_store).run("linux-amd64")
        script = runner.matching("docker run")[0].args[-1]
        assert 'EXEC_PATH="/output/linux-amd64/demo"' in script

    def test_plan_environment_is_passed_to_docker(self, ci_project: Path, runner, config_store):
        self._pipeline(ci_project, runner, config_store).build("linux-amd64")
        args = runner.matching("docker run")[0].args
        assert "VCPKG_ROOT=/opt/vcpkg" in args
        assert args[args.index("VCPKG_ROOT=/opt/vcpkg") - 1] == "-e"
        assert "export VCPKG_ROOT" not in args[-1]

    def test_cross_arch_target_warns_about_emulation(self, ci_project: Path, runner, config_store, capsys):
        with patch("cpx.ci.pipeline.host_platform", return_value=("linux", "amd64")):
            self._pipeline(ci_project, runner, config_store).build()
        err = capsys.readouterr().err
        assert "linux-arm64 runs under emulation" in err
        assert "linux-amd64 runs under emulation" not in err


class TestIsEmulated:
    def test_same_arch(self):
        with patch("cpx.ci.pipeline.host_platform", return_value=("linux", "arm64")):
            assert CIPipeline.is_emulated(derive_target("linux-arm64")) is False

    def test_other_arch(self):
        with patch("cpx.ci.pipeline.host_platform", return_value=("linux", "arm64")):
            assert CIPipeline.is_emulated(derive_target("windows-amd64")) is True

    def test_unknown_host_counts_as_emulated(self):
        with patch(
            "cpx.ci.pipeline.host_platform", side_effect=UnsupportedPlatformError("sparc64")
        ):
            assert CIPipeline.is_emulated(derive_target("linux-amd64")) is True

    def test_target_without_platform(self):
        target = CITarget(name="custom", dockerfile="Dockerfile.custom", image="custom")
        assert CIPipeline.is_emulated(target) is False
