"""CMake driver (vcpkg manifest projects and plain CMakeLists.txt projects)."""

from __future__ import annotations

import logging
import os
import shlex
from pathlib import Path

from cpx.backends.base import (
    CONTAINER_BUILD,
    CONTAINER_OUTPUT,
    CONTAINER_WORKSPACE,
    BuildDriver,
    ContainerPlan,
    execute_script,
)
from cpx.build import artifacts
from cpx.build.detector import project_name
from cpx.build.variant import compile_flags, link_flags
from cpx.config.ci import CIBuild, CITarget
from cpx.exceptions import (
    ArtifactNotFoundError,
    BuildFailedError,
    ConfigError,
    ConfigureFailedError,
    RunFailedError,
    TestsFailedError,
)
from cpx.models.build import ArtifactKind, BuildVariant
from cpx.models.project import ProjectType

logger = logging.getLogger(__name__)

CMAKE_CACHE_FILE = "CMakeCache.txt"
VCPKG_TOOLCHAIN = Path("scripts") / "buildsystems" / "vcpkg.cmake"
CONTAINER_VCPKG_ROOT = "/opt/vcpkg"


class CMakeDriver(BuildDriver):
    """Configure with ``cmake -B``, build with ``cmake --build``, test with ctest."""

    @property
    def name(self) -> str:
        return "cmake"

    @property
    def project_type(self) -> ProjectType:
        return ProjectType.MANIFEST_BUILD

    @property
    def uses_vcpkg(self) -> bool:
        return (self.root / "vcpkg.json").is_file()

    @property
    def has_presets(self) -> bool:
        return (self.root / "CMakePresets.json").is_file()

    def vcpkg_root(self) -> str:
        """VCPKG_ROOT from the environment, else from the global config."""
        root = os.environ.get("VCPKG_ROOT", "")
        if not root and self.config_store is not None:
            root = self.config_store.load().vcpkg_root
        if not root:
            raise ConfigError(
                "vcpkg_root not set in config. Run: cpx config set vcpkg_root <path>"
            )
        return root

    def environment(self) -> dict[str, str]:
        if not self.uses_vcpkg:
            return {}
        return {
            "VCPKG_ROOT": self.vcpkg_root(),
            "VCPKG_FEATURE_FLAGS": os.environ.get("VCPKG_FEATURE_FLAGS", "manifests"),
            "VCPKG_DISABLE_REGISTRY_UPDATE": os.environ.get("VCPKG_DISABLE_REGISTRY_UPDATE", "1"),
        }

    # ── configure ─────────────────────────────────────────────────────────

    def configured_marker(self, variant: BuildVariant) -> Path:
        return variant.cache_dir(self.root) / CMAKE_CACHE_FILE

    def configure_args(self, variant: BuildVariant) -> list[str]:
        cache_dir = variant.cache_dir(self.root)
        args = ["cmake"]
        if self.has_presets:
            args.append("--preset=default")
        args += ["-S", str(self.root), "-B", str(cache_dir), f"-DCMAKE_BUILD_TYPE={variant.build_type}"]

        cflags = compile_flags(variant)
        if cflags:
            args += [f"-DCMAKE_CXX_FLAGS={cflags}", f"-DCMAKE_C_FLAGS={cflags}"]
        lflags = link_flags(variant)
        if lflags:
            args += [f"-DCMAKE_EXE_LINKER_FLAGS={lflags}", f"-DCMAKE_SHARED_LINKER_FLAGS={lflags}"]

        if self.uses_vcpkg:
            # one vcpkg_installed tree shared by every variant
            installed = self.root / ".cache" / "native" / "vcpkg_installed"
            args.append(f"-DVCPKG_INSTALLED_DIR={installed}")
            if not self.has_presets:
                toolchain = Path(self.vcpkg_root()) / VCPKG_TOOLCHAIN
                args.append(f"-DCMAKE_TOOLCHAIN_FILE={toolchain}")
        return args

    def configure(self, variant: BuildVariant, *, verbose: bool = False) -> None:
        logger.info("Configuring %s (%s)", variant.key, variant.build_type)
        self._exec(self.configure_args(variant), ConfigureFailedError, verbose=verbose)

    # ── build ─────────────────────────────────────────────────────────────

    def build_args(self, variant: BuildVariant, jobs: int, target: str | None = None) -> list[str]:
        args = [
            "cmake",
            "--build",
            str(variant.cache_dir(self.root)),
            "--config",
            variant.build_type,
            "--parallel",
            str(jobs),
        ]
        if target:
            args += ["--target", target]
        return args

    def build(
        self,
        variant: BuildVariant,
        *,
        jobs: int,
        target: str | None = None,
        verbose: bool = False,
    ) -> None:
        self._exec(self.build_args(variant, jobs, target), BuildFailedError, verbose=verbose)

    # ── test / bench ──────────────────────────────────────────────────────

    def test_build_target(self) -> str:
        return f"{project_name(self.root)}_tests"

    def run_tests(
        self,
        variant: BuildVariant,
        *,
        pattern: str | None = None,
        verbose: bool = False,
    ) -> None:
        args = ["ctest", "--test-dir", str(variant.cache_dir(self.root)), "--output-on-failure"]
        if verbose:
            args.append("--verbose")
        if pattern:
            args += ["-R", pattern]
        # test output always streams so failures are visible
        self._exec(args, TestsFailedError, verbose=True)

    def bench_build_target(self, target: str | None) -> str:
        return target or f"{project_name(self.root)}_bench"

    def locate_benchmark(self, variant: BuildVariant, target: str | None) -> Path:
        cache_dir = variant.cache_dir(self.root)
        name = artifacts.exe_name(self.bench_build_target(target), self.windows)
        for candidate in (cache_dir / "bench" / name, cache_dir / name):
            if candidate.is_file():
                return candidate
        for c in artifacts.find_by_kind(cache_dir, ArtifactKind.BENCH, self.windows):
            if c.name == name:
                return c.path
        raise ArtifactNotFoundError(
            f"benchmark executable '{name}' not found under {cache_dir}"
        )

    def run_benchmarks(
        self,
        variant: BuildVariant,
        *,
        target: str | None = None,
        verbose: bool = False,
    ) -> None:
        path = self.locate_benchmark(variant, target)
        result = self.runner.run([str(path)], cwd=self.root, env=self.environment() or None)
        if not result.ok:
            raise RunFailedError(path.name, result.returncode, backend=self.name)

    # ── containerized builds ──────────────────────────────────────────────

    def container_plan(
        self,
        target: CITarget,
        build: CIBuild,
        output_dir: Path,
        execute: bool = False,
    ) -> ContainerPlan:
        configure = [
            "cmake",
            "-GNinja",
            "-S",
            CONTAINER_WORKSPACE,
            "-B",
            CONTAINER_BUILD,
            f"-DCMAKE_BUILD_TYPE={build.type}",
            f"-DCMAKE_CXX_FLAGS=-O{build.optimization}",
        ]
        if self.uses_vcpkg:
            toolchain = f"{CONTAINER_VCPKG_ROOT}/{VCPKG_TOOLCHAIN.as_posix()}"
            configure.append(f"-DCMAKE_TOOLCHAIN_FILE={toolchain}")
            if target.triplet:
                configure.append(f"-DVCPKG_TARGET_TRIPLET={target.triplet}")
        configure += build.cmake_args

        compile_cmd = ["cmake", "--build", CONTAINER_BUILD, "--config", build.type]
        if build.jobs > 0:
            compile_cmd += ["--parallel", str(build.jobs)]
        compile_cmd += build.build_args

        dest = f"{CONTAINER_OUTPUT}/{target.name}"
        lines = [
            "set -e",
            f"if [ -f {CONTAINER_BUILD}/build.ninja ]; then",
            '    echo "  Build directory already configured, skipping setup."',
            "else",
            f"    {shlex.join(configure)}",
            "fi",
            shlex.join(compile_cmd),
            f"mkdir -p {dest}",
            f'find {CONTAINER_BUILD} -maxdepth 2 -type f -executable ! -path "*/CMakeFiles/*" '
            f'! -name "*.cmake" ! -name "*.sh" ! -name "*_test*" ! -name "*_bench*" '
            f"-exec cp {{}} {dest}/ \\;",
            f'find {CONTAINER_BUILD} -maxdepth 2 -type f \\( -name "lib*.a" -o -name "lib*.so" \\) '
            f'! -path "*/CMakeFiles/*" -exec cp {{}} {dest}/ \\;',
        ]
        if execute:
            lines += execute_script(dest, project_name(self.root))
        return ContainerPlan(
            mounts=self.base_mounts(target, output_dir),
            script="\n".join(lines) + "\n",
            env={
                "VCPKG_ROOT": CONTAINER_VCPKG_ROOT,
                "VCPKG_FEATURE_FLAGS": "manifests",
                "VCPKG_DISABLE_REGISTRY_UPDATE": "1",
                "VCPKG_INSTALLED_DIR": f"{CONTAINER_BUILD}/vcpkg_installed",
            },
        )
