"""Meson driver (meson.build projects)."""

from __future__ import annotations

import logging
import shlex
import shutil
from pathlib import Path

from cpx.backends.base import (
    CONTAINER_BUILD,
    CONTAINER_OUTPUT,
    CONTAINER_WORKSPACE,
    BuildDriver,
    ContainerPlan,
    Mount,
    execute_script,
)
from cpx.build import artifacts
from cpx.build.detector import project_name
from cpx.build.variant import MESON_SANITIZERS
from cpx.config.ci import CIBuild, CITarget
from cpx.exceptions import (
    ArtifactNotFoundError,
    BuildFailedError,
    ConfigureFailedError,
    RunFailedError,
    TestsFailedError,
)
from cpx.models.build import ArtifactKind, BuildVariant
from cpx.models.project import ProjectType

logger = logging.getLogger(__name__)

NINJA_FILE = "build.ninja"

# CMake-style build type -> meson --buildtype
BUILDTYPES: dict[str, str] = {
    "Debug": "debug",
    "Release": "release",
    "RelWithDebInfo": "debugoptimized",
    "MinSizeRel": "minsize",
}


class MesonDriver(BuildDriver):
    @property
    def name(self) -> str:
        return "meson"

    @property
    def project_type(self) -> ProjectType:
        return ProjectType.GENERIC_BUILD

    def configured_marker(self, variant: BuildVariant) -> Path:
        return variant.cache_dir(self.root) / NINJA_FILE

    def configure_args(self, variant: BuildVariant) -> list[str]:
        args = [
            "meson",
            "setup",
            str(variant.cache_dir(self.root)),
            f"--buildtype={BUILDTYPES.get(variant.build_type, 'debug')}",
        ]
        if variant.opt_flags:
            args += [f"-Dc_args={variant.opt_flags}", f"-Dcpp_args={variant.opt_flags}"]
        if variant.sanitizer:
            args.append(f"-Db_sanitize={MESON_SANITIZERS[variant.sanitizer]}")
        return args

    def configure(self, variant: BuildVariant, *, verbose: bool = False) -> None:
        cache_dir = variant.cache_dir(self.root)
        # meson setup refuses a non-empty directory that is not a build dir
        if cache_dir.exists() and not self.configured_marker(variant).exists():
            logger.info("Wiping unconfigured meson directory %s", cache_dir)
            shutil.rmtree(cache_dir)
        cache_dir.parent.mkdir(parents=True, exist_ok=True)
        self._exec(self.configure_args(variant), ConfigureFailedError, verbose=verbose)

    def build(
        self,
        variant: BuildVariant,
        *,
        jobs: int,
        target: str | None = None,
        verbose: bool = False,
    ) -> None:
        args = ["meson", "compile", "-C", str(variant.cache_dir(self.root)), "-j", str(jobs)]
        if target:
            args.append(target)
        if verbose:
            args.append("-v")
        self._exec(args, BuildFailedError, verbose=verbose)

    def run_tests(
        self,
        variant: BuildVariant,
        *,
        pattern: str | None = None,
        verbose: bool = False,
    ) -> None:
        args = ["meson", "test", "-C", str(variant.cache_dir(self.root))]
        if verbose:
            args.append("-v")
        if pattern:
            args.append(pattern)
        self._exec(args, TestsFailedError, verbose=True)

    def locate_benchmark(self, variant: BuildVariant, target: str | None) -> Path:
        cache_dir = variant.cache_dir(self.root)
        benches = artifacts.find_by_kind(cache_dir, ArtifactKind.BENCH, self.windows)
        if target:
            name = artifacts.exe_name(target, self.windows)
            direct = cache_dir / name
            if direct.is_file():
                return direct
            benches = [c for c in benches if c.name == name]
        if not benches:
            raise ArtifactNotFoundError(f"no benchmark executable found under {cache_dir}")
        return benches[0].path

    def run_benchmarks(
        self,
        variant: BuildVariant,
        *,
        target: str | None = None,
        verbose: bool = False,
    ) -> None:
        path = self.locate_benchmark(variant, target)
        result = self.runner.run([str(path)], cwd=self.root)
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
        buildtype = BUILDTYPES.get(build.type, build.type.lower())
        setup = ["meson", "setup", CONTAINER_BUILD, f"--buildtype={buildtype}", *build.meson_args]
        compile_cmd = ["meson", "compile", "-C", CONTAINER_BUILD]
        if build.jobs > 0:
            compile_cmd += ["-j", str(build.jobs)]
        compile_cmd += build.build_args

        dest = f"{CONTAINER_OUTPUT}/{target.name}"
        lines = [
            "set -e",
            f"mkdir -p {CONTAINER_BUILD}",
            f"if [ ! -f {CONTAINER_BUILD}/{NINJA_FILE} ]; then",
            f"    {shlex.join(setup)}",
            "else",
            '    echo "  Build directory already configured, skipping setup."',
            "fi",
            shlex.join(compile_cmd),
            f"mkdir -p {dest}",
            f"find {CONTAINER_BUILD} -maxdepth 2 -type f -executable "
            '! -name "*.so" ! -name "*.a" ! -name "*_test*" ! -name "*_bench*" '
            '! -path "*/meson-*" ! -path "*.p/*" '
            f"-exec cp {{}} {dest}/ \\; 2>/dev/null || true",
            f'find {CONTAINER_BUILD} -maxdepth 2 -type f \\( -name "*.a" -o -name "*.so" \\) '
            f"-exec cp {{}} {dest}/ \\; 2>/dev/null || true",
        ]
        if execute:
            lines += execute_script(dest, project_name(self.root))

        mounts = self.base_mounts(target, output_dir)
        # wraps download into subprojects/, which must stay writable
        mounts.append(Mount(self.root / "subprojects", f"{CONTAINER_WORKSPACE}/subprojects"))
        return ContainerPlan(mounts=mounts, script="\n".join(lines) + "\n")
