"""Bazel driver (MODULE.bazel projects)."""

from __future__ import annotations

import logging
import re
from pathlib import Path

from cpx.backends.base import (
    CONTAINER_OUTPUT,
    CONTAINER_WORKSPACE,
    BuildDriver,
    ContainerPlan,
    Mount,
    execute_script,
)
from cpx.build import artifacts
from cpx.build.detector import project_name
from cpx.build.variant import compile_flags, link_flags
from cpx.config.ci import CIBuild, CITarget
from cpx.exceptions import (
    ArtifactNotFoundError,
    BuildFailedError,
    RunFailedError,
    TestsFailedError,
)
from cpx.models.build import BuildVariant
from cpx.models.project import ProjectType

logger = logging.getLogger(__name__)

BCR_URL = "https://bcr.bazel.build"
BENCH_QUERY = "kind(cc_binary, //bench:*)"

_BUILD_NAME_RE = re.compile(r'^\s*name\s*=\s*"([^"]+)"', re.MULTILINE)

CONTAINER_OUTPUT_BASE = "/bazel-cache"
CONTAINER_REPO_CACHE = "/bazel-repo-cache"


class BazelDriver(BuildDriver):
    """Drive ``bazel build/test/run``. Bazel has no separate configure step."""

    # bazel test / bazel run build what they need
    runner_builds_tests = True

    @property
    def name(self) -> str:
        return "bazel"

    @property
    def project_type(self) -> ProjectType:
        return ProjectType.MODULE_BUILD

    def configure(self, variant: BuildVariant, *, verbose: bool = False) -> None:
        logger.debug("bazel has no configure step, skipping for %s", variant.key)

    # ── command assembly ──────────────────────────────────────────────────

    def _config(self, variant: BuildVariant) -> str:
        return "--config=debug" if variant.is_debug else "--config=release"

    def _registry_args(self) -> list[str]:
        if self.config_store is None:
            return []
        bcr_root = self.config_store.load().bcr_root
        if not bcr_root:
            return []
        return [f"--registry=file://{bcr_root}", f"--registry={BCR_URL}"]

    def common_args(self, variant: BuildVariant) -> list[str]:
        args = [self._config(variant), f"--symlink_prefix={variant.cache_dir(self.root)}/"]
        args += [f"--copt={f}" for f in compile_flags(variant).split()]
        args += [f"--linkopt={f}" for f in link_flags(variant).split()]
        args += self._registry_args()
        return args

    def build_args(self, variant: BuildVariant, jobs: int, target: str | None = None) -> list[str]:
        return [
            "bazel",
            "build",
            *self.common_args(variant),
            f"--jobs={jobs}",
            target or "//...",
        ]

    # ── build / run ───────────────────────────────────────────────────────

    def build(
        self,
        variant: BuildVariant,
        *,
        jobs: int,
        target: str | None = None,
        verbose: bool = False,
    ) -> None:
        variant.cache_dir(self.root).mkdir(parents=True, exist_ok=True)
        self._exec(self.build_args(variant, jobs, target), BuildFailedError, verbose=verbose)

    def collect_artifacts(self, variant: BuildVariant) -> list[Path]:
        # --symlink_prefix=<cache>/ makes <cache>/bin point at bazel-bin
        return artifacts.collect_artifacts(variant.cache_dir(self.root) / "bin", self.windows)

    def artifact_name(self, target: str) -> str:
        """``//app:main`` -> ``main``, ``//tools/fmt`` -> ``fmt``."""
        return target.rsplit(":", 1)[-1].rsplit("/", 1)[-1]

    # ── test / bench ──────────────────────────────────────────────────────

    def run_tests(
        self,
        variant: BuildVariant,
        *,
        pattern: str | None = None,
        verbose: bool = False,
    ) -> None:
        args = [
            "bazel",
            "test",
            *self.common_args(variant),
            pattern or "//...",
            "--test_output=all" if verbose else "--test_output=errors",
        ]
        self._exec(args, TestsFailedError, verbose=True)

    def find_bench_target(self) -> str | None:
        """First cc_binary under //bench, via bazel query or bench/BUILD.bazel."""
        result = self.runner.run(["bazel", "query", BENCH_QUERY], cwd=self.root, capture=True)
        if result.ok:
            for line in result.stdout.splitlines():
                if line.strip():
                    return line.strip()
        build_file = self.root / "bench" / "BUILD.bazel"
        if build_file.is_file():
            m = _BUILD_NAME_RE.search(build_file.read_text(errors="replace"))
            if m:
                return f"//bench:{m.group(1)}"
        return None

    def run_benchmarks(
        self,
        variant: BuildVariant,
        *,
        target: str | None = None,
        verbose: bool = False,
    ) -> None:
        target = target or self.find_bench_target()
        if not target:
            raise ArtifactNotFoundError(
                "no benchmark target found. Specify one with --target //bench:<name>"
            )
        args = ["bazel", "run", *self.common_args(variant), target]
        if verbose:
            args.append("--verbose_failures")
        result = self.runner.run(args, cwd=self.root)
        if not result.ok:
            raise RunFailedError(target, result.returncode, backend=self.name)

    # ── containerized builds ──────────────────────────────────────────────

    def repo_cache_dir(self) -> Path:
        return self.root / ".cache" / "ci" / "bazel_repo_cache"

    def container_plan(
        self,
        target: CITarget,
        build: CIBuild,
        output_dir: Path,
        execute: bool = False,
    ) -> ContainerPlan:
        config = "debug" if build.type.lower() == "debug" else "release"
        dest = f"{CONTAINER_OUTPUT}/{target.name}"
        bazel_build = (
            f'bazel --output_base="$BAZEL_OUTPUT_BASE" build --config={config} '
            f"--symlink_prefix=/dev/null --spawn_strategy=local "
            f"--repository_cache={CONTAINER_REPO_CACHE}"
        )
        if build.jobs > 0:
            bazel_build += f" --jobs={build.jobs}"
        for arg in build.build_args:
            bazel_build += f" {arg}"
        bazel_build += " //..."

        lines = [
            "set -e",
            f"BAZEL_OUTPUT_BASE={CONTAINER_OUTPUT_BASE}",
            'mkdir -p "$BAZEL_OUTPUT_BASE"',
            bazel_build,
            f"mkdir -p {dest}",
            'find "$BAZEL_OUTPUT_BASE" -path "*/bin/*" -type f -executable '
            '! -name "*.o" ! -name "*.d" ! -name "*.a" ! -name "*.so" '
            '! -name "*.params" ! -name "*.sh" ! -name "*.py" ! -name "*.repo_mapping" '
            '! -name "*.cppmap" ! -name "MANIFEST" ! -name "*runfiles*" ! -path "*.runfiles*" '
            f"-exec cp {{}} {dest}/ \\; 2>/dev/null || true",
            'find "$BAZEL_OUTPUT_BASE" -path "*/bin/*" -type f \\( -name "lib*.a" -o -name "lib*.so" \\) '
            f'! -name "*.pic.a" -exec cp {{}} {dest}/ \\; 2>/dev/null || true',
        ]
        if execute:
            lines += execute_script(dest, project_name(self.root))

        mounts = [
            Mount(self.root, CONTAINER_WORKSPACE, read_only=True),
            Mount(output_dir.resolve(), CONTAINER_OUTPUT),
            Mount(self.ci_cache_dir(target).resolve(), CONTAINER_OUTPUT_BASE),
            Mount(self.repo_cache_dir().resolve(), CONTAINER_REPO_CACHE),
        ]
        return ContainerPlan(mounts=mounts, script="\n".join(lines) + "\n", env={"HOME": "/root"})
