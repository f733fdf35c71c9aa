"""Abstract build driver and the types shared by all backends."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from cpx.build import artifacts
from cpx.config.ci import CIBuild, CITarget
from cpx.config.store import ConfigStore
from cpx.core.process import CommandResult, CommandRunner
from cpx.exceptions import RunFailedError, ToolFailedError
from cpx.models.build import BuildVariant
from cpx.models.project import ProjectType

logger = logging.getLogger(__name__)

# Container-side paths shared by every backend's CI script
CONTAINER_WORKSPACE = "/workspace"
CONTAINER_BUILD = "/tmp/build"
CONTAINER_OUTPUT = "/output"


@dataclass
class Mount:
    source: Path
    target: str
    read_only: bool = False

    def as_arg(self) -> str:
        spec = f"{self.source}:{self.target}"
        return spec + ":ro" if self.read_only else spec


@dataclass
class ContainerPlan:
    """What a containerized executor needs: mount points and a script body."""

    mounts: list[Mount]
    script: str
    env: dict[str, str] = field(default_factory=dict)


class PackageRegistryClient(Protocol):
    """Dependency metadata lookup. Drivers hold it but the build path never calls it."""

    def lookup(self, name: str) -> dict[str, Any] | None: ...


class BuildDriver(ABC):
    """
    One driver per build system. Every driver exposes the same contract:
    configure, build, run, test and bench, all keyed by a BuildVariant.
    Cache and final-artifact directories come from the variant, so drivers
    never share intermediate state between variants.
    """

    # True when the backend's test runner builds test targets itself
    runner_builds_tests: bool = False

    def __init__(
        self,
        project_root: str | Path,
        runner: CommandRunner,
        config_store: ConfigStore | None = None,
        registry_client: PackageRegistryClient | None = None,
        windows: bool | None = None,
    ) -> None:
        self.root = Path(project_root).resolve()
        self.runner = runner
        self.config_store = config_store
        self.registry_client = registry_client
        self.windows = artifacts.is_windows() if windows is None else windows

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend identifier, e.g. 'cmake', 'bazel', 'meson'."""
        ...

    @property
    @abstractmethod
    def project_type(self) -> ProjectType: ...

    # ── configure ─────────────────────────────────────────────────────────

    def configured_marker(self, variant: BuildVariant) -> Path | None:
        """File whose presence means the variant is configured; None = no configure step."""
        return None

    def needs_configure(self, variant: BuildVariant) -> bool:
        marker = self.configured_marker(variant)
        return marker is not None and not marker.is_file()

    def invalidate(self, variant: BuildVariant) -> None:
        """Drop the configured marker so the next build reconfigures."""
        marker = self.configured_marker(variant)
        if marker is not None and marker.exists():
            marker.unlink()
            logger.info("Removed stale configure marker %s", marker)

    @abstractmethod
    def configure(self, variant: BuildVariant, *, verbose: bool = False) -> None: ...

    # ── build / run ───────────────────────────────────────────────────────

    @abstractmethod
    def build(
        self,
        variant: BuildVariant,
        *,
        jobs: int,
        target: str | None = None,
        verbose: bool = False,
    ) -> None: ...

    def collect_artifacts(self, variant: BuildVariant) -> list[Path]:
        """Backend outputs worth copying into the final artifacts directory."""
        return artifacts.collect_artifacts(variant.cache_dir(self.root), self.windows)

    def artifact_name(self, target: str) -> str:
        """Map a user-facing target to the file name in the final directory."""
        return target

    def run(self, executable: Path, args: Sequence[str] = ()) -> None:
        """Execute a built program with stdio attached to the terminal."""
        result = self.runner.run([str(executable), *args], cwd=self.root)
        if not result.ok:
            raise RunFailedError(executable.name, result.returncode, backend=self.name)

    # ── test / bench ──────────────────────────────────────────────────────

    def test_build_target(self) -> str | None:
        """Sub-target to build before running tests; None builds everything."""
        return None

    @abstractmethod
    def run_tests(
        self,
        variant: BuildVariant,
        *,
        pattern: str | None = None,
        verbose: bool = False,
    ) -> None: ...

    def bench_build_target(self, target: str | None) -> str | None:
        return target

    @abstractmethod
    def run_benchmarks(
        self,
        variant: BuildVariant,
        *,
        target: str | None = None,
        verbose: bool = False,
    ) -> None: ...

    # ── containerized builds ──────────────────────────────────────────────

    @abstractmethod
    def container_plan(
        self,
        target: CITarget,
        build: CIBuild,
        output_dir: Path,
        execute: bool = False,
    ) -> ContainerPlan:
        """Mounts and script that build this project inside *target*'s image."""
        ...

    def ci_cache_dir(self, target: CITarget) -> Path:
        return self.root / ".cache" / "ci" / target.name

    def base_mounts(self, target: CITarget, output_dir: Path) -> list[Mount]:
        return [
            Mount(self.root, CONTAINER_WORKSPACE, read_only=True),
            Mount(self.ci_cache_dir(target).resolve(), CONTAINER_BUILD),
            Mount(output_dir.resolve(), CONTAINER_OUTPUT),
        ]

    # ── helpers ───────────────────────────────────────────────────────────

    def environment(self) -> dict[str, str]:
        """Extra environment for every tool invocation."""
        return {}

    def _exec(
        self,
        args: Sequence[str],
        error_cls: type[ToolFailedError],
        *,
        verbose: bool,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        """Run one tool step: streamed when verbose, captured otherwise.

        Failures are re-raised as *error_cls* carrying the output tail.
        """
        merged = {**self.environment(), **(env or {})}
        result = self.runner.run(args, cwd=self.root, env=merged or None, capture=not verbose)
        if not result.ok:
            raise error_cls(
                Path(args[0]).name,
                result.returncode,
                result.stderr or result.stdout,
                backend=self.name,
            )
        return result


def execute_script(dest: str, preferred: str) -> list[str]:
    """Shell lines that run *preferred* from *dest*, else the first main executable there."""
    return [
        f'EXEC_PATH="{dest}/{preferred}"',
        'if [ ! -x "$EXEC_PATH" ]; then',
        f'    EXEC_PATH=$(find {dest} -maxdepth 1 -type f -executable ! -name "*_test*" '
        '! -name "*_bench*" ! -name "*.a" ! -name "*.so" | sort | head -n 1)',
        "fi",
        'if [ -z "$EXEC_PATH" ]; then',
        f'    echo "No executable found in {dest}" >&2',
        "    exit 1",
        "fi",
        'echo "Executing: $EXEC_PATH"',
        '"$EXEC_PATH"',
    ]
