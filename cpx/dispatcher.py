"""Verb dispatcher: detection -> driver -> configure/build/publish -> run/test/bench."""

from __future__ import annotations

import dataclasses
import logging
import os
import shutil
import time
from collections.abc import Sequence
from pathlib import Path
from typing import Callable

import structlog

from cpx.backends.base import BuildDriver, PackageRegistryClient
from cpx.backends.registry import DriverRegistry, create_default_registry
from cpx.build import artifacts
from cpx.build.detector import require_project
from cpx.build.variant import resolve_variant
from cpx.build.watcher import WatchConfig, Watcher
from cpx.config.store import ConfigStore
from cpx.core import console
from cpx.core.process import CommandRunner
from cpx.exceptions import CpxError
from cpx.models.build import ARTIFACT_ROOT, CACHE_ROOT, BuildOptions, BuildOutcome, BuildVariant
from cpx.progress import ProgressTracker, StepLineRenderer

logger = logging.getLogger(__name__)
log = structlog.get_logger(__name__)

# Extra directories removed by ``clean --all``
CLEAN_ALL_DIRS = (".cache", ".bin", "out")
CLEAN_ALL_GLOBS = ("build-*", "bazel-*")


def _path_is_within(path: Path, root: Path) -> bool:
    try:
        path.resolve().relative_to(root.resolve())
    except ValueError:
        return False
    return True


def default_jobs(jobs: int) -> int:
    return jobs if jobs > 0 else (os.cpu_count() or 1)


class Dispatcher:
    """
    Run one CLI verb against the project at *project_root*.

    The project type is detected on every call and mapped to a driver through
    the registry; the dispatcher itself never branches on the build system.
    """

    def __init__(
        self,
        project_root: str | Path = ".",
        registry: DriverRegistry | None = None,
        config_store: ConfigStore | None = None,
        runner: CommandRunner | None = None,
        registry_client: PackageRegistryClient | None = None,
        windows: bool | None = None,
    ) -> None:
        self.root = Path(project_root).resolve()
        self.registry = registry or create_default_registry()
        self.config_store = config_store or ConfigStore()
        self.runner = runner or CommandRunner()
        self.registry_client = registry_client
        self.windows = windows

    def driver(self) -> BuildDriver:
        project_type = require_project(self.root)
        return self.registry.create(
            project_type,
            self.root,
            self.runner,
            config_store=self.config_store,
            registry_client=self.registry_client,
            windows=self.windows,
        )

    # ── build ─────────────────────────────────────────────────────────────

    def build(self, options: BuildOptions) -> BuildOutcome:
        # option validation happens before detection so it never reaches a tool
        variant = resolve_variant(options.release, options.opt_level, options.sanitizers)
        driver = self.driver()
        return self._build(driver, variant, options, target=options.target)

    def _build(
        self,
        driver: BuildDriver,
        variant: BuildVariant,
        options: BuildOptions,
        target: str | None = None,
        publish: bool = True,
    ) -> BuildOutcome:
        started = time.monotonic()
        if options.clean:
            self._clean_variant(variant)

        needs_configure = options.clean or driver.needs_configure(variant)
        tracker = ProgressTracker(total=2 if needs_configure else 1)
        tracker.callbacks.append(StepLineRenderer(verbose=options.verbose))

        if needs_configure:
            tracker.start_step("configure")
            try:
                driver.configure(variant, verbose=options.verbose)
            except CpxError as e:
                # a half-written cache must not look configured next time
                driver.invalidate(variant)
                tracker.fail_step("configure", str(e))
                raise
            tracker.complete_step("configure")

        tracker.start_step("build")
        try:
            driver.build(
                variant,
                jobs=default_jobs(options.jobs),
                target=target,
                verbose=options.verbose,
            )
        except CpxError as e:
            tracker.fail_step("build", str(e))
            raise
        tracker.complete_step("build")

        copied: list[Path] = []
        if publish:
            copied = artifacts.copy_artifacts(
                driver.collect_artifacts(variant), variant.output_dir(self.root)
            )
        duration = round(time.monotonic() - started, 2)
        log.info(
            "build_complete",
            driver=driver.name,
            variant=variant.key,
            configured=needs_configure,
            artifacts=len(copied),
            duration=duration,
            steps=tracker.durations(),
        )
        return BuildOutcome(
            variant=variant,
            configured=needs_configure,
            artifacts=copied,
            duration=duration,
        )

    def _clean_variant(self, variant: BuildVariant) -> None:
        for path in (variant.cache_dir(self.root), variant.output_dir(self.root)):
            if path.exists():
                shutil.rmtree(path)
                logger.info("Removed %s", path)

    # ── run ───────────────────────────────────────────────────────────────

    def run(self, options: BuildOptions, args: Sequence[str] = ()) -> None:
        """Build, pick the executable in the final directory and run it."""
        variant = resolve_variant(options.release, options.opt_level, options.sanitizers)
        driver = self.driver()
        self._build(driver, variant, options, target=options.target)

        output_dir = variant.output_dir(self.root)
        wanted = driver.artifact_name(options.target) if options.target else None
        resolution = artifacts.resolve_executable(output_dir, wanted, self.windows)
        if resolution.ambiguous:
            names = ", ".join(c.name for c in resolution.candidates)
            console.warning(
                f"multiple executables found ({names}); running '{resolution.path.name}'. "
                "Use --target to choose one"
            )
        log.info("run", executable=str(resolution.path), args=list(args))
        driver.run(resolution.path, args)

    # ── test / bench ──────────────────────────────────────────────────────

    def test(
        self,
        options: BuildOptions,
        pattern: str | None = None,
    ) -> None:
        variant = resolve_variant(options.release, options.opt_level, options.sanitizers)
        driver = self.driver()
        if not driver.runner_builds_tests:
            self._build(driver, variant, options, target=driver.test_build_target(), publish=False)
        console.info("Running tests...")
        driver.run_tests(variant, pattern=pattern, verbose=options.verbose)
        console.success("All tests passed")

    def bench(self, options: BuildOptions) -> None:
        variant = resolve_variant(options.release, options.opt_level, options.sanitizers)
        driver = self.driver()
        if not driver.runner_builds_tests:
            self._build(
                driver,
                variant,
                options,
                target=driver.bench_build_target(options.target),
                publish=False,
            )
        console.info("Running benchmarks...")
        driver.run_benchmarks(variant, target=options.target, verbose=options.verbose)
        console.success("Benchmarks complete")

    # ── clean ─────────────────────────────────────────────────────────────

    def clean_targets(self, all_artifacts: bool = False) -> list[Path]:
        targets = [self.root / CACHE_ROOT, self.root / ARTIFACT_ROOT]
        if all_artifacts:
            targets = [self.root / d for d in CLEAN_ALL_DIRS]
            for pattern in CLEAN_ALL_GLOBS:
                targets.extend(sorted(self.root.glob(pattern)))
        return targets

    def clean(self, all_artifacts: bool = False) -> list[Path]:
        """Remove build output. Returns what was actually deleted."""
        removed = []
        for path in self.clean_targets(all_artifacts):
            if not path.exists() and not path.is_symlink():
                continue
            if path.resolve() == self.root or not _path_is_within(path.parent, self.root):
                raise CpxError(f"refusing to remove {path}: outside the project root")
            if path.is_symlink() or path.is_file():
                path.unlink()
            else:
                shutil.rmtree(path)
            logger.info("Removed %s", path)
            removed.append(path)
        return removed

    # ── watch ─────────────────────────────────────────────────────────────

    def watch(
        self,
        options: BuildOptions,
        config: WatchConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
        max_ticks: int | None = None,
    ) -> int:
        """Build, then rebuild on every change to watched sources."""
        variant = resolve_variant(options.release, options.opt_level, options.sanitizers)
        driver = self.driver()
        state = {"options": options}

        def rebuild(changes: list[str]) -> None:
            if changes:
                console.info(f"Changes detected ({len(changes)} file(s)), rebuilding...")
            current = state["options"]
            # --clean applies to the first build only
            state["options"] = dataclasses.replace(options, clean=False)
            self._build(driver, variant, current, target=options.target)
            console.success("Build complete. Watching for changes...")

        return Watcher(self.root, config, sleep=sleep).run(rebuild, max_ticks=max_ticks)
