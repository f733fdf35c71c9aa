"""Drive containerized builds for every target listed in ``cpx.ci``."""

from __future__ import annotations

from pathlib import Path

import structlog

from cpx.backends.registry import DriverRegistry, create_default_registry
from cpx.build.detector import require_project
from cpx.ci.executor import ContainerizedBuildExecutor, DockerExecutor
from cpx.config.ci import CI_MANIFEST_NAME, CIManifest, CITarget, host_platform, load_manifest
from cpx.config.store import ConfigStore
from cpx.core import console
from cpx.core.process import CommandRunner
from cpx.exceptions import CIError, UnsupportedPlatformError

log = structlog.get_logger(__name__)


class CIPipeline:
    def __init__(
        self,
        project_root: str | Path = ".",
        config_store: ConfigStore | None = None,
        executor: ContainerizedBuildExecutor | None = None,
        registry: DriverRegistry | None = None,
        runner: CommandRunner | None = None,
    ) -> None:
        self.root = Path(project_root).resolve()
        self.config_store = config_store or ConfigStore()
        self.runner = runner or CommandRunner()
        self.executor = executor or DockerExecutor(self.runner)
        self.registry = registry or create_default_registry()

    @property
    def manifest_path(self) -> Path:
        return self.root / CI_MANIFEST_NAME

    @staticmethod
    def select_targets(manifest: CIManifest, target_name: str | None = None) -> list[CITarget]:
        if target_name:
            target = manifest.find(target_name)
            if target is None:
                raise CIError(f"target '{target_name}' not found in {CI_MANIFEST_NAME}")
            return [target]
        if not manifest.targets:
            raise CIError(f"no targets defined in {CI_MANIFEST_NAME}")
        return list(manifest.targets)

    @staticmethod
    def is_emulated(target: CITarget) -> bool:
        """True when the target's architecture differs from the host's."""
        if not target.platform:
            return False
        try:
            _, arch = host_platform()
        except UnsupportedPlatformError as e:
            log.debug("host_platform_unknown", error=str(e))
            return True
        return target.platform.rsplit("/", 1)[-1] != arch

    def build(
        self,
        target_name: str | None = None,
        rebuild: bool = False,
        execute: bool = False,
    ) -> list[str]:
        """Build (and optionally run) each selected target. Returns the target names."""
        manifest = load_manifest(self.manifest_path)
        targets = self.select_targets(manifest, target_name)

        dockerfiles = self.config_store.dockerfiles_dir
        if not dockerfiles.is_dir():
            raise CIError(
                f"dockerfiles directory not found: {dockerfiles}\n"
                "  hint: place Dockerfile.<target> files there"
            )

        project_type = require_project(self.root)
        driver = self.registry.create(
            project_type, self.root, self.runner, config_store=self.config_store
        )
        output_dir = self.root / manifest.output

        console.info(f"Building for {len(targets)} target(s) using Docker...")
        for i, target in enumerate(targets, 1):
            verb = "Building and running" if execute else "Building"
            console.info(f"[{i}/{len(targets)}] {verb} target: {target.name}")

            if self.is_emulated(target):
                console.warning(
                    f"{target.name} runs under emulation on this host; "
                    "QEMU binfmt handlers must be registered with Docker"
                )
            dockerfile = dockerfiles / target.dockerfile
            if not dockerfile.is_file():
                raise CIError(f"dockerfile not found: {dockerfile}")
            self.executor.ensure_image(dockerfile, target.image, target.platform, rebuild)

            plan = driver.container_plan(target, manifest.build, output_dir, execute=execute)
            # docker refuses to mount a missing host directory
            for mount in plan.mounts:
                if not mount.read_only:
                    mount.source.mkdir(parents=True, exist_ok=True)
            self.executor.execute(target.image, plan.mounts, plan.script, target.platform, plan.env)
            log.info("ci_target_complete", target=target.name, driver=driver.name)
            console.success(f"Target {target.name} completed")

        console.success(f"All targets built. Artifacts in {output_dir}")
        return [t.name for t in targets]

    def run(self, target_name: str, rebuild: bool = False) -> None:
        if not target_name:
            raise CIError("ci run requires --target")
        self.build(target_name, rebuild=rebuild, execute=True)
