"""Container executors for CI builds."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path

from cpx.backends.base import CONTAINER_WORKSPACE, Mount
from cpx.core import console
from cpx.core.process import CommandRunner
from cpx.exceptions import CIError

logger = logging.getLogger(__name__)


class ContainerizedBuildExecutor(ABC):
    """Builds images and runs build scripts inside them."""

    @abstractmethod
    def ensure_image(
        self,
        dockerfile: Path,
        image: str,
        platform: str = "",
        rebuild: bool = False,
    ) -> bool:
        """Make *image* available locally. Returns True if it was (re)built."""
        ...

    @abstractmethod
    def execute(
        self,
        image: str,
        mounts: list[Mount],
        script: str,
        platform: str = "",
        env: dict[str, str] | None = None,
    ) -> None:
        """Run *script* with bash inside a throwaway container."""
        ...


class DockerExecutor(ContainerizedBuildExecutor):
    def __init__(self, runner: CommandRunner | None = None, docker: str = "docker") -> None:
        self.runner = runner or CommandRunner()
        self.docker = docker

    def image_exists(self, image: str) -> bool:
        result = self.runner.run([self.docker, "images", "-q", image], capture=True)
        return result.ok and bool(result.stdout.strip())

    def build_args(self, dockerfile: Path, image: str, platform: str, buildx: bool) -> list[str]:
        args = [self.docker]
        args += ["buildx", "build"] if buildx else ["build"]
        args += ["-f", str(dockerfile), "-t", image]
        if platform:
            args += ["--platform", platform]
        if buildx:
            args.append("--load")
        args.append(str(dockerfile.parent))
        return args

    def ensure_image(
        self,
        dockerfile: Path,
        image: str,
        platform: str = "",
        rebuild: bool = False,
    ) -> bool:
        if not rebuild and self.image_exists(image):
            console.success(f"Docker image {image} already exists")
            return False

        dockerfile = dockerfile.resolve()
        console.info(f"Building Docker image: {image}...")
        result = self.runner.run(self.build_args(dockerfile, image, platform, buildx=True))
        if not result.ok:
            console.warning("docker buildx failed, trying regular docker build...")
            result = self.runner.run(self.build_args(dockerfile, image, platform, buildx=False))
            if not result.ok:
                raise CIError(f"failed to build Docker image {image} (exit code {result.returncode})")
        logger.info("Built image %s from %s", image, dockerfile)
        return True

    def run_args(
        self,
        image: str,
        mounts: list[Mount],
        script: str,
        platform: str = "",
        env: dict[str, str] | None = None,
    ) -> list[str]:
        args = [self.docker, "run", "--rm"]
        if platform:
            args += ["--platform", platform]
        for mount in mounts:
            args += ["-v", mount.as_arg()]
        for key, value in (env or {}).items():
            args += ["-e", f"{key}={value}"]
        args += ["-w", CONTAINER_WORKSPACE, image, "bash", "-c", script]
        return args

    def execute(
        self,
        image: str,
        mounts: list[Mount],
        script: str,
        platform: str = "",
        env: dict[str, str] | None = None,
    ) -> None:
        result = self.runner.run(self.run_args(image, mounts, script, platform, env))
        if not result.ok:
            raise CIError(f"docker run failed for image {image} (exit code {result.returncode})")
