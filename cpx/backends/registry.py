"""Driver registry: maps a detected project type to its build driver."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from cpx.backends.base import BuildDriver, PackageRegistryClient
from cpx.config.store import ConfigStore
from cpx.core.process import CommandRunner
from cpx.exceptions import CpxError
from cpx.models.project import ProjectType

logger = logging.getLogger(__name__)


@dataclass
class DriverDescriptor:
    """Driver declaration."""

    name: str
    project_type: ProjectType
    factory: Callable[..., BuildDriver]


class DriverRegistry:
    """Driver registration center."""

    def __init__(self) -> None:
        self._drivers: dict[ProjectType, DriverDescriptor] = {}

    def register(self, descriptor: DriverDescriptor) -> None:
        self._drivers[descriptor.project_type] = descriptor
        logger.debug("Registered driver: %s -> %s", descriptor.project_type.value, descriptor.name)

    def for_type(self, project_type: ProjectType) -> DriverDescriptor | None:
        return self._drivers.get(project_type)

    def create(
        self,
        project_type: ProjectType,
        project_root: str | Path,
        runner: CommandRunner,
        config_store: ConfigStore | None = None,
        registry_client: PackageRegistryClient | None = None,
        windows: bool | None = None,
    ) -> BuildDriver:
        """Instantiate the driver registered for *project_type*."""
        desc = self.for_type(project_type)
        if desc is None:
            raise CpxError(f"no build driver registered for project type '{project_type.value}'")
        logger.info("Selected driver: %s", desc.name)
        return desc.factory(
            project_root,
            runner,
            config_store=config_store,
            registry_client=registry_client,
            windows=windows,
        )


def create_default_registry() -> DriverRegistry:
    """Registry with the CMake, Bazel and Meson drivers."""
    from cpx.backends.bazel import BazelDriver
    from cpx.backends.cmake import CMakeDriver
    from cpx.backends.meson import MesonDriver

    registry = DriverRegistry()
    registry.register(
        DriverDescriptor(
            name="cmake",
            project_type=ProjectType.MANIFEST_BUILD,
            factory=CMakeDriver,
        )
    )
    registry.register(
        DriverDescriptor(
            name="bazel",
            project_type=ProjectType.MODULE_BUILD,
            factory=BazelDriver,
        )
    )
    registry.register(
        DriverDescriptor(
            name="meson",
            project_type=ProjectType.GENERIC_BUILD,
            factory=MesonDriver,
        )
    )
    return registry
