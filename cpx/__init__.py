"""cpx: build orchestrator for C/C++ projects (CMake, Bazel, Meson)."""

__version__ = "0.1.0"

from cpx.backends.base import BuildDriver, ContainerPlan
from cpx.backends.registry import DriverRegistry, create_default_registry
from cpx.build.detector import detect_project_type
from cpx.build.variant import resolve_variant
from cpx.dispatcher import Dispatcher
from cpx.exceptions import CpxError
from cpx.models.build import BuildOptions, BuildOutcome, BuildVariant
from cpx.models.project import ProjectType

__all__ = [
    "BuildDriver",
    "BuildOptions",
    "BuildOutcome",
    "BuildVariant",
    "ContainerPlan",
    "CpxError",
    "Dispatcher",
    "DriverRegistry",
    "ProjectType",
    "create_default_registry",
    "detect_project_type",
    "resolve_variant",
]
