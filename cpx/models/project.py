"""Data models for project detection."""

from __future__ import annotations

from enum import Enum


class ProjectType(Enum):
    """Build-system family governing a directory. Recomputed on every command."""

    MANIFEST_BUILD = "manifest"  # vcpkg.json / CMakeLists.txt -> CMake
    MODULE_BUILD = "module"  # MODULE.bazel -> Bazel
    GENERIC_BUILD = "generic"  # meson.build -> Meson
    UNKNOWN = "unknown"
