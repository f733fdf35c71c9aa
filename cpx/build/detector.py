"""Project type detection from marker files.

Pure filesystem inspection: no side effects, no external processes, safe to
call any number of times per command.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path

from cpx.exceptions import ProjectNotFoundError
from cpx.models.project import ProjectType

logger = logging.getLogger(__name__)

# Detection rules: (marker_file, project_type)
# Ordered by priority. Both manifest markers outrank the module and generic
# markers; vcpkg.json only decides whether vcpkg is used.
DETECTION_RULES: list[tuple[str, ProjectType]] = [
    ("vcpkg.json", ProjectType.MANIFEST_BUILD),
    ("CMakeLists.txt", ProjectType.MANIFEST_BUILD),
    ("MODULE.bazel", ProjectType.MODULE_BUILD),
    ("meson.build", ProjectType.GENERIC_BUILD),
]

PROJECT_HINT = (
    "create a project with 'cpx new <name>', or run inside a directory containing "
    "vcpkg.json, CMakeLists.txt, MODULE.bazel or meson.build"
)

_CMAKE_PROJECT_RE = re.compile(r"project\s*\(\s*([^\s\)]+)", re.IGNORECASE)
_MESON_PROJECT_RE = re.compile(r"project\s*\(\s*['\"]([^'\"]+)['\"]")
_BAZEL_MODULE_RE = re.compile(r"module\s*\([^)]*?name\s*=\s*['\"]([^'\"]+)['\"]", re.DOTALL)


def detect_project_type(project_path: str | Path) -> ProjectType:
    """Return the highest-priority project type whose marker exists."""
    root = Path(project_path)
    for marker_file, project_type in DETECTION_RULES:
        if (root / marker_file).is_file():
            logger.debug("Detected %s project (found %s)", project_type.value, marker_file)
            return project_type
    return ProjectType.UNKNOWN


def require_project(project_path: str | Path) -> ProjectType:
    """Like detect_project_type, but raise ProjectNotFoundError for Unknown."""
    project_type = detect_project_type(project_path)
    if project_type is ProjectType.UNKNOWN:
        raise ProjectNotFoundError(str(project_path), PROJECT_HINT)
    return project_type


def project_name(project_path: str | Path) -> str:
    """Best-effort project name from build files, falling back to the directory name."""
    root = Path(project_path)

    cmake = _read(root / "CMakeLists.txt")
    if cmake:
        m = _CMAKE_PROJECT_RE.search(cmake)
        if m:
            return m.group(1)

    manifest = _read(root / "vcpkg.json")
    if manifest:
        try:
            name = json.loads(manifest).get("name")
        except (json.JSONDecodeError, AttributeError):
            name = None
        if isinstance(name, str) and name:
            return name

    meson = _read(root / "meson.build")
    if meson:
        m = _MESON_PROJECT_RE.search(meson)
        if m:
            return m.group(1)

    module = _read(root / "MODULE.bazel")
    if module:
        m = _BAZEL_MODULE_RE.search(module)
        if m:
            return m.group(1)

    return root.resolve().name


def _read(path: Path) -> str | None:
    try:
        return path.read_text(errors="replace")
    except OSError:
        return None
