"""Per-project CI manifest (``cpx.ci``) for containerized cross-builds."""

from __future__ import annotations

import logging
import platform as _platform
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError

from cpx.exceptions import CIError, UnsupportedPlatformError

logger = logging.getLogger(__name__)

CI_MANIFEST_NAME = "cpx.ci"

KNOWN_OS = ("linux", "windows")
KNOWN_ARCH = ("amd64", "arm64")

# vcpkg triplet architecture component
_TRIPLET_ARCH = {"amd64": "x64", "arm64": "arm64"}

# platform.machine() spellings
_MACHINE_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
}


class CITarget(BaseModel):
    name: str
    dockerfile: str
    image: str
    triplet: str = ""
    platform: str = ""  # docker --platform value, e.g. linux/arm64


class CIBuild(BaseModel):
    type: str = "Release"
    optimization: str = "2"
    jobs: int = 0
    cmake_args: list[str] = Field(default_factory=list)
    build_args: list[str] = Field(default_factory=list)
    meson_args: list[str] = Field(default_factory=list)


class CIManifest(BaseModel):
    targets: list[CITarget] = Field(default_factory=list)
    build: CIBuild = Field(default_factory=CIBuild)
    output: str = ".bin/ci"

    def find(self, name: str) -> CITarget | None:
        for t in self.targets:
            if t.name == name:
                return t
        return None


def derive_target(name: str) -> CITarget:
    """Derive a full target descriptor from ``<os>-<arch>[-suffix]``."""
    parts = name.split("-")
    if len(parts) < 2 or parts[0] not in KNOWN_OS or parts[1] not in KNOWN_ARCH:
        raise UnsupportedPlatformError(
            f"unsupported CI target '{name}': expected <os>-<arch> with os in "
            f"{{{', '.join(KNOWN_OS)}}} and arch in {{{', '.join(KNOWN_ARCH)}}}"
        )
    os_name, arch = parts[0], parts[1]
    return CITarget(
        name=name,
        dockerfile=f"Dockerfile.{name}",
        image=f"cpx-{name}",
        triplet=f"{_TRIPLET_ARCH[arch]}-{os_name}",
        platform=f"{os_name}/{arch}",
    )


def host_platform() -> tuple[str, str]:
    """Return the running host as (os, arch) in CI target vocabulary."""
    system = _platform.system().lower()
    machine = _platform.machine().lower()
    os_name = {"linux": "linux", "windows": "windows", "darwin": "darwin"}.get(system)
    arch = _MACHINE_ALIASES.get(machine)
    if os_name is None or arch is None:
        raise UnsupportedPlatformError(
            f"unsupported host platform: {_platform.system()}/{_platform.machine()}"
        )
    return os_name, arch


def load_manifest(path: Path) -> CIManifest:
    """Load a CI manifest; raises CIError if the file is missing or malformed."""
    if not path.exists():
        raise CIError(
            f"{path.name} not found in {path.parent}\n"
            "  hint: run 'cpx ci add-target <os>-<arch>' or use 'cpx build' for local builds"
        )
    try:
        data = yaml.safe_load(path.read_text()) or {}
        return CIManifest.model_validate(data)
    except (yaml.YAMLError, ValidationError) as e:
        raise CIError(f"failed to parse {path}: {e}") from e


def save_manifest(manifest: CIManifest, path: Path) -> None:
    path.write_text(yaml.safe_dump(manifest.model_dump(), sort_keys=False))


def add_target(path: Path, name: str) -> bool:
    """Append a derived target to the manifest, creating it if needed.

    Returns False (and leaves the file untouched) when the name already exists.
    """
    target = derive_target(name)
    manifest = load_manifest(path) if path.exists() else CIManifest()
    if manifest.find(name) is not None:
        logger.info("CI target %s already exists in %s", name, path)
        return False
    manifest.targets.append(target)
    save_manifest(manifest, path)
    logger.info("Added CI target %s (%s)", name, target.platform)
    return True
