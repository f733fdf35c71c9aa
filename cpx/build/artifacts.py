"""Artifact discovery, classification and placement.

Classification is purely name/extension based; binary contents are never
inspected. Scans are recomputed on every invocation.
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from cpx.exceptions import ArtifactNotFoundError, TargetNotFoundError
from cpx.models.build import ArtifactCandidate, ArtifactKind

logger = logging.getLogger(__name__)

LIBRARY_EXTENSIONS = {".a", ".so", ".dylib", ".dll", ".lib"}

# Build-system bookkeeping and intermediate files
BOOKKEEPING_EXTENSIONS = {
    ".o",
    ".obj",
    ".cmake",
    ".ninja",
    ".make",
    ".txt",
    ".json",
    ".d",
    ".params",
    ".cppmap",
    ".repo_mapping",
    ".pdb",
    ".ilk",
    ".exp",
    ".log",
    ".sh",
    ".py",
}

# Bazel runfiles trees and manifests (foo.runfiles_manifest, MANIFEST)
BOOKKEEPING_MARKERS = (".runfiles",)
BOOKKEEPING_NAMES = {"MANIFEST"}

TEST_MARKERS = ("_test",)  # also matches "_tests"
BENCH_MARKERS = ("_bench",)

# Directories never descended into when collecting artifacts
_SKIP_DIRS = {
    "CMakeFiles",
    "Testing",
    "_deps",
    "vcpkg_installed",
    "meson-private",
    "meson-info",
    "meson-logs",
    "external",
    "_objs",
    "testlogs",
}
_SKIP_DIR_SUFFIXES = (".dir", ".p", ".runfiles")


def is_windows() -> bool:
    return os.name == "nt"


def exe_name(target: str, windows: bool | None = None) -> str:
    windows = is_windows() if windows is None else windows
    if windows and not target.endswith(".exe"):
        return target + ".exe"
    return target


def classify(name: str) -> ArtifactKind:
    lower = name.lower()
    suffix = Path(lower).suffix
    if suffix in LIBRARY_EXTENSIONS or ".so." in lower:
        return ArtifactKind.LIBRARY
    if (
        suffix in BOOKKEEPING_EXTENSIONS
        or name in BOOKKEEPING_NAMES
        or any(m in lower for m in BOOKKEEPING_MARKERS)
    ):
        return ArtifactKind.BOOKKEEPING
    if any(m in lower for m in TEST_MARKERS):
        return ArtifactKind.TEST
    if any(m in lower for m in BENCH_MARKERS):
        return ArtifactKind.BENCH
    return ArtifactKind.MAIN


def is_executable(path: Path, windows: bool | None = None) -> bool:
    windows = is_windows() if windows is None else windows
    if windows:
        return path.suffix.lower() == ".exe"
    try:
        return bool(path.stat().st_mode & 0o111)
    except OSError:
        return False


def find_executables(output_dir: str | Path, windows: bool | None = None) -> list[ArtifactCandidate]:
    """Main executables directly inside *output_dir*, sorted by name.

    Test/bench binaries, libraries and bookkeeping files are filtered out
    during the scan. A missing directory yields an empty list.
    """
    root = Path(output_dir)
    if not root.is_dir():
        return []
    found: list[ArtifactCandidate] = []
    for entry in sorted(root.iterdir(), key=lambda p: p.name):
        if not entry.is_file():
            continue
        kind = classify(entry.name)
        if kind is not ArtifactKind.MAIN:
            continue
        if is_executable(entry, windows):
            found.append(ArtifactCandidate(path=entry, kind=kind, executable=True))
    return found


def find_by_kind(
    search_dir: str | Path,
    kind: ArtifactKind,
    windows: bool | None = None,
) -> list[ArtifactCandidate]:
    """Recursively find executables of one kind (e.g. BENCH), sorted by name."""
    found = [
        c
        for c in _walk(Path(search_dir), windows)
        if c.kind is kind and c.executable
    ]
    return sorted(found, key=lambda c: (c.name, str(c.path)))


def collect_artifacts(cache_dir: str | Path, windows: bool | None = None) -> list[Path]:
    """Files worth publishing from a backend cache: main executables and libraries.

    The final directory is flat, so when two files share a basename the one
    found first (sorted path order) wins.
    """
    by_name: dict[str, Path] = {}
    for c in sorted(_walk(Path(cache_dir), windows), key=lambda c: str(c.path)):
        if c.kind is ArtifactKind.LIBRARY or (c.kind is ArtifactKind.MAIN and c.executable):
            by_name.setdefault(c.name, c.path)
    return [by_name[n] for n in sorted(by_name)]


def copy_artifacts(sources: list[Path], dest_dir: str | Path) -> list[Path]:
    """Copy (never move or link) artifacts into *dest_dir*."""
    dest = Path(dest_dir)
    dest.mkdir(parents=True, exist_ok=True)
    copied = []
    for src in sources:
        target = dest / src.name
        # copy2 follows symlinks, so bazel-out links become real files
        shutil.copy2(src, target)
        copied.append(target)
    logger.info("Copied %d artifact(s) to %s", len(copied), dest)
    return copied


@dataclass
class Resolution:
    """Which executable a run should use, plus everything it was chosen from."""

    path: Path
    candidates: list[ArtifactCandidate] = field(default_factory=list)

    @property
    def ambiguous(self) -> bool:
        return len(self.candidates) > 1


def resolve_executable(
    output_dir: str | Path,
    target: str | None = None,
    windows: bool | None = None,
) -> Resolution:
    """Pick the executable to run from a final artifacts directory.

    An explicit target is a direct path check, with no scanning. Without a
    target the first sorted candidate is chosen; callers must surface the
    full candidate list when the result is ambiguous.
    """
    root = Path(output_dir)
    if target:
        path = root / exe_name(target, windows)
        if not path.is_file():
            raise TargetNotFoundError(target, str(root))
        return Resolution(path=path)

    candidates = find_executables(root, windows)
    if not candidates:
        raise ArtifactNotFoundError(
            f"no executable found in {root}. Make sure the project builds an executable"
        )
    return Resolution(path=candidates[0].path, candidates=candidates)


def _walk(root: Path, windows: bool | None) -> list[ArtifactCandidate]:
    if not root.is_dir():
        return []
    out: list[ArtifactCandidate] = []
    for dirpath, dirnames, filenames in os.walk(root, followlinks=True):
        dirnames[:] = [
            d for d in dirnames if d not in _SKIP_DIRS and not d.endswith(_SKIP_DIR_SUFFIXES)
        ]
        for f in filenames:
            path = Path(dirpath) / f
            if not path.is_file():
                continue
            out.append(
                ArtifactCandidate(path=path, kind=classify(f), executable=is_executable(path, windows))
            )
    return out
