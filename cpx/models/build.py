"""Data models for build variants, options and artifacts."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

CACHE_ROOT = Path(".cache") / "native"
ARTIFACT_ROOT = Path(".bin") / "native"


@dataclass(frozen=True)
class BuildVariant:
    """One build configuration, used as the namespace for cache and output dirs.

    ``key`` is unique per (optimization, sanitizer) pair, which makes both
    ``cache_dir`` and ``output_dir`` bijective within one project root.
    """

    name: str  # "debug" | "release" | "O0".."O3" | "Os" | "Ofast"
    build_type: str  # CMake build type: Debug | Release | RelWithDebInfo | MinSizeRel
    opt_flags: str = ""  # e.g. "-O2"; empty means backend default
    sanitizer: str | None = None  # "asan" | "tsan" | "msan" | "ubsan"

    @property
    def key(self) -> str:
        return f"{self.name}-{self.sanitizer}" if self.sanitizer else self.name

    @property
    def is_debug(self) -> bool:
        return self.build_type == "Debug"

    def cache_dir(self, root: Path) -> Path:
        return root / CACHE_ROOT / self.key

    def output_dir(self, root: Path) -> Path:
        return root / ARTIFACT_ROOT / self.key


@dataclass
class BuildOptions:
    """User-facing knobs shared by build/run/watch."""

    release: bool = False
    opt_level: str | None = None
    sanitizers: list[str] = field(default_factory=list)
    jobs: int = 0  # 0 = host logical core count
    target: str | None = None
    clean: bool = False
    verbose: bool = False


@dataclass
class BuildOutcome:
    """Result of a successful build invocation."""

    variant: BuildVariant
    configured: bool  # whether a configure step ran
    artifacts: list[Path] = field(default_factory=list)  # copies in the final dir
    duration: float = 0.0


class ArtifactKind(Enum):
    MAIN = "main"
    TEST = "test"
    BENCH = "bench"
    LIBRARY = "library"
    BOOKKEEPING = "bookkeeping"


@dataclass(frozen=True)
class ArtifactCandidate:
    """A file found in a build output area, classified by name only."""

    path: Path
    kind: ArtifactKind
    executable: bool

    @property
    def name(self) -> str:
        return self.path.name
