"""Polling file watcher that drives the rebuild loop.

Each tick takes a snapshot of ``path -> mtime`` for watched files and diffs it
against the previous one. A non-empty diff triggers exactly one rebuild,
which runs to completion before the next tick is evaluated; edits made while
a build is running show up in the following diff.
"""

from __future__ import annotations

import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

import structlog

from cpx.exceptions import CpxError

log = structlog.get_logger(__name__)

Snapshot = dict[str, int]


@dataclass
class WatchConfig:
    directories: list[str] = field(default_factory=lambda: ["src", "include", "tests"])
    extensions: list[str] = field(
        default_factory=lambda: [".cpp", ".hpp", ".c", ".h", ".cc", ".cxx", ".hxx"]
    )
    ignore_dirs: list[str] = field(
        default_factory=lambda: ["build", ".git", ".vcpkg", "vcpkg_installed", "out", ".cache", ".bin"]
    )
    interval: float = 0.5  # seconds between ticks


def take_snapshot(root: str | Path, config: WatchConfig) -> Snapshot:
    """Record modification times of watched files under *root*.

    Ignored directories are pruned during the walk, so nothing below them is
    ever stat'd.
    """
    base = Path(root)
    extensions = {e.lower() for e in config.extensions}
    ignored = set(config.ignore_dirs)
    snapshot: Snapshot = {}
    for directory in config.directories:
        top = base / directory
        if not top.is_dir():
            continue
        for dirpath, dirnames, filenames in os.walk(top):
            dirnames[:] = [d for d in dirnames if d not in ignored]
            for f in filenames:
                if Path(f).suffix.lower() not in extensions:
                    continue
                path = os.path.join(dirpath, f)
                try:
                    snapshot[path] = os.stat(path).st_mtime_ns
                except OSError:
                    # deleted between listing and stat
                    continue
    return snapshot


def detect_changes(old: Snapshot, new: Snapshot) -> list[str]:
    """Modified, new and deleted files between two snapshots, sorted."""
    changed = [p for p, mtime in new.items() if old.get(p) != mtime]
    changed.extend(f"{p} (deleted)" for p in old if p not in new)
    return sorted(changed)


class Watcher:
    """Cooperative tick -> snapshot -> diff -> (rebuild) loop."""

    def __init__(
        self,
        root: str | Path,
        config: WatchConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.root = Path(root)
        self.config = config or WatchConfig()
        self._sleep = sleep

    def run(
        self,
        on_change: Callable[[list[str]], None],
        *,
        max_ticks: int | None = None,
    ) -> int:
        """Build once eagerly, then rebuild whenever watched files change.

        Returns the number of rebuilds triggered by changes (the initial build
        is not counted). ``max_ticks`` bounds the loop; None runs until
        interrupted.
        """
        log.info("watch_start", root=str(self.root), directories=self.config.directories)
        self._rebuild(on_change, [])
        snapshot = take_snapshot(self.root, self.config)

        rebuilds = 0
        ticks = 0
        while max_ticks is None or ticks < max_ticks:
            self._sleep(self.config.interval)
            ticks += 1
            current = take_snapshot(self.root, self.config)
            changes = detect_changes(snapshot, current)
            if not changes:
                continue
            log.info("watch_changes", count=len(changes))
            # Baseline is the pre-build snapshot: edits made during the build
            # still differ from it and trigger the next rebuild.
            snapshot = current
            self._rebuild(on_change, changes)
            rebuilds += 1
        return rebuilds

    @staticmethod
    def _rebuild(on_change: Callable[[list[str]], None], changes: list[str]) -> None:
        try:
            on_change(changes)
        except CpxError as e:
            # A failed build must not end the watch session
            log.warning("watch_build_failed", error=str(e).splitlines()[0])
