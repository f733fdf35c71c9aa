"""Step progress for the configure/build pipeline."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from cpx.core import console

logger = logging.getLogger(__name__)

# step -> (in-progress label, done label)
STEP_LABELS: dict[str, tuple[str, str]] = {
    "configure": ("Configuring...", "Configured"),
    "build": ("Building...", "Built"),
}


@dataclass
class StepProgress:
    step: str
    index: int = 0  # 1-based position in the pipeline
    total: int = 0
    status: str = "running"  # "running" | "completed" | "failed"
    start_time: float | None = None
    end_time: float | None = None
    error: str | None = None

    @property
    def duration(self) -> float | None:
        if self.start_time and self.end_time:
            return round(self.end_time - self.start_time, 2)
        return None


class ProgressTracker:
    """Track the steps of one build and notify renderers as they change."""

    def __init__(self, total: int = 0) -> None:
        self.total = total
        self.steps: list[StepProgress] = []
        self._by_name: dict[str, StepProgress] = {}
        self.callbacks: list[Callable[[StepProgress], None]] = []

    def start_step(self, step: str) -> None:
        p = StepProgress(
            step=step,
            index=len(self.steps) + 1,
            total=self.total,
            start_time=time.monotonic(),
        )
        self.steps.append(p)
        self._by_name[step] = p
        self._notify(p)

    def complete_step(self, step: str) -> None:
        self._finish(step, "completed")

    def fail_step(self, step: str, error: str) -> None:
        self._finish(step, "failed", error)

    def durations(self) -> dict[str, float | None]:
        """Seconds spent per finished step, in pipeline order."""
        return {p.step: p.duration for p in self.steps}

    def _finish(self, step: str, status: str, error: str | None = None) -> None:
        p = self._by_name.get(step)
        if p is None:
            return
        p.status = status
        p.end_time = time.monotonic()
        p.error = error
        self._notify(p)

    def _notify(self, p: StepProgress) -> None:
        for cb in self.callbacks:
            try:
                cb(p)
            except Exception:
                logger.debug("Progress callback error for step %s", p.step, exc_info=True)


class StepLineRenderer:
    """Render steps as ``[i/n] Configuring...`` lines.

    Quiet mode keeps one line per step and redraws it in place; verbose mode
    prints a header per step and lets tool output stream beneath it.
    """

    def __init__(self, verbose: bool = False) -> None:
        self.verbose = verbose

    def __call__(self, p: StepProgress) -> None:
        running, done = STEP_LABELS.get(p.step, (f"{p.step}...", p.step))
        prefix = f"[{p.index}/{p.total}] " if p.total else ""
        if p.status == "running":
            if self.verbose:
                console.info(f"  • {running.rstrip('.')}")
            else:
                console.status_line(prefix + running)
        elif p.status == "completed" and not self.verbose:
            console.status_line(f"{prefix}{done} ✓", final=True)
        elif p.status == "failed" and not self.verbose:
            console.status_line(f"{prefix}{running.rstrip('.')} failed", final=True)
