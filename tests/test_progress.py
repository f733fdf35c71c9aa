"""Tests for ProgressTracker and the step line renderer."""

from __future__ import annotations

import sys
import time

from cpx.progress import ProgressTracker, StepLineRenderer


class TestProgressTracker:
    def test_basic_flow(self):
        tracker = ProgressTracker(total=2)
        tracker.start_step("configure")
        tracker.complete_step("configure")

        assert len(tracker.steps) == 1
        assert tracker.steps[0].status == "completed"
        assert tracker.steps[0].error is None

    def test_indexes(self):
        tracker = ProgressTracker(total=2)
        tracker.start_step("configure")
        tracker.start_step("build")
        assert [(s.index, s.total) for s in tracker.steps] == [(1, 2), (2, 2)]

    def test_fail_step(self):
        tracker = ProgressTracker()
        tracker.start_step("build")
        tracker.fail_step("build", "compile error")

        assert tracker.steps[0].status == "failed"
        assert tracker.steps[0].error == "compile error"

    def test_finishing_unknown_step_is_ignored(self):
        tracker = ProgressTracker()
        tracker.complete_step("build")
        assert tracker.steps == []

    def test_duration(self):
        tracker = ProgressTracker()
        tracker.start_step("build")
        time.sleep(0.01)
        tracker.complete_step("build")

        p = tracker.steps[0]
        assert p.duration is not None
        assert p.duration >= 0.01

    def test_durations_in_pipeline_order(self):
        tracker = ProgressTracker(total=2)
        tracker.start_step("configure")
        tracker.complete_step("configure")
        tracker.start_step("build")

        durations = tracker.durations()
        assert list(durations) == ["configure", "build"]
        assert durations["configure"] is not None
        assert durations["build"] is None

    def test_callback(self):
        events = []
        tracker = ProgressTracker()
        tracker.callbacks.append(lambda p: events.append((p.step, p.status)))
        tracker.start_step("build")
        tracker.complete_step("build")
        assert events == [("build", "running"), ("build", "completed")]

    def test_callback_error_does_not_propagate(self):
        def bad_callback(p):
            raise RuntimeError("boom")

        tracker = ProgressTracker()
        tracker.callbacks.append(bad_callback)
        tracker.start_step("build")
        tracker.complete_step("build")
        assert tracker.steps[0].status == "completed"


class TestStepLineRenderer:
    def test_quiet_mode_prints_final_line(self, capsys):
        tracker = ProgressTracker(total=2)
        tracker.callbacks.append(StepLineRenderer(verbose=False))
        tracker.start_step("configure")
        tracker.complete_step("configure")
        out = capsys.readouterr().out
        # stdout is not a TTY under pytest: only the committed line appears
        assert out == "[1/2] Configured ✓\n"

    def test_verbose_mode_prints_headers(self, capsys):
        tracker = ProgressTracker(total=1)
        tracker.callbacks.append(StepLineRenderer(verbose=True))
        tracker.start_step("build")
        tracker.complete_step("build")
        out = capsys.readouterr().out
        assert "• Building" in out
        assert "✓" not in out

    def test_tty_redraws_in_place(self, capsys, monkeypatch):
        monkeypatch.setattr(sys.stdout, "isatty", lambda: True)
        monkeypatch.setattr("click.utils.should_strip_ansi", lambda *a, **k: False)
        tracker = ProgressTracker(total=1)
        tracker.callbacks.append(StepLineRenderer(verbose=False))
        tracker.start_step("build")
        tracker.complete_step("build")
        out = capsys.readouterr().out
        assert out == "\r\033[2K[1/1] Building...\r\033[2K[1/1] Built ✓\n"
