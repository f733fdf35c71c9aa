"""Shared pytest fixtures for cpx tests. No real compilers or Docker needed."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from cpx.config.store import ConfigStore
from cpx.core.process import CommandResult
from cpx.dispatcher import Dispatcher


@dataclass
class FakeCall:
    args: list[str]
    cwd: str | None = None
    env: dict[str, str] | None = None
    capture: bool = False

    @property
    def line(self) -> str:
        return " ".join(self.args)


def write_executable(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("#!/bin/sh\nexit 0\n")
    path.chmod(0o755)
    return path


@dataclass
class FakeRunner:
    """Records every command and imitates what the real tools leave on disk.

    ``fail_on`` maps a substring of the command line to an exit code;
    ``outputs`` maps a substring to captured stdout.
    """

    executables: list[str] = field(default_factory=lambda: ["demo", "demo_tests", "demo_bench"])
    fail_on: dict[str, int] = field(default_factory=dict)
    outputs: dict[str, str] = field(default_factory=dict)
    calls: list[FakeCall] = field(default_factory=list)

    def run(self, args, *, cwd=None, env=None, capture=False) -> CommandResult:
        argv = [str(a) for a in args]
        self.calls.append(FakeCall(argv, str(cwd) if cwd else None, dict(env) if env else None, capture))
        line = " ".join(argv)
        for needle, rc in self.fail_on.items():
            if needle in line:
                self._side_effects(argv, ok=False)
                return CommandResult(argv, rc, "", f"{argv[0]}: simulated failure")
        self._side_effects(argv, ok=True)
        stdout = next((out for needle, out in self.outputs.items() if needle in line), "")
        return CommandResult(argv, 0, stdout, "")

    # ── helpers for assertions ──

    def lines(self) -> list[str]:
        return [c.line for c in self.calls]

    def matching(self, needle: str) -> list[FakeCall]:
        return [c for c in self.calls if needle in c.line]

    # ── simulated tool behaviour ──

    def _side_effects(self, argv: list[str], ok: bool) -> None:
        tool = os.path.basename(argv[0])
        if tool == "cmake" and "-B" in argv:
            cache = Path(argv[argv.index("-B") + 1])
            cache.mkdir(parents=True, exist_ok=True)
            # cmake leaves CMakeCache.txt behind even when configure fails
            (cache / "CMakeCache.txt").write_text("# cache\n")
        elif tool == "cmake" and "--build" in argv and ok:
            self._emit(Path(argv[argv.index("--build") + 1]))
        elif tool == "meson" and argv[1:2] == ["setup"] and ok:
            cache = Path(argv[2])
            cache.mkdir(parents=True, exist_ok=True)
            (cache / "build.ninja").write_text("# ninja\n")
        elif tool == "meson" and argv[1:2] == ["compile"] and ok:
            self._emit(Path(argv[argv.index("-C") + 1]))
        elif tool == "bazel" and argv[1:2] == ["build"] and ok:
            prefix = next(a for a in argv if a.startswith("--symlink_prefix="))
            self._emit(Path(prefix.split("=", 1)[1]) / "bin")

    def _emit(self, directory: Path) -> None:
        for name in self.executables:
            write_executable(directory / name)
        (directory / "libdemo.a").write_bytes(b"!<arch>\n")


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def config_store(tmp_path: Path) -> ConfigStore:
    return ConfigStore(tmp_path / "config")


@pytest.fixture
def cmake_project(tmp_path: Path) -> Path:
    root = tmp_path / "demo"
    root.mkdir()
    (root / "CMakeLists.txt").write_text(
        "cmake_minimum_required(VERSION 3.20)\nproject(demo VERSION 1.0 LANGUAGES CXX)\n"
    )
    (root / "src").mkdir()
    (root / "src" / "main.cpp").write_text("int main() { return 0; }\n")
    return root.resolve()


@pytest.fixture
def make_dispatcher(runner: FakeRunner, config_store: ConfigStore):
    def factory(root: Path) -> Dispatcher:
        return Dispatcher(root, config_store=config_store, runner=runner, windows=False)

    return factory


@pytest.fixture
def make_exe():
    return write_executable
