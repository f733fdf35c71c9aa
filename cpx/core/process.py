"""External command execution: the single seam through which cpx spawns tools."""

from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from cpx.exceptions import ToolNotFoundError

logger = logging.getLogger(__name__)

# Install hints shown when a tool is missing from PATH
INSTALL_HINTS: dict[str, str] = {
    "cmake": "CMake (https://cmake.org/download/)",
    "ctest": "CMake (https://cmake.org/download/), which ships ctest",
    "bazel": "Bazel, preferably via bazelisk (https://github.com/bazelbuild/bazelisk)",
    "meson": "Meson (pip install meson) and Ninja",
    "docker": "Docker (https://docs.docker.com/get-docker/)",
}


@dataclass
class CommandResult:
    """Outcome of one external command."""

    args: list[str]
    returncode: int
    stdout: str = ""  # empty when output was streamed
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner:
    """Run external commands synchronously, streaming or capturing output.

    No timeout is imposed: long-running compilers run to completion or until
    the user interrupts them, in which case the interrupt reaches the child
    directly.
    """

    def run(
        self,
        args: Sequence[str],
        *,
        cwd: str | Path | None = None,
        env: Mapping[str, str] | None = None,
        capture: bool = False,
    ) -> CommandResult:
        argv = [str(a) for a in args]
        merged_env = None
        if env:
            merged_env = dict(os.environ)
            merged_env.update(env)

        logger.debug("exec: %s (cwd=%s, capture=%s)", " ".join(argv), cwd, capture)
        try:
            if capture:
                proc = subprocess.run(
                    argv,
                    cwd=cwd,
                    env=merged_env,
                    capture_output=True,
                    text=True,
                    errors="replace",
                )
                return CommandResult(argv, proc.returncode, proc.stdout, proc.stderr)
            proc = subprocess.run(argv, cwd=cwd, env=merged_env)
            return CommandResult(argv, proc.returncode)
        except FileNotFoundError:
            tool = Path(argv[0]).name
            raise ToolNotFoundError(tool, INSTALL_HINTS.get(tool, tool)) from None
