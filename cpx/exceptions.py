"""Custom exceptions for cpx."""

from __future__ import annotations

# Keep the tail short enough to print without flooding the terminal.
STDERR_TAIL_CHARS = 1000


class CpxError(Exception):
    """Base exception for all cpx errors."""

    exit_code: int = 1


class ProjectNotFoundError(CpxError):
    """Raised when no recognizable build system is present in a directory."""

    def __init__(self, directory: str, hint: str):
        self.directory = directory
        self.hint = hint
        super().__init__(f"no C/C++ project found in {directory}\n  hint: {hint}")


class ConfigError(CpxError):
    """Raised for missing or invalid configuration."""


class InvalidOptionError(CpxError):
    """Raised when a command-line option has an unusable value."""


class MultipleSanitizersError(CpxError):
    """Raised when more than one sanitizer is requested for a single build."""

    def __init__(self, requested: list[str]):
        self.requested = requested
        super().__init__(
            f"only one sanitizer can be enabled at a time (requested: {', '.join(requested)})"
        )


class ToolNotFoundError(CpxError):
    """Raised when an external tool is not installed or not on PATH."""

    def __init__(self, tool: str, install_hint: str):
        self.tool = tool
        self.install_hint = install_hint
        super().__init__(f"{tool} not found, install {install_hint}")


class ToolFailedError(CpxError):
    """An external tool exited non-zero during one orchestration step."""

    step = "command"

    def __init__(
        self,
        tool: str,
        returncode: int,
        stderr: str = "",
        backend: str = "",
    ):
        self.tool = tool
        self.returncode = returncode
        self.backend = backend
        self.stderr_tail = stderr[-STDERR_TAIL_CHARS:] if stderr else ""
        self.exit_code = returncode if returncode > 0 else 1
        where = f" [{backend}]" if backend else ""
        msg = f"{self.step} failed{where}: {tool} exited with code {returncode}"
        if self.stderr_tail:
            msg += "\n" + self.stderr_tail.rstrip()
        super().__init__(msg)


class ConfigureFailedError(ToolFailedError):
    step = "configure"


class BuildFailedError(ToolFailedError):
    step = "build"


class TestsFailedError(ToolFailedError):
    __test__ = False  # not a pytest class
    step = "tests"


class RunFailedError(ToolFailedError):
    step = "run"


class TargetNotFoundError(CpxError):
    """Raised when an explicit --target does not resolve to a file."""

    def __init__(self, target: str, directory: str):
        self.target = target
        self.directory = directory
        super().__init__(f"target executable '{target}' not found in {directory}")


class ArtifactNotFoundError(CpxError):
    """Raised when a build produced nothing runnable."""


class UnsupportedPlatformError(CpxError):
    """Raised when an OS/architecture pair is outside the known set."""


class CIError(CpxError):
    """Raised when a containerized cross-build cannot proceed."""
