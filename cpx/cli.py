"""CLI entry point: cpx.

Subcommands:
    cpx build [--release] [-O LEVEL] [--asan] ...   # configure (if needed) + build
    cpx run [--target T] [-- ARGS...]               # build, then run an executable
    cpx test [--filter PATTERN]                     # build tests, run the test runner
    cpx bench [--target T]                          # build and run a benchmark
    cpx clean [--all]                               # remove build output
    cpx watch                                       # rebuild on source changes
    cpx config get|set|path                         # global configuration
    cpx ci add-target|build|run                     # containerized cross-builds
"""

from __future__ import annotations

import functools
import sys
from pathlib import Path
from typing import Any, Callable

import click

from cpx import __version__
from cpx.build.variant import OPT_TABLE
from cpx.ci.pipeline import CIPipeline
from cpx.config.ci import CI_MANIFEST_NAME, add_target
from cpx.config.store import ConfigStore
from cpx.core import console
from cpx.core.logging import setup_logging
from cpx.dispatcher import Dispatcher
from cpx.exceptions import ConfigError, CpxError
from cpx.models.build import BuildOptions

SANITIZERS = ("asan", "tsan", "msan", "ubsan")


def handle_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    """Turn CpxError into ``✗ message`` on stderr plus the error's exit code."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except CpxError as e:
            console.error(str(e))
            sys.exit(e.exit_code)
        except KeyboardInterrupt:
            click.echo("", err=True)
            sys.exit(130)

    return wrapper


def variant_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """--release/--debug, -O, -j, --verbose and the sanitizer flags."""
    options = [
        click.option("--release/--debug", default=False, help="Release or debug build"),
        click.option(
            "-O", "--opt", "opt_level", type=click.Choice(list(OPT_TABLE)), default=None,
            help="Optimization level (overrides --release)",
        ),
        click.option("-j", "--jobs", type=int, default=0, help="Parallel jobs (0 = all cores)"),
        click.option("--verbose", is_flag=True, help="Stream full tool output"),
    ]
    options += [
        click.option(f"--{name}", name, is_flag=True, help=f"Enable {name}")
        for name in SANITIZERS
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _options(
    release: bool,
    opt_level: str | None,
    jobs: int,
    verbose: bool,
    target: str | None = None,
    clean: bool = False,
    **sanitizers: bool,
) -> BuildOptions:
    return BuildOptions(
        release=release,
        opt_level=opt_level,
        sanitizers=[name for name in SANITIZERS if sanitizers.get(name)],
        jobs=jobs,
        target=target,
        clean=clean,
        verbose=verbose,
    )


@click.group()
@click.option("--debug", is_flag=True, help="Debug logging")
@click.version_option(__version__, prog_name="cpx")
def main(debug: bool) -> None:
    """cpx: build orchestrator for C/C++ projects (CMake, Bazel, Meson)."""
    setup_logging("DEBUG" if debug else None)


# ── build verbs ──────────────────────────────────────────────────────────────


@main.command("build")
@variant_options
@click.option("-t", "--target", default=None, help="Build only this target")
@click.option("--clean", is_flag=True, help="Wipe this variant's cache and output first")
@click.option("--watch", is_flag=True, help="Rebuild when sources change")
@handle_errors
def build(target: str | None, clean: bool, watch: bool, **kwargs: Any) -> None:
    """Configure (when needed) and build the project."""
    options = _options(target=target, clean=clean, **kwargs)
    dispatcher = Dispatcher()
    if watch:
        _watch(dispatcher, options)
        return
    outcome = dispatcher.build(options)
    console.success(
        f"Build complete ({outcome.variant.key}, {outcome.duration}s). "
        f"Artifacts in {outcome.variant.output_dir(dispatcher.root)}"
    )


@main.command("watch")
@variant_options
@click.option("-t", "--target", default=None, help="Build only this target")
@click.option("--clean", is_flag=True, help="Wipe this variant's cache and output first")
@handle_errors
def watch(target: str | None, clean: bool, **kwargs: Any) -> None:
    """Build, then rebuild whenever sources change (same as build --watch)."""
    _watch(Dispatcher(), _options(target=target, clean=clean, **kwargs))


def _watch(dispatcher: Dispatcher, options: BuildOptions) -> None:
    console.info("Watching src/, include/ and tests/ for changes (Ctrl+C to stop)")
    dispatcher.watch(options)


@main.command("run", context_settings={"ignore_unknown_options": True})
@variant_options
@click.option("-t", "--target", default=None, help="Executable to run")
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@handle_errors
def run(target: str | None, args: tuple[str, ...], **kwargs: Any) -> None:
    """Build and run an executable. Arguments after -- go to the program."""
    Dispatcher().run(_options(target=target, **kwargs), args)


@main.command("test")
@click.option("--verbose", is_flag=True, help="Show all test output")
@click.option("--filter", "pattern", default=None, help="Only run tests matching PATTERN")
@handle_errors
def test(verbose: bool, pattern: str | None) -> None:
    """Build the test targets and run the backend's test runner."""
    Dispatcher().test(BuildOptions(verbose=verbose), pattern=pattern)


@main.command("bench")
@click.option("--verbose", is_flag=True, help="Show full build output")
@click.option("-t", "--target", default=None, help="Benchmark to run")
@handle_errors
def bench(verbose: bool, target: str | None) -> None:
    """Build and run benchmarks."""
    Dispatcher().bench(BuildOptions(verbose=verbose, target=target))


@main.command("clean")
@click.option("--all", "all_artifacts", is_flag=True, help="Also remove .cache, .bin, out and build-*")
@handle_errors
def clean(all_artifacts: bool) -> None:
    """Remove build output."""
    removed = Dispatcher().clean(all_artifacts)
    if not removed:
        console.plain("Nothing to clean")
        return
    for path in removed:
        console.plain(f"  removed {path}")
    console.success("Clean complete")


# ── config ───────────────────────────────────────────────────────────────────


@main.group("config")
def config() -> None:
    """Read and write the global configuration."""


@config.command("get")
@click.argument("key")
@handle_errors
def config_get(key: str) -> None:
    click.echo(ConfigStore().get(key))


@config.command("set")
@click.argument("key")
@click.argument("value")
@handle_errors
def config_set(key: str, value: str) -> None:
    """Set KEY (vcpkg_root or bcr_root) to an existing directory."""
    path = Path(value).expanduser()
    if not path.exists():
        raise ConfigError(f"path does not exist: {value}")
    path = path.resolve()
    if key == "vcpkg_root" and not any((path / exe).exists() for exe in ("vcpkg", "vcpkg.exe")):
        console.warning(f"{path} does not look like a vcpkg root (no vcpkg executable)")
    elif key == "bcr_root" and not (path / "modules").is_dir():
        console.warning(f"{path} does not look like a Bazel Central Registry (no modules/)")
    ConfigStore().set(key, str(path))
    console.success(f"Set {key} = {path}")


@config.command("path")
def config_path() -> None:
    click.echo(str(ConfigStore().path))


# ── ci ───────────────────────────────────────────────────────────────────────


@main.group("ci")
def ci() -> None:
    """Cross-build inside Docker containers listed in cpx.ci."""


@ci.command("add-target")
@click.argument("names", nargs=-1, required=True)
@handle_errors
def ci_add_target(names: tuple[str, ...]) -> None:
    """Add one or more <os>-<arch> targets to cpx.ci."""
    path = Path.cwd() / CI_MANIFEST_NAME
    for name in names:
        if add_target(path, name):
            console.success(f"Added target {name}")
        else:
            console.warning(f"Target {name} already exists in {CI_MANIFEST_NAME}")


@ci.command("build")
@click.option("-t", "--target", default=None, help="Build only this target")
@click.option("--rebuild", is_flag=True, help="Rebuild the Docker image")
@handle_errors
def ci_build(target: str | None, rebuild: bool) -> None:
    """Build every target (or one) inside its container."""
    CIPipeline().build(target, rebuild=rebuild)


@ci.command("run")
@click.option("-t", "--target", required=True, help="Target to build and run")
@click.option("--rebuild", is_flag=True, help="Rebuild the Docker image")
@handle_errors
def ci_run(target: str, rebuild: bool) -> None:
    """Build one target inside its container and run its executable."""
    CIPipeline().run(target, rebuild=rebuild)


if __name__ == "__main__":
    main()
