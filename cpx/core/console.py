"""User-facing terminal output.

click drops ANSI styling automatically when the stream is not a terminal,
so callers never need to check for a TTY themselves.
"""

from __future__ import annotations

import sys

import click

_CLEAR_LINE = "\r\033[2K"


def info(message: str) -> None:
    click.secho(message, fg="cyan")


def success(message: str) -> None:
    click.secho(f"✓ {message}", fg="green")


def warning(message: str) -> None:
    click.secho(f"⚠ {message}", fg="yellow", err=True)


def error(message: str) -> None:
    click.secho(f"✗ {message}", fg="red", err=True)


def plain(message: str = "") -> None:
    click.echo(message)


def status_line(message: str, *, final: bool = False) -> None:
    """Redraw a single in-place status line; ``final`` commits it with a newline."""
    if sys.stdout.isatty():
        click.echo(_CLEAR_LINE + message, nl=final)
    elif final:
        click.echo(message)
