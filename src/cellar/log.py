"""Timestamped terminal output."""

import os
from datetime import datetime

import click


def _timestamp() -> str:
    return datetime.now().strftime("%H:%M:%S")


def _debug_enabled() -> bool:
    return bool(os.environ.get("CELLAR_DEBUG"))


def info(msg: str) -> None:
    click.echo(f"[{_timestamp()}] {msg}")


def header(title: str) -> None:
    line = f"── {title} " + "─" * max(0, 45 - len(title))
    info(click.style(line, bold=True))


def footer(title: str) -> None:
    line = f"── {title} " + "─" * max(0, 45 - len(title))
    info(line)


def step(msg: str) -> None:
    info(f"  {msg}")


def success(msg: str) -> None:
    info(click.style(f"  ✓ {msg}", fg="green"))


def failure(msg: str) -> None:
    info(click.style(f"  ✗ {msg}", fg="red"))


def warning(msg: str) -> None:
    click.echo(f"[{_timestamp()}] " + click.style(f"WARNING: {msg}", fg="yellow"), err=True)


def error(msg: str) -> None:
    click.echo(f"[{_timestamp()}] " + click.style(f"ERROR: {msg}", fg="red"), err=True)


def debug(msg: str) -> None:
    if _debug_enabled():
        click.echo(f"[{_timestamp()}] debug: {msg}", err=True)
