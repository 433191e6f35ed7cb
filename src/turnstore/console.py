"""Terminal output helpers for the CLI, built on rich."""

from __future__ import annotations

from typing import Any

from rich.console import Console
from rich.status import Status

_console = Console(highlight=False)
_err_console = Console(stderr=True, highlight=False)


def print(*args: Any, **kwargs: Any) -> None:  # noqa: A001
    _console.print(*args, **kwargs)


def header(text: str) -> None:
    _console.print(f"[bold]{text}[/bold]")
    _console.print("[dim]" + "-" * len(text) + "[/dim]")


def subheader(text: str) -> None:
    _console.print(f"[bold cyan]{text}[/bold cyan]")


def key_value(key: str, value: Any) -> None:
    _console.print(f"  [dim]{key}:[/dim] {value}")


def score(value: float) -> str:
    """Color a similarity score for inline display."""
    if value >= 0.5:
        color = "green"
    elif value >= 0.3:
        color = "yellow"
    else:
        color = "red"
    return f"[{color}]{value:.4f}[/{color}]"


def info(text: str) -> None:
    _console.print(f"[blue]>[/blue] {text}")


def success(text: str) -> None:
    _console.print(f"[green]ok[/green] {text}")


def warning(text: str) -> None:
    _err_console.print(f"[yellow]warning:[/yellow] {text}")


def error(text: str) -> None:
    _err_console.print(f"[red]error:[/red] {text}")


def dim(text: str) -> None:
    _console.print(f"[dim]{text}[/dim]")


def status(text: str) -> Status:
    """Spinner shown while a slow step (model load, rebuild) runs."""
    return _err_console.status(text)
