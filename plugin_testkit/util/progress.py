"""
Console progress reporting using rich.

Everything user-facing goes through the module-level ``console`` so the
CLI and its tests can swap it out in one place.
"""

import time
from collections.abc import Callable
from contextlib import contextmanager
from typing import Iterator

from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

console = Console()


@contextmanager
def track_progress(description: str, total: int) -> Iterator[Callable[[str], None]]:
    """
    Show a progress bar over ``total`` steps.

    Yields a callable that advances the bar by one and relabels it, so it
    can be passed straight to a per-phase callback:

        with track_progress("scaffolding", total=6) as advance:
            for sample in samples:
                advance(f"{sample}: init")

    Args:
        description: Initial label
        total: Number of steps
    """
    progress = Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=console,
    )
    with progress:
        task = progress.add_task(description, total=total)

        def advance(label: str) -> None:
            progress.update(task, description=label, advance=1)

        yield advance


@contextmanager
def operation_status(operation: str) -> Iterator[None]:
    """
    Print the start and outcome of one operation, with its duration.

    Exceptions are reported and re-raised.
    """
    console.print(f"[bold blue]{operation}...[/bold blue]")
    started = time.monotonic()

    try:
        yield
    except Exception as e:
        console.print(f"[red]✗ {operation} failed: {e}[/red]")
        raise
    console.print(f"[green]✓ {operation} complete[/green] [dim]({_elapsed(started)})[/dim]")


def _elapsed(started: float) -> str:
    return f"{time.monotonic() - started:.1f}s"


class StageTracker:
    """
    Reports a known sequence of named stages as they start.

    An instance is callable with the stage name, so it can be handed to
    anything that takes an ``on_stage`` callback.
    """

    def __init__(self, title: str, total: int):
        self.title = title
        self.total = total
        self.started: list[str] = []
        self.details: dict[str, str] = {}

    def __call__(self, stage: str) -> None:
        self.started.append(stage)
        console.print(f"  [dim][{len(self.started)}/{self.total}][/dim] {stage}")

    def add_detail(self, key: str, value: object) -> None:
        self.details[key] = str(value)

    def finish(self) -> None:
        """Print the completion line and any details."""
        console.print(
            f"[green]✓ {self.title} complete "
            f"({len(self.started)}/{self.total} stages)[/green]"
        )
        if self.details:
            show_summary(self.title, self.details)


def show_summary(title: str, items: dict[str, str | int], ok: bool = True):
    """
    Show key/value pairs in a panel.

    Args:
        title: Panel title
        items: Rows to show, in order
        ok: Whether the summarized operation succeeded (border colour)
    """
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="white")

    for key, value in items.items():
        table.add_row(key, str(value))

    border = "blue" if ok else "red"
    console.print(Panel(table, title=f"[bold]{title}[/bold]", border_style=border))
