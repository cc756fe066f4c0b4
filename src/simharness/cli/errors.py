"""Error rendering shared by the CLI commands."""

from __future__ import annotations

import typer
from rich.console import Console
from rich.panel import Panel

from simharness.config import SimHarnessConfigError
from simharness.errors import InputError, LaunchError, SimHarnessError, WaitTimeoutError

console = Console()

_TITLES: list[tuple[type[SimHarnessError], str]] = [
    (InputError, "Invalid Input"),
    (SimHarnessConfigError, "Config Error"),
    (LaunchError, "Launch Failed"),
    (WaitTimeoutError, "Timed Out"),
]


def fail(exc: SimHarnessError) -> typer.Exit:
    """Print *exc* as a red panel and return the ``typer.Exit`` to raise.

    Input and config errors exit with 2, everything else with 1.
    """
    title = "Error"
    for cls, label in _TITLES:
        if isinstance(exc, cls):
            title = label
            break
    console.print(Panel(f"[red]{exc}[/red]", title=f"[red]{title}[/red]", border_style="red"))
    code = 2 if isinstance(exc, (InputError, SimHarnessConfigError)) else 1
    return typer.Exit(code=code)
