"""simharness install / launch / reset / uninstall -- per-app commands."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel

from simharness.cli.config_cmd import load_config
from simharness.cli.errors import fail
from simharness.core import CoreSimulator
from simharness.errors import SimHarnessError
from simharness.models import AppBundle

console = Console()

APP_ARGUMENT = typer.Argument(..., help="Path to the .app bundle.")
DEVICE_OPTION = typer.Option(..., "--device", "-d", help="Simulator UDID, name, or 'name (version)'.")
CONFIG_OPTION = typer.Option(None, "--config", "-c", help="Path to a config.yaml file.")


def _core_simulator(app: Path, device: str, config_path: Path | None) -> CoreSimulator:
    config = load_config(config_path)
    try:
        bundle = AppBundle.from_path(app)
        return CoreSimulator(device, bundle, config=config)
    except SimHarnessError as exc:
        raise fail(exc)


def install(
    app: Path = APP_ARGUMENT,
    device: str = DEVICE_OPTION,
    config_path: Path | None = CONFIG_OPTION,
) -> None:
    """Install the app, or update the installed bundle if its content changed."""
    sim = _core_simulator(app, device, config_path)
    try:
        record = sim.install()
    except SimHarnessError as exc:
        raise fail(exc)
    console.print(f"[green]Installed[/green] {sim.app.bundle_identifier} [dim]at {record.bundle_dir}[/dim]")


def launch(
    app: Path = APP_ARGUMENT,
    device: str = DEVICE_OPTION,
    config_path: Path | None = CONFIG_OPTION,
) -> None:
    """Launch the app, retrying with simulator recovery between attempts."""
    sim = _core_simulator(app, device, config_path)
    try:
        with console.status(f"Launching {sim.app.bundle_identifier} on {sim.device.instruments_name}..."):
            report = sim.launch()
    except SimHarnessError as exc:
        raise fail(exc)

    lines = [
        f"[bold]App:[/bold]        {sim.app.bundle_identifier}",
        f"[bold]Device:[/bold]     {sim.device.instruments_name} [dim]{sim.device.udid}[/dim]",
        f"[bold]Attempts:[/bold]   {len(report.attempts)}",
        f"[bold]Recoveries:[/bold] {report.recoveries}",
    ]
    console.print(Panel("\n".join(lines), title="[green]Running[/green]", border_style="green"))


def reset(
    app: Path = APP_ARGUMENT,
    device: str = DEVICE_OPTION,
    config_path: Path | None = CONFIG_OPTION,
) -> None:
    """Reset the app's sandbox.  Does nothing if the app is not installed."""
    sim = _core_simulator(app, device, config_path)
    try:
        was_reset = sim.reset_app_sandbox()
    except SimHarnessError as exc:
        raise fail(exc)
    if was_reset:
        console.print(f"[green]Reset[/green] sandbox of {sim.app.bundle_identifier}")
    else:
        console.print(f"[yellow]{sim.app.bundle_identifier} is not installed; nothing to reset[/yellow]")


def uninstall(
    app: Path = APP_ARGUMENT,
    device: str = DEVICE_OPTION,
    config_path: Path | None = CONFIG_OPTION,
) -> None:
    """Uninstall the app together with its sandbox."""
    sim = _core_simulator(app, device, config_path)
    try:
        removed = sim.uninstall_app_and_sandbox()
    except SimHarnessError as exc:
        raise fail(exc)
    if removed:
        console.print(f"[green]Uninstalled[/green] {sim.app.bundle_identifier}")
    else:
        console.print(f"[yellow]{sim.app.bundle_identifier} is not installed[/yellow]")
