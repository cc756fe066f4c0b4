"""simharness devices / erase / quit / kill-services -- device-wide commands."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from simharness.cli.config_cmd import load_config
from simharness.cli.errors import fail
from simharness.core import erase, quit_simulator, terminate_core_simulator_processes
from simharness.engine.processes import ProcessSupervisor
from simharness.engine.simctl import Simctl
from simharness.errors import SimHarnessError
from simharness.models import DeviceState

console = Console()

CONFIG_OPTION = typer.Option(None, "--config", "-c", help="Path to a config.yaml file.")

_STATE_STYLES = {
    DeviceState.BOOTED: "green",
    DeviceState.BOOTING: "yellow",
    DeviceState.SHUTTING_DOWN: "yellow",
    DeviceState.SHUTDOWN: "dim",
}


def devices(config_path: Path | None = CONFIG_OPTION) -> None:
    """List the available simulators."""
    config = load_config(config_path)
    try:
        found = Simctl(config).list_devices()
    except SimHarnessError as exc:
        raise fail(exc)

    if not found:
        console.print("[yellow]No simulators found.[/yellow]")
        return

    table = Table(title="Simulators", border_style="cyan")
    table.add_column("Name", style="bold")
    table.add_column("Version")
    table.add_column("UDID", style="dim")
    table.add_column("State")
    for device in sorted(found, key=lambda d: (d.version_tuple, d.name)):
        style = _STATE_STYLES.get(device.state, "red")
        table.add_row(device.name, device.version, device.udid, f"[{style}]{device.state.value}[/{style}]")

    console.print()
    console.print(table)
    console.print()


def erase_device(
    device: str = typer.Option(..., "--device", "-d", help="Simulator UDID, name, or 'name (version)'."),
    config_path: Path | None = CONFIG_OPTION,
) -> None:
    """Erase all content and settings (the simulator is shut down first)."""
    config = load_config(config_path)
    try:
        erased = erase(device, config=config)
    except SimHarnessError as exc:
        raise fail(exc)
    console.print(f"[green]Erased[/green] {erased.instruments_name} [dim]{erased.udid}[/dim]")


def quit_sim(config_path: Path | None = CONFIG_OPTION) -> None:
    """Quit the simulator app and its helper processes."""
    config = load_config(config_path)
    count = quit_simulator(ProcessSupervisor(config))
    console.print(f"[green]Stopped[/green] {count} simulator process(es)")


def kill_services(config_path: Path | None = CONFIG_OPTION) -> None:
    """Quit the simulator and kill the CoreSimulator service daemons."""
    config = load_config(config_path)
    count = terminate_core_simulator_processes(ProcessSupervisor(config))
    console.print(f"[green]Stopped[/green] {count} simulator and service process(es)")
