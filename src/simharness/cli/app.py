"""simharness CLI -- Main Typer entry point.

Registers all subcommands and provides --version / --verbose global options.
"""

from __future__ import annotations

import logging

import typer
from rich.console import Console

from simharness import __version__

TAGLINE = "Boot, install, launch and reset apps on the iOS Simulator."

console = Console()

# -- Version callback --------------------------------------------------------


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"simharness v{__version__}", style="bold")
        console.print(f"  {TAGLINE}", style="dim")
        raise typer.Exit()


# -- Main app ----------------------------------------------------------------

app = typer.Typer(
    name="simharness",
    help=TAGLINE,
    rich_markup_mode="rich",
    no_args_is_help=True,
    add_completion=False,
)


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show simharness version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging.",
    ),
) -> None:
    """simharness -- iOS Simulator lifecycle for test runs."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(name)s  %(message)s")


# -- Register subcommands ----------------------------------------------------

from simharness.cli.app_cmd import install, launch, reset, uninstall  # noqa: E402
from simharness.cli.config_cmd import config_app  # noqa: E402
from simharness.cli.device_cmd import devices, erase_device, kill_services, quit_sim  # noqa: E402

app.command(name="devices", help="List available simulators.")(devices)
app.command(name="install", help="Install the app, or update it in place if it changed.")(install)
app.command(name="launch", help="Install if needed and launch the app with retries.")(launch)
app.command(name="reset", help="Reset the app's sandbox (simulator is shut down first).")(reset)
app.command(name="uninstall", help="Uninstall the app and its sandbox.")(uninstall)
app.command(name="erase", help="Erase all content and settings of a simulator.")(erase_device)
app.command(name="quit", help="Quit the simulator app and its helper processes.")(quit_sim)
app.command(name="kill-services", help="Quit the simulator and kill CoreSimulator services.")(kill_services)
app.add_typer(config_app, name="config", help="View and manage simharness configuration.")
