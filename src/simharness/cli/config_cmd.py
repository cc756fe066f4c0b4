"""simharness config -- View and manage simharness configuration.

Subcommands: show, set.
"""

from __future__ import annotations

from pathlib import Path

import typer
import yaml
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from simharness.config import SimHarnessConfig, SimHarnessConfigError, is_ci

console = Console()

config_app = typer.Typer(
    name="config",
    help="View and manage simharness configuration.",
    no_args_is_help=True,
)


def find_project_dir() -> Path:
    """Locate the .simharness/ project directory by searching upward from cwd."""
    current = Path.cwd()
    for base in [current, *current.parents]:
        candidate = base / ".simharness"
        if candidate.is_dir():
            return candidate
    return current / ".simharness"


def resolve_config_path(config_path: Path | None) -> Path:
    return config_path or find_project_dir() / "config.yaml"


def load_config(config_path: Path | None) -> SimHarnessConfig:
    """Load the effective config, exiting with code 2 on errors.

    An explicit *config_path* must exist; the discovered project config is
    optional.
    """
    path = resolve_config_path(config_path)
    try:
        if config_path is not None or path.is_file():
            return SimHarnessConfig.from_file(path)
        return SimHarnessConfig.defaults()
    except SimHarnessConfigError as exc:
        console.print(Panel(f"[red]{exc}[/red]", title="[red]Config Error[/red]", border_style="red"))
        raise typer.Exit(code=2)


def _load_raw_config(config_path: Path) -> dict:
    """Load the raw YAML config dict."""
    if not config_path.is_file():
        return {}
    with open(config_path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return data if isinstance(data, dict) else {}


def _save_raw_config(config_path: Path, data: dict) -> None:
    """Write the config dict to config.yaml."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w", encoding="utf-8") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)


@config_app.command(name="show")
def config_show(
    config_path: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a config.yaml file.",
    ),
) -> None:
    """Show the resolved simharness configuration.

    Values from config.yaml are layered over the local or CI defaults.
    """
    path = resolve_config_path(config_path)
    config = load_config(config_path)
    raw = _load_raw_config(path) if path.is_file() else {}

    table = Table(title="simharness Configuration", border_style="cyan")
    table.add_column("Setting", style="bold")
    table.add_column("Value")
    table.add_column("Source", style="dim")

    table.add_row("Config File", str(path), "exists" if path.is_file() else "missing")
    table.add_row("Environment", "CI" if is_ci() else "local", "env")
    table.add_row("", "", "")
    for key, value in config.as_dict().items():
        table.add_row(key, "-" if value is None else str(value), "config" if key in raw else "default")

    console.print()
    console.print(table)
    console.print()


@config_app.command(name="set")
def config_set(
    key: str = typer.Argument(..., help="Configuration key to set."),
    value: str = typer.Argument(..., help="Value to set."),
    config_path: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a config.yaml file.",
    ),
) -> None:
    """Set a configuration value in .simharness/config.yaml.

    Examples:
      simharness config set launch_app_timeout 60
      simharness config set app_launch_retries 5
    """
    path = resolve_config_path(config_path)
    data = _load_raw_config(path)
    data[key] = yaml.safe_load(value)

    # Validate before writing so a bad value never lands on disk.
    try:
        SimHarnessConfig._from_dict(data, path.parent)
    except SimHarnessConfigError as exc:
        console.print(Panel(f"[red]{exc}[/red]", title="[red]Config Error[/red]", border_style="red"))
        raise typer.Exit(code=2)

    _save_raw_config(path, data)
    console.print(f"[green]Set[/green] {key} = {data[key]} [dim]in {path}[/dim]")
