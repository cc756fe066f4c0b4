"""simharness configuration management."""

from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from simharness.errors import SimHarnessError

# Environment variables set by the CI services we know about.
CI_ENVIRONMENT_VARIABLES = (
    "CI",
    "JENKINS_HOME",
    "TRAVIS",
    "CIRCLECI",
    "TEAMCITY_PROJECT_NAME",
    "GITLAB_CI",
    "GITHUB_ACTIONS",
)

LOCAL_TIMEOUT = 30.0
CI_TIMEOUT = 120.0
LOCAL_LAUNCH_RETRIES = 3
CI_LAUNCH_RETRIES = 5


class SimHarnessConfigError(SimHarnessError):
    """Raised when configuration is invalid or missing."""

    pass


def is_ci(environ: dict[str, str] | None = None) -> bool:
    """Return True when running under a known CI service."""
    env = os.environ if environ is None else environ
    for name in CI_ENVIRONMENT_VARIABLES:
        value = env.get(name, "")
        if value and value.lower() not in ("0", "false", "no"):
            return True
    return False


def _default_core_simulator_dir() -> Path:
    return Path.home() / "Library" / "Developer" / "CoreSimulator" / "Devices"


@dataclass(frozen=True)
class SimHarnessConfig:
    """Timeouts, retry bounds and paths shared by every component."""

    # simctl operations
    install_app_timeout: float = LOCAL_TIMEOUT
    uninstall_app_timeout: float = LOCAL_TIMEOUT
    launch_app_timeout: float = LOCAL_TIMEOUT
    wait_for_state_timeout: float = LOCAL_TIMEOUT
    app_launch_retries: int = LOCAL_LAUNCH_RETRIES

    # Polling
    wait_for_state_interval: float = 0.1
    process_wait_timeout: float = 10.0
    process_wait_interval: float = 0.1
    terminate_timeout: float = 0.5
    simulator_launch_timeout: float = 5.0
    app_launch_verify_timeout: float = 10.0
    launch_retry_delay: float = 0.5
    stable_state_interval: float = 1.0

    # Paths
    core_simulator_dir: Path = field(default_factory=_default_core_simulator_dir)
    developer_dir: Path | None = None

    def __post_init__(self) -> None:
        if isinstance(self.app_launch_retries, bool) or not isinstance(self.app_launch_retries, int):
            raise SimHarnessConfigError(
                f"app_launch_retries must be an integer, got {self.app_launch_retries!r}"
            )
        if self.app_launch_retries < 1:
            raise SimHarnessConfigError("app_launch_retries must be at least 1")

    @classmethod
    def defaults(cls, ci: bool | None = None) -> SimHarnessConfig:
        """Return the defaults for a local machine or, when *ci*, a CI host.

        When *ci* is None the environment is inspected with ``is_ci()``.
        """
        if ci is None:
            ci = is_ci()
        if not ci:
            return cls()
        return cls(
            install_app_timeout=CI_TIMEOUT,
            uninstall_app_timeout=CI_TIMEOUT,
            launch_app_timeout=CI_TIMEOUT,
            wait_for_state_timeout=CI_TIMEOUT,
            app_launch_retries=CI_LAUNCH_RETRIES,
        )

    @classmethod
    def from_file(cls, config_path: Path, ci: bool | None = None) -> SimHarnessConfig:
        """Load config from a YAML file, layered over ``defaults(ci)``."""
        if not config_path.exists():
            raise SimHarnessConfigError(
                f"Config file not found: {config_path}\n\n"
                "To fix: create it or drop the --config option"
            )
        with open(config_path, encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as exc:
                raise SimHarnessConfigError(f"Invalid YAML in {config_path}: {exc}") from exc
        if not isinstance(data, dict):
            raise SimHarnessConfigError(f"Expected a mapping at the top of {config_path}")
        return cls._from_dict(data, config_path.parent, ci=ci)

    @classmethod
    def _from_dict(cls, data: dict[str, Any], project_dir: Path, ci: bool | None = None) -> SimHarnessConfig:
        """Create config from a dictionary of YAML keys."""
        base = cls.defaults(ci)
        known = {f.name: f for f in dataclasses.fields(cls)}
        overrides: dict[str, Any] = {}

        for key, value in data.items():
            if key not in known:
                raise SimHarnessConfigError(
                    f"Unknown config key: {key}\n\n"
                    f"Recognized keys: {', '.join(sorted(known))}"
                )
            overrides[key] = _coerce(key, value, getattr(base, key), project_dir)

        return dataclasses.replace(base, **overrides)

    def with_overrides(self, **overrides: Any) -> SimHarnessConfig:
        """Return a copy with the given fields replaced."""
        try:
            return dataclasses.replace(self, **overrides)
        except TypeError as exc:
            raise SimHarnessConfigError(str(exc)) from exc

    def as_dict(self) -> dict[str, Any]:
        """Return the config as plain values, paths rendered as strings."""
        out: dict[str, Any] = {}
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            out[f.name] = str(value) if isinstance(value, Path) else value
        return out


def _coerce(key: str, value: Any, current: Any, project_dir: Path) -> Any:
    """Convert a YAML value to the type of the existing field value."""
    if key in ("core_simulator_dir", "developer_dir"):
        if value is None:
            if key == "developer_dir":
                return None
            raise SimHarnessConfigError(f"{key} cannot be empty")
        path = Path(str(value)).expanduser()
        return path if path.is_absolute() else project_dir / path

    if isinstance(value, bool) or value is None:
        raise SimHarnessConfigError(f"{key} must be a number, got {value!r}")

    try:
        if isinstance(current, int):
            coerced = int(value)
        else:
            coerced = float(value)
    except (TypeError, ValueError) as exc:
        raise SimHarnessConfigError(f"{key} must be a number, got {value!r}") from exc

    if coerced < 0:
        raise SimHarnessConfigError(f"{key} must not be negative, got {value!r}")
    if key == "app_launch_retries" and coerced < 1:
        raise SimHarnessConfigError("app_launch_retries must be at least 1")
    return coerced
