"""Data model shared by the simharness engine."""

from __future__ import annotations

import dataclasses
import enum
import re
from pathlib import Path
from typing import Union

# Physical device UDIDs: 40 hex chars (older devices) or 8-16 hex with a dash.
_PHYSICAL_UDID = re.compile(r"^(?:[0-9a-fA-F]{40}|[0-9A-F]{8}-[0-9A-F]{16})$")


class DeviceState(enum.Enum):
    """Lifecycle state reported by ``simctl`` for a simulator."""

    BOOTED = "Booted"
    SHUTDOWN = "Shutdown"
    BOOTING = "Booting"
    SHUTTING_DOWN = "Shutting Down"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, value: str | None) -> DeviceState:
        for state in cls:
            if state.value == value:
                return state
        return cls.UNKNOWN


class LaunchPhase(enum.Enum):
    """Where a launch is in install -> boot -> launch -> verify."""

    NOT_LAUNCHED = "not_launched"
    INSTALLING = "installing"
    BOOTING = "booting"
    LAUNCHING = "launching"
    RETRYING = "retrying"
    VERIFYING = "verifying"
    RUNNING = "running"
    FAILED = "failed"


def parse_version(version: str) -> tuple[int, ...]:
    """Parse ``"17.2"`` or ``"iOS 9.3.1"`` into a tuple of ints."""
    numbers = re.findall(r"\d+", version)
    if not numbers:
        return (0,)
    return tuple(int(n) for n in numbers)


def looks_like_physical_udid(identifier: str) -> bool:
    return bool(_PHYSICAL_UDID.match(identifier))


@dataclasses.dataclass
class Device:
    """Snapshot of one simulator.

    Only ``state`` changes after construction, and only through an explicit
    re-query (``Simctl.refresh``).
    """

    name: str
    udid: str
    version: str
    state: DeviceState = DeviceState.UNKNOWN
    root: Path | None = None
    simulator: bool = True

    @property
    def version_tuple(self) -> tuple[int, ...]:
        return parse_version(self.version)

    @property
    def instruments_name(self) -> str:
        return f"{self.name} ({self.version})"

    def physical_device(self) -> bool:
        return not self.simulator

    def __str__(self) -> str:
        return f"#<Simulator: {self.instruments_name} {self.udid}>"


# A device given by identifier (UDID, name, "name (version)") or already resolved.
DeviceRef = Union[str, Device]


@dataclasses.dataclass(frozen=True)
class AppBundle:
    """A candidate ``.app`` bundle on the host filesystem."""

    path: Path
    bundle_identifier: str
    executable_name: str
    digest: str

    @classmethod
    def from_path(cls, path: str | Path) -> AppBundle:
        """Inspect the bundle at *path* and compute its content digest.

        Raises ``InputError`` if *path* is not an app bundle.
        """
        # Imported here: simharness.engine imports this module.
        from simharness.engine.bundles import directory_digest, inspect_bundle

        bundle_path = Path(path).expanduser().resolve()
        info = inspect_bundle(bundle_path)
        return cls(
            path=bundle_path,
            bundle_identifier=info["bundle_identifier"],
            executable_name=info["executable_name"],
            digest=directory_digest(bundle_path),
        )

    def __str__(self) -> str:
        return f"#<App {self.bundle_identifier} {self.path}>"


@dataclasses.dataclass
class InstalledAppRecord:
    """An app installed inside a simulator's data directory."""

    bundle_dir: Path
    metadata_path: Path
    sandbox_dir: Path | None = None

    @property
    def container_dir(self) -> Path:
        return self.bundle_dir.parent

    def is_complete(self) -> bool:
        return self.metadata_path.exists()


@dataclasses.dataclass(frozen=True)
class ProcessHandle:
    """A running OS process, as seen by the last process table query."""

    pid: int
    name: str
    command: str = ""
    executable: str = ""
    launched_by_us: bool = False


@dataclasses.dataclass
class RetryState:
    """Attempt bookkeeping for a single launch."""

    max_attempts: int
    attempt: int = 0
    last_error: BaseException | None = None

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts
