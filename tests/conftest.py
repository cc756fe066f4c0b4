"""Shared fixtures for simharness unit tests."""

from __future__ import annotations

import plistlib
import shutil
import signal
from pathlib import Path
from typing import Any, Callable

import pytest

from simharness.config import SimHarnessConfig
from simharness.engine.bundles import METADATA_IDENTIFIER_KEY, METADATA_PLIST
from simharness.engine.layout import DeviceLayout
from simharness.engine.waiter import StateWaiter
from simharness.models import AppBundle, Device, DeviceState, ProcessHandle

BUNDLE_ID = "com.example.Widget"
EXECUTABLE = "Widget"
MODERN_UDID = "5C4A2E1F-8B7D-4C3A-9E2F-1A2B3C4D5E6F"
LEGACY_UDID = "0F1E2D3C-4B5A-4978-8695-A4B3C2D1E0F9"


def write_metadata(path: Path, bundle_id: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        plistlib.dump({METADATA_IDENTIFIER_KEY: bundle_id}, f)


# ---------------------------------------------------------------------------
# Fake clock: drives StateWaiter without real sleeping
# ---------------------------------------------------------------------------

class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def waiter(clock: FakeClock) -> StateWaiter:
    return StateWaiter(clock=clock, sleep=clock.sleep)


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

@pytest.fixture
def config(tmp_path: Path) -> SimHarnessConfig:
    """Local (non-CI) defaults rooted in a temporary CoreSimulator dir."""
    return SimHarnessConfig.defaults(ci=False).with_overrides(
        core_simulator_dir=tmp_path / "Devices",
        developer_dir=tmp_path / "Xcode.app" / "Contents" / "Developer",
    )


# ---------------------------------------------------------------------------
# App bundles
# ---------------------------------------------------------------------------

@pytest.fixture
def make_bundle(tmp_path: Path) -> Callable[..., Path]:
    """Factory writing a minimal ``.app`` directory and returning its path."""

    def _make(
        name: str = "Widget.app",
        bundle_id: str = BUNDLE_ID,
        executable: str = EXECUTABLE,
        binary: bytes = b"\xcf\xfa\xed\xfe build 1",
        parent: Path | None = None,
    ) -> Path:
        bundle = (parent or tmp_path / "build") / name
        bundle.mkdir(parents=True, exist_ok=True)
        with open(bundle / "Info.plist", "wb") as f:
            plistlib.dump({"CFBundleIdentifier": bundle_id, "CFBundleExecutable": executable}, f)
        (bundle / executable).write_bytes(binary)
        (bundle / "Base.lproj").mkdir(exist_ok=True)
        (bundle / "Base.lproj" / "Main.storyboardc").write_text("storyboard", encoding="utf-8")
        return bundle

    return _make


@pytest.fixture
def app(make_bundle: Callable[..., Path]) -> AppBundle:
    return AppBundle.from_path(make_bundle())


# ---------------------------------------------------------------------------
# Devices
# ---------------------------------------------------------------------------

@pytest.fixture
def modern_device(config: SimHarnessConfig) -> Device:
    root = config.core_simulator_dir / MODERN_UDID
    (root / "data").mkdir(parents=True)
    return Device(name="iPhone 15", udid=MODERN_UDID, version="17.2", state=DeviceState.SHUTDOWN, root=root)


@pytest.fixture
def legacy_device(config: SimHarnessConfig) -> Device:
    root = config.core_simulator_dir / LEGACY_UDID
    (root / "data").mkdir(parents=True)
    return Device(name="iPhone 5s", udid=LEGACY_UDID, version="7.1", state=DeviceState.SHUTDOWN, root=root)


# ---------------------------------------------------------------------------
# Fake simulator control
# ---------------------------------------------------------------------------

class FakeSimctl:
    """In-memory ``SimulatorControl`` that writes installs to the device tree."""

    def __init__(self, devices: list[Device] | None = None) -> None:
        self.devices = list(devices or [])
        self.states: dict[str, DeviceState] = {d.udid: d.state for d in self.devices}
        self.calls: list[tuple[str, ...]] = []
        self.launch_results: list[BaseException | None] = []
        self.install_error: BaseException | None = None
        self._containers = 0

    def list_devices(self) -> list[Device]:
        return list(self.devices)

    def device_state(self, device: Device) -> DeviceState:
        return self.states.get(device.udid, DeviceState.UNKNOWN)

    def shutdown(self, device: Device) -> None:
        self.calls.append(("shutdown", device.udid))
        self.states[device.udid] = DeviceState.SHUTDOWN

    def erase(self, device: Device, timeout: float) -> None:
        self.calls.append(("erase", device.udid))

    def install(self, device: Device, app: AppBundle, timeout: float) -> None:
        self.calls.append(("install", device.udid, app.bundle_identifier))
        if self.install_error is not None:
            raise self.install_error
        self.install_tree(device, app.path, app.bundle_identifier)

    def uninstall(self, device: Device, app: AppBundle, timeout: float) -> None:
        self.calls.append(("uninstall", device.udid, app.bundle_identifier))

    def launch(self, device: Device, app: AppBundle, timeout: float) -> None:
        self.calls.append(("launch", device.udid, app.bundle_identifier))
        if self.launch_results:
            outcome = self.launch_results.pop(0)
            if outcome is not None:
                raise outcome

    def install_tree(
        self,
        device: Device,
        bundle_path: Path,
        bundle_id: str,
        with_metadata: bool = True,
        with_data_container: bool = True,
    ) -> tuple[Path, Path | None]:
        """Lay out an installed app the way the simulator does.

        Returns ``(bundle container, data container or None)``.
        """
        self._containers += 1
        layout = DeviceLayout.for_device(device)
        container = layout.applications_dir / f"{self._containers:08d}-BUNDLE"
        shutil.copytree(bundle_path, container / bundle_path.name)
        if with_metadata:
            write_metadata(container / METADATA_PLIST, bundle_id)

        if not layout.modern:
            sandbox = container
        elif with_data_container:
            sandbox = layout.data_containers_dir / f"{self._containers:08d}-DATA"
            write_metadata(sandbox / METADATA_PLIST, bundle_id)
        else:
            return container, None

        for sub in ("Documents", "tmp", "Library/Preferences", "Library/Caches"):
            (sandbox / sub).mkdir(parents=True, exist_ok=True)
        return container, sandbox if layout.modern else None


@pytest.fixture
def simctl(modern_device: Device, legacy_device: Device) -> FakeSimctl:
    return FakeSimctl([modern_device, legacy_device])


# ---------------------------------------------------------------------------
# Fake boot sequence and supervisor
# ---------------------------------------------------------------------------

class FakeBooter:
    """Stands in for ``SimulatorBooter``; records what was asked of it."""

    def __init__(self, simctl: FakeSimctl) -> None:
        self.simctl = simctl
        self.calls: list[str] = []
        self.ensure_booted_error: BaseException | None = None

    def ensure_booted(self, device: Device) -> bool:
        self.calls.append("ensure_booted")
        if self.ensure_booted_error is not None:
            raise self.ensure_booted_error
        self.simctl.states[device.udid] = DeviceState.BOOTED
        return True

    def wait_for_stable_state(self, device: Device) -> bool:
        self.calls.append("wait_for_stable_state")
        return True

    def wait_for_state(self, device: Device, target: DeviceState, strict: bool = True) -> Any:
        self.calls.append(f"wait_for_state:{target.value}")
        device.state = self.simctl.device_state(device)
        return device.state == target


class FakeSupervisor:
    def __init__(self) -> None:
        self.calls: list[str] = []
        self.appearance = True

    def quit_simulator(self) -> int:
        self.calls.append("quit_simulator")
        return 0

    def terminate_core_simulator_processes(self) -> int:
        self.calls.append("terminate_core_simulator_processes")
        return 0

    def wait_for_appearance(self, name: str, timeout: float | None = None, strict: bool = False) -> bool:
        self.calls.append(f"wait_for_appearance:{name}")
        return self.appearance


@pytest.fixture
def booter(simctl: FakeSimctl) -> FakeBooter:
    return FakeBooter(simctl)


@pytest.fixture
def supervisor() -> FakeSupervisor:
    return FakeSupervisor()


# ---------------------------------------------------------------------------
# Fake process table for ProcessSupervisor
# ---------------------------------------------------------------------------

class FakeProcessTable:
    """Process table plus signal delivery, all in memory.

    Processes exit on the first signal unless listed in ``ignore_term``
    (SIGTERM has no effect) or ``unkillable`` (nothing has an effect).
    """

    def __init__(self) -> None:
        self.procs: dict[int, ProcessHandle] = {}
        self.signals: list[tuple[int, int]] = []
        self.ignore_term: set[int] = set()
        self.unkillable: set[int] = set()
        self.denied: set[int] = set()
        self._next_pid = 1000

    def add(
        self,
        name: str,
        command: str | None = None,
        pid: int | None = None,
        executable: str = "",
    ) -> int:
        if pid is None:
            self._next_pid += 1
            pid = self._next_pid
        self.procs[pid] = ProcessHandle(
            pid=pid,
            name=name,
            command=command or f"/usr/bin/{name}",
            executable=executable,
        )
        return pid

    def list(self) -> list[ProcessHandle]:
        return list(self.procs.values())

    def send(self, pid: int, sig: int) -> None:
        self.signals.append((pid, sig))
        if pid in self.denied:
            raise PermissionError(pid)
        if pid not in self.procs:
            raise ProcessLookupError(pid)
        if pid in self.unkillable:
            return
        if sig == signal.SIGTERM and pid in self.ignore_term:
            return
        del self.procs[pid]

    def is_alive(self, pid: int) -> bool:
        return pid in self.procs

    def signals_for(self, pid: int) -> list[int]:
        return [sig for p, sig in self.signals if p == pid]


@pytest.fixture
def process_table() -> FakeProcessTable:
    return FakeProcessTable()
