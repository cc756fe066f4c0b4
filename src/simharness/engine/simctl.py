"""``xcrun simctl`` wrapper implementing ``SimulatorControl``.

Every command runs through ``subprocess.run`` with a deadline.  A deadline
miss becomes ``SimctlTimeoutError`` and a non-zero exit becomes
``SimctlError``; both are transient, so the launch loop may retry them.
"""

from __future__ import annotations

import json
import logging
import re
import subprocess
from pathlib import Path
from typing import Any, Callable

from simharness.config import SimHarnessConfig
from simharness.errors import InputError, SimctlError, SimctlTimeoutError
from simharness.models import AppBundle, Device, DeviceRef, DeviceState, looks_like_physical_udid

logger = logging.getLogger("simharness.engine.simctl")

# "com.apple.CoreSimulator.SimRuntime.iOS-17-2" (current) or "iOS 9.3" (old).
_RUNTIME_KEY = re.compile(r"(?:SimRuntime\.)?(?P<platform>[A-Za-z]+)[- ](?P<version>\d+(?:[-.]\d+)*)$")

# Default deadline for quick queries (list, shutdown).
QUERY_TIMEOUT = 30.0


def parse_runtime(runtime: str) -> tuple[str, str] | None:
    """Return ``(platform, version)`` for a simctl runtime key, or None."""
    match = _RUNTIME_KEY.search(runtime)
    if match is None:
        return None
    return match.group("platform"), match.group("version").replace("-", ".")


def parse_device_list(payload: dict[str, Any], core_simulator_dir: Path | None = None) -> list[Device]:
    """Build ``Device`` snapshots from ``simctl list devices --json`` output.

    Only iOS runtimes are kept.  Unavailable devices are skipped.
    """
    devices: list[Device] = []
    for runtime, entries in payload.get("devices", {}).items():
        parsed = parse_runtime(runtime)
        if parsed is None or parsed[0] != "iOS":
            continue
        version = parsed[1]
        for entry in entries:
            available = entry.get("isAvailable", entry.get("availability") == "(available)")
            if not available:
                continue
            udid = entry.get("udid", "")
            root: Path | None = None
            if entry.get("dataPath"):
                root = Path(entry["dataPath"]).parent
            elif core_simulator_dir is not None:
                root = Path(core_simulator_dir) / udid
            devices.append(
                Device(
                    name=entry.get("name", ""),
                    udid=udid,
                    version=version,
                    state=DeviceState.parse(entry.get("state")),
                    root=root,
                )
            )
    return devices


class Simctl:
    """Runs ``xcrun simctl`` subcommands."""

    def __init__(
        self,
        config: SimHarnessConfig | None = None,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ) -> None:
        self._config = config or SimHarnessConfig.defaults()
        self._run = runner

    # -- Queries -------------------------------------------------------------

    def list_devices(self) -> list[Device]:
        result = self._simctl("list", "devices", "--json", timeout=QUERY_TIMEOUT)
        try:
            payload = json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            raise SimctlError(["xcrun", "simctl", "list", "devices", "--json"], 0, f"unparseable JSON: {exc}") from exc
        return parse_device_list(payload, self._config.core_simulator_dir)

    def device_state(self, device: Device) -> DeviceState:
        for candidate in self.list_devices():
            if candidate.udid == device.udid:
                return candidate.state
        return DeviceState.UNKNOWN

    def refresh(self, device: Device) -> Device:
        """Re-query *device* and update its ``state`` in place."""
        device.state = self.device_state(device)
        return device

    # -- Mutations -----------------------------------------------------------

    def shutdown(self, device: Device) -> None:
        try:
            self._simctl("shutdown", device.udid, timeout=QUERY_TIMEOUT)
        except SimctlError as exc:
            # Shutting down a device that is already down exits non-zero.
            if "current state: Shutdown" in exc.stderr:
                logger.warning("simctl shutdown %s: already shut down", device.udid)
                return
            raise

    def erase(self, device: Device, timeout: float) -> None:
        self._simctl("erase", device.udid, timeout=timeout)

    def install(self, device: Device, app: AppBundle, timeout: float) -> None:
        self._simctl("install", device.udid, str(app.path), timeout=timeout)

    def uninstall(self, device: Device, app: AppBundle, timeout: float) -> None:
        self._simctl("uninstall", device.udid, app.bundle_identifier, timeout=timeout)

    def launch(self, device: Device, app: AppBundle, timeout: float) -> None:
        self._simctl("launch", device.udid, app.bundle_identifier, timeout=timeout)

    # -- simctl Helpers ------------------------------------------------------

    def _simctl(self, *args: str, timeout: float) -> subprocess.CompletedProcess:
        """Run ``xcrun simctl <args>``.

        Raises ``SimctlTimeoutError`` past *timeout* and ``SimctlError`` on a
        non-zero exit code.
        """
        cmd = ["xcrun", "simctl", *args]
        logger.debug("simctl: %s", " ".join(cmd))
        try:
            result = self._run(cmd, capture_output=True, text=True, timeout=timeout)
        except subprocess.TimeoutExpired as exc:
            raise SimctlTimeoutError(cmd, timeout) from exc
        except OSError as exc:
            raise SimctlError(cmd, -1, str(exc)) from exc
        if result.returncode != 0:
            raise SimctlError(cmd, result.returncode, (result.stderr or "").strip())
        return result


def resolve_device(ref: DeviceRef, simctl: Simctl) -> Device:
    """Turn a device identifier or ``Device`` into a simulator ``Device``.

    Identifiers may be a UDID, a device name, or ``"<name> (<version>)"``.
    When a bare name matches several runtimes the newest one wins.

    Raises:
        InputError: *ref* names a physical device or matches no simulator.
    """
    if isinstance(ref, Device):
        if ref.physical_device():
            raise InputError(f"{ref} is a physical device; only simulators are supported")
        return ref

    identifier = ref.strip()
    if looks_like_physical_udid(identifier):
        raise InputError(f"'{identifier}' looks like a physical device UDID; only simulators are supported")

    devices = simctl.list_devices()
    for device in devices:
        if identifier in (device.udid, device.instruments_name):
            return device

    by_name = [d for d in devices if d.name == identifier]
    if by_name:
        return max(by_name, key=lambda d: d.version_tuple)

    raise InputError(
        f"No simulator matches '{identifier}'\n\n"
        "To fix: run 'simharness devices' to list the available simulators"
    )
