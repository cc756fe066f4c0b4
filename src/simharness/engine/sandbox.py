"""App sandbox reset.

Clears an app's Documents, tmp, caches and preferences while the device is
shut down.  A few preference files must survive because the automation
tooling stores its own settings there.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from simharness.engine.installer import InstallationReconciler
from simharness.engine.layout import DeviceLayout
from simharness.engine.processes import ProcessSupervisor
from simharness.engine.protocols import SimulatorControl
from simharness.engine.simulator import SimulatorBooter
from simharness.errors import SandboxResetError
from simharness.models import Device, DeviceState

logger = logging.getLogger("simharness.engine.sandbox")

# Kept in Library/Preferences on platform 8 and later.
MODERN_PROTECTED_PREFERENCES = frozenset({
    "com.apple.UIAutomation.plist",
    "com.apple.UIAutomationPlugIn.plist",
})

# Kept in Library/Preferences on older platforms.
LEGACY_PROTECTED_PREFERENCES = frozenset({
    ".GlobalPreferences.plist",
    "com.apple.PeoplePicker.plist",
})


def _entries(root: Path) -> list[Path]:
    """Everything below *root*, parents before children."""
    if not root.is_dir():
        return []
    return sorted(root.rglob("*"))


def _delete(path: Path) -> bool:
    """Remove *path*; returns False if an earlier delete already took it."""
    if not path.exists() and not path.is_symlink():
        return False
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
    except OSError as exc:
        raise SandboxResetError(f"Could not delete {path}: {exc}") from exc
    return True


class SandboxResetter:
    """Resets the sandbox of the app managed by *reconciler*."""

    def __init__(
        self,
        device: Device,
        reconciler: InstallationReconciler,
        layout: DeviceLayout,
        supervisor: ProcessSupervisor,
        booter: SimulatorBooter,
        simctl: SimulatorControl,
    ) -> None:
        self.device = device
        self._reconciler = reconciler
        self._layout = layout
        self._supervisor = supervisor
        self._booter = booter
        self._simctl = simctl

    def reset(self) -> bool:
        """Clear the app's sandbox.

        Does nothing and returns False when the app is not installed.
        Otherwise quits the simulator, waits for the device to report
        ``Shutdown`` (strict), and purges the sandbox.

        Raises:
            WaitTimeoutError: the device did not shut down in time.
            SandboxResetError: a delete or recreate failed.
        """
        bundle_id = self._reconciler.app.bundle_identifier
        record = self._reconciler.locate_installed()
        if record is None:
            logger.debug("%s is not installed on %s; nothing to reset", bundle_id, self.device)
            return False

        self._shut_down()

        sandbox = record.sandbox_dir or self._reconciler.sandbox_dir(record)
        if sandbox is None:
            logger.info("%s has no data container on %s yet", bundle_id, self.device)
            return True

        self._reset_shared(sandbox)
        if self._layout.modern:
            self._reset_modern(sandbox)
        else:
            self._reset_legacy(sandbox, bundle_id)
        logger.info("Reset sandbox of %s at %s", bundle_id, sandbox)
        return True

    # -- Steps ---------------------------------------------------------------

    def _shut_down(self) -> None:
        self._supervisor.quit_simulator()
        if self._simctl.device_state(self.device) != DeviceState.SHUTDOWN:
            self._simctl.shutdown(self.device)
        self._booter.wait_for_state(self.device, DeviceState.SHUTDOWN, strict=True)

    def _reset_shared(self, sandbox: Path) -> None:
        for name in ("Documents", "tmp"):
            directory = sandbox / name
            _delete(directory)
            try:
                directory.mkdir()
            except OSError as exc:
                raise SandboxResetError(f"Could not recreate {directory}: {exc}") from exc

    def _reset_modern(self, sandbox: Path) -> None:
        library = sandbox / "Library"
        for entry in _entries(library):
            if entry.relative_to(library).parts[0] == "Preferences":
                continue
            _delete(entry)

        for entry in _entries(library / "Preferences"):
            if entry.name not in MODERN_PROTECTED_PREFERENCES:
                _delete(entry)

    def _reset_legacy(self, sandbox: Path, bundle_id: str) -> None:
        for entry in _entries(sandbox / "Library" / "Preferences"):
            if entry.name not in LEGACY_PROTECTED_PREFERENCES:
                _delete(entry)

        # Older devices also cache the app's defaults at device level.  Only
        # the file named for this bundle identifier is touched.
        device_plist = self._layout.device_preferences_dir / f"{bundle_id}.plist"
        if _delete(device_plist):
            logger.info("Deleted device-level preferences %s", device_plist)
