"""CoreSimulator facade.

Wires the engine components together for one device and one app, and
exposes the device-wide operations (erase, installed check, quitting the
simulator) as module functions.
"""

from __future__ import annotations

import logging
from pathlib import Path

from simharness.config import SimHarnessConfig
from simharness.engine.installer import InstallationReconciler, bundle_identifier_of, find_installed_bundles
from simharness.engine.launcher import LaunchOrchestrator, LaunchReport
from simharness.engine.layout import DeviceLayout
from simharness.engine.processes import ProcessSupervisor
from simharness.engine.protocols import CommandRunner
from simharness.engine.sandbox import SandboxResetter
from simharness.engine.simctl import Simctl, resolve_device
from simharness.engine.simulator import SimulatorBooter, open_command
from simharness.engine.waiter import StateWaiter
from simharness.engine.xcode import Xcode
from simharness.models import AppBundle, Device, DeviceRef, DeviceState, InstalledAppRecord

logger = logging.getLogger("simharness.core")

# Simulator system apps whose bundles cannot be inspected.
SYSTEM_APP_SKIP_LIST = ("Fitness.app", "Photo Booth.app", "ScreenSharingViewService.app")


class CoreSimulator:
    """Lifecycle operations for one app on one simulator.

    Args:
        device: UDID, device name, ``"<name> (<version>)"`` or a ``Device``.
        app: Path to a ``.app`` bundle or an ``AppBundle``.
        config: Timeouts and paths.  Defaults depend on ``is_ci()``.

    The remaining keyword arguments replace the external collaborators and
    exist for tests and embedding.

    Raises:
        InputError: the device is physical or unknown, or *app* is not an
            app bundle.
    """

    def __init__(
        self,
        device: DeviceRef,
        app: AppBundle | str | Path,
        config: SimHarnessConfig | None = None,
        simctl: Simctl | None = None,
        supervisor: ProcessSupervisor | None = None,
        xcode: Xcode | None = None,
        waiter: StateWaiter | None = None,
        command_runner: CommandRunner = open_command,
    ) -> None:
        self.config = config or SimHarnessConfig.defaults()
        self.simctl = simctl or Simctl(self.config)
        self.device: Device = resolve_device(device, self.simctl)
        self.app = app if isinstance(app, AppBundle) else AppBundle.from_path(app)
        self.layout = DeviceLayout.for_device(self.device, self.config.core_simulator_dir)

        self.waiter = waiter or StateWaiter()
        self.supervisor = supervisor or ProcessSupervisor(self.config, self.waiter)
        self.xcode = xcode or Xcode(self.config)
        self.booter = SimulatorBooter(
            self.simctl,
            self.supervisor,
            self.xcode,
            config=self.config,
            waiter=self.waiter,
            command_runner=command_runner,
        )
        self.reconciler = InstallationReconciler(
            self.device,
            self.app,
            self.layout,
            self.simctl,
            self.booter,
            config=self.config,
        )
        self.sandbox = SandboxResetter(
            self.device,
            self.reconciler,
            self.layout,
            self.supervisor,
            self.booter,
            self.simctl,
        )
        self.orchestrator = LaunchOrchestrator(
            self.device,
            self.app,
            self.reconciler,
            self.booter,
            self.supervisor,
            self.simctl,
            config=self.config,
        )

        self._remove_instruments_pipes()

    def __repr__(self) -> str:
        return f"CoreSimulator({self.device}, {self.app})"

    # -- Public API ----------------------------------------------------------

    def launch_simulator(self) -> bool:
        """Boot the device in the simulator app unless ours is already up."""
        return self.booter.ensure_booted(self.device)

    def launch(self) -> LaunchReport:
        """Install or update the app, then launch it with retries."""
        return self.orchestrator.launch()

    def install(self) -> InstalledAppRecord:
        """Install the app, or replace the installed bundle if it differs.

        The sandbox is not touched.
        """
        return self.reconciler.install(self.app)

    def app_is_installed(self) -> bool:
        return self.reconciler.is_installed()

    def reset_app_sandbox(self) -> bool:
        """Clear the app's sandbox; a no-op when the app is not installed."""
        return self.sandbox.reset()

    def uninstall_app_and_sandbox(self) -> bool:
        """Uninstall the app through simctl.  Returns False if it was not installed."""
        return self.reconciler.uninstall()

    # -- Internal ------------------------------------------------------------

    def _remove_instruments_pipes(self) -> None:
        """Delete stale instruments pipes, which hang tree walks of the data dir."""
        for pipe in self.layout.instruments_pipes():
            logger.debug("Deleting %s", pipe)
            try:
                pipe.unlink()
            except FileNotFoundError:
                continue


# ---------------------------------------------------------------------------
# Device-wide operations
# ---------------------------------------------------------------------------

def erase(
    device: DeviceRef,
    config: SimHarnessConfig | None = None,
    simctl: Simctl | None = None,
    waiter: StateWaiter | None = None,
) -> Device:
    """Erase all content and settings of a simulator.

    Shuts the device down first and waits (strict) for ``Shutdown``.

    Raises:
        InputError: *device* is a physical device or unknown.
        WaitTimeoutError: the device did not shut down in time.
    """
    config = config or SimHarnessConfig.defaults()
    simctl = simctl or Simctl(config)
    waiter = waiter or StateWaiter()
    resolved = resolve_device(device, simctl)

    if simctl.device_state(resolved) != DeviceState.SHUTDOWN:
        simctl.shutdown(resolved)
    result = waiter.poll_until(
        lambda: simctl.device_state(resolved),
        DeviceState.SHUTDOWN,
        timeout=config.wait_for_state_timeout,
        interval=config.wait_for_state_interval,
        strict=True,
        description=f"{resolved} to shut down before erase",
    )
    resolved.state = result.last_value

    simctl.erase(resolved, config.wait_for_state_timeout)
    logger.info("Erased %s", resolved)
    return resolved


def app_installed(
    device: DeviceRef,
    bundle_identifier: str,
    config: SimHarnessConfig | None = None,
    simctl: Simctl | None = None,
    xcode: Xcode | None = None,
) -> bool:
    """True if *bundle_identifier* is a user or system app on the simulator."""
    config = config or SimHarnessConfig.defaults()
    simctl = simctl or Simctl(config)
    resolved = resolve_device(device, simctl)

    layout = DeviceLayout.for_device(resolved, config.core_simulator_dir)
    if find_installed_bundles(layout, bundle_identifier):
        return True
    return system_app_installed(bundle_identifier, xcode or Xcode(config))


def system_app_installed(bundle_identifier: str, xcode: Xcode) -> bool:
    """True if the simulator SDK ships an app with *bundle_identifier*."""
    apps_dir = xcode.system_applications_dir
    if not apps_dir.is_dir():
        return False
    for app_dir in sorted(apps_dir.glob("*.app")):
        if app_dir.name in SYSTEM_APP_SKIP_LIST:
            continue
        if bundle_identifier_of(app_dir) == bundle_identifier:
            return True
    return False


def quit_simulator(supervisor: ProcessSupervisor | None = None) -> int:
    """Quit the simulator app and its helper processes."""
    return (supervisor or ProcessSupervisor()).quit_simulator()


def terminate_core_simulator_processes(supervisor: ProcessSupervisor | None = None) -> int:
    """Quit the simulator and kill the CoreSimulator service daemons."""
    return (supervisor or ProcessSupervisor()).terminate_core_simulator_processes()
