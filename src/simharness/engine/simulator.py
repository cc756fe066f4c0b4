"""Simulator boot sequence.

Starts the simulator app for a device, waits for its process to appear and
for the device to settle, and skips all of that when a simulator this
package started is already showing the booted device.
"""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path
from typing import Callable

from simharness.config import SimHarnessConfig
from simharness.engine.processes import ProcessSupervisor
from simharness.engine.protocols import CommandRunner, SimulatorControl
from simharness.engine.waiter import StateWaiter, WaitResult
from simharness.engine.xcode import Xcode
from simharness.errors import CommandError
from simharness.models import Device, DeviceState, ProcessHandle

logger = logging.getLogger("simharness.engine.simulator")

# Extra argument on the simulator command line marking instances we started.
LAUNCH_MARKER = "LAUNCHED_BY_SIMHARNESS"

OPEN_TIMEOUT = 15


def open_command(args: list[str], runner: Callable[..., subprocess.CompletedProcess] = subprocess.run) -> None:
    """Run a short-lived launcher command such as ``open``.

    Raises ``CommandError`` if the command is missing or times out.  A
    non-zero exit is only logged; the process wait that follows decides.
    """
    logger.debug("exec: %s", " ".join(args))
    try:
        result = runner(args, capture_output=True, text=True, timeout=OPEN_TIMEOUT)
    except subprocess.TimeoutExpired as exc:
        raise CommandError(args, f"timed out after {OPEN_TIMEOUT}s") from exc
    except OSError as exc:
        raise CommandError(args, str(exc)) from exc
    if result.returncode != 0:
        logger.warning("%s exited with %d: %s", args[0], result.returncode, result.stderr.strip())


def data_fingerprint(path: Path) -> tuple[int, int]:
    """``(file count, total bytes)`` under *path*; (0, 0) if it is missing."""
    count = 0
    size = 0
    for dirpath, _dirnames, filenames in os.walk(path):
        for name in filenames:
            try:
                size += os.lstat(os.path.join(dirpath, name)).st_size
            except FileNotFoundError:
                continue
            count += 1
    return count, size


class SimulatorBooter:
    """Brings a device up in the simulator app and waits for it to settle."""

    def __init__(
        self,
        simctl: SimulatorControl,
        supervisor: ProcessSupervisor,
        xcode: Xcode,
        config: SimHarnessConfig | None = None,
        waiter: StateWaiter | None = None,
        command_runner: CommandRunner = open_command,
    ) -> None:
        self._simctl = simctl
        self._supervisor = supervisor
        self._xcode = xcode
        self._config = config or SimHarnessConfig.defaults()
        self._waiter = waiter or StateWaiter()
        self._run_command = command_runner

    # -- Queries -------------------------------------------------------------

    def running_simulator_details(self) -> ProcessHandle | None:
        """The running simulator app process, if any.

        ``launched_by_us`` is set when its command line carries
        ``LAUNCH_MARKER``.
        """
        handle = self._supervisor.find_by_command(f"MacOS/{self._xcode.sim_name}")
        if handle is None:
            return None
        return ProcessHandle(
            pid=handle.pid,
            name=handle.name,
            command=handle.command,
            executable=handle.executable,
            launched_by_us=LAUNCH_MARKER in handle.command,
        )

    # -- Boot ----------------------------------------------------------------

    def ensure_booted(self, device: Device) -> bool:
        """Make sure *device* is showing in a simulator we launched.

        Returns False when the running simulator could be reused, True when
        a fresh one was started.
        """
        running = self.running_simulator_details()
        if running is not None and running.launched_by_us:
            if self._simctl.device_state(device) == DeviceState.BOOTED:
                logger.debug("Reusing simulator pid %d for %s", running.pid, device)
                return False

        self._supervisor.quit_simulator()
        self.launch_simulator(device)
        return True

    def launch_simulator(self, device: Device) -> None:
        """Open the simulator app on *device* and wait until it is usable.

        Raises ``WaitTimeoutError`` if the app process does not appear or the
        device never reports ``Booted``.
        """
        sim_name = self._xcode.sim_name
        args = [
            "open",
            "-g",
            "-a",
            str(self._xcode.sim_app_path),
            "--args",
            "-CurrentDeviceUDID",
            device.udid,
            LAUNCH_MARKER,
        ]
        logger.info("Launching %s on %s", sim_name, device)
        self._run_command(args)
        self._supervisor.wait_for_appearance(
            sim_name,
            timeout=self._config.simulator_launch_timeout,
            strict=True,
        )
        self.wait_for_stable_state(device)
        logger.info("%s launched on %s", sim_name, device)

    # -- State waits ---------------------------------------------------------

    def wait_for_state(self, device: Device, target: DeviceState, strict: bool = True) -> WaitResult:
        """Poll ``simctl`` until *device* reports *target*.

        The device snapshot's ``state`` is updated with the last reading.
        """
        result = self._waiter.poll_until(
            lambda: self._simctl.device_state(device),
            target,
            timeout=self._config.wait_for_state_timeout,
            interval=self._config.wait_for_state_interval,
            strict=strict,
            description=f"{device} to reach {target.value}",
        )
        if isinstance(result.last_value, DeviceState):
            device.state = result.last_value
        return result

    def wait_for_stable_state(self, device: Device) -> bool:
        """Wait for ``Booted``, then for the data directory to stop changing.

        Booted is required; the settle wait is best effort and returns False
        if the directory was still changing at the deadline.
        """
        self.wait_for_state(device, DeviceState.BOOTED, strict=True)

        data_dir = Path(device.root) / "data" if device.root is not None else None
        if data_dir is None:
            return True

        previous: list[tuple[int, int] | None] = [None]

        def settled() -> bool:
            current = data_fingerprint(data_dir)
            same = current == previous[0]
            previous[0] = current
            return same

        result = self._waiter.poll_until(
            settled,
            True,
            timeout=self._config.wait_for_state_timeout,
            interval=self._config.stable_state_interval,
            description=f"{device} data directory to settle",
        )
        if not result:
            logger.warning("%s data directory still changing after %.1fs", device, result.elapsed)
        return result.matched
