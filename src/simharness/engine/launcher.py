"""App launch with bounded retries and recovery.

``LaunchOrchestrator.launch`` walks install -> boot -> launch -> verify.
Each launch attempt yields a ``LaunchAttempt`` instead of raising; a failed
attempt triggers recovery (kill the CoreSimulator service processes, pause,
bring the simulator back up) before the next one.  The inter-attempt delay
is fixed: the service restart is already slow.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from typing import Callable

from simharness.config import SimHarnessConfig
from simharness.engine.installer import InstallationReconciler
from simharness.engine.processes import ProcessSupervisor
from simharness.engine.protocols import SimulatorControl
from simharness.engine.simulator import SimulatorBooter
from simharness.errors import LaunchError, TransientOperationalError, WaitTimeoutError
from simharness.models import AppBundle, Device, InstalledAppRecord, LaunchPhase, RetryState

logger = logging.getLogger("simharness.engine.launcher")


@dataclasses.dataclass
class LaunchAttempt:
    """Outcome of one call to the launch primitive."""

    number: int
    error: TransientOperationalError | None = None
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclasses.dataclass
class LaunchReport:
    """What ``launch()`` did, for callers and the CLI."""

    device: Device
    app: AppBundle
    phase: LaunchPhase = LaunchPhase.NOT_LAUNCHED
    record: InstalledAppRecord | None = None
    attempts: list[LaunchAttempt] = dataclasses.field(default_factory=list)
    recoveries: int = 0

    @property
    def succeeded(self) -> bool:
        return self.phase is LaunchPhase.RUNNING


class LaunchOrchestrator:
    """Installs, boots and launches one app on one device."""

    def __init__(
        self,
        device: Device,
        app: AppBundle,
        reconciler: InstallationReconciler,
        booter: SimulatorBooter,
        supervisor: ProcessSupervisor,
        simctl: SimulatorControl,
        config: SimHarnessConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.device = device
        self.app = app
        self._reconciler = reconciler
        self._booter = booter
        self._supervisor = supervisor
        self._simctl = simctl
        self._config = config or SimHarnessConfig.defaults()
        self._sleep = sleep
        self._clock = clock
        self.phase = LaunchPhase.NOT_LAUNCHED

    # -- Public API ----------------------------------------------------------

    def launch(self) -> LaunchReport:
        """Install if needed, boot the simulator, launch and verify the app.

        Raises:
            LaunchError: every attempt failed; carries the attempt count and
                the last attempt's error.
            WaitTimeoutError: the simulator or the app process never showed up.
            InstallationError: the install could not be completed.
        """
        report = LaunchReport(device=self.device, app=self.app)
        try:
            self._enter(LaunchPhase.INSTALLING, report)
            report.record = self._reconciler.install(self.app)

            self._enter(LaunchPhase.BOOTING, report)
            self._booter.ensure_booted(self.device)

            retry = RetryState(max_attempts=self._config.app_launch_retries)
            logger.debug(
                "Trying %d times to launch %s on %s",
                retry.max_attempts,
                self.app.bundle_identifier,
                self.device,
            )
            self._launch_with_retries(retry, report)
            if retry.last_error is not None:
                raise LaunchError(
                    self.app.bundle_identifier,
                    str(self.device),
                    retry.attempt,
                    retry.last_error,
                )

            self._enter(LaunchPhase.VERIFYING, report)
            self._verify()
        except Exception:
            self._enter(LaunchPhase.FAILED, report)
            raise

        self._enter(LaunchPhase.RUNNING, report)
        return report

    # -- Retry loop ----------------------------------------------------------

    def _launch_with_retries(self, retry: RetryState, report: LaunchReport) -> None:
        while not retry.exhausted:
            retry.attempt += 1
            self._enter(LaunchPhase.LAUNCHING, report)
            attempt = self._attempt(retry.attempt)
            report.attempts.append(attempt)

            if attempt.ok:
                retry.last_error = None
                return

            retry.last_error = attempt.error
            logger.warning(
                "Launch attempt %d of %d for %s failed: %s",
                retry.attempt,
                retry.max_attempts,
                self.app.bundle_identifier,
                attempt.error,
            )
            self._enter(LaunchPhase.RETRYING, report)
            self._recover()
            report.recoveries += 1

    def _attempt(self, number: int) -> LaunchAttempt:
        start = self._clock()
        try:
            self._simctl.launch(self.device, self.app, self._config.launch_app_timeout)
        except TransientOperationalError as exc:
            return LaunchAttempt(number=number, error=exc, duration=self._clock() - start)
        return LaunchAttempt(number=number, duration=self._clock() - start)

    def _recover(self) -> None:
        """Reset CoreSimulator service state and bring the simulator back."""
        self._supervisor.terminate_core_simulator_processes()
        self._sleep(self._config.launch_retry_delay)
        try:
            self._booter.ensure_booted(self.device)
        except (TransientOperationalError, WaitTimeoutError) as exc:
            # The next attempt fails fast if the simulator is still down.
            logger.warning("Simulator did not come back during recovery: %s", exc)

    # -- Verification --------------------------------------------------------

    def _verify(self) -> None:
        """Wait for the app's process, then for the device to settle.

        simctl can report a launch before the process is schedulable.
        """
        self._supervisor.wait_for_appearance(
            self.app.executable_name,
            timeout=self._config.app_launch_verify_timeout,
            strict=True,
        )
        self._booter.wait_for_stable_state(self.device)

    def _enter(self, phase: LaunchPhase, report: LaunchReport) -> None:
        report.phase = phase
        if phase is self.phase:
            return
        logger.info("%s on %s: %s -> %s", self.app.bundle_identifier, self.device, self.phase.value, phase.value)
        self.phase = phase
