"""simharness -- iOS Simulator lifecycle management for test runs.

Boots and quits the simulator process tree, installs or updates the app
under test, launches it with bounded retries, and resets its sandbox
between runs.

Typical use::

    from simharness import CoreSimulator

    sim = CoreSimulator("iPhone 15 (17.2)", "build/MyApp.app")
    sim.reset_app_sandbox()
    sim.launch()
"""

from __future__ import annotations

__version__ = "0.1.0"

from simharness.config import SimHarnessConfig, SimHarnessConfigError
from simharness.core import CoreSimulator, app_installed, erase, quit_simulator, terminate_core_simulator_processes
from simharness.errors import (
    InputError,
    InstallationError,
    LaunchError,
    SimctlError,
    SimctlTimeoutError,
    SimHarnessError,
    TransientOperationalError,
    WaitTimeoutError,
)
from simharness.models import AppBundle, Device, DeviceState, InstalledAppRecord

__all__ = [
    "AppBundle",
    "CoreSimulator",
    "Device",
    "DeviceState",
    "InputError",
    "InstallationError",
    "InstalledAppRecord",
    "LaunchError",
    "SimHarnessConfig",
    "SimHarnessConfigError",
    "SimHarnessError",
    "SimctlError",
    "SimctlTimeoutError",
    "TransientOperationalError",
    "WaitTimeoutError",
    "__version__",
    "app_installed",
    "erase",
    "quit_simulator",
    "terminate_core_simulator_processes",
]
