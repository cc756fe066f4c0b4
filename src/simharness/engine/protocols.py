"""Collaborator contracts for the simharness engine.

The engine drives the simulator through these protocols so the real
``xcrun simctl`` wrapper can be swapped for an in-memory fake.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from simharness.models import AppBundle, Device, DeviceState


@runtime_checkable
class SimulatorControl(Protocol):
    """Low-level simulator operations.

    Every call is synchronous and raises ``TransientOperationalError`` (or a
    subclass) on failure or timeout.  ``Simctl`` maps these onto
    ``xcrun simctl``.
    """

    def list_devices(self) -> list[Device]: ...

    def device_state(self, device: Device) -> DeviceState: ...

    def shutdown(self, device: Device) -> None: ...

    def erase(self, device: Device, timeout: float) -> None: ...

    def install(self, device: Device, app: AppBundle, timeout: float) -> None: ...

    def uninstall(self, device: Device, app: AppBundle, timeout: float) -> None: ...

    def launch(self, device: Device, app: AppBundle, timeout: float) -> None: ...


@runtime_checkable
class CommandRunner(Protocol):
    """Starts a detached host command (used to open the simulator app)."""

    def __call__(self, args: list[str]) -> None: ...
