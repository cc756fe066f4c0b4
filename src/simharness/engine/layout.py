"""On-disk layout of a simulator device directory.

Devices running platform 8 or later keep app bundles and app data in
separate container trees; older devices keep both in one directory per app.
The layout is resolved once per device and handed to the installer and the
sandbox resetter.
"""

from __future__ import annotations

import enum
from pathlib import Path

from simharness.models import Device


class PathLayout(enum.Enum):
    LEGACY = "legacy"
    MODERN = "modern"

    @classmethod
    def for_version(cls, version: tuple[int, ...]) -> PathLayout:
        return cls.MODERN if version[0] >= 8 else cls.LEGACY


class DeviceLayout:
    """Paths inside one device root (``.../CoreSimulator/Devices/<udid>``)."""

    def __init__(self, root: Path, layout: PathLayout) -> None:
        self.root = Path(root)
        self.layout = layout

    @classmethod
    def for_device(cls, device: Device, core_simulator_dir: Path | None = None) -> DeviceLayout:
        root = device.root
        if root is None:
            if core_simulator_dir is None:
                raise ValueError(f"No filesystem root known for {device}")
            root = Path(core_simulator_dir) / device.udid
        return cls(root, PathLayout.for_version(device.version_tuple))

    @property
    def modern(self) -> bool:
        return self.layout is PathLayout.MODERN

    @property
    def data_dir(self) -> Path:
        return self.root / "data"

    @property
    def applications_dir(self) -> Path:
        """Parent of every ``<container-id>/<Name>.app`` bundle directory."""
        if self.modern:
            return self.data_dir / "Containers" / "Bundle" / "Application"
        return self.data_dir / "Applications"

    @property
    def data_containers_dir(self) -> Path | None:
        """Parent of per-app data containers; None on the legacy layout."""
        if self.modern:
            return self.data_dir / "Containers" / "Data" / "Application"
        return None

    @property
    def device_preferences_dir(self) -> Path:
        return self.data_dir / "Library" / "Preferences"

    def launch_services_stores(self) -> list[Path]:
        caches = self.data_dir / "Library" / "Caches"
        if not caches.is_dir():
            return []
        return sorted(caches.glob("com.apple.LaunchServices-*.csstore"))

    def instruments_pipes(self) -> list[Path]:
        tmp = self.data_dir / "tmp"
        if not tmp.is_dir():
            return []
        return sorted(tmp.glob("instruments_*/stdio.pipe"))
