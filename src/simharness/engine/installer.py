"""Installed-app reconciliation.

Finds the installed copy of an app inside a device's data tree, heals
installs that were interrupted before the simulator wrote the container
metadata, and brings the installed bundle in line with a candidate bundle:

- not installed: ``simctl install``, then wait for the device to settle.
- installed, same digest: nothing is touched.
- installed, different digest: the bundle directory is replaced in place
  and the launch-services cache is dropped.  The sandbox is left alone so
  state persisted by earlier runs survives an app rebuild.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Protocol

from simharness.config import SimHarnessConfig
from simharness.engine.bundles import METADATA_PLIST, directory_digest, inspect_bundle, read_metadata_identifier
from simharness.engine.layout import DeviceLayout
from simharness.engine.protocols import SimulatorControl
from simharness.errors import InputError, InstallationError
from simharness.models import AppBundle, Device, InstalledAppRecord

logger = logging.getLogger("simharness.engine.installer")


class DeviceReadiness(Protocol):
    """The part of ``SimulatorBooter`` the installer needs."""

    def ensure_booted(self, device: Device) -> bool: ...

    def wait_for_stable_state(self, device: Device) -> bool: ...


# ---------------------------------------------------------------------------
# Filesystem scanning
# ---------------------------------------------------------------------------

def bundle_identifier_of(bundle_dir: Path) -> str | None:
    """Identifier from the bundle's Info.plist, or None if unreadable."""
    try:
        return inspect_bundle(bundle_dir)["bundle_identifier"]
    except InputError as exc:
        logger.debug("Skipping %s: %s", bundle_dir, exc)
        return None


def find_installed_bundles(layout: DeviceLayout, bundle_identifier: str) -> list[InstalledAppRecord]:
    """Every ``<container>/<Name>.app`` under the device whose identifier matches.

    Incomplete installs are included; callers check ``is_complete()``.
    A device that has never booted has no applications directory and
    yields an empty list.
    """
    apps_dir = layout.applications_dir
    if not apps_dir.is_dir():
        return []

    records: list[InstalledAppRecord] = []
    for bundle_dir in sorted(apps_dir.glob("*/*.app")):
        if not bundle_dir.is_dir():
            continue
        if bundle_identifier_of(bundle_dir) != bundle_identifier:
            continue
        records.append(
            InstalledAppRecord(
                bundle_dir=bundle_dir,
                metadata_path=bundle_dir.parent / METADATA_PLIST,
            )
        )
    return records


def find_data_containers(layout: DeviceLayout, bundle_identifier: str) -> list[Path]:
    """Data containers whose metadata names *bundle_identifier*."""
    containers_dir = layout.data_containers_dir
    if containers_dir is None or not containers_dir.is_dir():
        return []
    matches = []
    for metadata in sorted(containers_dir.glob(f"*/{METADATA_PLIST}")):
        if read_metadata_identifier(metadata) == bundle_identifier:
            matches.append(metadata.parent)
    return matches


def _remove_tree(path: Path) -> None:
    """Delete *path* (file or directory); missing paths are fine."""
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        elif path.exists() or path.is_symlink():
            path.unlink()
    except OSError as exc:
        raise InstallationError(f"Could not delete {path}: {exc}") from exc


# ---------------------------------------------------------------------------
# InstallationReconciler
# ---------------------------------------------------------------------------

class InstallationReconciler:
    """Keeps one app's installation on one device consistent."""

    def __init__(
        self,
        device: Device,
        app: AppBundle,
        layout: DeviceLayout,
        simctl: SimulatorControl,
        readiness: DeviceReadiness,
        config: SimHarnessConfig | None = None,
    ) -> None:
        self.device = device
        self.app = app
        self.layout = layout
        self._simctl = simctl
        self._readiness = readiness
        self._config = config or SimHarnessConfig.defaults()

    # -- Locating ------------------------------------------------------------

    def locate_installed(self) -> InstalledAppRecord | None:
        """Return the complete installed record, healing anything broken.

        Bundles without container metadata are deleted together with their
        container.  If more than one complete copy exists, the newest is
        kept and the others are removed.  When no complete copy remains,
        data containers left behind for the identifier are removed too.
        """
        bundle_id = self.app.bundle_identifier
        records = find_installed_bundles(self.layout, bundle_id)
        if not records:
            return None

        complete = []
        healed = False
        for record in records:
            if record.is_complete():
                complete.append(record)
                continue
            logger.warning(
                "Removing incomplete install of %s at %s (no container metadata)",
                bundle_id,
                record.bundle_dir,
            )
            _remove_tree(record.container_dir)
            healed = True

        if not complete:
            if healed:
                self._remove_stale_data_containers()
            return None

        complete.sort(key=lambda r: r.metadata_path.stat().st_mtime, reverse=True)
        keep, duplicates = complete[0], complete[1:]
        for duplicate in duplicates:
            logger.warning(
                "Removing duplicate install of %s at %s (keeping %s)",
                bundle_id,
                duplicate.bundle_dir,
                keep.bundle_dir,
            )
            _remove_tree(duplicate.container_dir)

        keep.sandbox_dir = self.sandbox_dir(keep)
        return keep

    def is_installed(self) -> bool:
        return self.locate_installed() is not None

    def sandbox_dir(self, record: InstalledAppRecord | None = None) -> Path | None:
        """The app's private data directory, if it has one.

        Modern devices keep it in a separate data container; legacy devices
        keep ``Documents``, ``Library`` and ``tmp`` next to the bundle.
        """
        if record is None:
            record = self.locate_installed()
            if record is None:
                return None
        if not self.layout.modern:
            return record.container_dir
        containers = find_data_containers(self.layout, self.app.bundle_identifier)
        return containers[0] if containers else None

    def installed_digest(self) -> str | None:
        record = self.locate_installed()
        if record is None:
            return None
        return directory_digest(record.bundle_dir)

    # -- Mutations -----------------------------------------------------------

    def install(self, candidate: AppBundle | None = None) -> InstalledAppRecord:
        """Install *candidate* or bring an existing install up to date.

        Raises:
            InstallationError: simctl reported success but no complete
                bundle can be found afterwards, or a filesystem step failed.
        """
        candidate = candidate or self.app
        record = self.locate_installed()
        if record is not None:
            return self.reconcile(candidate, record)

        logger.info("Installing %s on %s", candidate, self.device)
        self._readiness.ensure_booted(self.device)
        self._simctl.install(self.device, candidate, self._config.install_app_timeout)
        self._readiness.wait_for_stable_state(self.device)

        record = self.locate_installed()
        if record is None:
            raise InstallationError(
                f"simctl reported {candidate.bundle_identifier} installed on {self.device}, "
                f"but no complete bundle was found under {self.layout.applications_dir}"
            )
        logger.info("Installed %s at %s", candidate.bundle_identifier, record.bundle_dir)
        return record

    def reconcile(
        self,
        candidate: AppBundle | None = None,
        record: InstalledAppRecord | None = None,
    ) -> InstalledAppRecord:
        """Make the installed bundle match *candidate* by content digest.

        Equal digests leave the filesystem untouched.  Otherwise the bundle
        directory is deleted and the candidate copied into the same
        container, keeping the sandbox.

        Raises:
            InstallationError: the app is not installed, or a delete/copy
                failed.  Failures are not retried.  After a failed copy the
                container and data containers are gone and the app reads as
                not installed.
        """
        candidate = candidate or self.app
        if record is None:
            record = self.locate_installed()
        if record is None:
            raise InstallationError(f"{candidate.bundle_identifier} is not installed on {self.device}")

        installed = directory_digest(record.bundle_dir)
        if installed == candidate.digest:
            logger.debug("Installed %s matches %s", candidate.bundle_identifier, candidate.path)
            return record

        logger.info(
            "Replacing installed %s (digest %s) with %s (digest %s)",
            candidate.bundle_identifier,
            installed[:12],
            candidate.path,
            candidate.digest[:12],
        )
        _remove_tree(record.bundle_dir)

        target = record.container_dir / candidate.path.name
        try:
            shutil.copytree(candidate.path, target, symlinks=True)
        except (OSError, shutil.Error) as exc:
            # Never leave a container without its bundle.
            logger.warning(
                "Copy of %s failed, removing container %s",
                candidate.bundle_identifier,
                record.container_dir,
            )
            shutil.rmtree(record.container_dir, ignore_errors=True)
            self._remove_stale_data_containers()
            raise InstallationError(f"Could not copy {candidate.path} to {target}: {exc}") from exc

        self.clear_launch_services_cache()
        return InstalledAppRecord(
            bundle_dir=target,
            metadata_path=record.metadata_path,
            sandbox_dir=record.sandbox_dir,
        )

    def uninstall(self) -> bool:
        """Remove the app and its sandbox through simctl.

        Returns False without doing anything when the app is not installed.
        """
        if not self.is_installed():
            logger.debug("%s is not installed on %s", self.app.bundle_identifier, self.device)
            return False
        self._readiness.ensure_booted(self.device)
        self._simctl.uninstall(self.device, self.app, self._config.uninstall_app_timeout)
        self._readiness.wait_for_stable_state(self.device)
        logger.info("Uninstalled %s from %s", self.app.bundle_identifier, self.device)
        return True

    def clear_launch_services_cache(self) -> int:
        """Delete the device's launch-services stores so a replaced binary is picked up."""
        stores = self.layout.launch_services_stores()
        for store in stores:
            _remove_tree(store)
        if stores:
            logger.debug("Removed %d launch-services store(s)", len(stores))
        return len(stores)

    def _remove_stale_data_containers(self) -> None:
        for container in find_data_containers(self.layout, self.app.bundle_identifier):
            logger.warning("Removing stale data container %s", container)
            _remove_tree(container)
