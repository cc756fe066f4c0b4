"""App bundle inspection and directory digests.

Reads ``Info.plist`` with ``plistlib`` and hashes whole bundle trees so an
installed copy can be compared with a freshly built one by content alone.
"""

from __future__ import annotations

import hashlib
import logging
import os
import plistlib
from pathlib import Path
from typing import Any

from simharness.errors import InputError

logger = logging.getLogger("simharness.engine.bundles")

# Sidecar plist written by the simulator next to every installed container.
METADATA_PLIST = ".com.apple.mobile_container_manager.metadata.plist"
METADATA_IDENTIFIER_KEY = "MCMMetadataIdentifier"

_CHUNK_SIZE = 64 * 1024


def _read_plist(path: Path) -> dict[str, Any]:
    with open(path, "rb") as f:
        data = plistlib.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"top-level object is {type(data).__name__}, not a dict")
    return data


def inspect_bundle(path: str | Path) -> dict[str, str]:
    """Return ``bundle_identifier`` and ``executable_name`` for a ``.app``.

    Raises:
        InputError: *path* is not a directory ending in ``.app`` or its
            ``Info.plist`` is missing, unreadable or incomplete.
    """
    bundle = Path(path)
    if bundle.suffix != ".app" or not bundle.is_dir():
        raise InputError(f"Not an app bundle: {bundle}\n\nExpected an existing directory ending in .app")

    info_plist = bundle / "Info.plist"
    if not info_plist.is_file():
        raise InputError(f"App bundle has no Info.plist: {bundle}")

    try:
        info = _read_plist(info_plist)
    except (OSError, ValueError, plistlib.InvalidFileException) as exc:
        raise InputError(f"Could not read {info_plist}: {exc}") from exc

    identifier = info.get("CFBundleIdentifier")
    executable = info.get("CFBundleExecutable")
    if not identifier or not executable:
        raise InputError(
            f"{info_plist} must define CFBundleIdentifier and CFBundleExecutable"
        )
    return {"bundle_identifier": str(identifier), "executable_name": str(executable)}


def directory_digest(path: str | Path) -> str:
    """SHA-1 over every file in *path*, keyed by relative path.

    Paths are visited in sorted order so the digest does not depend on
    directory enumeration order.  Symlinks are hashed by target text.
    """
    root = Path(path)
    if not root.is_dir():
        raise InputError(f"Cannot digest {root}: not a directory")

    digest = hashlib.sha1()
    entries: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        # os.walk does not descend into directory symlinks; hash them as links.
        for name in dirnames:
            if os.path.islink(os.path.join(dirpath, name)):
                entries.append(Path(dirpath) / name)
        for name in filenames:
            entries.append(Path(dirpath) / name)

    for entry in sorted(entries, key=lambda p: p.relative_to(root).as_posix()):
        relative = entry.relative_to(root).as_posix()
        digest.update(relative.encode("utf-8"))
        digest.update(b"\0")
        if entry.is_symlink():
            digest.update(os.readlink(entry).encode("utf-8"))
            continue
        with open(entry, "rb") as f:
            for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
                digest.update(chunk)
        digest.update(b"\0")

    return digest.hexdigest()


def read_metadata_identifier(plist_path: Path) -> str | None:
    """Return the bundle identifier recorded in a container metadata plist.

    Returns None for unreadable or malformed files.
    """
    try:
        data = _read_plist(plist_path)
    except (OSError, ValueError, plistlib.InvalidFileException) as exc:
        logger.debug("Unreadable metadata plist %s: %s", plist_path, exc)
        return None
    value = data.get(METADATA_IDENTIFIER_KEY)
    return str(value) if value else None
