"""Active developer toolchain lookup."""

from __future__ import annotations

import logging
import os
import re
import subprocess
from pathlib import Path
from typing import Callable

from simharness.config import SimHarnessConfig
from simharness.errors import SimHarnessError
from simharness.models import parse_version

logger = logging.getLogger("simharness.engine.xcode")

_VERSION_LINE = re.compile(r"^Xcode\s+(\d+(?:\.\d+)*)", re.MULTILINE)


class XcodeError(SimHarnessError):
    """The developer toolchain could not be located or queried."""

    pass


class Xcode:
    """Answers questions about the active Xcode installation.

    The developer directory comes from the config, then ``DEVELOPER_DIR``,
    then ``xcode-select --print-path``.  Results are cached per instance.
    """

    def __init__(
        self,
        config: SimHarnessConfig | None = None,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
        environ: dict[str, str] | None = None,
    ) -> None:
        self._config = config or SimHarnessConfig.defaults()
        self._run = runner
        self._environ = os.environ if environ is None else environ
        self._developer_dir: Path | None = None
        self._version: tuple[int, ...] | None = None

    @property
    def developer_dir(self) -> Path:
        if self._developer_dir is None:
            if self._config.developer_dir is not None:
                self._developer_dir = Path(self._config.developer_dir)
            elif self._environ.get("DEVELOPER_DIR"):
                self._developer_dir = Path(self._environ["DEVELOPER_DIR"])
            else:
                self._developer_dir = Path(self._output(["xcode-select", "--print-path"]))
        return self._developer_dir

    @property
    def version(self) -> tuple[int, ...]:
        if self._version is None:
            output = self._output(["xcrun", "xcodebuild", "-version"])
            match = _VERSION_LINE.search(output)
            if match is None:
                raise XcodeError(f"Unrecognized xcodebuild -version output: {output!r}")
            self._version = parse_version(match.group(1))
        return self._version

    @property
    def sim_name(self) -> str:
        """Process and app name of the simulator for this toolchain."""
        return "Simulator" if self.version[0] >= 7 else "iOS Simulator"

    @property
    def sim_app_path(self) -> Path:
        return self.developer_dir / "Applications" / f"{self.sim_name}.app"

    @property
    def system_applications_dir(self) -> Path:
        return (
            self.developer_dir
            / "Platforms"
            / "iPhoneSimulator.platform"
            / "Developer"
            / "SDKs"
            / "iPhoneSimulator.sdk"
            / "Applications"
        )

    def _output(self, cmd: list[str]) -> str:
        logger.debug("xcode: %s", " ".join(cmd))
        try:
            result = self._run(cmd, capture_output=True, text=True, timeout=30)
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise XcodeError(f"'{' '.join(cmd)}' failed: {exc}") from exc
        if result.returncode != 0:
            raise XcodeError(f"'{' '.join(cmd)}' exited with status {result.returncode}: {result.stderr.strip()}")
        return result.stdout.strip()
