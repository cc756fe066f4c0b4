"""Exception hierarchy for simharness.

Every error raised on purpose by the package derives from
``SimHarnessError``.  The subclasses map onto how callers are expected to
react:

- ``InputError``: bad arguments (physical device, unknown device, not an
  app bundle).  Surfaced immediately, never retried.
- ``WaitTimeoutError``: a strict poll ran out of time.
- ``TransientOperationalError``: an external primitive (``simctl``, ``open``)
  failed.
  The launch loop retries these with a recovery step in between.
- ``InstallationError``: a filesystem mutation during reconciliation failed.
  Never retried, since continuing could leave a mixed-state bundle.
- ``LaunchError``: every launch attempt failed.
"""

from __future__ import annotations

from typing import Any, Sequence


class SimHarnessError(Exception):
    """Base class for all simharness errors."""

    pass


class InputError(SimHarnessError, ValueError):
    """Raised when an argument can never work (wrong device kind, bad path)."""

    pass


class WaitTimeoutError(SimHarnessError, TimeoutError):
    """Raised by strict waits when the target value was not observed in time."""

    def __init__(
        self,
        description: str,
        timeout: float,
        elapsed: float,
        last_value: Any = None,
        target: Any = None,
    ) -> None:
        self.description = description
        self.timeout = timeout
        self.elapsed = elapsed
        self.last_value = last_value
        self.target = target
        super().__init__(
            f"Waited {elapsed:.2f}s (limit {timeout}s) for {description}: "
            f"expected {target!r} but found {last_value!r}"
        )


class TransientOperationalError(SimHarnessError):
    """An external primitive failed in a way that may succeed on retry."""

    pass


class SimctlError(TransientOperationalError):
    """``xcrun simctl`` exited with a non-zero status."""

    def __init__(self, command: Sequence[str], returncode: int, stderr: str = "") -> None:
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr
        detail = f": {stderr}" if stderr else ""
        super().__init__(f"'{' '.join(self.command)}' exited with status {returncode}{detail}")


class SimctlTimeoutError(TransientOperationalError):
    """``xcrun simctl`` did not finish within its timeout."""

    def __init__(self, command: Sequence[str], timeout: float) -> None:
        self.command = list(command)
        self.timeout = timeout
        super().__init__(f"'{' '.join(self.command)}' timed out after {timeout}s")


class InstallationError(SimHarnessError):
    """Installing or replacing an app bundle failed."""

    pass


class LaunchError(SimHarnessError):
    """Launching the app failed on every attempt."""

    def __init__(self, bundle_identifier: str, device: str, attempts: int, last_error: BaseException) -> None:
        self.bundle_identifier = bundle_identifier
        self.device = device
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Could not launch {bundle_identifier} on {device} after trying {attempts} times:\n\n"
            f"{type(last_error).__name__}: {last_error}"
        )


class SandboxResetError(SimHarnessError):
    """Deleting or recreating part of an app sandbox failed."""

    pass


class CommandError(TransientOperationalError):
    """A helper command such as ``open`` could not be run or timed out."""

    def __init__(self, command: Sequence[str], reason: str) -> None:
        self.command = list(command)
        self.reason = reason
        super().__init__(f"'{' '.join(self.command)}' failed: {reason}")
