"""Process supervision for the simulator process tree.

Finds processes by executable name, waits for them to appear or go away,
and terminates them with a two-stage policy: an optional graceful SIGTERM
followed, if the process is still alive, by SIGKILL.

The process table and signal delivery go through psutil by default; both
are constructor arguments so they can be replaced.
"""

from __future__ import annotations

import logging
import os
import signal
from typing import Callable, Iterable

import psutil

from simharness.config import SimHarnessConfig
from simharness.engine.waiter import StateWaiter
from simharness.models import ProcessHandle

logger = logging.getLogger("simharness.engine.processes")


# ---------------------------------------------------------------------------
# Managed process names
# ---------------------------------------------------------------------------

# (process name, send SIGTERM first).  Order matters: UI processes go before
# the daemons they talk to so nothing is left orphaned.
SIMULATOR_QUIT_PROCESSES: list[tuple[str, bool]] = [
    # Throws errors on recent toolchains if left behind.
    ("splashboardd", False),
    # The simulator app quits cleanly on TERM.
    ("Simulator", True),
    # Killing the parent launchd_sim does not reliably take children with it.
    ("launchd_sim", False),
    # Test agents hang the simulator unless this is gone.
    ("xpcproxy", False),
    # Instances clobber each other and survive simulator quit.
    ("assetsd", False),
    # Started by UI test runners.
    ("iproxy", False),
    # Parent of IDE-launched CoreSimulatorBridge interactions.
    ("csproxy", False),
]

# Daemons that hold CoreSimulator service state.  KILL is fast; TERM works
# but the service then takes a long time to come back.
MANAGED_PROCESSES: list[str] = [
    "com.apple.CoreSimulator.CoreSimulatorService",
    "SimulatorBridge",
    "configd_sim",
    "CoreSimulatorBridge",
    "ids_simd",
]


# ---------------------------------------------------------------------------
# psutil primitives
# ---------------------------------------------------------------------------

def list_processes() -> list[ProcessHandle]:
    """Return a handle for every process visible to this user."""
    handles: list[ProcessHandle] = []
    for proc in psutil.process_iter(["pid", "name", "cmdline"]):
        info = proc.info
        cmdline = info.get("cmdline") or []
        handles.append(
            ProcessHandle(
                pid=info["pid"],
                name=info.get("name") or "",
                command=" ".join(cmdline),
                executable=cmdline[0] if cmdline else "",
            )
        )
    return handles


def send_signal(pid: int, sig: int) -> None:
    """Deliver *sig* to *pid*.

    Raises ``ProcessLookupError`` if the process is gone and
    ``PermissionError`` if the OS refuses.
    """
    try:
        psutil.Process(pid).send_signal(sig)
    except psutil.NoSuchProcess as exc:
        raise ProcessLookupError(pid) from exc
    except psutil.AccessDenied as exc:
        raise PermissionError(pid) from exc


def pid_is_alive(pid: int) -> bool:
    """True while *pid* exists and is not a zombie."""
    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False
    except psutil.AccessDenied:
        return True


def _matches(handle: ProcessHandle, name: str) -> bool:
    if handle.name == name:
        return True
    # Names can be truncated by the kernel; argv[0] is not.
    if handle.executable:
        return os.path.basename(handle.executable) == name
    # argv[0] unknown: fall back to the joined command line.
    executable = handle.command.split(" ", 1)[0] if handle.command else ""
    return os.path.basename(executable) == name


# ---------------------------------------------------------------------------
# ProcessSupervisor
# ---------------------------------------------------------------------------

class ProcessSupervisor:
    """Locates, waits on and terminates processes by name."""

    def __init__(
        self,
        config: SimHarnessConfig | None = None,
        waiter: StateWaiter | None = None,
        process_lister: Callable[[], list[ProcessHandle]] = list_processes,
        signal_sender: Callable[[int, int], None] = send_signal,
        is_alive: Callable[[int], bool] = pid_is_alive,
        own_pid: int | None = None,
    ) -> None:
        self._config = config or SimHarnessConfig.defaults()
        self._waiter = waiter or StateWaiter()
        self._list = process_lister
        self._send = signal_sender
        self._is_alive = is_alive
        self._own_pid = os.getpid() if own_pid is None else own_pid

    # -- Lookup --------------------------------------------------------------

    def processes(self) -> list[ProcessHandle]:
        """Current process table minus this process."""
        return [h for h in self._list() if h.pid != self._own_pid]

    def find_pids(self, name: str) -> set[int]:
        """Pids of every process whose executable name is *name*."""
        return {h.pid for h in self.processes() if _matches(h, name)}

    def is_running(self, name: str) -> bool:
        return bool(self.find_pids(name))

    def find_by_command(self, fragment: str) -> ProcessHandle | None:
        """First process whose full command line contains *fragment*."""
        for handle in self.processes():
            if fragment in handle.command:
                return handle
        return None

    # -- Waiting -------------------------------------------------------------

    def wait_for_appearance(
        self,
        name: str,
        timeout: float | None = None,
        strict: bool = False,
        interval: float | None = None,
    ) -> bool:
        """Block until a process named *name* is running.

        Returns immediately if one already is.  On timeout returns False,
        or raises ``WaitTimeoutError`` when *strict*.
        """
        if self.is_running(name):
            return True
        result = self._waiter.poll_until(
            lambda: self.is_running(name),
            True,
            timeout=self._config.process_wait_timeout if timeout is None else timeout,
            interval=self._config.process_wait_interval if interval is None else interval,
            strict=strict,
            description=f"'{name}' to start",
        )
        return result.matched

    def wait_for_disappearance(
        self,
        name: str,
        timeout: float | None = None,
        strict: bool = False,
        interval: float | None = None,
    ) -> bool:
        """Block until no process named *name* is running."""
        if not self.is_running(name):
            return True
        result = self._waiter.poll_until(
            lambda: self.is_running(name),
            False,
            timeout=self._config.process_wait_timeout if timeout is None else timeout,
            interval=self._config.process_wait_interval if interval is None else interval,
            strict=strict,
            description=f"'{name}' to exit",
        )
        return result.matched

    # -- Termination ---------------------------------------------------------

    def terminate(self, pid: int, name: str, send_term_first: bool) -> bool:
        """Stop *pid*, escalating from SIGTERM to SIGKILL.

        With *send_term_first* the process gets SIGTERM and ``terminate_timeout``
        seconds to exit.  If it is still alive, or TERM was skipped, it gets
        SIGKILL.  Returns True once the process is gone.
        """
        exited = False
        if send_term_first:
            exited = self._signal_and_wait(pid, name, signal.SIGTERM)
        if not exited:
            exited = self._signal_and_wait(pid, name, signal.SIGKILL)
        if not exited:
            logger.warning("Process %s (%d) survived SIGKILL", name, pid)
        return exited

    def terminate_all_matching(self, processes: Iterable[tuple[str, bool]]) -> int:
        """Terminate every pid of each ``(name, send_term_first)`` in order.

        Returns the number of processes that were signalled.
        """
        count = 0
        for name, send_term_first in processes:
            for pid in sorted(self.find_pids(name)):
                self.terminate(pid, name, send_term_first)
                count += 1
        return count

    def quit_simulator(self) -> int:
        """Quit the simulator app and its helper processes."""
        return self.terminate_all_matching(SIMULATOR_QUIT_PROCESSES)

    def terminate_core_simulator_processes(self) -> int:
        """Quit the simulator, then kill the CoreSimulator service daemons.

        Resets the service's internal state; it restarts on demand.
        """
        count = self.quit_simulator()
        count += self.terminate_all_matching((name, False) for name in MANAGED_PROCESSES)
        return count

    def _signal_and_wait(self, pid: int, name: str, sig: int) -> bool:
        sig_name = signal.Signals(sig).name
        try:
            self._send(pid, sig)
        except ProcessLookupError:
            logger.debug("%s (%d) already gone before %s", name, pid, sig_name)
            return True
        except PermissionError:
            logger.warning("Not permitted to send %s to %s (%d)", sig_name, name, pid)
            return False

        logger.debug("Sent %s to %s (%d)", sig_name, name, pid)
        result = self._waiter.poll_until(
            lambda: self._is_alive(pid),
            False,
            timeout=self._config.terminate_timeout,
            interval=self._config.process_wait_interval,
            description=f"{name} ({pid}) to exit after {sig_name}",
        )
        return result.matched
