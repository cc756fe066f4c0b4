"""Polling primitive used for every wait in simharness.

Simulator state waits, process appearance and process disappearance all go
through ``StateWaiter.poll_until`` so they share one timing policy: the
accessor is called at least once, a match observed in the same cycle as the
deadline counts as a match, and the elapsed wall-clock time is logged on
both the success and the timeout path.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from typing import Any, Callable

from simharness.errors import WaitTimeoutError

logger = logging.getLogger("simharness.engine.waiter")


@dataclasses.dataclass
class WaitResult:
    """Outcome of one ``poll_until`` call."""

    matched: bool
    elapsed: float
    polls: int
    last_value: Any = None

    def __bool__(self) -> bool:
        return self.matched


class StateWaiter:
    """Blocks until an accessor returns a target value or a deadline passes.

    *clock* and *sleep* default to ``time.monotonic`` and ``time.sleep``;
    tests pass fakes to control time.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._clock = clock
        self._sleep = sleep

    def poll_until(
        self,
        accessor: Callable[[], Any],
        target: Any,
        timeout: float,
        interval: float = 0.1,
        strict: bool = False,
        description: str = "state change",
    ) -> WaitResult:
        """Call *accessor* until it returns a value equal to *target*.

        Args:
            accessor: Zero-argument callable queried once per cycle.
            target: Value compared with ``==`` against each reading.
            timeout: Seconds, measured from the first call.
            interval: Seconds to sleep between readings.  Zero skips the sleep.
            strict: Raise ``WaitTimeoutError`` instead of returning an
                unmatched result.
            description: Used in log lines and the timeout message.

        Returns:
            WaitResult, truthy when the target was observed.
        """
        start = self._clock()
        polls = 0
        value: Any = None
        matched = False

        while True:
            value = accessor()
            polls += 1
            if value == target:
                matched = True
                break
            if self._clock() - start >= timeout:
                break
            if interval > 0:
                self._sleep(interval)

        elapsed = self._clock() - start
        logger.debug(
            "Waited %.3fs (%d polls) for %s: %s",
            elapsed,
            polls,
            description,
            "matched" if matched else f"timed out, last value {value!r}",
        )

        if not matched and strict:
            raise WaitTimeoutError(description, timeout, elapsed, last_value=value, target=target)

        return WaitResult(matched=matched, elapsed=elapsed, polls=polls, last_value=value)
