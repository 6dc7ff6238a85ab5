"""
Shared retry/backoff primitive.

Every component that waits between attempts uses this module instead of
its own loop: the transfer executor's transient-unavailability pause, the
balance tracker's host rotation and the convergence verifier's polling.

Usage:
    backoff = Backoff(base=0.25, multiplier=1.3, cap=1.2)

    # Poll until visible or 15 seconds pass
    ok = poll_until(lambda: read_matches(), timeout_seconds=15, backoff=backoff)

    # Single fixed pause before a retry
    Backoff.fixed(0.4).sleep(0)
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Iterator, Optional

from logging_config import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class Backoff:
    """
    Multiplicative backoff schedule.

    Attempt ``n`` (zero based) waits ``base * multiplier**n`` seconds,
    capped at ``cap`` when one is given.
    """

    base: float
    multiplier: float = 1.0
    cap: Optional[float] = None

    @classmethod
    def fixed(cls, seconds: float) -> "Backoff":
        return cls(base=seconds)

    @classmethod
    def none(cls) -> "Backoff":
        return cls(base=0.0)

    def delay(self, attempt: int) -> float:
        value = self.base * (self.multiplier ** attempt)
        if self.cap is not None:
            value = min(value, self.cap)
        return max(0.0, value)

    def delays(self) -> Iterator[float]:
        attempt = 0
        while True:
            yield self.delay(attempt)
            attempt += 1

    def sleep(self, attempt: int, sleep: Callable[[float], None] = time.sleep) -> None:
        seconds = self.delay(attempt)
        if seconds > 0:
            sleep(seconds)


def poll_until(
    check: Callable[[], bool],
    timeout_seconds: float,
    backoff: Backoff,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """
    Call ``check`` until it returns True or the deadline passes.

    The first check runs immediately. Sleeps never extend past the deadline,
    so the function returns False no later than one check after it.

    Args:
        check: Predicate; exceptions propagate (callers decide what a
            failed read means)
        timeout_seconds: Overall deadline, relative to now
        backoff: Delay schedule between checks
        clock: Monotonic clock (injectable for tests)
        sleep: Sleep function (injectable for tests)

    Returns:
        True if ``check`` succeeded before the deadline, False otherwise
    """
    deadline = clock() + timeout_seconds
    attempt = 0

    while clock() < deadline:
        if check():
            logger.debug(f"Condition met after {attempt + 1} checks")
            return True

        remaining = deadline - clock()
        if remaining <= 0:
            break
        sleep(min(backoff.delay(attempt), remaining))
        attempt += 1

    logger.debug(f"Condition not met after {attempt} checks ({timeout_seconds:.1f}s)")
    return False
