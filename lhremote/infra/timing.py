"""
Clock and deadline helpers for polling loops.

Every loop that waits on the remote application (target discovery, port
discovery, shutdown) runs against an absolute deadline computed from a
Clock. Passing a different Clock lets tests drive the loops on virtual time.
"""

import time
from dataclasses import dataclass


class Clock:
    """Wall-clock source used by polling loops."""

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


SYSTEM_CLOCK = Clock()


@dataclass
class Deadline:
    """An absolute point in time on a given clock."""
    expires_at: float
    clock: Clock

    @classmethod
    def after(cls, seconds: float, clock: Clock = SYSTEM_CLOCK) -> "Deadline":
        return cls(expires_at=clock.monotonic() + seconds, clock=clock)

    def expired(self) -> bool:
        return self.clock.monotonic() >= self.expires_at
