"""Time sources used to stamp messages and samples."""

from __future__ import annotations

import time
from typing import NamedTuple


class Timestamp(NamedTuple):
    """A point in time split into whole seconds and microseconds."""

    seconds: int
    microseconds: int

    def to_seconds(self) -> float:
        """Return the timestamp as fractional seconds."""
        return self.seconds + self.microseconds / 1_000_000


class Clock:
    """Base clock reading the system time.

    Subclasses may replace :meth:`now` to use a clock published by a log
    file or ticks from a simulation.
    """

    def now(self) -> Timestamp:
        """Return the current time of this clock."""
        total_us = time.time_ns() // 1000
        seconds, microseconds = divmod(total_us, 1_000_000)
        return Timestamp(seconds, microseconds)

    def diff(self, t: Timestamp) -> float:
        """Return the time in seconds elapsed since ``t``."""
        return self.now().to_seconds() - Timestamp(*t).to_seconds()