"""
Time and clock abstractions for deterministic polling.

This module provides a testable way to obtain "now" and to wait, via a clock
object rather than calling time.time() / time.sleep() directly. Lab status
polling depends on a Clock, so tests can run a multi-minute wait loop
instantly with a SteppingClock.
"""

import time
from datetime import datetime, timedelta, timezone
from typing import Protocol

import pandas as pd


class Clock(Protocol):
    """
    Abstract time source protocol.

    **Conceptual**: A Clock answers "what time is it?" and knows how to wait.
    Code that polls the server accepts a Clock instead of touching the system
    clock, so a test can simulate a long-running lab without sleeping.

    **Usage**:
        # In production:
        wait_for_lab_completion(session, lab_id, clock=RealClock())

        # In tests:
        wait_for_lab_completion(session, lab_id, clock=SteppingClock(start))
    """

    def now(self) -> datetime:
        """Return the current time (timezone-aware, UTC)."""
        ...

    def sleep(self, seconds: float) -> None:
        """Block for `seconds` (or pretend to)."""
        ...


class RealClock:
    """Clock backed by the system clock (UTC) and time.sleep."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


class SteppingClock:
    """
    Clock whose time only moves when sleep() is called.

    **Conceptual**: Starts at a fixed timestamp; each sleep(n) advances the
    clock by n seconds and returns immediately. Polling loops driven by this
    clock are deterministic: the number of polls before a deadline depends
    only on the poll interval and timeout.

    **Usage**:
        clock = SteppingClock(datetime(2024, 1, 1, tzinfo=timezone.utc))
        clock.sleep(30)
        clock.now()  # 2024-01-01T00:00:30+00:00
    """

    def __init__(self, start: datetime):
        """
        Args:
            start: Initial "now". Should be timezone-aware (UTC recommended).
        """
        self._now = start
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self._now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self._now = self._now + timedelta(seconds=seconds)


def to_unix_seconds(value) -> int:
    """
    Convert a date-like value to Unix seconds (UTC).

    Accepts an int (returned as-is), a datetime, a pd.Timestamp or an ISO
    date string. Naive values are interpreted as UTC.

    Example:
        >>> to_unix_seconds("2024-01-01")
        1704067200
    """
    if isinstance(value, int):
        return value

    ts = pd.Timestamp(value)
    if ts.tz is None:
        ts = ts.tz_localize("UTC")
    return int(ts.timestamp())
