"""Injectable time source.

Engine and automation code take a clock instead of calling
``datetime.utcnow()`` so rules can be evaluated at any instant in tests.
Times are naive UTC, matching the model columns.
"""

from datetime import datetime, timedelta, timezone


class Clock:
    def now(self):
        raise NotImplementedError


class SystemClock(Clock):
    def now(self):
        return datetime.now(timezone.utc).replace(tzinfo=None)


class FixedClock(Clock):
    """Returns the same instant until moved with ``advance`` or ``set``."""

    def __init__(self, fixed_time=None):
        self._time = fixed_time or datetime(2024, 1, 1, 12, 0, 0)

    def now(self):
        return self._time

    def set(self, when):
        self._time = when

    def advance(self, **delta):
        self._time = self._time + timedelta(**delta)
        return self._time


system_clock = SystemClock()
