"""Microsecond-resolution wall-clock timestamps."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import overload

MICROSECONDS_PER_SECOND = 1_000_000

# Shortest delay handed out by duration_from_now, so a timer never waits a negative time.
_MIN_DELAY_US = 100


def _round_half_away(value: float) -> int:
    """Round to the nearest integer, halves away from zero."""
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


@dataclass(frozen=True, order=True)
class Timestamp:
    """A point in time, counted in microseconds since the Unix epoch.

    Durations are plain ``int`` microsecond counts.
    """

    micros: int = 0

    @classmethod
    def now(cls) -> Timestamp:
        """Return the current system time."""
        return cls(time.time_ns() // 1000)

    @classmethod
    def invalid(cls) -> Timestamp:
        """Return the epoch timestamp used to mark "no time"."""
        return cls(0)

    @staticmethod
    def seconds_to_duration(seconds: float) -> int:
        """Convert seconds to a microsecond duration, rounding half away from zero."""
        return _round_half_away(seconds * MICROSECONDS_PER_SECOND)

    def micro_seconds_since_epoch(self) -> int:
        return self.micros

    def is_valid(self) -> bool:
        return self.micros > 0

    def duration_from_now(self) -> float:
        """Seconds from now until this timestamp, never less than 100 microseconds."""
        delta = self.micros - Timestamp.now().micros
        return max(delta, _MIN_DELAY_US) / MICROSECONDS_PER_SECOND

    def to_formatted_string(self, show_microseconds: bool = True, use_utc: bool = False) -> str:
        """Format as ``YYYYMMDD HH:MM:SS[.ffffff]`` in local time or UTC."""
        seconds, remain_us = divmod(self.micros, MICROSECONDS_PER_SECOND)
        tm = time.gmtime(seconds) if use_utc else time.localtime(seconds)
        text = (
            f"{tm.tm_year:4d}{tm.tm_mon:02d}{tm.tm_mday:02d} "
            f"{tm.tm_hour:02d}:{tm.tm_min:02d}:{tm.tm_sec:02d}"
        )
        if show_microseconds:
            text += f".{remain_us:06d}"
        return text

    def __add__(self, duration: int) -> Timestamp:
        if isinstance(duration, int) and not isinstance(duration, bool):
            return Timestamp(self.micros + duration)
        return NotImplemented

    @overload
    def __sub__(self, other: Timestamp) -> int: ...

    @overload
    def __sub__(self, other: int) -> Timestamp: ...

    def __sub__(self, other):
        """Timestamp minus Timestamp is a duration; minus a duration is a Timestamp."""
        if isinstance(other, Timestamp):
            return self.micros - other.micros
        if isinstance(other, int) and not isinstance(other, bool):
            return Timestamp(self.micros - other)
        return NotImplemented

    def __str__(self) -> str:
        return self.to_formatted_string()