"""A timing wheel for expiring idle entries, one bucket per second."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

from tinyreactor.timer import Timer, TimerManager
from tinyreactor.timestamp import Timestamp

WheelCallback = Callable[[Any], object]


@dataclass(eq=False)
class Entry:
    """Data held by a wheel, with the bucket it currently sits in (-1 once gone)."""

    wheel: TimingWheel = field(repr=False)
    data: Any
    bucket: int = -1

    @property
    def pending(self) -> bool:
        return self.bucket >= 0


class TimingWheel:
    """Expires entries ``idle_seconds`` ticks after they were inserted or last updated.

    ``on_timer`` advances the wheel by one tick. When a ``TimerManager`` is given, the
    wheel registers a one-second repeating timer with it to drive the ticks.
    """

    def __init__(
        self,
        idle_seconds: int,
        callback: WheelCallback,
        timers: TimerManager | None = None,
    ) -> None:
        if idle_seconds < 1:
            raise ValueError("idle_seconds must be at least 1")
        self.idle_seconds = idle_seconds
        self._callback = callback
        self._buckets: list[dict[Entry, None]] = [{} for _ in range(idle_seconds)]
        self._begin = 0
        self._end = idle_seconds - 1
        self.base_timer: Timer | None = None
        if timers is not None:
            second = Timestamp.seconds_to_duration(1)
            self.base_timer = timers.add_timer(self.on_timer, Timestamp.now() + second, second)

    def insert(self, data: Any) -> Entry:
        """Add ``data`` to the newest bucket and return its entry."""
        entry = Entry(self, data, self._end)
        self._buckets[self._end][entry] = None
        return entry

    def update(self, entry: Entry) -> None:
        """Move a pending entry to the newest bucket, restarting its idle time."""
        if not entry.pending or entry.wheel is not self:
            return
        if entry.bucket != self._end:
            del self._buckets[entry.bucket][entry]
            self._buckets[self._end][entry] = None
            entry.bucket = self._end

    def remove(self, entry: Entry) -> None:
        """Drop a pending entry without calling the callback."""
        if not entry.pending or entry.wheel is not self:
            return
        del self._buckets[entry.bucket][entry]
        entry.bucket = -1

    def on_timer(self) -> None:
        """Expire the oldest bucket, calling the callback for each of its entries."""
        bucket = self._buckets[self._begin]
        expired = list(bucket)
        bucket.clear()
        for entry in expired:
            entry.bucket = -1
        for entry in expired:
            self._callback(entry.data)
        self._begin = (self._begin + 1) % self.idle_seconds
        self._end = (self._end + 1) % self.idle_seconds

    def bucket_sizes(self) -> list[int]:
        """Number of entries in each bucket, by bucket index."""
        return [len(bucket) for bucket in self._buckets]

    def __len__(self) -> int:
        return sum(self.bucket_sizes())