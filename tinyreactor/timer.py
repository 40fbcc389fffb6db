"""Timers and an ordered collection of pending timers."""

from __future__ import annotations

import heapq
import itertools
from dataclasses import dataclass, field
from typing import Callable

from tinyreactor.timestamp import Timestamp

TimerCallback = Callable[[], object]

_sequence = itertools.count(1)


@dataclass(eq=False)
class Timer:
    """A callback due at ``expiration``, repeating every ``interval`` microseconds if non-zero."""

    callback: TimerCallback
    expiration: Timestamp
    interval: int = 0
    sequence: int = field(default_factory=lambda: next(_sequence), init=False)

    def run(self) -> None:
        self.callback()

    def repeatable(self) -> bool:
        return self.interval != 0

    def restart(self, now: Timestamp) -> None:
        """Reschedule a repeating timer from ``now``; a one-shot timer becomes invalid."""
        if self.repeatable():
            self.expiration = now + self.interval
        else:
            self.expiration = Timestamp.invalid()


class TimerManager:
    """Pending timers ordered by expiration, then by creation order.

    Not thread-safe: all calls must come from the thread that owns the manager.
    """

    def __init__(self) -> None:
        self._heap: list[tuple[int, int, Timer]] = []
        self._active: dict[Timer, int] = {}
        self._calling_expired = False
        self._canceling: set[Timer] = set()

    def __len__(self) -> int:
        return len(self._active)

    def add_timer(self, callback: TimerCallback, when: Timestamp, interval: int = 0) -> Timer:
        """Schedule ``callback`` at ``when``; with a non-zero ``interval`` it repeats."""
        if interval < 0:
            raise ValueError("timer interval must not be negative")
        timer = Timer(callback, when, interval)
        self._insert(timer)
        return timer

    def remove_timer(self, timer: Timer) -> None:
        """Cancel ``timer``. Cancelling from inside an expiring callback stops its repeat."""
        if self._active.pop(timer, None) is not None:
            return
        if self._calling_expired:
            self._canceling.add(timer)

    def next_expiration(self) -> Timestamp | None:
        """Expiration of the earliest pending timer, or None if none is pending."""
        self._prune()
        if not self._heap:
            return None
        return Timestamp(self._heap[0][0])

    def handle_expired(self, now: Timestamp | None = None) -> list[Timer]:
        """Run every timer due at or before ``now`` and reschedule repeating ones.

        Returns the timers that fired, in expiration order.
        """
        if now is None:
            now = Timestamp.now()
        expired: list[Timer] = []
        while True:
            self._prune()
            if not self._heap or self._heap[0][0] > now.micros:
                break
            _, _, timer = heapq.heappop(self._heap)
            del self._active[timer]
            expired.append(timer)

        self._calling_expired = True
        self._canceling.clear()
        try:
            for timer in expired:
                timer.run()
        finally:
            self._calling_expired = False

        for timer in expired:
            if timer.repeatable() and timer not in self._canceling:
                timer.restart(now)
                self._insert(timer)
        self._canceling.clear()
        return expired

    def _insert(self, timer: Timer) -> None:
        key = timer.expiration.micros
        self._active[timer] = key
        heapq.heappush(self._heap, (key, timer.sequence, timer))

    def _prune(self) -> None:
        """Drop heap entries of timers that were cancelled."""
        while self._heap:
            key, _, timer = self._heap[0]
            if self._active.get(timer) == key:
                return
            heapq.heappop(self._heap)