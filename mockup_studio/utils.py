"""Small shared helpers: ids, clamping, and a cancel-and-reschedule debouncer."""

from __future__ import annotations

import threading
import uuid
from typing import Callable, Optional


def generate_id() -> str:
    return str(uuid.uuid4())


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def key_suffix(key: str) -> str:
    """Loggable stand-in for a secret: the last four characters only."""
    return f"...{key[-4:]}" if key else "..."


TimerFactory = Callable[[float, Callable[[], None]], "threading.Timer"]


class Debouncer:
    """
    Coalesce bursts of calls into one callback after a quiet period.

    Each trigger() cancels the pending timer and schedules a new one.
    flush() runs a pending callback immediately; cancel() drops it.
    The timer factory is injectable so tests can fire timers by hand.
    """

    def __init__(
        self,
        delay: float,
        callback: Callable[[], None],
        timer_factory: Optional[TimerFactory] = None,
    ) -> None:
        self.delay = delay
        self.callback = callback
        self._timer_factory = timer_factory or threading.Timer
        self._timer = None
        self._generation = 0
        self._lock = threading.Lock()

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def trigger(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._generation += 1
            generation = self._generation
            timer = self._timer_factory(self.delay, lambda: self._fire(generation))
            if hasattr(timer, "daemon"):
                timer.daemon = True
            self._timer = timer
            timer.start()

    def _fire(self, generation: int) -> None:
        # A timer that lost the race with a newer trigger() must not fire.
        with self._lock:
            if self._timer is None or generation != self._generation:
                return
            self._timer = None
        self.callback()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def flush(self) -> None:
        with self._lock:
            if self._timer is None:
                return
            self._timer.cancel()
            self._timer = None
        self.callback()
