"""Clocks used by run contexts.

``SystemClock`` is monotonic: wall-clock readings are anchored once and then
advanced with ``time.monotonic`` so durations never go backwards.
``TickingClock`` is deterministic and advances a fixed step per reading, which
makes journals and durations reproducible in tests.
"""

from __future__ import annotations

import threading
import time
from datetime import UTC, datetime, timedelta
from typing import Protocol

DEFAULT_TICK_START = datetime(2025, 1, 1, tzinfo=UTC)


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    def __init__(self) -> None:
        self._anchor_wall = datetime.now(tz=UTC)
        self._anchor_mono = time.monotonic()

    def now(self) -> datetime:
        return self._anchor_wall + timedelta(seconds=time.monotonic() - self._anchor_mono)


class TickingClock:
    """Deterministic clock: each reading advances by ``step``."""

    def __init__(
        self,
        start: datetime = DEFAULT_TICK_START,
        step: timedelta = timedelta(seconds=1),
    ) -> None:
        if step <= timedelta(0):
            raise ValueError("step must be positive")
        self._start = start
        self._step = step
        self._current = start
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            value = self._current
            self._current = self._current + self._step
            return value

    def peek(self) -> datetime:
        return self._current

    def advance(self, delta: timedelta | None = None) -> datetime:
        with self._lock:
            self._current = self._current + (delta if delta is not None else self._step)
            return self._current

    def reset(self) -> None:
        with self._lock:
            self._current = self._start


def utc_iso(value: datetime) -> str:
    return value.astimezone(UTC).isoformat()
