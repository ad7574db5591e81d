from __future__ import annotations

import time
from collections import deque
from typing import Callable, Deque


class FPSMeter:
    def __init__(self, window: int = 30, clock: Callable[[], float] = time.perf_counter) -> None:
        self.window = max(1, window)
        self.buffer: Deque[float] = deque(maxlen=self.window)
        self._clock = clock
        self.last_time = clock()

    def tick(self) -> float:
        now = self._clock()
        delta = now - self.last_time
        self.last_time = now
        if delta == 0:
            fps = 0.0
        else:
            fps = 1.0 / delta
        self.buffer.append(fps)
        return fps

    def get_fps(self) -> float:
        if not self.buffer:
            return 0.0
        return float(sum(self.buffer) / len(self.buffer))

    def reset(self) -> None:
        self.buffer.clear()
        self.last_time = self._clock()


class NonDecreasingClock:
    """Wall-clock seconds that never step backwards, even if the system clock does."""

    def __init__(self, source: Callable[[], float] = time.time) -> None:
        self._source = source
        self._last = float("-inf")

    def __call__(self) -> float:
        now = self._source()
        if now < self._last:
            return self._last
        self._last = now
        return now
