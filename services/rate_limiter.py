"""Fixed-window counter keyed by client address.

An instance lives on `app.state` so it can be swapped for a shared backend
when the service runs on more than one process.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Dict


@dataclass
class _Window:
    count: int
    started_at: float


class FixedWindowRateLimiter:
    """Count hits per key inside a window of `window_seconds`.

    Args:
        max_hits: Hits allowed within one window before `is_limited` is True.
        window_seconds: Window length; a key expires this long after its first hit.
        clock: Time source, injectable for tests.
        sweep_threshold: Tracked keys at which `hit` starts dropping expired
            windows; above it a sweep runs at least once per window.
    """

    def __init__(
        self,
        max_hits: int = 5,
        window_seconds: float = 15 * 60,
        clock: Callable[[], float] = time.monotonic,
        sweep_threshold: int = 1024,
    ) -> None:
        self.max_hits = max_hits
        self.window_seconds = window_seconds
        self.sweep_threshold = sweep_threshold
        self._clock = clock
        self._windows: Dict[str, _Window] = {}
        self._next_sweep = sweep_threshold
        self._last_sweep = clock()

    def _expired(self, window: _Window, now: float) -> bool:
        return now - window.started_at >= self.window_seconds

    def _current(self, key: str) -> _Window | None:
        window = self._windows.get(key)
        if window is None:
            return None
        if self._expired(window, self._clock()):
            del self._windows[key]
            return None
        return window

    def _sweep(self, now: float) -> None:
        for key in [k for k, w in self._windows.items() if self._expired(w, now)]:
            del self._windows[key]
        # Keys still live push the next sweep out so a full table is not rescanned on every hit
        self._next_sweep = max(self.sweep_threshold, 2 * len(self._windows))
        self._last_sweep = now

    @property
    def tracked(self) -> int:
        return len(self._windows)

    def is_limited(self, key: str) -> bool:
        window = self._current(key)
        return window is not None and window.count >= self.max_hits

    def hit(self, key: str) -> int:
        """Record one hit and return the count in the current window."""
        now = self._clock()
        size = len(self._windows)
        if size >= self._next_sweep or (size >= self.sweep_threshold and now - self._last_sweep >= self.window_seconds):
            self._sweep(now)
        window = self._current(key)
        if window is None:
            window = _Window(count=0, started_at=self._clock())
            self._windows[key] = window
        window.count += 1
        return window.count

    def reset(self, key: str) -> None:
        self._windows.pop(key, None)
