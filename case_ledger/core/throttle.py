"""Fixed-window login attempt throttle.

One instance is built at application start and kept on ``app.state``; the
auth router reaches it through a dependency so tests can swap it out.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable

logger = logging.getLogger(__name__)


@dataclass
class _Window:
    started_at: float
    attempts: int = 0


@dataclass
class LoginThrottle:
    """Counts failed logins per key inside a fixed time window."""

    max_attempts: int = 8
    window_seconds: int = 600
    clock: Callable[[], float] = time.monotonic
    _windows: dict[str, _Window] = field(default_factory=dict)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def _current(self, key: str, now: float) -> _Window | None:
        window = self._windows.get(key)
        if window and now - window.started_at >= self.window_seconds:
            del self._windows[key]
            return None
        return window

    def _prune(self, now: float) -> None:
        expired = [k for k, w in self._windows.items() if now - w.started_at >= self.window_seconds]
        for key in expired:
            del self._windows[key]

    async def is_blocked(self, key: str) -> bool:
        async with self._lock:
            window = self._current(key, self.clock())
            return bool(window and window.attempts >= self.max_attempts)

    async def register_failure(self, key: str) -> int:
        """Record a failed attempt and return the count in the current window."""
        async with self._lock:
            now = self.clock()
            self._prune(now)
            window = self._current(key, now)
            if window is None:
                window = _Window(started_at=now)
                self._windows[key] = window
            window.attempts += 1
            if window.attempts >= self.max_attempts:
                logger.warning(f"Login throttle engaged for {key}")
            return window.attempts

    async def reset(self, key: str) -> None:
        async with self._lock:
            self._windows.pop(key, None)
