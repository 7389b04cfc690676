"""Per-target rate limiting.

`take(target)` blocks until a send to that target is permitted. The gate is a
minimum interval between sends, tracked independently per target key.
"""

from __future__ import annotations

import time
from threading import Lock


class RateLimiter:
    """Enforces requests_per_second per target. Disabled when None."""

    def __init__(self, requests_per_second: float | None = None) -> None:
        self._requests_per_second = requests_per_second
        self._min_interval = 1.0 / requests_per_second if requests_per_second else 0.0
        self._last_request_time: dict[str, float] = {}
        self._key_locks: dict[str, Lock] = {}
        self._lock = Lock()

    def take(self, target: str) -> None:
        """Wait if necessary to respect the rate limit for target."""
        if self._min_interval <= 0:
            return

        with self._lock:
            key_lock = self._key_locks.setdefault(target, Lock())

        # Waiters for the same target queue on its lock, other targets proceed.
        with key_lock:
            now = time.monotonic()
            elapsed = now - self._last_request_time.get(target, 0.0)
            if elapsed < self._min_interval:
                time.sleep(self._min_interval - elapsed)
            self._last_request_time[target] = time.monotonic()
