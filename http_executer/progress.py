"""Progress reporting used for progress-bar accuracy only, never for control flow.

The executer calls `update()` once per completed serial request and
`drop(count)` when processing for a target ends early.
"""

from __future__ import annotations

import sys
import threading
import time
from typing import Protocol


class Progress(Protocol):
    def update(self) -> None: ...

    def drop(self, count: int) -> None: ...


class NullProgress:
    """Progress sink that ignores every call."""

    def update(self) -> None:
        pass

    def drop(self, count: int) -> None:
        pass


def format_duration(seconds: float) -> str:
    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h{minutes}m"
    if minutes:
        return f"{minutes}m{secs}s"
    return f"{secs}s"


class StderrProgress:
    """Counts requests for one run and rewrites a status line on stderr.

    Dropped requests shrink the expected total instead of counting as done:
        requests 150/990 (15.2%) 12.5/s eta 67s

    Usage:
        with StderrProgress(total=generator.get_request_count()) as progress:
            executer.execute(target, progress)
    """

    def __init__(self, total: int | None = None, interval: float = 10.0) -> None:
        self._total = total
        self._interval = interval
        self._completed = 0
        self._dropped = 0
        self._started = time.monotonic()
        self._lock = threading.Lock()
        self._stopped = threading.Event()
        self._thread = threading.Thread(target=self._tick, name="progress", daemon=True)

    def __enter__(self) -> "StderrProgress":
        self._started = time.monotonic()
        self._thread.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self._stopped.set()
        self._thread.join(timeout=2.0)
        sys.stderr.write("\r\033[K")
        sys.stderr.flush()

    def update(self) -> None:
        with self._lock:
            self._completed += 1

    def drop(self, count: int) -> None:
        with self._lock:
            self._dropped += count

    @property
    def completed(self) -> int:
        with self._lock:
            return self._completed

    @property
    def dropped(self) -> int:
        with self._lock:
            return self._dropped

    def render(self, now: float | None = None) -> str:
        """Return the status line for the counters at time now."""
        with self._lock:
            completed, dropped = self._completed, self._dropped
        elapsed = max((now if now is not None else time.monotonic()) - self._started, 1e-9)
        rate = completed / elapsed

        if not self._total:
            return f"requests {completed} {rate:.1f}/s elapsed {format_duration(elapsed)}"
        total = max(self._total - dropped, 0)
        percent = 100.0 if total == 0 else min(completed / total, 1.0) * 100
        eta = max(total - completed, 0) / rate if rate else 0
        return f"requests {completed}/{total} ({percent:.1f}%) {rate:.1f}/s eta {format_duration(eta)}"

    def _tick(self) -> None:
        while not self._stopped.wait(self._interval):
            sys.stderr.write("\r\033[K" + self.render())
            sys.stderr.flush()
