"""Bounded worker pool used by the parallel and pipelined strategies."""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from threading import BoundedSemaphore
from typing import Any, Callable


class WorkerPool:
    """Runs tasks on at most `size` threads.

    `submit` blocks while every worker is busy, so the dispatching thread
    never builds requests far ahead of the ones being sent. Leaving the
    context waits for every submitted task (the join barrier) and re-raises
    the first unexpected task exception.
    """

    def __init__(self, size: int, name: str = "executer") -> None:
        if size < 1:
            raise ValueError(f"worker pool size must be positive, got {size}")
        self._slots = BoundedSemaphore(size)
        self._executor = ThreadPoolExecutor(max_workers=size, thread_name_prefix=name)
        self._futures: list[Future[Any]] = []

    def __enter__(self) -> "WorkerPool":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.wait()

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future[Any]:
        self._slots.acquire()
        try:
            future = self._executor.submit(fn, *args)
        except BaseException:
            self._slots.release()
            raise
        future.add_done_callback(lambda _: self._slots.release())
        self._futures.append(future)
        return future

    def wait(self) -> None:
        self._executor.shutdown(wait=True)
        futures, self._futures = self._futures, []
        for future in futures:
            future.result()
