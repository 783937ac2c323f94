"""
Bounded fan-out for sync stages.

A BoundedPool runs at most `max_workers` units at a time. submit() blocks the
caller while the pool is full, and wait() is a barrier that returns once
every submitted unit has finished. Each unit runs in a copy of the
submitter's context so trace/stage context vars reach worker logs.
"""

import contextvars
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_all
from typing import Any


class BoundedPool:
    """
    Usage:
        with BoundedPool(max_workers=10, name="top-level") as pool:
            for folder in folders:
                pool.submit(persist, folder)
            outcomes = pool.wait()
    """

    def __init__(self, max_workers: int, name: str = "sync"):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.max_workers = max_workers
        self.name = name
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=name)
        self._slots = threading.BoundedSemaphore(max_workers)
        self._futures: list[Future] = []

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        """Schedule fn(*args, **kwargs), blocking while all workers are busy."""
        self._slots.acquire()
        ctx = contextvars.copy_context()

        def run() -> Any:
            try:
                return ctx.run(fn, *args, **kwargs)
            finally:
                self._slots.release()

        try:
            future = self._executor.submit(run)
        except BaseException:
            self._slots.release()
            raise
        self._futures.append(future)
        return future

    def wait(self) -> list[Future]:
        """Block until every submitted unit has finished. Futures come back in submission order."""
        wait_all(self._futures)
        return list(self._futures)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)

    def __enter__(self) -> "BoundedPool":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()
