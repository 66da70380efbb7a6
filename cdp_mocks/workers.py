from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable

logger = logging.getLogger(__name__)


class DumpWriteQueue:
    """Bounded background pool for dump persistence.

    Writes are submitted at test end and drained with :meth:`wait_idle`
    before the run finishes. A failed write only fails its own future.
    """

    def __init__(self, max_workers: int | None = None) -> None:
        self.max_workers = max_workers or os.cpu_count() or 1
        self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="dump-writer")
        self._futures: set[Future] = set()
        self._lock = threading.Lock()

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        future = self._executor.submit(fn, *args, **kwargs)
        with self._lock:
            self._futures.add(future)
        return future

    def pending(self) -> int:
        with self._lock:
            return sum(1 for f in self._futures if not f.done())

    def wait_idle(self) -> list[BaseException]:
        """Block until every submitted write finished; return the failures."""
        failures: list[BaseException] = []
        while True:
            with self._lock:
                batch, self._futures = self._futures, set()
            if not batch:
                return failures
            wait(batch)
            for future in batch:
                exc = future.exception()
                if exc is not None:
                    logger.error("Dump write failed: %s", exc, exc_info=exc)
                    failures.append(exc)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)
