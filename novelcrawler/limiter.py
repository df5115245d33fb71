"""Per-job cap on simultaneous chapter fetches."""

import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Iterable, Optional, TypeVar

T = TypeVar("T")


class ConcurrencyLimiter:
    """
    Run tasks over a batch of indices with at most `limit` in flight.

    Each task except the first of a batch sleeps `delay` seconds before its
    request. Completion callbacks run on the calling thread, in completion
    order, so callers can keep counters without locking.
    """

    def __init__(
        self,
        limit: int = 3,
        delay: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        name: str = "fetch",
    ):
        if limit < 1:
            raise ValueError(f"Concurrency limit must be at least 1, got {limit}")
        self.limit = limit
        self.delay = delay
        self.name = name
        self._sleep = sleep
        self._lock = threading.Lock()
        self._active = 0
        self.peak_active = 0

    def run(
        self,
        indices: Iterable[int],
        task: Callable[[int], T],
        on_complete: Optional[Callable[[int, T], None]] = None,
    ) -> None:
        """Run `task(index)` for every index and block until all have finished."""
        batch = list(indices)
        if not batch:
            return

        workers = min(self.limit, len(batch))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=self.name) as executor:
            futures = {
                executor.submit(self._run_one, task, index, position > 0): index
                for position, index in enumerate(batch)
            }
            for future in as_completed(futures):
                result = future.result()
                if on_complete:
                    on_complete(futures[future], result)

    def _run_one(self, task: Callable[[int], T], index: int, paced: bool) -> T:
        with self._lock:
            self._active += 1
            self.peak_active = max(self.peak_active, self._active)
        try:
            if paced and self.delay > 0:
                self._sleep(self.delay)
            return task(index)
        finally:
            with self._lock:
                self._active -= 1
