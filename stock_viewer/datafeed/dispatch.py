"""
Fire-and-forget dispatch of sink work.

The generator must never hold the market lock while talking to a file,
Redis or Postgres. Instead it pushes jobs onto an unbounded queue and a small
pool of daemon worker threads drains it.

- No ordering guarantee between jobs (several workers)
- No backpressure: the queue grows if sinks are slow
- No retries: a failing job is logged and dropped
- No cancellation: jobs still queued at process exit are abandoned
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Callable, NamedTuple

logger = logging.getLogger(__name__)

DEFAULT_WORKERS = 2


class _Job(NamedTuple):
    label: str
    func: Callable[..., Any]
    args: tuple


_STOP = _Job("stop", lambda: None, ())


class SinkDispatcher:
    """
    Queue + worker threads for best-effort sink writes.

    Usage:
        dispatcher = SinkDispatcher(workers=2)
        dispatcher.start()
        dispatcher.submit("cache", cache.set, "stock:0", 101.5)
    """

    def __init__(self, workers: int = DEFAULT_WORKERS, name: str = "sink") -> None:
        if workers <= 0:
            raise ValueError("workers must be > 0")
        self.workers = workers
        self.name = name
        self._queue: queue.Queue[_Job] = queue.Queue()  # maxsize=0 -> unbounded
        self._threads: list[threading.Thread] = []
        self._running = False

        # Counters, read by tests and the benchmark
        self._lock = threading.Lock()
        self.completed: int = 0
        self.failed: int = 0

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        for i in range(self.workers):
            t = threading.Thread(
                target=self._worker,
                name=f"{self.name}-worker-{i}",
                daemon=True,
            )
            t.start()
            self._threads.append(t)
        logger.debug("Started %d %s workers", self.workers, self.name)

    def submit(self, label: str, func: Callable[..., Any], *args: Any) -> None:
        """Queue func(*args). Never blocks, never raises for sink errors."""
        self._queue.put_nowait(_Job(label, func, args))

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def drain(self) -> None:
        """Block until every job submitted so far has run (tests, shutdown)."""
        self._queue.join()

    def stop(self) -> None:
        """
        Ask workers to exit once they reach the stop marker.

        Does not wait: anything still queued behind a slow sink is abandoned
        when the process exits.
        """
        if not self._running:
            return
        self._running = False
        for _ in self._threads:
            self._queue.put_nowait(_STOP)

    def _worker(self) -> None:
        while True:
            job = self._queue.get()
            try:
                if job is _STOP:
                    return
                job.func(*job.args)
                with self._lock:
                    self.completed += 1
            except Exception:
                with self._lock:
                    self.failed += 1
                logger.exception("%s sink write failed", job.label)
            finally:
                self._queue.task_done()
