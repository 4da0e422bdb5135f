from __future__ import annotations

import logging
import queue
import threading
from typing import Callable, List, Optional, Tuple

LOGGER = logging.getLogger(__name__)

JobHandler = Callable[[str, str], None]

_STOP = None


class WorkerPool:
    """Fixed set of daemon threads draining a shared job queue.

    Jobs run independently and in no guaranteed order. A handler exception is
    logged and the worker moves on to the next job.
    """

    def __init__(self, handler: JobHandler, size: int = 1, name: str = "job-worker") -> None:
        self.handler = handler
        self.size = max(1, size)
        self.name = name
        self._queue: "queue.Queue[Optional[Tuple[str, str]]]" = queue.Queue()
        self._threads: List[threading.Thread] = []
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def start(self) -> None:
        with self._lock:
            if self._threads:
                return
            for index in range(self.size):
                thread = threading.Thread(
                    target=self._worker_loop, name=f"{self.name}-{index}", daemon=True
                )
                thread.start()
                self._threads.append(thread)

    def submit(self, job_id: str, transcript: str) -> None:
        self._queue.put((job_id, transcript))

    def join(self) -> None:
        self._queue.join()

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        with self._lock:
            threads = list(self._threads)
            for _ in threads:
                self._queue.put(_STOP)
            for thread in threads:
                thread.join(timeout=timeout)
            self._threads = []

    def _worker_loop(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                job_id, transcript = item
                try:
                    self.handler(job_id, transcript)
                except Exception:  # noqa: BLE001
                    LOGGER.exception("worker_job_error", extra={"job_id": job_id})
            finally:
                self._queue.task_done()
