from __future__ import annotations

import logging
import threading

from webscan.orchestrator import ScanOrchestrator
from webscan.queue import JobQueue, QueuedJob

LOGGER = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 5


class WorkerPool:
    """Fixed number of worker slots pulling jobs from a ``JobQueue``.

    A failure while executing a job is scoped to that job: it is logged,
    reported to the queue (which decides on a retry) and the slot goes back
    to claiming.
    """

    def __init__(
        self,
        queue: JobQueue,
        orchestrator: ScanOrchestrator,
        concurrency: int = DEFAULT_CONCURRENCY,
        poll_interval: float = 1.0,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.queue = queue
        self.orchestrator = orchestrator
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []
        self._active: dict[str, str] = {}
        self._lock = threading.Lock()

    def start(self) -> None:
        if self._threads:
            raise RuntimeError("Worker pool already started")
        self._stop.clear()
        for slot in range(1, self.concurrency + 1):
            thread = threading.Thread(target=self._loop, name=f"scan-worker-{slot}", daemon=True)
            thread.start()
            self._threads.append(thread)
        LOGGER.info("Started %s scan workers", self.concurrency)

    def stop(self, wait: bool = True, timeout: float | None = None) -> None:
        self._stop.set()
        if wait:
            for thread in self._threads:
                thread.join(timeout)
        self._threads = []
        LOGGER.info("Scan workers stopped")

    def __enter__(self) -> "WorkerPool":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    @property
    def running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def active_jobs(self) -> dict[str, str]:
        """Snapshot of ``worker name -> job id`` for busy slots."""
        with self._lock:
            return dict(self._active)

    def _loop(self) -> None:
        name = threading.current_thread().name
        while not self._stop.is_set():
            queued = self.queue.claim(timeout=self.poll_interval)
            if queued is None:
                if self.queue.closed:
                    break
                continue
            with self._lock:
                self._active[name] = queued.job_id
            try:
                self._process(queued)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Worker %s could not settle scan job %s", name, queued.job_id)
            finally:
                with self._lock:
                    self._active.pop(name, None)

    def _process(self, queued: QueuedJob) -> None:
        LOGGER.info("Processing scan job %s (attempt %s)", queued.job_id, queued.attempt)
        try:
            outcome = self.orchestrator.execute(queued.job)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Scan job %s failed: %s", queued.job_id, exc)
            self.queue.fail(queued.job_id, str(exc) or type(exc).__name__)
            return
        self.queue.complete(queued.job_id, outcome.to_dict())
        LOGGER.info("Scan job %s finished with status %s", queued.job_id, outcome.status.value)
