from __future__ import annotations

import logging
import threading
from collections import OrderedDict, deque
from typing import Callable

from webscan.models import ProgressEvent, ScanPhase, ScanStatus, Severity
from webscan.storage import ScanStore

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_TRACKED_JOBS = 256
DEFAULT_MAX_EVENTS_PER_JOB = 200

ProgressListener = Callable[[ProgressEvent], None]


def fetching_message(url: str) -> str:
    return f"Fetching target: {url}"


def scanning_message(label: str) -> str:
    return f"Scanning: {label}..."


def detector_done_message(label: str, found: int) -> str:
    return f"{label}: found {found} issue(s). Continuing..."


def detector_error_message(label: str) -> str:
    return f"{label} detector completed with errors. Continuing..."


def annotating_message(title: str, index: int, total: int) -> str:
    return f"Annotating: {title} ({index}/{total})..."


def completed_message(total: int, counts: dict[str, int]) -> str:
    return (
        f"Scan completed! Found {total} vulnerabilities "
        f"({counts.get(Severity.CRITICAL.value, 0)} critical, "
        f"{counts.get(Severity.HIGH.value, 0)} high, "
        f"{counts.get(Severity.MEDIUM.value, 0)} medium)"
    )


class ProgressPublisher:
    """Writes the human-readable phase message to the job record.

    The structured events behind each message are handed to any registered
    listeners and kept in memory for the most recent ``max_jobs`` jobs, at
    most ``max_events_per_job`` each.
    """

    def __init__(
        self,
        store: ScanStore,
        keep_events: bool = True,
        max_jobs: int = DEFAULT_MAX_TRACKED_JOBS,
        max_events_per_job: int = DEFAULT_MAX_EVENTS_PER_JOB,
    ) -> None:
        self.store = store
        self.keep_events = keep_events
        self.max_jobs = max_jobs
        self.max_events_per_job = max_events_per_job
        self._events: OrderedDict[str, deque[ProgressEvent]] = OrderedDict()
        self._listeners: list[ProgressListener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: ProgressListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def publish(self, event: ProgressEvent, persist: bool = True) -> None:
        """Record ``event``; the job record is only touched while it is running."""
        if persist:
            fields: dict[str, object] = {"phase_message": event.message}
            if event.progress is not None:
                fields["progress"] = max(0, min(100, int(event.progress)))
            self.store.update_job(event.job_id, only_if_status=(ScanStatus.RUNNING,), **fields)

        with self._lock:
            if self.keep_events:
                self._remember(event)
            listeners = list(self._listeners)
        LOGGER.debug("[scan %s] %s: %s", event.job_id, event.phase.value, event.message)

        for listener in listeners:
            try:
                listener(event)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Progress listener failed for scan %s", event.job_id)

    def emit(
        self,
        job_id: str,
        phase: ScanPhase,
        message: str,
        progress: int | None = None,
        detector: str | None = None,
        outcome: str | None = None,
        persist: bool = True,
    ) -> ProgressEvent:
        event = ProgressEvent(
            job_id=job_id,
            phase=phase,
            message=message,
            progress=progress,
            detector=detector,
            outcome=outcome,
        )
        self.publish(event, persist=persist)
        return event

    def events(self, job_id: str) -> list[ProgressEvent]:
        with self._lock:
            return list(self._events.get(job_id, []))

    def forget(self, job_id: str) -> None:
        with self._lock:
            self._events.pop(job_id, None)

    def tracked_jobs(self) -> list[str]:
        with self._lock:
            return list(self._events)

    def _remember(self, event: ProgressEvent) -> None:
        history = self._events.get(event.job_id)
        if history is None:
            history = self._events[event.job_id] = deque(maxlen=self.max_events_per_job)
            while len(self._events) > self.max_jobs:
                self._events.popitem(last=False)
        else:
            self._events.move_to_end(event.job_id)
        history.append(event)
