"""
In-process job queue for scan requests.

Jobs move through ``waiting -> active -> completed`` with a detour through
``delayed`` when an execution fails and the retry policy allows another
attempt. ``claim()`` is the single synchronization point that hands each job
to exactly one worker at a time.

Retry policy: at most ``attempts`` executions per job; the n-th retry waits
``backoff_seconds * 2 ** (n - 1)`` seconds. Completed jobs are kept for
inspection while within ``keep_completed_count`` / ``keep_completed_seconds``;
failed jobs are kept for ``keep_failed_seconds``.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from webscan.errors import QueueError
from webscan.models import ScanJob

LOGGER = logging.getLogger(__name__)

DEFAULT_ATTEMPTS = 3
DEFAULT_BACKOFF_SECONDS = 2.0
DEFAULT_KEEP_COMPLETED_COUNT = 1000
DEFAULT_KEEP_COMPLETED_SECONDS = 3600
DEFAULT_KEEP_FAILED_SECONDS = 24 * 3600


class JobState(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    DELAYED = "delayed"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_pending(self) -> bool:
        return self in {JobState.WAITING, JobState.ACTIVE, JobState.DELAYED}


@dataclass
class JobHandle:
    job_id: str
    enqueued_at: float


@dataclass
class QueuedJob:
    """A claimed job. ``attempt`` starts at 1."""

    job: ScanJob
    attempt: int

    @property
    def job_id(self) -> str:
        return self.job.id


@dataclass
class _Entry:
    job: ScanJob
    state: JobState
    enqueued_at: float
    attempts_made: int = 0
    ready_at: float = 0.0
    finished_at: float | None = None
    last_error: str | None = None
    result: Any = None
    cancel_requested: bool = False
    errors: list[str] = field(default_factory=list)


class JobQueue:
    def __init__(
        self,
        attempts: int = DEFAULT_ATTEMPTS,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
        keep_completed_count: int = DEFAULT_KEEP_COMPLETED_COUNT,
        keep_completed_seconds: float = DEFAULT_KEEP_COMPLETED_SECONDS,
        keep_failed_seconds: float = DEFAULT_KEEP_FAILED_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        self.attempts = attempts
        self.backoff_seconds = backoff_seconds
        self.keep_completed_count = keep_completed_count
        self.keep_completed_seconds = keep_completed_seconds
        self.keep_failed_seconds = keep_failed_seconds
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._waiting: deque[str] = deque()
        self._cond = threading.Condition()
        self._closed = False

    # admission

    def enqueue(self, job: ScanJob) -> JobHandle:
        with self._cond:
            if self._closed:
                raise QueueError("Queue is closed")
            existing = self._entries.get(job.id)
            if existing is not None and existing.state.is_pending:
                raise QueueError(f"Job {job.id} is already queued ({existing.state.value})")
            now = self._clock()
            self._entries[job.id] = _Entry(job=job, state=JobState.WAITING, enqueued_at=now)
            self._waiting.append(job.id)
            self._cond.notify_all()
        LOGGER.info("Enqueued scan job %s", job.id)
        return JobHandle(job_id=job.id, enqueued_at=now)

    def remove(self, job_id: str) -> bool:
        """Drop a job that no worker has started.

        An active job cannot be removed; it is only flagged so that a failing
        execution is not retried, and returns False.
        """
        with self._cond:
            entry = self._entries.get(job_id)
            if entry is None:
                return False
            if entry.state in {JobState.WAITING, JobState.DELAYED}:
                del self._entries[job_id]
                try:
                    self._waiting.remove(job_id)
                except ValueError:
                    pass
                self._cond.notify_all()
                LOGGER.info("Removed scan job %s from queue", job_id)
                return True
            if entry.state is JobState.ACTIVE:
                entry.cancel_requested = True
            return False

    # worker side

    def claim(self, timeout: float | None = None) -> QueuedJob | None:
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                if self._closed:
                    return None
                entry = self._next_ready()
                if entry is not None:
                    entry.state = JobState.ACTIVE
                    entry.attempts_made += 1
                    return QueuedJob(job=entry.job, attempt=entry.attempts_made)
                wait = self._seconds_until_delayed_ready()
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        return None
                    wait = remaining if wait is None else min(wait, remaining)
                self._cond.wait(wait)

    def complete(self, job_id: str, result: Any = None) -> None:
        with self._cond:
            entry = self._active_entry(job_id)
            entry.state = JobState.COMPLETED
            entry.finished_at = self._clock()
            entry.result = result
            self._evict()
            self._cond.notify_all()

    def fail(self, job_id: str, error: str) -> bool:
        """Record a failed execution. Returns True when a retry was scheduled."""
        with self._cond:
            entry = self._active_entry(job_id)
            entry.last_error = error
            entry.errors.append(error)
            now = self._clock()
            if entry.attempts_made < self.attempts and not entry.cancel_requested:
                delay = self.retry_delay(entry.attempts_made)
                entry.state = JobState.DELAYED
                entry.ready_at = now + delay
                LOGGER.warning(
                    "Scan job %s failed on attempt %s/%s, retrying in %.1fs: %s",
                    job_id, entry.attempts_made, self.attempts, delay, error,
                )
                retried = True
            else:
                entry.state = JobState.FAILED
                entry.finished_at = now
                LOGGER.error("Scan job %s failed permanently after %s attempt(s): %s", job_id, entry.attempts_made, error)
                retried = False
            self._evict()
            self._cond.notify_all()
            return retried

    def retry_delay(self, attempts_made: int) -> float:
        return self.backoff_seconds * (2 ** (attempts_made - 1))

    # observability

    def state(self, job_id: str) -> JobState | None:
        with self._cond:
            self._evict()
            entry = self._entries.get(job_id)
            return entry.state if entry else None

    def attempts_made(self, job_id: str) -> int:
        with self._cond:
            entry = self._entries.get(job_id)
            return entry.attempts_made if entry else 0

    def errors(self, job_id: str) -> list[str]:
        with self._cond:
            entry = self._entries.get(job_id)
            return list(entry.errors) if entry else []

    def counts(self) -> dict[str, int]:
        with self._cond:
            self._evict()
            counts = {state.value: 0 for state in JobState}
            for entry in self._entries.values():
                counts[entry.state.value] += 1
            return counts

    def join(self, timeout: float | None = None) -> bool:
        """Block until no job is waiting, delayed or active."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while any(entry.state.is_pending for entry in self._entries.values()):
                if deadline is None:
                    self._cond.wait(1.0)
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._cond.wait(min(remaining, 1.0))
            return True

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    @property
    def closed(self) -> bool:
        return self._closed

    # internals

    def _active_entry(self, job_id: str) -> _Entry:
        entry = self._entries.get(job_id)
        if entry is None or entry.state is not JobState.ACTIVE:
            raise QueueError(f"Job {job_id} is not active")
        return entry

    def _next_ready(self) -> _Entry | None:
        now = self._clock()
        ready = sorted(
            (entry for entry in self._entries.values() if entry.state is JobState.DELAYED and entry.ready_at <= now),
            key=lambda entry: entry.ready_at,
        )
        for entry in ready:
            entry.state = JobState.WAITING
            self._waiting.append(entry.job.id)
        while self._waiting:
            job_id = self._waiting.popleft()
            entry = self._entries.get(job_id)
            if entry is not None and entry.state is JobState.WAITING:
                return entry
        return None

    def _seconds_until_delayed_ready(self) -> float | None:
        pending = [entry.ready_at for entry in self._entries.values() if entry.state is JobState.DELAYED]
        if not pending:
            return None
        return max(0.0, min(pending) - self._clock())

    def _evict(self) -> None:
        now = self._clock()
        for job_id, entry in list(self._entries.items()):
            if entry.state is JobState.FAILED and now - (entry.finished_at or now) > self.keep_failed_seconds:
                del self._entries[job_id]
            elif entry.state is JobState.COMPLETED and now - (entry.finished_at or now) > self.keep_completed_seconds:
                del self._entries[job_id]
        completed = sorted(
            (entry for entry in self._entries.values() if entry.state is JobState.COMPLETED),
            key=lambda entry: entry.finished_at or 0.0,
        )
        overflow = len(completed) - self.keep_completed_count
        for entry in completed[: max(0, overflow)]:
            del self._entries[entry.job.id]
