from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator, model_validator

from webscan.errors import InvalidTransitionError, QueueError
from webscan.models import ScanJob, ScanProfile, ScanStatus, utc_now_iso
from webscan.orchestrator import CANCELLED_MESSAGE
from webscan.queue import JobQueue, JobState
from webscan.storage import ScanStore

LOGGER = logging.getLogger(__name__)


class ScanRequest(BaseModel):
    project_id: str = Field(min_length=1)
    url: str
    profile: ScanProfile = ScanProfile.FULL
    detectors: list[str] = Field(default_factory=list)

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        value = value.strip()
        parsed = urlparse(value)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError("url must be an absolute http(s) URL")
        return value

    @model_validator(mode="after")
    def _check_detectors(self) -> "ScanRequest":
        if self.profile is ScanProfile.CUSTOM and not self.detectors:
            raise ValueError("custom profile requires at least one detector")
        return self


class ScanService:
    """Admission and cancellation of scans.

    Jobs are persisted as ``pending`` before they are queued, so a status
    query never misses a job the caller has been handed.
    """

    def __init__(self, store: ScanStore, queue: JobQueue) -> None:
        self.store = store
        self.queue = queue

    def submit(self, request: ScanRequest | dict[str, Any]) -> ScanJob:
        if not isinstance(request, ScanRequest):
            request = ScanRequest.model_validate(request)
        job = ScanJob(
            project_id=request.project_id,
            url=request.url,
            profile=request.profile,
            detectors=list(request.detectors) if request.profile is ScanProfile.CUSTOM else [],
            phase_message="Queued",
        )
        self.store.create_job(job)
        try:
            self.queue.enqueue(job)
        except QueueError as exc:
            message = f"Failed to add scan to queue: {exc}"
            LOGGER.error("[scan %s] %s", job.id, message)
            self.store.fail_job(job.id, message, utc_now_iso())
            raise
        LOGGER.info("[scan %s] submitted url=%s profile=%s", job.id, job.url, job.profile.value)
        return job

    def cancel(self, job_id: str) -> ScanJob:
        job = self.store.get_job(job_id)
        # a failed attempt still waiting for its retry is not final yet
        retry_pending = job.status is ScanStatus.FAILED and self.queue.state(job_id) in {
            JobState.WAITING,
            JobState.DELAYED,
        }
        if job.status not in {ScanStatus.PENDING, ScanStatus.RUNNING} and not retry_pending:
            raise InvalidTransitionError(f"Cannot cancel scan {job_id} with status: {job.status.value}")
        if not self.store.mark_cancelled(job_id, CANCELLED_MESSAGE, retry_pending=retry_pending):
            job = self.store.get_job(job_id)
            raise InvalidTransitionError(f"Cannot cancel scan {job_id} with status: {job.status.value}")
        removed = self.queue.remove(job_id)
        LOGGER.info("[scan %s] cancelled (removed from queue: %s)", job_id, removed)
        return self.store.get_job(job_id)

    def status(self, job_id: str) -> dict[str, Any]:
        job = self.store.get_job(job_id)
        return {
            "id": job.id,
            "status": job.status.value,
            "progress": job.progress,
            "phase_message": job.phase_message,
            "started_at": job.started_at,
            "completed_at": job.completed_at,
            "duration_seconds": job.duration_seconds,
            "total_findings": job.total_findings,
            "severity_counts": job.severity_counts(),
            "error_message": job.error_message,
        }
