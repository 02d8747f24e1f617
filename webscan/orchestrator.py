from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Protocol

from webscan.aggregator import ResultAggregator
from webscan.errors import FetchError
from webscan.fetcher import TargetFetcher
from webscan.models import Finding, ScanJob, ScanPhase, ScanStatus, utc_now_iso
from webscan.progress import (
    ProgressPublisher,
    annotating_message,
    completed_message,
    detector_done_message,
    detector_error_message,
    fetching_message,
    scanning_message,
)
from webscan.registry import DetectorRegistry
from webscan.storage import ScanStore

LOGGER = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Scan cancelled by user"

FETCH_PROGRESS = 20
DETECTION_PROGRESS_END = 80
ANNOTATION_PROGRESS_END = 95


class FindingAnnotator(Protocol):
    def annotate(self, finding: Finding) -> str:
        ...


@dataclass
class ScanOutcome:
    job_id: str
    status: ScanStatus
    total: int = 0
    counts: dict[str, int] = field(default_factory=dict)
    duration_seconds: int | None = None
    detector_errors: dict[str, str] = field(default_factory=dict)
    annotation_errors: int = 0

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["status"] = self.status.value
        return payload


class ScanOrchestrator:
    """Drives one scan job from fetch to finalization.

    Phases run strictly in order: fetch, detect, aggregate, annotate,
    finalize. A detector or annotation failure is recorded and the scan
    carries on; a failed fetch fails the whole execution. Cancellation is
    cooperative: the job status is re-read before fetching and before every
    ``cancel_check_interval``-th detector, and once a cancel is seen only the
    finding tallies are written for the job.
    """

    def __init__(
        self,
        store: ScanStore,
        registry: DetectorRegistry,
        fetcher: TargetFetcher,
        aggregator: ResultAggregator,
        publisher: ProgressPublisher,
        annotator: FindingAnnotator | None = None,
        cancel_check_interval: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.registry = registry
        self.fetcher = fetcher
        self.aggregator = aggregator
        self.publisher = publisher
        self.annotator = annotator
        self.cancel_check_interval = max(1, int(cancel_check_interval))
        self._clock = clock

    def execute(self, job: ScanJob) -> ScanOutcome:
        if self._is_cancelled(job.id):
            return self._cancelled(job)

        started = self._clock()
        if not self.store.start_job(job.id, utc_now_iso(), "Initializing scan..."):
            status = self.store.get_status(job.id)
            LOGGER.info("[scan %s] not started, status is %s", job.id, status.value)
            return ScanOutcome(job_id=job.id, status=status)

        LOGGER.info("[scan %s] started url=%s profile=%s", job.id, job.url, job.profile.value)
        try:
            return self._run(job, started)
        except Exception as exc:
            if not isinstance(exc, FetchError):
                LOGGER.exception("[scan %s] scan crashed", job.id)
            else:
                LOGGER.error("[scan %s] %s", job.id, exc)
            self.store.fail_job(job.id, f"Scan failed: {exc}", utc_now_iso())
            self.publisher.emit(job.id, ScanPhase.FAILED, f"Scan failed: {exc}", persist=False)
            raise

    def _run(self, job: ScanJob, started: float) -> ScanOutcome:
        self.publisher.emit(job.id, ScanPhase.FETCHING, fetching_message(job.url), progress=10)
        target = self.fetcher.fetch_view(job.url)
        self.publisher.emit(
            job.id,
            ScanPhase.FETCHING,
            f"Target fetched (HTTP {target.response.status_code}). Running detectors...",
            progress=FETCH_PROGRESS,
        )

        detectors = self.registry.select(job.profile, job.detectors)
        detector_errors: dict[str, str] = {}
        span = DETECTION_PROGRESS_END - FETCH_PROGRESS
        for index, detector in enumerate(detectors):
            if index % self.cancel_check_interval == 0 and self._is_cancelled(job.id):
                return self._cancelled(job, detector_errors)

            self.publisher.emit(
                job.id,
                ScanPhase.DETECTING,
                scanning_message(detector.label),
                progress=FETCH_PROGRESS + (span * index) // len(detectors),
                detector=detector.name,
            )
            try:
                findings = detector.run(target)
            except Exception as exc:  # noqa: BLE001
                LOGGER.exception("[scan %s] detector %s failed", job.id, detector.name)
                detector_errors[detector.name] = str(exc) or type(exc).__name__
                self.publisher.emit(
                    job.id,
                    ScanPhase.DETECTING,
                    detector_error_message(detector.label),
                    progress=FETCH_PROGRESS + (span * (index + 1)) // len(detectors),
                    detector=detector.name,
                    outcome="error",
                )
                continue

            recorded = self.aggregator.record(job, findings)
            self.publisher.emit(
                job.id,
                ScanPhase.DETECTING,
                detector_done_message(detector.label, len(recorded)),
                progress=FETCH_PROGRESS + (span * (index + 1)) // len(detectors),
                detector=detector.name,
                outcome="ok",
            )

        if self._is_cancelled(job.id):
            return self._cancelled(job, detector_errors)

        self.publisher.emit(job.id, ScanPhase.AGGREGATING, "Aggregating results...", progress=DETECTION_PROGRESS_END)
        annotation_errors = self._annotate(job) if self.annotator is not None else 0

        counts = self.aggregator.counts_by_severity(job.id)
        total = sum(counts.values())
        duration = int(round(self._clock() - started))
        message = completed_message(total, counts)
        if not self.store.finalize_job(job.id, counts, total, utc_now_iso(), duration, message):
            status = self.store.get_status(job.id)
            LOGGER.info("[scan %s] not finalized, status changed to %s", job.id, status.value)
            return ScanOutcome(job_id=job.id, status=status, detector_errors=detector_errors)

        self.publisher.emit(job.id, ScanPhase.COMPLETED, message, progress=100, persist=False)
        LOGGER.info(
            "[scan %s] completed total=%s detector_errors=%s duration=%ss",
            job.id, total, len(detector_errors), duration,
        )
        return ScanOutcome(
            job_id=job.id,
            status=ScanStatus.COMPLETED,
            total=total,
            counts=counts,
            duration_seconds=duration,
            detector_errors=detector_errors,
            annotation_errors=annotation_errors,
        )

    def _annotate(self, job: ScanJob) -> int:
        pending = self.aggregator.unannotated(job.id)
        errors = 0
        span = ANNOTATION_PROGRESS_END - DETECTION_PROGRESS_END
        for index, finding in enumerate(pending, start=1):
            self.publisher.emit(
                job.id,
                ScanPhase.ANNOTATING,
                annotating_message(finding.title, index, len(pending)),
                progress=DETECTION_PROGRESS_END + (span * index) // len(pending),
            )
            try:
                annotation = self.annotator.annotate(finding)
            except Exception:  # noqa: BLE001
                LOGGER.warning("[scan %s] annotation failed for finding %s", job.id, finding.id, exc_info=True)
                errors += 1
                continue
            if annotation:
                self.store.set_annotation(finding.id, annotation)
        return errors

    def _is_cancelled(self, job_id: str) -> bool:
        return self.store.get_status(job_id) is ScanStatus.CANCELLED

    def _cancelled(self, job: ScanJob, detector_errors: dict[str, str] | None = None) -> ScanOutcome:
        LOGGER.info("[scan %s] cancellation observed, stopping", job.id)
        # findings recorded before the cancel are kept and tallied
        counts = self.aggregator.counts_by_severity(job.id)
        total = sum(counts.values())
        self.store.record_tally(job.id, counts, total)
        self.publisher.emit(job.id, ScanPhase.CANCELLED, CANCELLED_MESSAGE, persist=False)
        return ScanOutcome(
            job_id=job.id,
            status=ScanStatus.CANCELLED,
            total=total,
            counts=counts,
            detector_errors=detector_errors or {},
        )
