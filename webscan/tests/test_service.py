from __future__ import annotations

import httpx
import pytest
from pydantic import ValidationError

from webscan.errors import FetchError, InvalidTransitionError, JobNotFoundError, QueueError
from webscan.models import ScanProfile, ScanStatus
from webscan.queue import JobQueue, JobState
from webscan.service import ScanRequest, ScanService
from webscan.worker import WorkerPool


def refuse_connection(request):
    raise httpx.ConnectError("connection refused", request=request)


def test_submit_persists_pending_job_and_enqueues(store):
    queue = JobQueue()
    service = ScanService(store, queue)

    job = service.submit({"project_id": "proj", "url": "https://shop.test/"})

    assert store.get_job(job.id).status is ScanStatus.PENDING
    assert queue.state(job.id) is JobState.WAITING
    assert job.profile is ScanProfile.FULL


def test_submit_failure_marks_job_failed(store):
    queue = JobQueue()
    queue.close()
    service = ScanService(store, queue)

    with pytest.raises(QueueError):
        service.submit(ScanRequest(project_id="proj", url="http://shop.test/"))

    (job,) = store.list_jobs()
    assert job.status is ScanStatus.FAILED
    assert job.error_message == "Failed to add scan to queue: Queue is closed"


@pytest.mark.parametrize(
    "payload",
    [
        {"project_id": "proj", "url": "ftp://shop.test/"},
        {"project_id": "proj", "url": "not a url"},
        {"project_id": "", "url": "http://shop.test/"},
        {"project_id": "proj", "url": "http://shop.test/", "profile": "custom"},
        {"project_id": "proj", "url": "http://shop.test/", "profile": "deep"},
    ],
)
def test_invalid_requests_rejected(payload):
    with pytest.raises(ValidationError):
        ScanRequest.model_validate(payload)


def test_custom_detectors_only_kept_for_custom_profile(store):
    service = ScanService(store, JobQueue())

    quick = service.submit({"project_id": "p", "url": "http://a.test/", "profile": "quick", "detectors": ["xss"]})
    custom = service.submit({"project_id": "p", "url": "http://a.test/", "profile": "custom", "detectors": ["xss"]})

    assert store.get_job(quick.id).detectors == []
    assert store.get_job(custom.id).detectors == ["xss"]


def test_cancel_pending_job_removes_it_from_queue(store):
    queue = JobQueue()
    service = ScanService(store, queue)
    job = service.submit({"project_id": "proj", "url": "http://shop.test/"})

    cancelled = service.cancel(job.id)

    assert cancelled.status is ScanStatus.CANCELLED
    assert cancelled.phase_message == "Scan cancelled by user"
    assert queue.state(job.id) is None
    assert queue.claim(timeout=0) is None


def test_cancel_running_job_marks_active_entry(store):
    queue = JobQueue()
    service = ScanService(store, queue)
    job = service.submit({"project_id": "proj", "url": "http://shop.test/"})
    queue.claim(timeout=0)
    store.start_job(job.id, "2024-01-01T00:00:00+00:00", "Initializing scan...")

    service.cancel(job.id)

    assert store.get_job(job.id).status is ScanStatus.CANCELLED
    assert queue.fail(job.id, "late failure") is False


def test_cancel_terminal_job_rejected(store):
    queue = JobQueue()
    service = ScanService(store, queue)
    job = service.submit({"project_id": "proj", "url": "http://shop.test/"})
    service.cancel(job.id)

    with pytest.raises(InvalidTransitionError):
        service.cancel(job.id)
    with pytest.raises(JobNotFoundError):
        service.cancel("missing")


def test_status_payload(store):
    service = ScanService(store, JobQueue())
    job = service.submit({"project_id": "proj", "url": "http://shop.test/"})

    status = service.status(job.id)

    assert status["status"] == "pending"
    assert status["progress"] == 0
    assert status["severity_counts"] == {"critical": 0, "high": 0, "medium": 0, "low": 0, "info": 0}


def test_end_to_end_through_worker_pool(store, fake_detectors, build_orchestrator):
    queue = JobQueue()
    service = ScanService(store, queue)
    orchestrator, _ = build_orchestrator(fake_detectors)
    jobs = [service.submit({"project_id": "proj", "url": f"http://site{index}.test/"}) for index in range(7)]

    with WorkerPool(queue, orchestrator, concurrency=5, poll_interval=0.05):
        assert queue.join(timeout=30) is True

    for job in jobs:
        saved = store.get_job(job.id)
        assert saved.status is ScanStatus.COMPLETED
        assert saved.total_findings == 10
        assert store.count_findings(job.id) == 10


def test_unreachable_target_is_retried_then_failed(store, fake_detectors, build_orchestrator):
    queue = JobQueue(attempts=3, backoff_seconds=0.01)
    service = ScanService(store, queue)
    orchestrator, _ = build_orchestrator(fake_detectors, fetch_handler=refuse_connection)
    job = service.submit({"project_id": "proj", "url": "http://down.test/"})

    with WorkerPool(queue, orchestrator, concurrency=2, poll_interval=0.05):
        assert queue.join(timeout=30) is True

    saved = store.get_job(job.id)
    assert saved.status is ScanStatus.FAILED
    assert saved.error_message
    assert store.count_findings(job.id) == 0
    assert queue.attempts_made(job.id) == 3
    assert queue.state(job.id) is JobState.FAILED


def fail_first_attempt(queue, service, build_orchestrator, fake_detectors):
    orchestrator, _ = build_orchestrator(fake_detectors, fetch_handler=refuse_connection)
    job = service.submit({"project_id": "proj", "url": "http://down.test/"})
    queued = queue.claim(timeout=0)
    with pytest.raises(FetchError):
        orchestrator.execute(queued.job)
    retried = queue.fail(job.id, "Failed to fetch target URL")
    return job, retried


def test_cancel_during_retry_backoff(store, fake_detectors, build_orchestrator):
    now = [1000.0]
    queue = JobQueue(backoff_seconds=60, clock=lambda: now[0])
    service = ScanService(store, queue)
    job, retried = fail_first_attempt(queue, service, build_orchestrator, fake_detectors)
    assert retried is True
    assert store.get_job(job.id).status is ScanStatus.FAILED
    assert queue.state(job.id) is JobState.DELAYED

    cancelled = service.cancel(job.id)

    assert cancelled.status is ScanStatus.CANCELLED
    assert cancelled.phase_message == "Scan cancelled by user"
    assert queue.state(job.id) is None
    now[0] += 120
    assert queue.claim(timeout=0) is None
    assert all(detector.calls == 0 for detector in fake_detectors)


def test_cancel_after_final_attempt_rejected(store, fake_detectors, build_orchestrator):
    queue = JobQueue(attempts=1)
    service = ScanService(store, queue)
    job, retried = fail_first_attempt(queue, service, build_orchestrator, fake_detectors)
    assert retried is False

    with pytest.raises(InvalidTransitionError):
        service.cancel(job.id)
    assert store.get_job(job.id).status is ScanStatus.FAILED
