from __future__ import annotations

import threading

import pytest

from webscan.errors import QueueError
from webscan.models import ScanJob
from webscan.queue import JobQueue, JobState


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def new_job(name: str = "a") -> ScanJob:
    return ScanJob(project_id="proj", url=f"http://{name}.test/")


def test_claim_is_fifo():
    queue = JobQueue()
    first, second = new_job("one"), new_job("two")
    queue.enqueue(first)
    queue.enqueue(second)

    assert queue.claim(timeout=0).job_id == first.id
    assert queue.claim(timeout=0).job_id == second.id
    assert queue.claim(timeout=0) is None


def test_claimed_job_is_not_handed_out_twice():
    queue = JobQueue()
    job = new_job()
    queue.enqueue(job)

    claimed = queue.claim(timeout=0)

    assert claimed.attempt == 1
    assert queue.state(job.id) is JobState.ACTIVE
    assert queue.claim(timeout=0) is None


def test_concurrent_claims_are_exclusive():
    queue = JobQueue()
    jobs = [new_job(str(index)) for index in range(40)]
    for job in jobs:
        queue.enqueue(job)
    claimed: list[str] = []
    lock = threading.Lock()

    def drain():
        while True:
            item = queue.claim(timeout=0.05)
            if item is None:
                return
            with lock:
                claimed.append(item.job_id)
            queue.complete(item.job_id)

    threads = [threading.Thread(target=drain) for _ in range(5)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(5)

    assert sorted(claimed) == sorted(job.id for job in jobs)
    assert queue.counts()["completed"] == 40


def test_retry_backoff_then_permanent_failure():
    clock = FakeClock()
    queue = JobQueue(attempts=3, backoff_seconds=2.0, clock=clock)
    job = new_job()
    queue.enqueue(job)

    queue.claim(timeout=0)
    assert queue.fail(job.id, "boom") is True
    assert queue.state(job.id) is JobState.DELAYED
    clock.advance(1.5)
    assert queue.claim(timeout=0) is None
    clock.advance(0.5)
    second = queue.claim(timeout=0)
    assert second.attempt == 2

    assert queue.fail(job.id, "boom again") is True
    clock.advance(3.5)
    assert queue.claim(timeout=0) is None
    clock.advance(0.5)
    third = queue.claim(timeout=0)
    assert third.attempt == 3

    assert queue.fail(job.id, "still broken") is False
    assert queue.state(job.id) is JobState.FAILED
    assert queue.attempts_made(job.id) == 3
    assert queue.errors(job.id) == ["boom", "boom again", "still broken"]


def test_retry_delay_doubles():
    queue = JobQueue(backoff_seconds=2.0)
    assert [queue.retry_delay(attempt) for attempt in (1, 2, 3)] == [2.0, 4.0, 8.0]


def test_remove_waiting_job():
    queue = JobQueue()
    job = new_job()
    queue.enqueue(job)

    assert queue.remove(job.id) is True
    assert queue.state(job.id) is None
    assert queue.claim(timeout=0) is None


def test_remove_delayed_job():
    clock = FakeClock()
    queue = JobQueue(clock=clock)
    job = new_job()
    queue.enqueue(job)
    queue.claim(timeout=0)
    queue.fail(job.id, "boom")

    assert queue.remove(job.id) is True
    clock.advance(60)
    assert queue.claim(timeout=0) is None


def test_remove_active_job_prevents_retry():
    queue = JobQueue()
    job = new_job()
    queue.enqueue(job)
    queue.claim(timeout=0)

    assert queue.remove(job.id) is False
    assert queue.state(job.id) is JobState.ACTIVE
    assert queue.fail(job.id, "cancelled mid-flight") is False
    assert queue.state(job.id) is JobState.FAILED


def test_remove_unknown_job():
    assert JobQueue().remove("missing") is False


def test_duplicate_active_job_rejected():
    queue = JobQueue()
    job = new_job()
    queue.enqueue(job)

    with pytest.raises(QueueError):
        queue.enqueue(job)


def test_finished_job_can_be_requeued():
    queue = JobQueue()
    job = new_job()
    queue.enqueue(job)
    queue.claim(timeout=0)
    queue.complete(job.id)

    queue.enqueue(job)

    assert queue.state(job.id) is JobState.WAITING


def test_closed_queue_rejects_jobs():
    queue = JobQueue()
    queue.close()

    with pytest.raises(QueueError):
        queue.enqueue(new_job())
    assert queue.claim(timeout=0) is None


def test_complete_requires_active_job():
    queue = JobQueue()
    job = new_job()
    queue.enqueue(job)

    with pytest.raises(QueueError):
        queue.complete(job.id)


def test_completed_retention_by_count():
    clock = FakeClock()
    queue = JobQueue(keep_completed_count=2, clock=clock)
    jobs = [new_job(str(index)) for index in range(3)]
    for job in jobs:
        queue.enqueue(job)
    for job in jobs:
        queue.claim(timeout=0)
        clock.advance(1)
        queue.complete(job.id)

    assert queue.state(jobs[0].id) is None
    assert queue.state(jobs[1].id) is JobState.COMPLETED
    assert queue.state(jobs[2].id) is JobState.COMPLETED


def test_completed_and_failed_retention_by_age():
    clock = FakeClock()
    queue = JobQueue(attempts=1, keep_completed_seconds=3600, keep_failed_seconds=86400, clock=clock)
    done, broken = new_job("done"), new_job("broken")
    queue.enqueue(done)
    queue.enqueue(broken)
    queue.claim(timeout=0)
    queue.complete(done.id)
    queue.claim(timeout=0)
    queue.fail(broken.id, "boom")

    clock.advance(3601)
    assert queue.state(done.id) is None
    assert queue.state(broken.id) is JobState.FAILED

    clock.advance(86400)
    assert queue.state(broken.id) is None


def test_join_waits_for_settled_jobs():
    queue = JobQueue()
    job = new_job()
    queue.enqueue(job)
    assert queue.join(timeout=0.05) is False

    def work():
        item = queue.claim(timeout=1)
        queue.complete(item.job_id, {"status": "completed"})

    worker = threading.Thread(target=work)
    worker.start()
    assert queue.join(timeout=5) is True
    worker.join(1)


def test_counts_by_state():
    queue = JobQueue()
    first, second = new_job("one"), new_job("two")
    queue.enqueue(first)
    queue.enqueue(second)
    queue.claim(timeout=0)

    counts = queue.counts()

    assert counts["active"] == 1
    assert counts["waiting"] == 1
    assert counts["completed"] == 0
