from __future__ import annotations

import logging

from webscan.models import Finding, ScanJob
from webscan.normalizer import DEFAULT_EXCERPT_LIMIT, normalize_findings
from webscan.storage import ScanStore

LOGGER = logging.getLogger(__name__)


class ResultAggregator:
    """Accumulates findings per scan as each detector completes.

    Nothing is buffered in memory: every read goes back to the store so the
    final tally includes everything recorded before it.
    """

    def __init__(self, store: ScanStore, excerpt_limit: int = DEFAULT_EXCERPT_LIMIT) -> None:
        self.store = store
        self.excerpt_limit = excerpt_limit

    def record(self, job: ScanJob, findings: list[Finding]) -> list[Finding]:
        if not findings:
            return []
        normalized = normalize_findings(list(findings), job, self.excerpt_limit)
        self.store.append_findings(normalized)
        LOGGER.debug("[scan %s] recorded %s findings", job.id, len(normalized))
        return normalized

    def counts_by_severity(self, job_id: str) -> dict[str, int]:
        return self.store.severity_counts(job_id)

    def total(self, job_id: str) -> int:
        return self.store.count_findings(job_id)

    def findings(self, job_id: str) -> list[Finding]:
        return self.store.list_findings(job_id)

    def unannotated(self, job_id: str) -> list[Finding]:
        return self.store.list_findings(job_id, unannotated_only=True)

    def summary(self, job_id: str) -> dict[str, object]:
        counts = self.counts_by_severity(job_id)
        return {"total": sum(counts.values()), "severity_counts": counts}
