from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Iterable

from webscan.errors import JobNotFoundError
from webscan.models import Finding, ScanJob, ScanProfile, ScanStatus, Severity

LOGGER = logging.getLogger(__name__)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS scans (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL,
    url TEXT NOT NULL,
    profile TEXT NOT NULL,
    detectors_json TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL,
    status TEXT NOT NULL,
    phase_message TEXT,
    progress INTEGER NOT NULL DEFAULT 0,
    started_at TEXT,
    completed_at TEXT,
    duration_seconds INTEGER,
    total_findings INTEGER NOT NULL DEFAULT 0,
    critical_count INTEGER NOT NULL DEFAULT 0,
    high_count INTEGER NOT NULL DEFAULT 0,
    medium_count INTEGER NOT NULL DEFAULT 0,
    low_count INTEGER NOT NULL DEFAULT 0,
    info_count INTEGER NOT NULL DEFAULT 0,
    error_message TEXT
);

CREATE TABLE IF NOT EXISTS findings (
    id TEXT PRIMARY KEY,
    scan_id TEXT NOT NULL,
    project_id TEXT NOT NULL,
    created_at TEXT NOT NULL,
    detector TEXT,
    title TEXT NOT NULL,
    description TEXT NOT NULL,
    severity TEXT NOT NULL,
    category TEXT NOT NULL,
    cwe_id TEXT,
    cvss_score REAL,
    affected_url TEXT NOT NULL,
    affected_parameter TEXT,
    http_method TEXT,
    request_payload TEXT,
    response_payload TEXT,
    proof_of_concept TEXT,
    remediation TEXT NOT NULL,
    tags_json TEXT NOT NULL DEFAULT '[]',
    metadata_json TEXT NOT NULL DEFAULT '{}',
    fingerprint TEXT,
    annotation TEXT,
    FOREIGN KEY (scan_id) REFERENCES scans(id)
);

CREATE INDEX IF NOT EXISTS idx_findings_scan_id ON findings(scan_id);
CREATE INDEX IF NOT EXISTS idx_findings_severity ON findings(severity);
CREATE INDEX IF NOT EXISTS idx_findings_project_id ON findings(project_id);
CREATE INDEX IF NOT EXISTS idx_scans_status ON scans(status);
CREATE INDEX IF NOT EXISTS idx_scans_created_at ON scans(created_at);
"""

_JOB_COLUMNS = {
    "status",
    "phase_message",
    "progress",
    "started_at",
    "completed_at",
    "duration_seconds",
    "total_findings",
    "critical_count",
    "high_count",
    "medium_count",
    "low_count",
    "info_count",
    "error_message",
}

_FINDING_COLUMNS = (
    "id", "scan_id", "project_id", "created_at", "detector", "title",
    "description", "severity", "category", "cwe_id", "cvss_score", "affected_url",
    "affected_parameter", "http_method", "request_payload", "response_payload",
    "proof_of_concept", "remediation", "tags_json", "metadata_json", "fingerprint",
    "annotation",
)


def connect(db_path: str) -> sqlite3.Connection:
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, timeout=30)
    conn.row_factory = sqlite3.Row
    return conn


def _to_sqlite_value(value: Any) -> Any:
    if isinstance(value, (ScanStatus, ScanProfile, Severity)):
        return value.value
    return value


def _tally_fields(counts: dict[str, int], total: int) -> dict[str, int]:
    return {
        "total_findings": total,
        "critical_count": counts.get(Severity.CRITICAL.value, 0),
        "high_count": counts.get(Severity.HIGH.value, 0),
        "medium_count": counts.get(Severity.MEDIUM.value, 0),
        "low_count": counts.get(Severity.LOW.value, 0),
        "info_count": counts.get(Severity.INFO.value, 0),
    }


def _job_from_row(row: sqlite3.Row) -> ScanJob:
    return ScanJob(
        id=row["id"],
        project_id=row["project_id"],
        url=row["url"],
        profile=ScanProfile(row["profile"]),
        detectors=json.loads(row["detectors_json"] or "[]"),
        created_at=row["created_at"],
        status=ScanStatus(row["status"]),
        phase_message=row["phase_message"],
        progress=row["progress"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
        duration_seconds=row["duration_seconds"],
        total_findings=row["total_findings"],
        critical_count=row["critical_count"],
        high_count=row["high_count"],
        medium_count=row["medium_count"],
        low_count=row["low_count"],
        info_count=row["info_count"],
        error_message=row["error_message"],
    )


def _finding_from_row(row: sqlite3.Row) -> Finding:
    return Finding(
        id=row["id"],
        scan_id=row["scan_id"],
        project_id=row["project_id"],
        created_at=row["created_at"],
        detector=row["detector"],
        title=row["title"],
        description=row["description"],
        severity=Severity.coerce(row["severity"]),
        category=row["category"],
        cwe_id=row["cwe_id"],
        cvss_score=row["cvss_score"],
        affected_url=row["affected_url"],
        affected_parameter=row["affected_parameter"],
        http_method=row["http_method"],
        request_payload=row["request_payload"],
        response_payload=row["response_payload"],
        proof_of_concept=row["proof_of_concept"],
        remediation=row["remediation"],
        tags=json.loads(row["tags_json"] or "[]"),
        metadata=json.loads(row["metadata_json"] or "{}"),
        fingerprint=row["fingerprint"],
        annotation=row["annotation"],
    )


class ScanStore:
    """SQLite persistence for scan jobs and their append-only findings."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path

    def init_db(self) -> None:
        with connect(self.db_path) as conn:
            conn.executescript(SCHEMA_SQL)
            conn.commit()
        LOGGER.info("SQLite initialized at %s", self.db_path)

    # jobs

    def create_job(self, job: ScanJob) -> ScanJob:
        with connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO scans (
                    id, project_id, url, profile, detectors_json, created_at, status,
                    phase_message, progress, error_message
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    job.id,
                    job.project_id,
                    job.url,
                    job.profile.value,
                    json.dumps(job.detectors, ensure_ascii=False),
                    job.created_at,
                    job.status.value,
                    job.phase_message,
                    job.progress,
                    job.error_message,
                ),
            )
            conn.commit()
        return job

    def get_job(self, job_id: str) -> ScanJob:
        with connect(self.db_path) as conn:
            row = conn.execute("SELECT * FROM scans WHERE id = ?", (job_id,)).fetchone()
        if row is None:
            raise JobNotFoundError(f"Scan not found: {job_id}")
        return _job_from_row(row)

    def get_status(self, job_id: str) -> ScanStatus:
        with connect(self.db_path) as conn:
            row = conn.execute("SELECT status FROM scans WHERE id = ?", (job_id,)).fetchone()
        if row is None:
            raise JobNotFoundError(f"Scan not found: {job_id}")
        return ScanStatus(row["status"])

    def list_jobs(self, status: ScanStatus | None = None, limit: int = 100) -> list[ScanJob]:
        query = "SELECT * FROM scans WHERE 1=1"
        params: list[Any] = []
        if status:
            query += " AND status = ?"
            params.append(status.value)
        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)
        with connect(self.db_path) as conn:
            rows = conn.execute(query, params).fetchall()
        return [_job_from_row(row) for row in rows]

    def update_job(self, job_id: str, only_if_status: Iterable[ScanStatus] | None = None, **fields: Any) -> bool:
        """Write status fields; with ``only_if_status`` the write is conditional.

        Returns True when a row was updated.
        """
        unknown = set(fields) - _JOB_COLUMNS
        if unknown:
            raise ValueError(f"Unknown scan fields: {sorted(unknown)}")
        if not fields:
            return False
        assignments = ", ".join(f"{name} = ?" for name in fields)
        params: list[Any] = [_to_sqlite_value(value) for value in fields.values()]
        query = f"UPDATE scans SET {assignments} WHERE id = ?"
        params.append(job_id)
        if only_if_status is not None:
            allowed = [status.value for status in only_if_status]
            query += f" AND status IN ({', '.join('?' for _ in allowed)})"
            params.extend(allowed)
        with connect(self.db_path) as conn:
            cursor = conn.execute(query, params)
            conn.commit()
        return cursor.rowcount > 0

    def start_job(self, job_id: str, started_at: str, message: str) -> bool:
        return self.update_job(
            job_id,
            only_if_status=(ScanStatus.PENDING, ScanStatus.RUNNING, ScanStatus.FAILED),
            status=ScanStatus.RUNNING,
            started_at=started_at,
            completed_at=None,
            error_message=None,
            phase_message=message,
            progress=10,
        )

    def mark_cancelled(self, job_id: str, message: str, retry_pending: bool = False) -> bool:
        """Cancel a pending or running job.

        With ``retry_pending`` a job whose last attempt failed but which is
        queued for another attempt can be cancelled too.
        """
        allowed = [ScanStatus.PENDING, ScanStatus.RUNNING]
        if retry_pending:
            allowed.append(ScanStatus.FAILED)
        return self.update_job(
            job_id,
            only_if_status=allowed,
            status=ScanStatus.CANCELLED,
            phase_message=message,
        )

    def finalize_job(
        self,
        job_id: str,
        counts: dict[str, int],
        total: int,
        completed_at: str,
        duration_seconds: int,
        message: str,
    ) -> bool:
        return self.update_job(
            job_id,
            only_if_status=(ScanStatus.RUNNING,),
            status=ScanStatus.COMPLETED,
            completed_at=completed_at,
            duration_seconds=duration_seconds,
            phase_message=message,
            progress=100,
            **_tally_fields(counts, total),
        )

    def record_tally(self, job_id: str, counts: dict[str, int], total: int) -> bool:
        """Store the finding tallies of a cancelled job without touching its status."""
        return self.update_job(job_id, only_if_status=(ScanStatus.CANCELLED,), **_tally_fields(counts, total))

    def fail_job(self, job_id: str, message: str, completed_at: str) -> bool:
        return self.update_job(
            job_id,
            only_if_status=(ScanStatus.PENDING, ScanStatus.RUNNING, ScanStatus.FAILED),
            status=ScanStatus.FAILED,
            error_message=message,
            phase_message=message,
            completed_at=completed_at,
        )

    # findings

    def append_findings(self, findings: list[Finding]) -> int:
        if not findings:
            return 0
        with connect(self.db_path) as conn:
            conn.executemany(
                f"INSERT INTO findings ({', '.join(_FINDING_COLUMNS)}) VALUES ({', '.join('?' for _ in _FINDING_COLUMNS)})",
                [
                    (
                        finding.id,
                        finding.scan_id,
                        finding.project_id,
                        finding.created_at,
                        finding.detector,
                        finding.title,
                        finding.description,
                        finding.severity.value,
                        finding.category,
                        finding.cwe_id,
                        finding.cvss_score,
                        finding.affected_url,
                        finding.affected_parameter,
                        finding.http_method,
                        finding.request_payload,
                        finding.response_payload,
                        finding.proof_of_concept,
                        finding.remediation,
                        json.dumps(finding.tags, ensure_ascii=False),
                        json.dumps(finding.metadata, ensure_ascii=False, default=str),
                        finding.fingerprint,
                        finding.annotation,
                    )
                    for finding in findings
                ],
            )
            conn.commit()
        LOGGER.info("Persisted %s findings for scan %s", len(findings), findings[0].scan_id)
        return len(findings)

    def list_findings(
        self,
        scan_id: str,
        severity: Severity | None = None,
        unannotated_only: bool = False,
    ) -> list[Finding]:
        query = "SELECT * FROM findings WHERE scan_id = ?"
        params: list[Any] = [scan_id]
        if severity:
            query += " AND severity = ?"
            params.append(severity.value)
        if unannotated_only:
            query += " AND annotation IS NULL"
        query += " ORDER BY rowid ASC"
        with connect(self.db_path) as conn:
            rows = conn.execute(query, params).fetchall()
        return [_finding_from_row(row) for row in rows]

    def set_annotation(self, finding_id: str, annotation: str) -> bool:
        with connect(self.db_path) as conn:
            cursor = conn.execute(
                "UPDATE findings SET annotation = ? WHERE id = ? AND annotation IS NULL",
                (annotation, finding_id),
            )
            conn.commit()
        return cursor.rowcount > 0

    def count_findings(self, scan_id: str) -> int:
        with connect(self.db_path) as conn:
            row = conn.execute("SELECT COUNT(*) AS value FROM findings WHERE scan_id = ?", (scan_id,)).fetchone()
        return int(row["value"])

    def severity_counts(self, scan_id: str) -> dict[str, int]:
        counts = {severity.value: 0 for severity in Severity.ordered()}
        with connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT severity, COUNT(*) AS value FROM findings WHERE scan_id = ? GROUP BY severity",
                (scan_id,),
            ).fetchall()
        for row in rows:
            key = Severity.coerce(row["severity"]).value
            counts[key] = counts.get(key, 0) + int(row["value"])
        return counts
