from __future__ import annotations

import hashlib
from typing import Any

from webscan.models import Finding, ScanJob, Severity

DEFAULT_EXCERPT_LIMIT = 1000


def _fingerprint(*parts: Any) -> str:
    normalized = "|".join("" if part is None else str(part) for part in parts)
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def truncate(value: Any, limit: int = DEFAULT_EXCERPT_LIMIT) -> str | None:
    if value is None:
        return None
    text = value if isinstance(value, str) else str(value)
    return text[:limit]


def clamp_cvss(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    if score != score:  # NaN
        return None
    return round(min(10.0, max(0.0, score)), 1)


def _dedupe_tags(tags: Any) -> list[str]:
    if not tags:
        return []
    if isinstance(tags, str):
        tags = [tags]
    seen: list[str] = []
    for tag in tags:
        text = str(tag).strip()
        if text and text not in seen:
            seen.append(text)
    return seen


def normalize_finding(finding: Finding, job: ScanJob, excerpt_limit: int = DEFAULT_EXCERPT_LIMIT) -> Finding:
    """Attribute a detector finding to its job and bound its evidence fields."""
    finding.scan_id = job.id
    finding.project_id = job.project_id
    finding.severity = Severity.coerce(finding.severity)
    finding.cvss_score = clamp_cvss(finding.cvss_score)
    finding.request_payload = truncate(finding.request_payload, excerpt_limit)
    finding.response_payload = truncate(finding.response_payload, excerpt_limit)
    finding.tags = _dedupe_tags(finding.tags)
    finding.metadata = dict(finding.metadata or {})
    if finding.http_method:
        finding.http_method = finding.http_method.upper()
    finding.annotation = None
    if not finding.fingerprint:
        finding.fingerprint = _fingerprint(
            finding.detector,
            finding.affected_url,
            finding.affected_parameter,
            finding.title,
        )
    return finding


def normalize_findings(findings: list[Finding], job: ScanJob, excerpt_limit: int = DEFAULT_EXCERPT_LIMIT) -> list[Finding]:
    return [normalize_finding(finding, job, excerpt_limit) for finding in findings]
