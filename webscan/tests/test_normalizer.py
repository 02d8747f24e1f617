from __future__ import annotations

import math

from webscan.models import Finding, ScanJob, Severity
from webscan.normalizer import clamp_cvss, normalize_finding, truncate

JOB = ScanJob(project_id="proj-9", url="http://site.test/")


def make(**kwargs) -> Finding:
    payload = {
        "title": "Reflected input",
        "description": "desc",
        "severity": "Moderate",
        "category": "Injection",
        "affected_url": "http://site.test/?q=1",
        "remediation": "encode output",
    }
    payload.update(kwargs)
    return Finding(**payload)


def test_normalize_attributes_job_and_coerces_severity():
    finding = normalize_finding(make(), JOB)

    assert finding.scan_id == JOB.id
    assert finding.project_id == "proj-9"
    assert finding.severity is Severity.MEDIUM


def test_unknown_severity_defaults_to_info():
    assert normalize_finding(make(severity="whatever"), JOB).severity is Severity.INFO


def test_payloads_truncated():
    finding = normalize_finding(make(response_payload="x" * 5000, request_payload="y" * 20), JOB, excerpt_limit=100)

    assert len(finding.response_payload) == 100
    assert finding.request_payload == "y" * 20


def test_cvss_clamped():
    assert clamp_cvss(11.3) == 10.0
    assert clamp_cvss(-1) == 0.0
    assert clamp_cvss("7.24") == 7.2
    assert clamp_cvss("n/a") is None
    assert clamp_cvss(math.nan) is None
    assert clamp_cvss(None) is None


def test_tags_deduplicated_in_order():
    finding = normalize_finding(make(tags=["xss", "owasp", "xss", " ", "owasp"]), JOB)
    assert finding.tags == ["xss", "owasp"]


def test_http_method_uppercased_and_annotation_cleared():
    finding = normalize_finding(make(http_method="post", annotation="stale"), JOB)

    assert finding.http_method == "POST"
    assert finding.annotation is None


def test_fingerprint_stable_and_distinguishes_parameters():
    first = normalize_finding(make(affected_parameter="q", detector="xss"), JOB)
    second = normalize_finding(make(affected_parameter="q", detector="xss"), JOB)
    other = normalize_finding(make(affected_parameter="page", detector="xss"), JOB)

    assert first.fingerprint == second.fingerprint
    assert first.fingerprint != other.fingerprint
    assert first.id != second.id


def test_truncate_none():
    assert truncate(None) is None
    assert truncate(12345, 3) == "123"
