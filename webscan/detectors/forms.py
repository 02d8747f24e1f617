from __future__ import annotations

from webscan.detectors.base import Detector, make_finding
from webscan.models import Finding, Severity, TargetView

STATE_CHANGING_METHODS = {"POST", "PUT", "DELETE"}
CSRF_FIELD_MARKERS = ("csrf", "token", "_token")


class CsrfDetector(Detector):
    name = "csrf"
    label = "CSRF"

    def detect(self, target: TargetView) -> list[Finding]:
        findings: list[Finding] = []
        for form in target.forms:
            if form.method not in STATE_CHANGING_METHODS:
                continue
            has_token = any(
                field.tag == "input" and any(marker in (field.name or "").lower() for marker in CSRF_FIELD_MARKERS)
                for field in form.fields
            )
            if has_token:
                continue
            findings.append(
                make_finding(
                    "Missing CSRF Protection",
                    f"Form at {target.url} does not appear to have CSRF protection. "
                    "The form may be vulnerable to Cross-Site Request Forgery attacks.",
                    Severity.MEDIUM,
                    "A01:2021 – Broken Access Control",
                    target.url,
                    "Implement CSRF tokens for all state-changing operations. Use SameSite cookie attribute. "
                    "Verify the origin and referer headers. Consider using double-submit cookie pattern.",
                    cwe_id="CWE-352",
                    cvss_score=6.5,
                    http_method=form.method,
                    proof_of_concept=(
                        "The form does not contain a CSRF token. An attacker could craft a malicious request "
                        "to perform actions on behalf of authenticated users."
                    ),
                    tags=["csrf", "access-control", "owasp-top-10"],
                    metadata={"form_action": form.action},
                )
            )
        return findings


class InsecureDesignDetector(Detector):
    name = "insecureDesign"
    label = "Insecure Design"

    def detect(self, target: TargetView) -> list[Finding]:
        findings: list[Finding] = []
        for form in target.forms:
            for field in form.fields:
                if field.tag not in {"input", "textarea"} or field.type != "password":
                    continue
                # autocomplete="off" is the expected configuration
                if field.autocomplete:
                    continue
                findings.append(
                    make_finding(
                        "Insecure Password Field Design",
                        f"Password field in form at {target.url} may not have proper security attributes configured.",
                        Severity.LOW,
                        "A04:2021 – Insecure Design",
                        target.url,
                        'Ensure password fields have autocomplete="off" and proper security attributes. '
                        "Implement password strength requirements and consider using password managers.",
                        cwe_id="CWE-254",
                        cvss_score=2.0,
                        affected_parameter=field.name,
                        tags=["insecure-design", "owasp-top-10"],
                    )
                )
        return findings
