from __future__ import annotations

from webscan.detectors.base import Detector, make_finding
from webscan.models import Finding, Severity, TargetView

MISCONFIGURATION_CATEGORY = "A05:2021 – Security Misconfiguration"

# (header, substring the value must contain; empty means presence is enough)
REQUIRED_HEADERS = [
    ("X-Content-Type-Options", "nosniff"),
    ("X-Frame-Options", "DENY"),
    ("X-XSS-Protection", "1; mode=block"),
    ("Strict-Transport-Security", "max-age="),
    ("Content-Security-Policy", ""),
]


class SecurityHeadersDetector(Detector):
    name = "securityHeaders"
    label = "Security Headers"

    def detect(self, target: TargetView) -> list[Finding]:
        findings: list[Finding] = []
        missing: list[str] = []
        for header, expected in REQUIRED_HEADERS:
            value = target.response.header(header)
            if not value:
                missing.append(header)
            elif expected and expected not in value:
                findings.append(
                    make_finding(
                        f"Incorrect {header} Header Value",
                        f"The {header} header is present but has an incorrect or weak value.",
                        Severity.LOW,
                        MISCONFIGURATION_CATEGORY,
                        target.url,
                        f"Set {header} header to: {expected}",
                        cwe_id="CWE-693",
                        cvss_score=3.1,
                        tags=["security-headers", "misconfiguration"],
                        metadata={"header": header, "value": value},
                    )
                )

        if missing:
            findings.append(
                make_finding(
                    "Missing Security Headers",
                    f"The application is missing important security headers: {', '.join(missing)}. "
                    "This may expose the application to various attacks.",
                    Severity.MEDIUM,
                    MISCONFIGURATION_CATEGORY,
                    target.url,
                    f"Implement the following security headers: {', '.join(missing)}. Configure your web server "
                    "or application framework to include these headers in all responses.",
                    cwe_id="CWE-693",
                    cvss_score=5.3,
                    tags=["security-headers", "misconfiguration", "owasp-top-10"],
                    metadata={"missing_headers": missing},
                )
            )
        return findings
