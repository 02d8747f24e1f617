from __future__ import annotations

import re

from webscan.detectors.base import Detector, join_url, make_finding
from webscan.models import Finding, Severity, TargetView

SENSITIVE_PATTERNS = [
    (re.compile(r"password\s*[:=]\s*[\"']?([^\"'\s]+)", re.I), "password"),
    (re.compile(r"api[_-]?key\s*[:=]\s*[\"']?([^\"'\s]+)", re.I), "api_key"),
    (re.compile(r"secret\s*[:=]\s*[\"']?([^\"'\s]+)", re.I), "secret"),
    (re.compile(r"token\s*[:=]\s*[\"']?([^\"'\s]+)", re.I), "token"),
    (re.compile(r"(?:4[0-9]{12}(?:[0-9]{3})?|5[1-5][0-9]{14})"), "credit_card"),
    (re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"), "email"),
]
MAX_EXAMPLES = 5

ERROR_PROBES = [
    "/nonexistent-endpoint-12345",
    "/api/invalid",
    "/../etc/passwd",
    "/?id=invalid",
]

ERROR_DISCLOSURE_PATTERNS = [
    re.compile(r"database", re.I),
    re.compile(r"sql", re.I),
    re.compile(r"stack trace", re.I),
    re.compile(r"file path", re.I),
    re.compile(r"internal", re.I),
    re.compile(r"server error", re.I),
    re.compile(r"exception", re.I),
    re.compile(r"at \w+\.\w+", re.I),
    re.compile(r"line \d+", re.I),
    re.compile(r"file:///", re.I),
    re.compile(r"c:\\.*\\", re.I),
]

DEBUG_ENDPOINTS = [
    "/debug",
    "/test",
    "/dev",
    "/development",
    "/.env",
    "/config",
    "/phpinfo.php",
    "/info.php",
]
DEBUG_MARKERS = ("php", "version", "configuration", "environment")


class SensitiveDataDetector(Detector):
    name = "sensitiveData"
    label = "Sensitive Data"

    def detect(self, target: TargetView) -> list[Finding]:
        found: dict[str, list[str]] = {}
        body = target.body or ""
        for pattern, kind in SENSITIVE_PATTERNS:
            matches = [match.group(0) for match in pattern.finditer(body)]
            if matches:
                found[kind] = matches[:MAX_EXAMPLES]
        if not found:
            return []

        kinds = list(found)
        high = "password" in kinds or "api_key" in kinds
        return [
            make_finding(
                "Sensitive Data Exposure",
                f"The application response contains potentially sensitive data: {', '.join(kinds)}. "
                "This information should not be exposed in client-side code or responses.",
                Severity.HIGH if high else Severity.MEDIUM,
                "A02:2021 – Cryptographic Failures",
                target.url,
                "Remove sensitive data from client-side code and API responses. Use server-side rendering for "
                "sensitive information. Implement proper data masking and encryption. Follow the principle of "
                "least privilege.",
                cwe_id="CWE-312",
                cvss_score=7.5 if high else 5.3,
                tags=["sensitive-data", "data-exposure", "owasp-top-10"],
                metadata={"exposed_types": kinds},
            )
        ]


class LoggingDetector(Detector):
    """Verbose error pages and exposed debug endpoints."""

    name = "logging"
    label = "Logging"

    def detect(self, target: TargetView) -> list[Finding]:
        findings: list[Finding] = []
        disclosure = self._error_disclosure(target)
        if disclosure:
            findings.append(disclosure)
        debug = self._debug_endpoint(target)
        if debug:
            findings.append(debug)
        return findings

    def _error_disclosure(self, target: TargetView) -> Finding | None:
        for path in ERROR_PROBES:
            test_url = join_url(target.url, path)
            response = self.probe.safe_get(test_url)
            if response is None:
                continue
            text = response.body or ""
            leaks = any(pattern.search(text) for pattern in ERROR_DISCLOSURE_PATTERNS)
            if leaks and (response.status_code >= 400 or len(text) > 100):
                return make_finding(
                    "Information Disclosure in Error Messages",
                    f"Error responses from {test_url} contain sensitive information that could aid attackers. "
                    "The application exposes internal details like stack traces, file paths, or database information.",
                    Severity.MEDIUM,
                    "A09:2021 – Security Logging and Monitoring Failures",
                    test_url,
                    "Implement proper error handling. Do not expose sensitive information in error messages. Log "
                    "detailed errors server-side but return generic messages to clients. Implement proper security "
                    "logging and monitoring. Use custom error pages.",
                    cwe_id="CWE-209",
                    cvss_score=5.3,
                    response_payload=text,
                    tags=["information-disclosure", "logging", "owasp-top-10"],
                )
        return None

    def _debug_endpoint(self, target: TargetView) -> Finding | None:
        for path in DEBUG_ENDPOINTS:
            test_url = join_url(target.url, path)
            response = self.probe.safe_get(test_url)
            if response is None or response.status_code != 200:
                continue
            text = (response.body or "").lower()
            if any(marker in text for marker in DEBUG_MARKERS):
                return make_finding(
                    "Exposed Debug/Development Endpoint",
                    f"A debug or development endpoint is accessible at {test_url}. "
                    "This may expose sensitive configuration or system information.",
                    Severity.MEDIUM,
                    "A05:2021 – Security Misconfiguration",
                    test_url,
                    "Disable or remove debug endpoints in production. Use environment-based configuration to hide "
                    "development tools. Implement proper access controls.",
                    cwe_id="CWE-200",
                    cvss_score=5.3,
                    tags=["information-disclosure", "misconfiguration", "owasp-top-10"],
                )
        return None
