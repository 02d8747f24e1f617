from __future__ import annotations

import logging

import httpx

from webscan.detectors.base import Detector, join_url, make_finding, replace_query_param
from webscan.models import Finding, Severity, TargetView

LOGGER = logging.getLogger(__name__)

SSRF_CATEGORY = "A10:2021 – Server-Side Request Forgery (SSRF)"
SSRF_TIMEOUT = 3.0

SSRF_TARGETS = [
    "http://127.0.0.1",
    "http://localhost",
    "http://169.254.169.254",
    "http://192.168.1.1",
    "file:///etc/passwd",
]
SSRF_TARGETS_TRIED = 2
SSRF_PARAMS = ["url", "link", "path", "file", "redirect", "callback", "target", "destination"]
SSRF_ENDPOINTS = ["/api/fetch", "/api/proxy", "/api/request", "/webhook", "/callback"]

REMEDIATION = (
    "Validate and whitelist allowed URLs. Block internal IP addresses and private networks. Use URL parsing "
    "libraries that prevent SSRF. Implement network segmentation."
)


class SsrfDetector(Detector):
    name = "ssrf"
    label = "SSRF"

    def __init__(self, probe=None, timeout: float = SSRF_TIMEOUT) -> None:
        super().__init__(probe)
        self.timeout = timeout

    def detect(self, target: TargetView) -> list[Finding]:
        findings: list[Finding] = []
        present = {name for name, _value in target.query_params()}
        for param in SSRF_PARAMS:
            if param not in present:
                continue
            finding = self._probe_parameter(target, param)
            if finding:
                findings.append(finding)

        for endpoint in SSRF_ENDPOINTS:
            test_url = join_url(target.url, endpoint)
            response = self.probe.safe_get(test_url, timeout=self.timeout)
            if response is not None and response.status_code in (200, 400):
                findings.append(
                    make_finding(
                        "Potential SSRF Endpoint Detected",
                        f"The endpoint {test_url} may be vulnerable to SSRF attacks. "
                        "This endpoint appears to make server-side requests.",
                        Severity.MEDIUM,
                        SSRF_CATEGORY,
                        test_url,
                        "Validate and whitelist allowed URLs. Block internal IP addresses. Implement proper input "
                        "validation for URL parameters.",
                        cwe_id="CWE-918",
                        cvss_score=7.5,
                        tags=["ssrf", "owasp-top-10"],
                    )
                )
        return findings

    def _probe_parameter(self, target: TargetView, param: str) -> Finding | None:
        for internal_url in SSRF_TARGETS[:SSRF_TARGETS_TRIED]:
            test_url = replace_query_param(target.url, param, internal_url)
            try:
                response = self.probe.request("GET", test_url, timeout=self.timeout, follow_redirects=False)
            except (httpx.ConnectError, httpx.TimeoutException):
                # the server tried to reach the injected address
                return self._finding(
                    target.url,
                    param,
                    f"The application attempted to connect to {internal_url}, indicating SSRF vulnerability.",
                )
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                LOGGER.debug("SSRF probe %s failed: %s", test_url, exc)
                continue
            if response.status_code < 500:
                return self._finding(test_url, param, f"Test with: {test_url}")
        return None

    @staticmethod
    def _finding(affected_url: str, param: str, proof: str) -> Finding:
        return make_finding(
            "Potential Server-Side Request Forgery (SSRF)",
            f"The parameter '{param}' at {affected_url} may be vulnerable to SSRF attacks. "
            "The application appears to make server-side requests based on user input.",
            Severity.HIGH,
            SSRF_CATEGORY,
            affected_url,
            REMEDIATION,
            cwe_id="CWE-918",
            cvss_score=8.6,
            affected_parameter=param,
            proof_of_concept=proof,
            tags=["ssrf", "owasp-top-10"],
        )
