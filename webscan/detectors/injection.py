from __future__ import annotations

import json
import re
from abc import abstractmethod

from webscan.detectors.base import Detector, make_finding, replace_query_param
from webscan.models import FetchedResponse, Finding, HtmlForm, Severity, TargetView

INJECTION_CATEGORY = "A03:2021 – Injection"

SQL_PAYLOADS = [
    "' OR '1'='1",
    "' OR '1'='1' --",
    "' OR '1'='1' /*",
    "admin' --",
    "admin' #",
    "' UNION SELECT NULL--",
    "1' AND '1'='1",
    "1' AND '1'='2",
]

SQL_ERROR_PATTERNS = [
    re.compile(r"sql syntax", re.I),
    re.compile(r"mysql", re.I),
    re.compile(r"postgresql", re.I),
    re.compile(r"oracle", re.I),
    re.compile(r"sql server", re.I),
    re.compile(r"syntax error", re.I),
    re.compile(r"unclosed quotation mark", re.I),
    re.compile(r"quoted string not properly terminated", re.I),
]

XSS_PAYLOADS = [
    '<script>alert("XSS")</script>',
    '<img src=x onerror=alert("XSS")>',
    '<svg onload=alert("XSS")>',
    '"><script>alert("XSS")</script>',
    "javascript:alert('XSS')",
    "<iframe src=\"javascript:alert('XSS')\">",
]
XSS_MARKER = 'alert("XSS")'


class PayloadDetector(Detector):
    """Replays a payload list against URL parameters and page forms.

    Every query parameter is tried with the first ``url_payload_count``
    payloads, and every form with the full list; the first payload whose
    response matches produces one finding for that parameter or form.
    """

    payloads: list[str] = []
    url_payload_count = 0

    def detect(self, target: TargetView) -> list[Finding]:
        findings: list[Finding] = []
        for name, _value in target.query_params():
            for payload in self.payloads[: self.url_payload_count]:
                test_url = replace_query_param(target.url, name, payload)
                response = self.probe.safe_get(test_url)
                if response is not None and self.matches(response, payload):
                    findings.append(self.url_finding(target, name, payload, test_url, response))
                    break
        for form in target.forms:
            for payload in self.payloads:
                data = form.payload(payload)
                response = self.probe.submit_form(form, data)
                if response is not None and self.matches(response, payload):
                    findings.append(self.form_finding(form, data, payload, response))
                    break
        return findings

    @abstractmethod
    def matches(self, response: FetchedResponse, payload: str) -> bool:
        ...

    @abstractmethod
    def url_finding(self, target: TargetView, name: str, payload: str, test_url: str, response: FetchedResponse) -> Finding:
        ...

    @abstractmethod
    def form_finding(self, form: HtmlForm, data: dict[str, str], payload: str, response: FetchedResponse) -> Finding:
        ...


class SqlInjectionDetector(PayloadDetector):
    name = "sqlInjection"
    label = "SQL Injection"
    payloads = SQL_PAYLOADS
    url_payload_count = 3

    remediation = (
        "Use parameterized queries or prepared statements. Validate and sanitize all user inputs, "
        "including URL parameters. Implement input validation and output encoding."
    )

    def matches(self, response: FetchedResponse, payload: str) -> bool:
        return any(pattern.search(response.body or "") for pattern in SQL_ERROR_PATTERNS)

    def url_finding(self, target, name, payload, test_url, response):
        return make_finding(
            "SQL Injection Vulnerability in URL Parameter",
            f"SQL injection vulnerability detected in URL parameter '{name}' at {target.url}. "
            "The application appears to be vulnerable to SQL injection attacks.",
            Severity.CRITICAL,
            INJECTION_CATEGORY,
            test_url,
            self.remediation,
            cwe_id="CWE-89",
            cvss_score=9.8,
            affected_parameter=name,
            http_method="GET",
            request_payload=f"Parameter {name}={payload}",
            response_payload=response.body,
            proof_of_concept=f"Access: {test_url}",
            tags=["sql-injection", "injection", "owasp-top-10", "url-parameter"],
        )

    def form_finding(self, form, data, payload, response):
        return make_finding(
            "SQL Injection Vulnerability Detected",
            f"SQL injection vulnerability detected in form at {form.action}. "
            "The application appears to be vulnerable to SQL injection attacks.",
            Severity.CRITICAL,
            INJECTION_CATEGORY,
            form.action,
            self.remediation,
            cwe_id="CWE-89",
            cvss_score=9.8,
            affected_parameter=", ".join(data),
            http_method=form.method,
            request_payload=json.dumps(data),
            response_payload=response.body,
            proof_of_concept=f"Submit the following payload in form fields: {payload}",
            tags=["sql-injection", "injection", "owasp-top-10"],
        )


class XssDetector(PayloadDetector):
    name = "xss"
    label = "Cross-Site Scripting (XSS)"
    payloads = XSS_PAYLOADS
    url_payload_count = 2

    remediation = (
        "Implement proper output encoding. Use Content Security Policy (CSP). Validate and sanitize all "
        "user inputs, including URL parameters. Use framework-specific XSS protection mechanisms."
    )

    def matches(self, response: FetchedResponse, payload: str) -> bool:
        body = response.body or ""
        return payload in body or XSS_MARKER in body

    def url_finding(self, target, name, payload, test_url, response):
        return make_finding(
            "Cross-Site Scripting (XSS) in URL Parameter",
            f"XSS vulnerability detected in URL parameter '{name}' at {target.url}. "
            "User input is reflected in the response without proper encoding.",
            Severity.HIGH,
            INJECTION_CATEGORY,
            test_url,
            self.remediation,
            cwe_id="CWE-79",
            cvss_score=7.2,
            affected_parameter=name,
            http_method="GET",
            request_payload=f"Parameter {name}={payload}",
            response_payload=response.body,
            proof_of_concept=f"Access: {test_url}",
            tags=["xss", "injection", "owasp-top-10", "url-parameter"],
        )

    def form_finding(self, form, data, payload, response):
        return make_finding(
            "Cross-Site Scripting (XSS) Vulnerability Detected",
            f"XSS vulnerability detected in form at {form.action}. "
            "User input is reflected in the response without proper encoding.",
            Severity.HIGH,
            INJECTION_CATEGORY,
            form.action,
            self.remediation,
            cwe_id="CWE-79",
            cvss_score=7.2,
            affected_parameter=", ".join(data),
            http_method=form.method,
            request_payload=json.dumps(data),
            response_payload=response.body,
            proof_of_concept=f"Submit the following payload: {payload}",
            tags=["xss", "injection", "owasp-top-10"],
        )
