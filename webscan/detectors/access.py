from __future__ import annotations

from urllib.parse import urlparse

from webscan.detectors.base import Detector, join_url, make_finding
from webscan.models import Finding, Severity, TargetView

AUTH_CATEGORY = "A07:2021 – Identification and Authentication Failures"
ACCESS_CATEGORY = "A01:2021 – Broken Access Control"

LOGIN_ENDPOINTS = [
    "/admin",
    "/login",
    "/api/login",
    "/auth/login",
    "/signin",
    "/sign-in",
    "/account/login",
    "/user/login",
]

IDOR_ENDPOINTS = [
    "/api/user/",
    "/api/profile/",
    "/user/",
    "/admin/",
    "/api/users/",
    "/profile/",
    "/account/",
    "/dashboard/",
]
IDOR_IDS = ["1", "2", "admin", "test", "123", "0"]
IDOR_MARKERS = ("email", "password", "user", "username", "profile", "account")

TRAVERSAL_PAYLOADS = ["../", "..\\", "....//", "....\\\\"]
TRAVERSAL_MARKERS = ("root:", "/bin/bash", "/bin/sh")


class AuthenticationDetector(Detector):
    name = "authentication"
    label = "Authentication"

    def detect(self, target: TargetView) -> list[Finding]:
        findings: list[Finding] = []
        for endpoint in LOGIN_ENDPOINTS:
            test_url = join_url(target.url, endpoint)
            response = self.probe.safe_get(test_url)
            if response is None:
                continue
            text = (response.body or "").lower()

            issues = self._login_page_issues(text)
            if issues:
                findings.append(
                    make_finding(
                        "Weak Authentication Implementation",
                        f"The login page at {test_url} may have weak authentication mechanisms. "
                        f"Issues detected: {', '.join(issues)}.",
                        Severity.MEDIUM,
                        AUTH_CATEGORY,
                        test_url,
                        "Implement strong authentication: enforce password complexity, implement account lockout, "
                        "use multi-factor authentication, implement proper session management, protect against "
                        "brute force attacks, and add CAPTCHA.",
                        cwe_id="CWE-287",
                        cvss_score=6.5,
                        tags=["authentication", "owasp-top-10"],
                        metadata={"issues": issues},
                    )
                )

            if "admin" in endpoint and response.status_code == 200 and text:
                findings.append(
                    make_finding(
                        "Admin Panel Accessible",
                        f"An admin panel is accessible at {test_url}. "
                        "This should be protected with strong authentication and authorization.",
                        Severity.HIGH,
                        AUTH_CATEGORY,
                        test_url,
                        "Ensure admin panels are properly protected with strong authentication, authorization, and "
                        "access controls. Consider IP whitelisting and rate limiting.",
                        cwe_id="CWE-284",
                        cvss_score=7.5,
                        tags=["authentication", "admin-panel", "owasp-top-10"],
                    )
                )

        session = self._session_cookie_issues(target)
        if session:
            findings.append(session)
        return findings

    @staticmethod
    def _login_page_issues(text: str) -> list[str]:
        if "password" not in text or "login" not in text:
            return []
        issues: list[str] = []
        if "remember me" in text and "csrf" not in text:
            issues.append("Missing CSRF protection on login form")
        if "captcha" not in text and "recaptcha" not in text:
            issues.append("No CAPTCHA protection against brute force")
        if "minlength" not in text and "pattern" not in text:
            issues.append("No visible password complexity requirements")
        return issues

    @staticmethod
    def _session_cookie_issues(target: TargetView) -> Finding | None:
        cookies = " ".join(target.response.set_cookies).lower()
        if not cookies:
            return None
        issues: list[str] = []
        if "httponly" not in cookies:
            issues.append("Cookies missing HttpOnly flag")
        if "secure" not in cookies and target.url.startswith("https"):
            issues.append("Cookies missing Secure flag on HTTPS site")
        if "samesite" not in cookies:
            issues.append("Cookies missing SameSite attribute")
        if not issues:
            return None
        return make_finding(
            "Weak Session Management",
            f"Session management issues detected: {', '.join(issues)}. "
            "This may expose sessions to XSS and CSRF attacks.",
            Severity.MEDIUM,
            AUTH_CATEGORY,
            target.url,
            "Set HttpOnly, Secure, and SameSite attributes on all session cookies. Use secure session tokens. "
            "Implement proper session timeout and invalidation.",
            cwe_id="CWE-613",
            cvss_score=6.1,
            tags=["session-management", "authentication", "owasp-top-10"],
            metadata={"issues": issues},
        )


class AuthorizationDetector(Detector):
    name = "authorization"
    label = "Authorization"

    def detect(self, target: TargetView) -> list[Finding]:
        findings: list[Finding] = []
        for endpoint in IDOR_ENDPOINTS:
            for object_id in IDOR_IDS:
                test_url = join_url(target.url, endpoint + object_id)
                response = self.probe.safe_get(test_url)
                if response is None or response.status_code != 200 or not response.body:
                    continue
                text = response.body.lower()
                if any(marker in text for marker in IDOR_MARKERS):
                    findings.append(
                        make_finding(
                            "Potential Insecure Direct Object Reference (IDOR)",
                            f"The endpoint {test_url} may be vulnerable to IDOR attacks. Unauthorized access to "
                            "resources may be possible by manipulating object identifiers. The endpoint returned "
                            "user-related data without proper authorization checks.",
                            Severity.HIGH,
                            ACCESS_CATEGORY,
                            test_url,
                            "Implement proper authorization checks. Use indirect object references. Verify user "
                            "permissions before accessing resources. Implement access control lists (ACLs).",
                            cwe_id="CWE-639",
                            cvss_score=7.5,
                            proof_of_concept=f"Access {test_url} to view potentially unauthorized resources.",
                            tags=["idor", "access-control", "owasp-top-10"],
                        )
                    )
                    break

        traversal = self._path_traversal(target)
        if traversal:
            findings.append(traversal)
        return findings

    def _path_traversal(self, target: TargetView) -> Finding | None:
        base_path = urlparse(target.url).path or "/"
        for payload in TRAVERSAL_PAYLOADS:
            test_url = join_url(target.url, base_path + payload + "etc/passwd")
            response = self.probe.safe_get(test_url)
            if response is None or response.status_code != 200:
                continue
            if any(marker in (response.body or "") for marker in TRAVERSAL_MARKERS):
                return make_finding(
                    "Path Traversal / Directory Traversal Vulnerability",
                    "Path traversal vulnerability detected. The application may allow access to files outside the "
                    "web root directory.",
                    Severity.HIGH,
                    ACCESS_CATEGORY,
                    test_url,
                    "Validate and sanitize file paths. Use whitelist-based access control. Implement proper path "
                    "normalization. Restrict file system access.",
                    cwe_id="CWE-22",
                    cvss_score=7.5,
                    proof_of_concept=f"Access: {test_url}",
                    tags=["path-traversal", "directory-traversal", "access-control", "owasp-top-10"],
                )
        return None
