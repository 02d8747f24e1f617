"""
Detector contract shared by every vulnerability check.

A detector consumes the ``TargetView`` fetched once per scan and returns a
list of ``Finding`` objects. Detectors may issue their own auxiliary requests
through ``ProbeClient``; a probe that fails at the network level or times out
yields ``None`` and therefore no finding, never an exception.

Anything else raised from ``detect()`` crosses ``run()`` and is isolated by the
orchestrator, which records the error in the progress message and moves on to
the next detector.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any
from urllib.parse import parse_qsl, urlencode, urljoin, urlparse, urlunparse

import httpx

from webscan.models import Finding, FetchedResponse, HtmlForm, Severity, TargetView
from webscan.fetcher import DEFAULT_USER_AGENT, response_from_httpx
from webscan.normalizer import DEFAULT_EXCERPT_LIMIT, truncate

LOGGER = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT = 5.0


def replace_query_param(url: str, name: str, value: str) -> str:
    parsed = urlparse(url)
    params = parse_qsl(parsed.query, keep_blank_values=True)
    replaced = [(key, value if key == name else current) for key, current in params]
    return urlunparse(parsed._replace(query=urlencode(replaced)))


def join_url(base: str, path: str) -> str:
    return urljoin(base, path)


def make_finding(
    title: str,
    description: str,
    severity: Severity | str,
    category: str,
    affected_url: str,
    remediation: str,
    *,
    cwe_id: str | None = None,
    cvss_score: float | None = None,
    affected_parameter: str | None = None,
    http_method: str | None = None,
    request_payload: str | None = None,
    response_payload: str | None = None,
    proof_of_concept: str | None = None,
    tags: list[str] | None = None,
    metadata: dict[str, Any] | None = None,
) -> Finding:
    return Finding(
        title=title,
        description=description,
        severity=Severity.coerce(severity),
        category=category,
        affected_url=affected_url,
        remediation=remediation,
        cwe_id=cwe_id,
        cvss_score=cvss_score,
        affected_parameter=affected_parameter,
        http_method=http_method,
        request_payload=truncate(request_payload, DEFAULT_EXCERPT_LIMIT),
        response_payload=truncate(response_payload, DEFAULT_EXCERPT_LIMIT),
        proof_of_concept=proof_of_concept,
        tags=list(tags or []),
        metadata=dict(metadata or {}),
    )


class ProbeClient:
    """Auxiliary HTTP requests issued by detectors, each with a short timeout."""

    def __init__(
        self,
        client: httpx.Client | None = None,
        timeout: float = DEFAULT_PROBE_TIMEOUT,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self.timeout = timeout
        self.user_agent = user_agent
        self._client = client or httpx.Client(follow_redirects=True, verify=False)

    def request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, str] | None = None,
        data: dict[str, str] | None = None,
        timeout: float | None = None,
        follow_redirects: bool = True,
    ) -> FetchedResponse:
        response = self._client.request(
            method,
            url,
            params=params,
            data=data,
            timeout=timeout or self.timeout,
            headers={"User-Agent": self.user_agent},
            follow_redirects=follow_redirects,
        )
        return response_from_httpx(response)

    def safe_request(self, method: str, url: str, **kwargs: Any) -> FetchedResponse | None:
        try:
            return self.request(method, url, **kwargs)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            LOGGER.debug("Probe %s %s failed: %s", method, url, exc)
            return None

    def safe_get(self, url: str, **kwargs: Any) -> FetchedResponse | None:
        return self.safe_request("GET", url, **kwargs)

    def submit_form(self, form: HtmlForm, payload: dict[str, str]) -> FetchedResponse | None:
        if form.method == "POST":
            return self.safe_request("POST", form.action, data=payload)
        return self.safe_request("GET", form.action, params=payload)

    def close(self) -> None:
        self._client.close()


class Detector(ABC):
    """One vulnerability category.

    Subclasses set ``name`` (the stable registry key) and ``label`` (used in
    progress messages) and implement ``detect``.
    """

    name: str = ""
    label: str = ""

    def __init__(self, probe: ProbeClient | None = None) -> None:
        self.probe = probe or ProbeClient()

    def run(self, target: TargetView) -> list[Finding]:
        """Execute the detector. DO NOT OVERRIDE; override ``detect()``."""
        findings = list(self.detect(target) or [])
        for finding in findings:
            if not finding.detector:
                finding.detector = self.name
        return findings

    @abstractmethod
    def detect(self, target: TargetView) -> list[Finding]:
        ...

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r}>"
