"""
Shared fixtures for webscan tests. No test touches the network: every HTTP
client is built on ``httpx.MockTransport``.
"""
from __future__ import annotations

import httpx
import pytest

from webscan.aggregator import ResultAggregator
from webscan.detectors.base import Detector, ProbeClient, make_finding
from webscan.fetcher import TargetFetcher
from webscan.models import ScanJob, Severity
from webscan.orchestrator import ScanOrchestrator
from webscan.progress import ProgressPublisher
from webscan.registry import DetectorRegistry
from webscan.storage import ScanStore

TARGET_URL = "http://app.test/"

PAGE = """
<html><body>
  <form action="/login" method="post">
    <input name="username" type="text">
    <input name="password" type="password">
    <input type="submit" value="Sign in">
  </form>
</body></html>
"""

DETECTOR_NAMES = [
    "sqlInjection",
    "xss",
    "csrf",
    "securityHeaders",
    "sensitiveData",
    "authentication",
    "authorization",
    "ssrf",
    "insecureDesign",
    "logging",
]


def mock_client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def page_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, text=PAGE, headers={"content-type": "text/html"})


def not_found_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(404, text="not found")


def mock_probe(handler=not_found_handler) -> ProbeClient:
    return ProbeClient(client=mock_client(handler))


class FakeDetector(Detector):
    """Emits one finding per configured severity, or raises ``error``."""

    def __init__(self, name: str, severities=(Severity.MEDIUM,), error: Exception | None = None, hook=None):
        super().__init__(mock_probe())
        self.name = name
        self.label = name
        self.severities = list(severities)
        self.error = error
        self.hook = hook
        self.calls = 0

    def detect(self, target):
        self.calls += 1
        if self.hook is not None:
            self.hook(target)
        if self.error is not None:
            raise self.error
        return [
            make_finding(f"{self.name} issue {index}", "desc", severity, "Test", target.url, "fix")
            for index, severity in enumerate(self.severities)
        ]


@pytest.fixture
def store(tmp_path):
    scan_store = ScanStore(str(tmp_path / "webscan.db"))
    scan_store.init_db()
    return scan_store


@pytest.fixture
def make_job(store):
    def _make(**kwargs) -> ScanJob:
        kwargs.setdefault("project_id", "proj-1")
        kwargs.setdefault("url", TARGET_URL)
        return store.create_job(ScanJob(**kwargs))

    return _make


@pytest.fixture
def detector_factory():
    return FakeDetector


@pytest.fixture
def fake_detectors():
    return [FakeDetector(name) for name in DETECTOR_NAMES]


@pytest.fixture
def client_factory():
    return mock_client


@pytest.fixture
def build_orchestrator(store):
    def _build(detectors, fetch_handler=page_handler, annotator=None, **kwargs):
        publisher = ProgressPublisher(store)
        orchestrator = ScanOrchestrator(
            store=store,
            registry=DetectorRegistry(detectors),
            fetcher=TargetFetcher(client=mock_client(fetch_handler)),
            aggregator=ResultAggregator(store),
            publisher=publisher,
            annotator=annotator,
            **kwargs,
        )
        return orchestrator, publisher

    return _build
