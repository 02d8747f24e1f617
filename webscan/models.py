from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from urllib.parse import parse_qsl, urlparse


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    return utc_now().replace(microsecond=0).isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


class Severity(str, Enum):
    """Finding severity, totally ordered for ranking."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def coerce(cls, value: Any, default: "Severity | None" = None) -> "Severity":
        if isinstance(value, Severity):
            return value
        key = str(value or "").strip().lower()
        if key in _SEVERITY_ALIASES:
            return _SEVERITY_ALIASES[key]
        return default or cls.INFO

    @classmethod
    def ordered(cls) -> list["Severity"]:
        return sorted(cls, key=lambda item: item.rank, reverse=True)


_SEVERITY_RANK = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
    Severity.INFO: 0,
}

_SEVERITY_ALIASES = {
    "critical": Severity.CRITICAL,
    "high": Severity.HIGH,
    "error": Severity.HIGH,
    "medium": Severity.MEDIUM,
    "moderate": Severity.MEDIUM,
    "warning": Severity.MEDIUM,
    "warn": Severity.MEDIUM,
    "low": Severity.LOW,
    "info": Severity.INFO,
    "informational": Severity.INFO,
}


class ScanStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in {ScanStatus.COMPLETED, ScanStatus.FAILED, ScanStatus.CANCELLED}


class ScanPhase(str, Enum):
    PENDING = "pending"
    FETCHING = "fetching"
    DETECTING = "detecting"
    AGGREGATING = "aggregating"
    ANNOTATING = "annotating"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class ScanProfile(str, Enum):
    FULL = "full"
    QUICK = "quick"
    CUSTOM = "custom"


@dataclass
class ScanJob:
    project_id: str
    url: str
    profile: ScanProfile = ScanProfile.FULL
    detectors: list[str] = field(default_factory=list)
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_now_iso)
    status: ScanStatus = ScanStatus.PENDING
    phase_message: str | None = None
    progress: int = 0
    started_at: str | None = None
    completed_at: str | None = None
    duration_seconds: int | None = None
    total_findings: int = 0
    critical_count: int = 0
    high_count: int = 0
    medium_count: int = 0
    low_count: int = 0
    info_count: int = 0
    error_message: str | None = None

    def severity_counts(self) -> dict[str, int]:
        return {
            Severity.CRITICAL.value: self.critical_count,
            Severity.HIGH.value: self.high_count,
            Severity.MEDIUM.value: self.medium_count,
            Severity.LOW.value: self.low_count,
            Severity.INFO.value: self.info_count,
        }

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["profile"] = self.profile.value
        payload["status"] = self.status.value
        payload["severity_counts"] = self.severity_counts()
        return payload


@dataclass
class Finding:
    title: str
    description: str
    severity: Severity
    category: str
    affected_url: str
    remediation: str
    scan_id: str | None = None
    project_id: str | None = None
    cwe_id: str | None = None
    cvss_score: float | None = None
    affected_parameter: str | None = None
    http_method: str | None = None
    request_payload: str | None = None
    response_payload: str | None = None
    proof_of_concept: str | None = None
    tags: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    detector: str | None = None
    annotation: str | None = None
    fingerprint: str | None = None
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["severity"] = self.severity.value
        return payload


@dataclass
class FormField:
    name: str | None
    tag: str = "input"
    type: str = "text"
    value: str | None = None
    autocomplete: str | None = None

    @property
    def is_submittable(self) -> bool:
        return bool(self.name) and self.type not in {"submit", "button", "reset", "image"}


@dataclass
class HtmlForm:
    action: str
    method: str = "GET"
    fields: list[FormField] = field(default_factory=list)

    def field_names(self) -> list[str]:
        return [item.name for item in self.fields if item.is_submittable and item.name]

    def payload(self, value: str) -> dict[str, str]:
        return {name: value for name in self.field_names()}


@dataclass
class FetchedResponse:
    status_code: int
    headers: dict[str, str]
    body: str
    url: str
    set_cookies: list[str] = field(default_factory=list)

    def header(self, name: str, default: str = "") -> str:
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return default


@dataclass
class TargetView:
    """Fetched response plus its parsed structure, owned by a single scan."""

    url: str
    response: FetchedResponse
    forms: list[HtmlForm] = field(default_factory=list)
    inputs: list[FormField] = field(default_factory=list)

    @property
    def headers(self) -> dict[str, str]:
        return self.response.headers

    @property
    def body(self) -> str:
        return self.response.body

    def query_params(self) -> list[tuple[str, str]]:
        return parse_qsl(urlparse(self.url).query, keep_blank_values=True)


@dataclass
class ProgressEvent:
    job_id: str
    phase: ScanPhase
    message: str
    progress: int | None = None
    detector: str | None = None
    outcome: str | None = None
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["phase"] = self.phase.value
        return payload
