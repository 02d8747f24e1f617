from __future__ import annotations

from typing import Iterable

from webscan.detectors.access import AuthenticationDetector, AuthorizationDetector
from webscan.detectors.base import Detector, ProbeClient
from webscan.detectors.exposure import LoggingDetector, SensitiveDataDetector
from webscan.detectors.forms import CsrfDetector, InsecureDesignDetector
from webscan.detectors.headers import SecurityHeadersDetector
from webscan.detectors.injection import SqlInjectionDetector, XssDetector
from webscan.detectors.ssrf import SSRF_TIMEOUT, SsrfDetector
from webscan.models import ScanProfile

QUICK_PROFILE_DETECTORS = ("sqlInjection", "xss", "securityHeaders")


class DetectorRegistry:
    """Ordered, named set of detectors, fixed for the life of the process.

    Registration order is execution order, so progress percentages are
    deterministic for a given profile.
    """

    def __init__(self, detectors: Iterable[Detector]) -> None:
        ordered = tuple(detectors)
        names = [detector.name for detector in ordered]
        if any(not name for name in names):
            raise ValueError("Every detector needs a name")
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate detector names: {', '.join(duplicates)}")
        self._detectors = ordered
        self._by_name = {detector.name: detector for detector in ordered}

    def __len__(self) -> int:
        return len(self._detectors)

    def __iter__(self):
        return iter(self._detectors)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def names(self) -> list[str]:
        return [detector.name for detector in self._detectors]

    def get(self, name: str) -> Detector:
        return self._by_name[name]

    def select(self, profile: ScanProfile | str, names: Iterable[str] | None = None) -> list[Detector]:
        profile = ScanProfile(profile)
        if profile is ScanProfile.FULL:
            return list(self._detectors)
        if profile is ScanProfile.QUICK:
            wanted = set(QUICK_PROFILE_DETECTORS)
        else:
            wanted = set(names or [])
        return [detector for detector in self._detectors if detector.name in wanted]

    def unknown(self, names: Iterable[str]) -> list[str]:
        return [name for name in names if name not in self._by_name]


def default_registry(probe: ProbeClient | None = None, ssrf_timeout: float = SSRF_TIMEOUT) -> DetectorRegistry:
    probe = probe or ProbeClient()
    return DetectorRegistry(
        [
            SqlInjectionDetector(probe),
            XssDetector(probe),
            CsrfDetector(probe),
            SecurityHeadersDetector(probe),
            SensitiveDataDetector(probe),
            AuthenticationDetector(probe),
            AuthorizationDetector(probe),
            SsrfDetector(probe, timeout=ssrf_timeout),
            InsecureDesignDetector(probe),
            LoggingDetector(probe),
        ]
    )
