"""Result records produced by scan jobs.

The orchestrator treats a `ResultRecord` as an opaque tagged payload. The
typed views below are for consumers (storage summaries, CLI rendering) and
tolerate the key spellings of both older and newer tool versions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from scan_jobs.orchestrator.models import JobKind


@dataclass(frozen=True, slots=True)
class ResultRecord:
    """One discovered finding or one probed unit's outcome."""

    kind: JobKind
    payload: dict[str, Any]

    @property
    def label(self) -> str | None:
        """Identifying name used as the current-activity label."""

        if self.kind is JobKind.VULNERABILITY_SCAN:
            return VulnerabilityMatch.from_payload(self.payload).template_id or None
        if self.kind is JobKind.PORT_SCAN:
            probe = PortProbe.from_payload(self.payload)
            return f"{probe.port}/{probe.status}" if probe.port is not None else None
        return SubdomainProbe.from_payload(self.payload).subdomain or None

    @property
    def severity(self) -> str | None:
        if self.kind is not JobKind.VULNERABILITY_SCAN:
            return None
        return VulnerabilityMatch.from_payload(self.payload).severity or None


@dataclass(frozen=True, slots=True)
class VulnerabilityMatch:
    template_id: str
    name: str
    severity: str
    matched_at: str
    host: str
    tags: tuple[str, ...] = ()
    cve: tuple[str, ...] = ()
    cvss: float | None = None
    description: str = ""
    references: tuple[str, ...] = ()
    extracted_results: tuple[str, ...] = ()
    timestamp: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> VulnerabilityMatch:
        info = payload.get("info")
        if not isinstance(info, dict):
            info = {}
        classification = info.get("classification")
        if not isinstance(classification, dict):
            classification = {}
        template_id = _first_str(payload, "template-id", "templateID", "template_id", "id")
        return cls(
            template_id=template_id,
            name=_first_str(info, "name") or template_id,
            severity=_first_str(info, "severity").lower(),
            matched_at=_first_str(payload, "matched-at", "matched_at", "url"),
            host=_first_str(payload, "host"),
            tags=_str_tuple(info.get("tags")),
            cve=_str_tuple(payload.get("cve") or classification.get("cve-id")),
            cvss=_as_float(payload.get("cvss", classification.get("cvss-score"))),
            description=_first_str(info, "description"),
            references=_str_tuple(info.get("reference")),
            extracted_results=_str_tuple(
                payload.get("extracted-results", payload.get("extracted_results")),
            ),
            timestamp=_first_str(payload, "timestamp") or None,
        )


@dataclass(frozen=True, slots=True)
class PortProbe:
    port: int | None
    status: str
    service: str | None = None
    latency_ms: int = 0

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> PortProbe:
        port = payload.get("port")
        return cls(
            port=port if isinstance(port, int) and not isinstance(port, bool) else None,
            status=_first_str(payload, "status") or "closed",
            service=_first_str(payload, "service", "banner") or None,
            latency_ms=_as_int(payload.get("latency")),
        )


@dataclass(frozen=True, slots=True)
class SubdomainProbe:
    subdomain: str
    resolved: bool
    ips: tuple[str, ...] = field(default_factory=tuple)
    latency_ms: int = 0

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> SubdomainProbe:
        return cls(
            subdomain=_first_str(payload, "subdomain"),
            resolved=bool(payload.get("resolved", False)),
            ips=_str_tuple(payload.get("ips")),
            latency_ms=_as_int(payload.get("latency")),
        )


def _first_str(payload: dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


def _str_tuple(value: object) -> tuple[str, ...]:
    if isinstance(value, str):
        return tuple(part.strip() for part in value.split(",") if part.strip())
    if isinstance(value, list):
        return tuple(str(item) for item in value if item is not None)
    return ()


def _as_float(value: object) -> float | None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    return float(value)


def _as_int(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return 0
    return int(value)
