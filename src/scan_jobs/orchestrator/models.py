"""Domain models for scan jobs and their configuration."""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from datetime import datetime
from enum import Enum
from typing import Any

from scan_jobs.orchestrator.errors import InvalidJobConfigError


class JobKind(str, Enum):
    """Which external tool a job wraps."""

    VULNERABILITY_SCAN = "vulnerability_scan"
    PORT_SCAN = "port_scan"
    DOMAIN_BRUTE = "domain_brute"


class JobStatus(str, Enum):
    """Job lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


class OutputProtocol(str, Enum):
    """How a tool reports results on standard output."""

    STREAMING = "streaming"
    BATCH = "batch"


@dataclass(frozen=True, slots=True)
class VulnerabilityScanConfig:
    """Options for the template-based vulnerability scanner."""

    targets: tuple[str, ...] = ()
    target_file: str | None = None
    templates: tuple[str, ...] = ()
    templates_path: str | None = None
    severities: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    exclude_tags: tuple[str, ...] = ()
    rate_limit: int | None = None
    concurrency: int | None = None
    timeout: int | None = None
    retries: int | None = None
    headers: tuple[str, ...] = ()
    json_output: str | None = None
    skip_deps: bool = True

    def validate(self) -> None:
        """Raise `InvalidJobConfigError` when the config cannot be run."""

        if not self.target_file and not any(target.strip() for target in self.targets):
            raise InvalidJobConfigError(
                "At least one target is required unless target_file is set.",
            )
        for name in ("rate_limit", "concurrency", "timeout", "retries"):
            _require_non_negative(name, getattr(self, name))
        for header in self.headers:
            if ":" not in header:
                raise InvalidJobConfigError(
                    f"Invalid header {header!r}. Expected format 'Name: value'.",
                )


@dataclass(frozen=True, slots=True)
class PortScanConfig:
    """Options for the port scanner."""

    target: str
    ports: tuple[int, ...] = ()
    timeout_ms: int | None = None
    batch_size: int | None = None

    def validate(self) -> None:
        """Raise `InvalidJobConfigError` when the config cannot be run."""

        if not self.target.strip():
            raise InvalidJobConfigError("Port scan target is required.")
        for port in self.ports:
            if not 1 <= port <= 65_535:
                raise InvalidJobConfigError(f"Invalid port: {port!r} (must be 1-65535)")
        _require_non_negative("timeout_ms", self.timeout_ms)
        _require_non_negative("batch_size", self.batch_size)


@dataclass(frozen=True, slots=True)
class DomainBruteConfig:
    """Options for the subdomain brute-forcer."""

    domain: str
    wordlist: tuple[str, ...] = ()
    timeout_ms: int | None = None
    batch_size: int | None = None

    def validate(self) -> None:
        """Raise `InvalidJobConfigError` when the config cannot be run."""

        if not self.domain.strip():
            raise InvalidJobConfigError("Domain is required.")
        for word in self.wordlist:
            if "\n" in word or "\r" in word:
                raise InvalidJobConfigError(f"Wordlist entry must be a single line: {word!r}")
        _require_non_negative("timeout_ms", self.timeout_ms)
        _require_non_negative("batch_size", self.batch_size)


JobConfig = VulnerabilityScanConfig | PortScanConfig | DomainBruteConfig

CONFIG_TYPES: dict[JobKind, type[JobConfig]] = {
    JobKind.VULNERABILITY_SCAN: VulnerabilityScanConfig,
    JobKind.PORT_SCAN: PortScanConfig,
    JobKind.DOMAIN_BRUTE: DomainBruteConfig,
}


def validate_config(kind: JobKind, config: JobConfig) -> None:
    """Check that `config` matches `kind` and is runnable."""

    expected = CONFIG_TYPES[kind]
    if not isinstance(config, expected):
        raise InvalidJobConfigError(
            f"Job kind {kind.value} expects {expected.__name__}, got {type(config).__name__}",
        )
    config.validate()


def config_to_dict(config: JobConfig) -> dict[str, Any]:
    """Serialize a config for persistence."""

    return asdict(config)


def config_from_dict(kind: JobKind, payload: dict[str, Any]) -> JobConfig:
    """Rebuild a config stored by `config_to_dict`; unknown keys are ignored."""

    config_type = CONFIG_TYPES[kind]
    known = {item.name for item in fields(config_type)}
    values = {
        key: tuple(value) if isinstance(value, list) else value
        for key, value in payload.items()
        if key in known
    }
    return config_type(**values)


@dataclass(slots=True)
class JobUpdate:
    """Partial job fields; `None` means unchanged."""

    status: JobStatus | None = None
    progress: float | None = None
    current_activity: str | None = None
    completed_units: int | None = None
    total_units: int | None = None
    record_count: int | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    error_message: str | None = None


@dataclass(slots=True)
class JobView:
    """Stored job row for CLI and service reads."""

    job_id: int
    kind: JobKind
    status: JobStatus
    config: JobConfig
    progress: float
    current_activity: str | None
    completed_units: int
    total_units: int | None
    record_count: int
    started_at: datetime | None
    finished_at: datetime | None
    error_message: str | None
    created_at: datetime

    @property
    def duration_seconds(self) -> int | None:
        if self.started_at is None:
            return None
        end = self.finished_at or datetime.now(tz=self.started_at.tzinfo)
        return max(0, int((end - self.started_at).total_seconds()))


def _require_non_negative(name: str, value: int | None) -> None:
    if value is not None and value < 0:
        raise InvalidJobConfigError(f"{name} must be >= 0, got {value!r}")
