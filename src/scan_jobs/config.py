"""Runtime configuration for scan jobs."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from scan_jobs.orchestrator.tools import DEFAULT_TOOL_SPECS

DEFAULT_PORT_TIMEOUT_MS = 2_000
DEFAULT_BATCH_SIZE = 50


@dataclass(slots=True)
class ToolSettings:
    """Where tool executables are looked up."""

    bundled_bin_dir: Path | None = None
    dev_bin_dir: Path | None = None
    executable_overrides: dict[str, str] = field(default_factory=dict)

    @property
    def search_dirs(self) -> tuple[Path, ...]:
        return tuple(path for path in (self.bundled_bin_dir, self.dev_bin_dir) if path is not None)


@dataclass(slots=True)
class ScanDefaults:
    """Defaults filled into port scan and subdomain brute-force jobs."""

    port_timeout_ms: int = DEFAULT_PORT_TIMEOUT_MS
    batch_size: int = DEFAULT_BATCH_SIZE


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    db_path: Path = Path(".scan_jobs.db")
    sqlite_busy_timeout_ms: int = 5_000
    results_dir: Path = Path("scan-results")
    write_json_output: bool = True
    cancel_grace_seconds: float = 5.0
    tools: ToolSettings = field(default_factory=ToolSettings)
    defaults: ScanDefaults = field(default_factory=ScanDefaults)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with local-development defaults."""

        return cls(
            db_path=db_path or Path(os.getenv("SCAN_JOBS_DB_PATH", ".scan_jobs.db")),
            sqlite_busy_timeout_ms=int(os.getenv("SCAN_JOBS_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            results_dir=Path(os.getenv("SCAN_JOBS_RESULTS_DIR", "scan-results")),
            write_json_output=_env_bool("SCAN_JOBS_WRITE_JSON_OUTPUT", default=True),
            cancel_grace_seconds=float(os.getenv("SCAN_JOBS_CANCEL_GRACE_SECONDS", "5.0")),
            tools=ToolSettings(
                bundled_bin_dir=_env_path("SCAN_JOBS_BUNDLED_BIN_DIR"),
                dev_bin_dir=_env_path("SCAN_JOBS_DEV_BIN_DIR"),
                executable_overrides=_collect_executable_overrides(),
            ),
            defaults=ScanDefaults(
                port_timeout_ms=int(
                    os.getenv("SCAN_JOBS_PORT_TIMEOUT_MS", str(DEFAULT_PORT_TIMEOUT_MS)),
                ),
                batch_size=int(os.getenv("SCAN_JOBS_BATCH_SIZE", str(DEFAULT_BATCH_SIZE))),
            ),
        )

    def validate(self) -> None:
        """Raise `ValueError` for settings that cannot work."""

        if self.sqlite_busy_timeout_ms <= 0:
            raise ValueError("SCAN_JOBS_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        if self.cancel_grace_seconds <= 0:
            raise ValueError("SCAN_JOBS_CANCEL_GRACE_SECONDS must be > 0.")
        if self.defaults.port_timeout_ms <= 0:
            raise ValueError("SCAN_JOBS_PORT_TIMEOUT_MS must be a positive integer.")
        if self.defaults.batch_size <= 0:
            raise ValueError("SCAN_JOBS_BATCH_SIZE must be a positive integer.")


def _collect_executable_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for spec in DEFAULT_TOOL_SPECS.values():
        name = spec.executable_name
        value = os.getenv(f"SCAN_JOBS_{name.upper()}_EXECUTABLE", "").strip()
        if value:
            overrides[name] = value
    return overrides


def _env_path(name: str) -> Path | None:
    value = os.getenv(name, "").strip()
    return Path(value) if value else None


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
