from __future__ import annotations

from pathlib import Path

import allure
import pytest

from scan_jobs.config import ScanDefaults, Settings

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Environment Settings"),
]


def test_from_env_defaults(monkeypatch) -> None:
    for name in (
        "SCAN_JOBS_DB_PATH",
        "SCAN_JOBS_RESULTS_DIR",
        "SCAN_JOBS_WRITE_JSON_OUTPUT",
        "SCAN_JOBS_BUNDLED_BIN_DIR",
        "SCAN_JOBS_DEV_BIN_DIR",
        "SCAN_JOBS_NUCLEI_EXECUTABLE",
        "SCAN_JOBS_PORT_TIMEOUT_MS",
        "SCAN_JOBS_BATCH_SIZE",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.db_path == Path(".scan_jobs.db")
    assert settings.write_json_output is True
    assert settings.cancel_grace_seconds == 5.0
    assert settings.tools.search_dirs == ()
    assert settings.tools.executable_overrides == {}
    assert settings.defaults.port_timeout_ms == 2_000
    assert settings.defaults.batch_size == 50


def test_from_env_reads_overrides(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("SCAN_JOBS_DB_PATH", str(tmp_path / "jobs.db"))
    monkeypatch.setenv("SCAN_JOBS_BUNDLED_BIN_DIR", str(tmp_path / "bundled"))
    monkeypatch.setenv("SCAN_JOBS_DEV_BIN_DIR", str(tmp_path / "dev"))
    monkeypatch.setenv("SCAN_JOBS_NUCLEI_EXECUTABLE", "/opt/nuclei/nuclei")
    monkeypatch.setenv("SCAN_JOBS_WRITE_JSON_OUTPUT", "off")
    monkeypatch.setenv("SCAN_JOBS_BATCH_SIZE", "200")

    settings = Settings.from_env()

    assert settings.db_path == tmp_path / "jobs.db"
    assert settings.tools.search_dirs == (tmp_path / "bundled", tmp_path / "dev")
    assert settings.tools.executable_overrides == {"nuclei": "/opt/nuclei/nuclei"}
    assert settings.write_json_output is False
    assert settings.defaults.batch_size == 200


def test_explicit_db_path_wins_over_env(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("SCAN_JOBS_DB_PATH", str(tmp_path / "env.db"))

    settings = Settings.from_env(db_path=tmp_path / "cli.db")

    assert settings.db_path == tmp_path / "cli.db"


def test_invalid_boolean_is_rejected(monkeypatch) -> None:
    monkeypatch.setenv("SCAN_JOBS_WRITE_JSON_OUTPUT", "maybe")

    with pytest.raises(ValueError, match="Invalid boolean value for SCAN_JOBS_WRITE_JSON_OUTPUT"):
        Settings.from_env()


def test_validate_rejects_non_positive_batch_size() -> None:
    settings = Settings(defaults=ScanDefaults(batch_size=0))

    with pytest.raises(ValueError, match="SCAN_JOBS_BATCH_SIZE"):
        settings.validate()


def test_validate_rejects_non_positive_grace_period() -> None:
    settings = Settings(cancel_grace_seconds=0)

    with pytest.raises(ValueError, match="SCAN_JOBS_CANCEL_GRACE_SECONDS"):
        settings.validate()
