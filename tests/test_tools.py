from __future__ import annotations

from pathlib import Path

import allure

from scan_jobs.orchestrator.models import (
    DomainBruteConfig,
    JobKind,
    OutputProtocol,
    PortScanConfig,
    VulnerabilityScanConfig,
)
from scan_jobs.orchestrator.tools import (
    DEFAULT_TOOL_SPECS,
    ToolLocator,
    build_dns_records_args,
    build_domain_brute_args,
    build_domain_brute_stdin,
    build_port_scan_args,
    build_vulnerability_scan_args,
)

pytestmark = [
    allure.epic("Job Orchestration"),
    allure.feature("Tool Command Lines"),
]


def test_vulnerability_scan_args_full_grammar() -> None:
    config = VulnerabilityScanConfig(
        targets=("https://a.example", "https://b.example"),
        templates=("cves/", "exposures/"),
        severities=("critical", "high"),
        tags=("cve", "rce"),
        exclude_tags=("dos",),
        rate_limit=150,
        concurrency=25,
        timeout=10,
        retries=2,
        headers=("Authorization: Bearer x", "X-Trace: 1"),
        json_output="/tmp/scan-7.json",
    )

    assert build_vulnerability_scan_args(config) == [
        "-u", "https://a.example", "https://b.example",
        "-templates", "cves/", "exposures/",
        "-severity", "critical,high",
        "-tags", "cve,rce",
        "-exclude-tags", "dos",
        "-rate-limit", "150",
        "-c", "25",
        "-timeout", "10",
        "-retries", "2",
        "-json", "-o", "/tmp/scan-7.json",
        "-header", "Authorization: Bearer x",
        "-header", "X-Trace: 1",
        "-skip-deps",
        "-silent", "-no-color",
    ]  # fmt: skip


def test_vulnerability_scan_args_minimal_uses_target_file_and_empty_templates() -> None:
    config = VulnerabilityScanConfig(target_file="targets.txt", skip_deps=False)

    assert build_vulnerability_scan_args(config) == [
        "-list", "targets.txt", "-templates", "", "-silent", "-no-color",
    ]  # fmt: skip


def test_vulnerability_scan_args_prefers_templates_path_when_no_templates() -> None:
    config = VulnerabilityScanConfig(targets=("h",), templates_path="/opt/templates")

    args = build_vulnerability_scan_args(config)

    assert args[:4] == ["-u", "h", "-templates", "/opt/templates"]


def test_port_scan_args() -> None:
    config = PortScanConfig(target="10.0.0.5", ports=(22, 80, 443), timeout_ms=2000, batch_size=50)

    assert build_port_scan_args(config) == [
        "--cmd", "scan", "--target", "10.0.0.5", "--ports", "22,80,443",
        "--timeout", "2000", "--batch-size", "50", "--json",
    ]  # fmt: skip


def test_domain_brute_args_and_stdin() -> None:
    config = DomainBruteConfig(domain="example.com", wordlist=("www", "api"), timeout_ms=1000)

    assert build_domain_brute_args(config) == [
        "--cmd", "brute", "--domain", "example.com", "--use-stdin", "--timeout", "1000", "--json",
    ]  # fmt: skip
    assert build_domain_brute_stdin(config) == b"www\napi"


def test_dns_records_args() -> None:
    assert build_dns_records_args("example.com", "txt") == [
        "--cmd", "records", "--domain", "example.com", "--type", "txt", "--json",
    ]  # fmt: skip


def test_default_specs_select_protocol_per_kind() -> None:
    assert DEFAULT_TOOL_SPECS[JobKind.VULNERABILITY_SCAN].protocol is OutputProtocol.STREAMING
    assert DEFAULT_TOOL_SPECS[JobKind.PORT_SCAN].protocol is OutputProtocol.BATCH
    assert DEFAULT_TOOL_SPECS[JobKind.DOMAIN_BRUTE].protocol is OutputProtocol.BATCH


def test_locator_prefers_override(tmp_path: Path) -> None:
    bundled = tmp_path / "bundled"
    bundled.mkdir()
    (bundled / "nuclei").write_text("", "utf-8")
    locator = ToolLocator(search_dirs=(bundled,), overrides={"nuclei": "/custom/nuclei"})

    assert locator.resolve("nuclei") == "/custom/nuclei"


def test_locator_takes_first_existing_search_dir(tmp_path: Path) -> None:
    bundled = tmp_path / "bundled"
    dev = tmp_path / "dev"
    bundled.mkdir()
    dev.mkdir()
    (dev / "portscan").write_text("", "utf-8")
    locator = ToolLocator(search_dirs=(bundled, dev), platform="linux")

    assert locator.resolve("portscan") == str(dev / "portscan")


def test_locator_adds_exe_suffix_on_windows(tmp_path: Path) -> None:
    (tmp_path / "domainbrute.exe").write_text("", "utf-8")
    locator = ToolLocator(search_dirs=(tmp_path,), platform="win32")

    assert locator.resolve("domainbrute") == str(tmp_path / "domainbrute.exe")


def test_locator_falls_back_to_bare_name_and_caches(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("PATH", str(tmp_path / "empty"))
    locator = ToolLocator(search_dirs=(tmp_path,))

    assert locator.resolve("no-such-scanner") == "no-such-scanner"

    (tmp_path / "no-such-scanner").write_text("", "utf-8")
    assert locator.resolve("no-such-scanner") == "no-such-scanner"
