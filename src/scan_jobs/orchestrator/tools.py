"""Wrapped tools: executable lookup and fixed command-line grammars."""

from __future__ import annotations

import logging
import shutil
import sys
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path

from scan_jobs.orchestrator.models import (
    DomainBruteConfig,
    JobConfig,
    JobKind,
    OutputProtocol,
    PortScanConfig,
    VulnerabilityScanConfig,
)

logger = logging.getLogger(__name__)

VERSION_ARGS: tuple[str, ...] = ("-version",)
UPDATE_TEMPLATES_ARGS: tuple[str, ...] = ("-silent", "-update-templates")


def _no_stdin(_config: JobConfig) -> bytes | None:
    return None


@dataclass(frozen=True, slots=True)
class ToolSpec:
    """How to invoke the tool behind one job kind."""

    kind: JobKind
    executable_name: str
    protocol: OutputProtocol
    build_args: Callable[[JobConfig], list[str]]
    build_stdin: Callable[[JobConfig], bytes | None] = _no_stdin


def build_vulnerability_scan_args(config: VulnerabilityScanConfig) -> list[str]:
    args: list[str] = []

    if config.target_file:
        args.extend(["-list", config.target_file])
    elif config.targets:
        args.extend(["-u", *config.targets])

    if config.templates:
        args.extend(["-templates", *config.templates])
    elif config.templates_path:
        args.extend(["-templates", config.templates_path])
    else:
        args.extend(["-templates", ""])

    if config.severities:
        args.extend(["-severity", ",".join(config.severities)])
    if config.tags:
        args.extend(["-tags", ",".join(config.tags)])
    if config.exclude_tags:
        args.extend(["-exclude-tags", ",".join(config.exclude_tags)])

    if config.rate_limit:
        args.extend(["-rate-limit", str(config.rate_limit)])
    if config.concurrency:
        args.extend(["-c", str(config.concurrency)])
    if config.timeout:
        args.extend(["-timeout", str(config.timeout)])
    if config.retries:
        args.extend(["-retries", str(config.retries)])

    if config.json_output:
        args.extend(["-json", "-o", config.json_output])

    for header in config.headers:
        args.extend(["-header", header])

    if config.skip_deps:
        args.append("-skip-deps")

    args.extend(["-silent", "-no-color"])
    return args


def build_port_scan_args(config: PortScanConfig) -> list[str]:
    args = ["--cmd", "scan", "--target", config.target]
    if config.ports:
        args.extend(["--ports", ",".join(str(port) for port in config.ports)])
    if config.timeout_ms:
        args.extend(["--timeout", str(config.timeout_ms)])
    if config.batch_size:
        args.extend(["--batch-size", str(config.batch_size)])
    args.append("--json")
    return args


def build_domain_brute_args(config: DomainBruteConfig) -> list[str]:
    args = ["--cmd", "brute", "--domain", config.domain]
    if config.wordlist:
        args.append("--use-stdin")
    if config.timeout_ms:
        args.extend(["--timeout", str(config.timeout_ms)])
    if config.batch_size:
        args.extend(["--batch-size", str(config.batch_size)])
    args.append("--json")
    return args


def build_domain_brute_stdin(config: DomainBruteConfig) -> bytes | None:
    if not config.wordlist:
        return None
    return "\n".join(config.wordlist).encode("utf-8")


DNS_RECORD_TYPES: tuple[str, ...] = ("mx", "ns", "txt")


def build_dns_records_args(domain: str, record_type: str) -> list[str]:
    """One-shot record lookup through the domain brute-force tool."""

    return ["--cmd", "records", "--domain", domain, "--type", record_type, "--json"]


DEFAULT_TOOL_SPECS: Mapping[JobKind, ToolSpec] = {
    JobKind.VULNERABILITY_SCAN: ToolSpec(
        kind=JobKind.VULNERABILITY_SCAN,
        executable_name="nuclei",
        protocol=OutputProtocol.STREAMING,
        build_args=build_vulnerability_scan_args,  # type: ignore[arg-type]
    ),
    JobKind.PORT_SCAN: ToolSpec(
        kind=JobKind.PORT_SCAN,
        executable_name="portscan",
        protocol=OutputProtocol.BATCH,
        build_args=build_port_scan_args,  # type: ignore[arg-type]
    ),
    JobKind.DOMAIN_BRUTE: ToolSpec(
        kind=JobKind.DOMAIN_BRUTE,
        executable_name="domainbrute",
        protocol=OutputProtocol.BATCH,
        build_args=build_domain_brute_args,  # type: ignore[arg-type]
        build_stdin=build_domain_brute_stdin,  # type: ignore[arg-type]
    ),
}


class ToolLocator:
    """Resolve tool executables once, in a fixed search order.

    Order: explicit override, each search directory (bundled binaries first,
    then development builds), PATH. When nothing exists the bare name is
    returned and spawning reports the failure.
    """

    def __init__(
        self,
        *,
        search_dirs: tuple[Path, ...] = (),
        overrides: Mapping[str, str] | None = None,
        platform: str | None = None,
    ) -> None:
        self.search_dirs = search_dirs
        self.overrides = dict(overrides or {})
        self.platform = platform or sys.platform
        self._resolved: dict[str, str] = {}

    def resolve(self, executable_name: str) -> str:
        cached = self._resolved.get(executable_name)
        if cached is not None:
            return cached
        resolved = self._search(executable_name)
        self._resolved[executable_name] = resolved
        return resolved

    def _search(self, executable_name: str) -> str:
        override = self.overrides.get(executable_name)
        if override:
            return override

        if Path(executable_name).is_absolute():
            return executable_name

        for directory in self.search_dirs:
            for file_name in self._file_names(executable_name):
                candidate = directory / file_name
                if candidate.is_file():
                    logger.info("Tool %s found at %s", executable_name, candidate)
                    return str(candidate)

        on_path = shutil.which(executable_name)
        if on_path:
            return on_path

        logger.warning("Tool %s not found, falling back to bare name", executable_name)
        return executable_name

    def _file_names(self, executable_name: str) -> tuple[str, ...]:
        if self.platform == "win32" and not executable_name.endswith(".exe"):
            return (f"{executable_name}.exe", executable_name)
        return (executable_name,)
