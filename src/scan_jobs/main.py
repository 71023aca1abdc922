"""CLI entrypoint for scan-jobs."""

import logging
from collections.abc import Callable
from pathlib import Path

import rich_click as click

from scan_jobs import __version__
from scan_jobs.orchestrator.controllers import (
    DeleteJobCommand,
    DnsRecordsCommand,
    DomainBruteCommand,
    ListJobsCommand,
    PortScanCommand,
    RecoverJobsCommand,
    ScanCliController,
    ScanRunResult,
    ShowJobCommand,
    ToolsCommand,
    VulnerabilityScanCommand,
)
from scan_jobs.orchestrator.errors import InvalidJobConfigError
from scan_jobs.orchestrator.models import JobKind, JobStatus
from scan_jobs.orchestrator.tools import DNS_RECORD_TYPES
from scan_jobs.presets import TEMPLATE_PRESETS

click.rich_click.USE_MARKDOWN = True
SCAN_CONTROLLER = ScanCliController()


@click.group()
@click.version_option(version=__version__, prog_name="scan-jobs")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Root logger level. DEBUG also prints tool stderr.",
)
def scan_jobs(log_level: str) -> None:
    """Run security scanning tools as supervised jobs."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@scan_jobs.command("vuln")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--target", "targets", multiple=True, help="Target URL or host. Can be repeated.")
@click.option("--target-file", default=None, help="File with one target per line.")
@click.option(
    "--preset",
    type=click.Choice(sorted(TEMPLATE_PRESETS), case_sensitive=False),
    default=None,
    help="Named template selection; overrides --severity and --tag.",
)
@click.option("--template", "templates", multiple=True, help="Template path. Can be repeated.")
@click.option("--severity", "severities", multiple=True, help="Severity filter. Can be repeated.")
@click.option("--tag", "tags", multiple=True, help="Template tag filter. Can be repeated.")
@click.option(
    "--exclude-tag",
    "exclude_tags",
    multiple=True,
    help="Tag to exclude. Can be repeated.",
)
@click.option(
    "--header",
    "headers",
    multiple=True,
    help="'Name: value' request header. Can be repeated.",
)
@click.option(
    "--rate-limit",
    type=click.IntRange(min=1),
    default=None,
    help="Max requests per second.",
)
@click.option("--concurrency", type=click.IntRange(min=1), default=None, help="Parallel templates.")
@click.option(
    "--timeout",
    type=click.IntRange(min=1),
    default=None,
    help="Request timeout in seconds.",
)
@click.option("--retries", type=click.IntRange(min=0), default=None, help="Request retries.")
def scan_vuln(  # noqa: PLR0913
    db_path: Path | None,
    targets: tuple[str, ...],
    target_file: str | None,
    preset: str | None,
    templates: tuple[str, ...],
    severities: tuple[str, ...],
    tags: tuple[str, ...],
    exclude_tags: tuple[str, ...],
    headers: tuple[str, ...],
    rate_limit: int | None,
    concurrency: int | None,
    timeout: int | None,
    retries: int | None,
) -> None:
    """Run a template-based vulnerability scan in the foreground. Ctrl-C cancels it."""

    _finish_run(
        _guard(
            lambda: SCAN_CONTROLLER.run_vulnerability_scan(
                VulnerabilityScanCommand(
                    db_path=db_path,
                    targets=targets,
                    target_file=target_file,
                    preset=preset.lower() if preset else None,
                    templates=templates,
                    severities=severities,
                    tags=tags,
                    exclude_tags=exclude_tags,
                    headers=headers,
                    rate_limit=rate_limit,
                    concurrency=concurrency,
                    timeout=timeout,
                    retries=retries,
                ),
                emit=click.echo,
            ),
        ),
    )


@scan_jobs.command("ports")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--target", required=True, help="Host or IP address to scan.")
@click.option(
    "--port",
    "ports",
    multiple=True,
    type=click.IntRange(min=1, max=65_535),
    help="Port to probe. Can be repeated; defaults to a list of common ports.",
)
@click.option("--timeout-ms", type=click.IntRange(min=1), default=None, help="Per-port timeout.")
@click.option("--batch-size", type=click.IntRange(min=1), default=None, help="Parallel probes.")
def scan_ports(
    db_path: Path | None,
    target: str,
    ports: tuple[int, ...],
    timeout_ms: int | None,
    batch_size: int | None,
) -> None:
    """Run a port scan in the foreground. Ctrl-C cancels it."""

    _finish_run(
        _guard(
            lambda: SCAN_CONTROLLER.run_port_scan(
                PortScanCommand(
                    db_path=db_path,
                    target=target,
                    ports=ports,
                    timeout_ms=timeout_ms,
                    batch_size=batch_size,
                ),
                emit=click.echo,
            ),
        ),
    )


@scan_jobs.command("brute")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--domain", required=True, help="Parent domain.")
@click.option(
    "--wordlist",
    "wordlist_path",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    default=None,
    help="File with one candidate label per line; defaults to a built-in list.",
)
@click.option("--timeout-ms", type=click.IntRange(min=1), default=None, help="Per-lookup timeout.")
@click.option("--batch-size", type=click.IntRange(min=1), default=None, help="Parallel lookups.")
def scan_brute(
    db_path: Path | None,
    domain: str,
    wordlist_path: Path | None,
    timeout_ms: int | None,
    batch_size: int | None,
) -> None:
    """Brute-force subdomains in the foreground. Ctrl-C cancels it."""

    _finish_run(
        _guard(
            lambda: SCAN_CONTROLLER.run_domain_brute(
                DomainBruteCommand(
                    db_path=db_path,
                    domain=domain,
                    wordlist_path=wordlist_path,
                    timeout_ms=timeout_ms,
                    batch_size=batch_size,
                ),
                emit=click.echo,
            ),
        ),
    )


@scan_jobs.command("dns")
@click.option("--domain", required=True, help="Domain to look up.")
@click.option(
    "--type",
    "record_type",
    type=click.Choice(list(DNS_RECORD_TYPES), case_sensitive=False),
    default="mx",
    show_default=True,
    help="Record type.",
)
def scan_dns(domain: str, record_type: str) -> None:
    """Look up DNS records with the domain brute-force tool."""

    try:
        result = SCAN_CONTROLLER.dns_records(
            DnsRecordsCommand(domain=domain, record_type=record_type.lower()),
        )
    except ValueError as error:
        raise click.UsageError(str(error)) from error
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("DNS lookup failed.")


@scan_jobs.group()
def jobs() -> None:
    """Stored job commands."""


@jobs.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--kind",
    type=click.Choice([kind.value for kind in JobKind], case_sensitive=False),
    default=None,
    help="Optional job kind filter.",
)
@click.option(
    "--status",
    type=click.Choice([status.value for status in JobStatus], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
    help="Max jobs to print.",
)
def jobs_list(db_path: Path | None, kind: str | None, status: str | None, limit: int) -> None:
    """List stored jobs, newest first."""

    _emit_lines(
        SCAN_CONTROLLER.list_jobs(
            ListJobsCommand(
                db_path=db_path,
                kind=kind.lower() if kind else None,
                status=status.lower() if status else None,
                limit=limit,
            ),
        ),
    )


@jobs.command("show")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--records",
    "records_limit",
    type=click.IntRange(min=0, max=10_000),
    default=50,
    show_default=True,
    help="Max records to print.",
)
@click.argument("job_id", type=int)
def jobs_show(db_path: Path | None, records_limit: int, job_id: int) -> None:
    """Show one job with its records."""

    _emit_lines(
        SCAN_CONTROLLER.show_job(
            ShowJobCommand(db_path=db_path, job_id=job_id, records_limit=records_limit),
        ),
    )


@jobs.command("delete")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("job_id", type=int)
def jobs_delete(db_path: Path | None, job_id: int) -> None:
    """Delete a stored job and its records."""

    _emit_lines(SCAN_CONTROLLER.delete_job(DeleteJobCommand(db_path=db_path, job_id=job_id)))


@jobs.command("recover")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def jobs_recover(db_path: Path | None) -> None:
    """Mark jobs left pending or running by a crashed process as failed."""

    _emit_lines(SCAN_CONTROLLER.recover_jobs(RecoverJobsCommand(db_path=db_path)))


@scan_jobs.group()
def tools() -> None:
    """External tool commands."""


@tools.command("check")
@click.option(
    "--kind",
    "kinds",
    multiple=True,
    type=click.Choice([kind.value for kind in JobKind], case_sensitive=False),
    help="Tool to check, by job kind. Repeat to check several; defaults to all.",
)
def tools_check(kinds: tuple[str, ...]) -> None:
    """Check that each tool can be found and runs."""

    result = SCAN_CONTROLLER.check_tools(ToolsCommand(kinds=tuple(kind.lower() for kind in kinds)))
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Tool check failed.")


@tools.command("update-templates")
def tools_update_templates() -> None:
    """Update the vulnerability scanner's templates."""

    result = SCAN_CONTROLLER.update_templates(ToolsCommand())
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Template update failed.")


def _guard(run: Callable[[], ScanRunResult]) -> ScanRunResult:
    try:
        return run()
    except InvalidJobConfigError as error:
        raise click.UsageError(str(error)) from error


def _finish_run(result: ScanRunResult) -> None:
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Scan did not complete.")


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    scan_jobs()
