"""Built-in scan defaults: template presets, common ports, subdomain wordlist."""

from __future__ import annotations

from dataclasses import dataclass, replace

from scan_jobs.orchestrator.models import VulnerabilityScanConfig


@dataclass(frozen=True, slots=True)
class TemplatePreset:
    """Named template selection for the vulnerability scanner."""

    name: str
    description: str
    severities: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()


TEMPLATE_PRESETS: dict[str, TemplatePreset] = {
    preset.name: preset
    for preset in (
        TemplatePreset(
            name="full",
            description="All templates, every severity",
            severities=("critical", "high", "medium", "low", "info"),
        ),
        TemplatePreset(
            name="critical-only",
            description="Critical and high severity findings",
            severities=("critical", "high"),
        ),
        TemplatePreset(name="cves", description="Known CVE templates", tags=("cve",)),
        TemplatePreset(
            name="exposures",
            description="Exposed files, panels and secrets",
            tags=("exposure",),
        ),
        TemplatePreset(name="misconfig", description="Misconfigurations", tags=("misconfig",)),
        TemplatePreset(name="technologies", description="Technology detection", tags=("tech",)),
        TemplatePreset(
            name="quick",
            description="High-impact checks only",
            severities=("critical", "high"),
            tags=("cve", "rce", "sqli"),
        ),
    )
}


def apply_preset(config: VulnerabilityScanConfig, preset_name: str) -> VulnerabilityScanConfig:
    """Return `config` with the preset's severities and tags.

    Raises:
        KeyError: unknown preset name.
    """

    preset = TEMPLATE_PRESETS[preset_name]
    return replace(config, severities=preset.severities, tags=preset.tags, skip_deps=True)


DEFAULT_PORTS: tuple[int, ...] = (
    21, 22, 23, 25, 53, 80, 110, 143, 443, 445, 993, 995, 1723,
    3306, 3389, 5432, 5900, 6379, 8080, 8443, 8888, 9200, 27017,
)  # fmt: skip

DEFAULT_WORDLIST: tuple[str, ...] = (
    "www", "mail", "ftp", "admin", "api", "dev", "staging", "test", "blog", "shop",
    "portal", "app", "mobile", "cdn", "static", "assets", "img", "images", "ns", "ns1",
    "ns2", "mx", "smtp", "pop", "imap", "webmail", "email", "secure", "vpn", "remote",
    "ssh", "cpanel", "whm", "webdisk", "soap", "v1", "v2", "v3", "stage", "production",
    "prod", "pre", "preview", "demo", "beta", "alpha", "uat", "qa", "sandbox", "dev1",
    "dev2",
)  # fmt: skip
