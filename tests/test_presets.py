from __future__ import annotations

import allure
import pytest

from scan_jobs.orchestrator.models import VulnerabilityScanConfig
from scan_jobs.presets import DEFAULT_PORTS, DEFAULT_WORDLIST, TEMPLATE_PRESETS, apply_preset

pytestmark = [
    allure.epic("Scan Service"),
    allure.feature("Scan Defaults"),
]


def test_quick_preset_sets_severities_and_tags() -> None:
    config = apply_preset(
        VulnerabilityScanConfig(targets=("h",), severities=("info",), skip_deps=False),
        "quick",
    )

    assert config.severities == ("critical", "high")
    assert config.tags == ("cve", "rce", "sqli")
    assert config.skip_deps is True
    assert config.targets == ("h",)


def test_tag_only_preset_clears_severities() -> None:
    config = apply_preset(VulnerabilityScanConfig(severities=("low",)), "cves")

    assert config.severities == ()
    assert config.tags == ("cve",)


def test_unknown_preset_raises_key_error() -> None:
    with pytest.raises(KeyError):
        apply_preset(VulnerabilityScanConfig(), "everything")


def test_builtin_preset_names() -> None:
    assert set(TEMPLATE_PRESETS) == {
        "full",
        "critical-only",
        "cves",
        "exposures",
        "misconfig",
        "technologies",
        "quick",
    }


def test_default_lists_are_usable_as_config_values() -> None:
    assert all(1 <= port <= 65_535 for port in DEFAULT_PORTS)
    assert len(set(DEFAULT_WORDLIST)) == len(DEFAULT_WORDLIST)
    assert all("\n" not in word for word in DEFAULT_WORDLIST)
