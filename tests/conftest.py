"""
Pytest configuration and fixtures for policy-gate tests.

This module provides shared fixtures used across unit and integration
tests: temp directories, sample scanner reports and gate configs.
"""

import json
import tempfile
from pathlib import Path
from typing import Any, Callable, Generator

import pytest

from policygate.schema import PolicyConfig, SeverityRule


def trivy_document(critical: int = 0, high: int = 0, medium: int = 0, low: int = 0) -> dict[str, Any]:
    """A Trivy report with the given number of findings per severity, split over two targets."""
    severities = ["CRITICAL"] * critical + ["HIGH"] * high + ["MEDIUM"] * medium + ["LOW"] * low
    half = len(severities) // 2
    return {
        "SchemaVersion": 2,
        "ArtifactName": "registry.example.com/app:1.0.0",
        "Results": [
            {
                "Target": "app (debian 12)",
                "Vulnerabilities": [
                    {"VulnerabilityID": f"CVE-2024-{i:04d}", "Severity": s}
                    for i, s in enumerate(severities[:half])
                ],
            },
            {
                "Target": "requirements.txt",
                "Vulnerabilities": [
                    {"VulnerabilityID": f"CVE-2025-{i:04d}", "Severity": s}
                    for i, s in enumerate(severities[half:])
                ],
            },
            {"Target": "Dockerfile", "Vulnerabilities": None},
        ],
    }


def grype_document(critical: int = 0, high: int = 0, medium: int = 0, low: int = 0) -> dict[str, Any]:
    """A Grype report with the given number of findings per severity."""
    severities = ["Critical"] * critical + ["High"] * high + ["Medium"] * medium + ["Low"] * low
    return {
        "matches": [
            {
                "vulnerability": {"id": f"GHSA-{i:04d}", "severity": s},
                "artifact": {"name": "openssl", "version": "3.0.2"},
            }
            for i, s in enumerate(severities)
        ],
        "source": {"type": "image"},
    }


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def write_report(temp_dir: Path) -> Callable[..., Path]:
    """Write a report document (dict or raw text) into temp_dir and return its path."""

    def _write(document: dict[str, Any] | str, name: str = "report.json") -> Path:
        path = temp_dir / name
        if isinstance(document, str):
            path.write_text(document)
        else:
            path.write_text(json.dumps(document))
        return path

    return _write


@pytest.fixture
def scenario_policy() -> PolicyConfig:
    """Critical 0 and high 5 blocking; medium and low informational."""
    return PolicyConfig(
        critical=SeverityRule(fail_on=True, max_allowed=0),
        high=SeverityRule(fail_on=True, max_allowed=5),
        authorized_principals=frozenset({"security-team"}),
    )


@pytest.fixture
def strict_high_policy() -> PolicyConfig:
    """Same as scenario_policy but only one high finding allowed."""
    return PolicyConfig(
        critical=SeverityRule(fail_on=True, max_allowed=0),
        high=SeverityRule(fail_on=True, max_allowed=1),
        authorized_principals=frozenset({"security-team"}),
    )


@pytest.fixture
def strict_config_yaml() -> str:
    """Gate config with high.maxAllowed=1 and an authorized security team."""
    return """
policy:
  critical: {failOn: true, maxAllowed: 0}
  high: {failOn: true, maxAllowed: 1}
  medium: {failOn: false, maxAllowed: 20}
  low: {failOn: false, maxAllowed: 50}
  bypassEnabled: true
  authorizedPrincipals: [security-team]
"""


@pytest.fixture
def trivy_doc() -> Callable[..., dict[str, Any]]:
    """Builder for Trivy report documents."""
    return trivy_document


@pytest.fixture
def grype_doc() -> Callable[..., dict[str, Any]]:
    """Builder for Grype report documents."""
    return grype_document
