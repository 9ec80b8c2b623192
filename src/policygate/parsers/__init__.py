"""
Scan report parsers for policy-gate.

Converts scanner-specific JSON reports into VulnerabilityCounts.

Built-in parsers:
    - trivy: Results[].Vulnerabilities[].Severity
    - grype: matches[].vulnerability.severity

Architecture:
    - ScanParser: Abstract base class; one subclass per scanner format
    - ParserRegistry: Lookup table keyed by scanner identity
    - parse()/load_report(): Dispatch through the default registry
"""

from policygate.parsers.base import ScanParser, normalize_severity
from policygate.parsers.grype import GrypeParser
from policygate.parsers.registry import (
    ParserRegistry,
    default_registry,
    get_parser,
    load_report,
    load_reports,
    parse,
    register_parser,
)
from policygate.parsers.trivy import TrivyParser

# Register built-in parsers
register_parser(TrivyParser())
register_parser(GrypeParser())

__all__ = [
    "ScanParser",
    "ParserRegistry",
    "TrivyParser",
    "GrypeParser",
    "default_registry",
    "get_parser",
    "load_report",
    "load_reports",
    "normalize_severity",
    "parse",
    "register_parser",
]
