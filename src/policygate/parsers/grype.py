"""
Grype JSON report parser.

Layout consumed:
    {"matches": [{"vulnerability": {"id": "CVE-...", "severity": "High"}, ...}]}
"""

from typing import Any, Iterator

from policygate.parsers.base import ScanParser


class GrypeParser(ScanParser):
    """Counts matches[].vulnerability.severity."""

    @property
    def name(self) -> str:
        return "grype"

    @property
    def description(self) -> str:
        return "Grype JSON (matches[].vulnerability.severity)"

    def extract_severities(self, document: dict[str, Any], source: str) -> Iterator[Any]:
        matches = self.require_list(document, "matches", source)
        for index, match in enumerate(matches):
            if not isinstance(match, dict):
                raise self.malformed(source, f"matches[{index}] must be an object")
            vulnerability = match.get("vulnerability")
            if not isinstance(vulnerability, dict):
                raise self.malformed(source, f"matches[{index}].vulnerability must be an object")
            yield vulnerability.get("severity")
