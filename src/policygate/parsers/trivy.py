"""
Trivy JSON report parser.

Layout consumed:
    {"Results": [{"Target": "...", "Vulnerabilities": [{"Severity": "HIGH", ...}]}]}

Trivy omits "Vulnerabilities" (or sets it to null) for targets with no
findings, and omits "Results" entirely when nothing was scanned. The latter
is accepted only when the document is recognizably Trivy output
(SchemaVersion/ArtifactName present); otherwise the report is malformed.
"""

from typing import Any, Iterator

from policygate.parsers.base import ScanParser

_TRIVY_MARKERS = ("SchemaVersion", "ArtifactName")


class TrivyParser(ScanParser):
    """Counts Results[].Vulnerabilities[].Severity."""

    @property
    def name(self) -> str:
        return "trivy"

    @property
    def description(self) -> str:
        return "Trivy JSON (Results[].Vulnerabilities[].Severity)"

    def extract_severities(self, document: dict[str, Any], source: str) -> Iterator[Any]:
        if "Results" not in document and any(k in document for k in _TRIVY_MARKERS):
            return

        results = self.require_list(document, "Results", source)
        for index, result in enumerate(results):
            if not isinstance(result, dict):
                raise self.malformed(source, f"Results[{index}] must be an object")

            vulnerabilities = result.get("Vulnerabilities")
            if vulnerabilities is None:
                continue
            if not isinstance(vulnerabilities, list):
                raise self.malformed(source, f"Results[{index}].Vulnerabilities must be a list")

            for vuln in vulnerabilities:
                if not isinstance(vuln, dict):
                    raise self.malformed(source, f"Results[{index}].Vulnerabilities contains a non-object")
                yield vuln.get("Severity")
