"""
Base class for scan report parsers.

A parser turns one scanner's raw JSON report into VulnerabilityCounts.
Each scanner format implements a single hook, extract_severities(), that
walks its own document layout; decoding, severity normalization and
tallying are shared here so every format counts the same way.

Design Principles:
    - Parsers are stateless and pure: same bytes in, same counts out
    - Structural problems raise MalformedReportError, never return partial counts
    - A report with zero findings is valid (all counts zero)
    - Severities outside critical/high/medium/low (UNKNOWN, Negligible) are ignored
"""

import json
from abc import ABC, abstractmethod
from typing import Any, Iterator

from policygate.errors import MalformedReportError
from policygate.log import get_logger
from policygate.schema import SEVERITY_ORDER, Severity, VulnerabilityCounts

logger = get_logger(__name__)

_KNOWN_SEVERITIES = {s.value: s for s in SEVERITY_ORDER}


def normalize_severity(value: Any) -> Severity | None:
    """Map "CRITICAL", "Critical", " critical " to Severity.CRITICAL; anything else to None."""
    if not isinstance(value, str):
        return None
    return _KNOWN_SEVERITIES.get(value.strip().lower())


class ScanParser(ABC):
    """
    Abstract base class for scanner report parsers.

    Subclasses must implement:
    - name property: The scanner identity this parser handles
    - extract_severities(): Yield the raw severity string of every finding

    Example:
        class MyScannerParser(ScanParser):
            @property
            def name(self) -> str:
                return "myscanner"

            def extract_severities(self, document, source):
                for finding in self.require_list(document, "findings", source):
                    yield finding.get("level")
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Scanner identity, lower case (e.g. "trivy")."""
        ...

    @property
    def description(self) -> str:
        """Human-readable description of the report format."""
        return f"Parser: {self.name}"

    @abstractmethod
    def extract_severities(self, document: dict[str, Any], source: str) -> Iterator[Any]:
        """
        Yield the severity value of every finding in the document.

        Raises:
            MalformedReportError: If the document lacks the expected structure
        """
        ...

    def parse(self, raw: bytes | str, source: str = "<memory>") -> VulnerabilityCounts:
        """
        Parse a raw report into normalized counts.

        Args:
            raw: The report bytes (or already-decoded text)
            source: Where the report came from, for error messages

        Returns:
            VulnerabilityCounts for the four known severities

        Raises:
            MalformedReportError: Invalid JSON or unexpected structure
        """
        document = self.decode(raw, source)

        tally = {s: 0 for s in SEVERITY_ORDER}
        ignored = 0
        for value in self.extract_severities(document, source):
            severity = normalize_severity(value)
            if severity is None:
                ignored += 1
                continue
            tally[severity] += 1

        if ignored:
            logger.debug("%s: ignored %d findings with unranked severity in %s", self.name, ignored, source)

        return VulnerabilityCounts(**{s.value: n for s, n in tally.items()})

    def decode(self, raw: bytes | str, source: str) -> dict[str, Any]:
        """Decode raw bytes into a JSON object."""
        if isinstance(raw, bytes):
            try:
                text = raw.decode("utf-8-sig")
            except UnicodeDecodeError as e:
                raise self.malformed(source, f"not UTF-8 text ({e.reason})") from e
        else:
            text = raw

        if not text.strip():
            raise self.malformed(source, "empty document")

        try:
            document = json.loads(text)
        except json.JSONDecodeError as e:
            raise self.malformed(source, f"invalid JSON at line {e.lineno} column {e.colno}: {e.msg}") from e

        if not isinstance(document, dict):
            raise self.malformed(source, f"expected a JSON object, got {type(document).__name__}")
        return document

    def require_list(self, container: dict[str, Any], key: str, source: str) -> list[Any]:
        """Return container[key], which must be present and a list."""
        if key not in container:
            raise self.malformed(source, f"missing top-level key {key!r}")
        value = container[key]
        if not isinstance(value, list):
            raise self.malformed(source, f"{key!r} must be a list, got {type(value).__name__}")
        return value

    def malformed(self, source: str, detail: str) -> MalformedReportError:
        """Build a MalformedReportError for this scanner."""
        return MalformedReportError(scanner=self.name, source=source, detail=detail)

    def __repr__(self) -> str:
        return f"<ScanParser: {self.name}>"
