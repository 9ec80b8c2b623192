"""
Parser registry for policy-gate.

Scanner formats are looked up by identity in a registry rather than a
hard-coded branch, so a new scanner can be supported by registering one
more ScanParser without touching the evaluator.

Usage:
    from policygate.parsers.registry import default_registry, parse

    counts = parse("trivy", raw_bytes)
    parser = default_registry.get("grype")
"""

from pathlib import Path
from typing import Iterable, Iterator

from policygate.errors import ReportNotFoundError, UnsupportedScannerError
from policygate.parsers.base import ScanParser
from policygate.schema import ScanReport, VulnerabilityCounts


class ParserRegistry:
    """
    Registry mapping scanner identities to parsers.

    Identities are case-insensitive ("Trivy" finds the "trivy" parser).
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._parsers: dict[str, ScanParser] = {}

    def register(self, parser: ScanParser) -> None:
        """
        Register a parser under its name, replacing any previous one.

        Raises:
            ValueError: If parser is None or has an empty name
        """
        if parser is None:
            msg = "Cannot register None as a parser"
            raise ValueError(msg)

        name = parser.name.strip().lower()
        if not name:
            msg = "Parser must have a non-empty name"
            raise ValueError(msg)

        self._parsers[name] = parser

    def get(self, scanner: str) -> ScanParser:
        """
        Look up the parser for a scanner identity.

        Raises:
            UnsupportedScannerError: If no parser is registered for it
        """
        parser = self.get_optional(scanner)
        if parser is None:
            raise UnsupportedScannerError(scanner=scanner, supported=tuple(self.list_scanners()))
        return parser

    def get_optional(self, scanner: str) -> ScanParser | None:
        """Look up a parser, returning None if not found."""
        if not isinstance(scanner, str):
            return None
        return self._parsers.get(scanner.strip().lower())

    def has(self, scanner: str) -> bool:
        """Check if a scanner identity is supported."""
        return self.get_optional(scanner) is not None

    def unregister(self, scanner: str) -> bool:
        """Remove a parser. Returns False if it wasn't registered."""
        key = scanner.strip().lower()
        if key in self._parsers:
            del self._parsers[key]
            return True
        return False

    def list_scanners(self) -> list[str]:
        """Registered scanner identities in sorted order."""
        return sorted(self._parsers.keys())

    def __len__(self) -> int:
        return len(self._parsers)

    def __iter__(self) -> Iterator[ScanParser]:
        return iter(self._parsers.values())

    def __contains__(self, scanner: str) -> bool:
        return self.has(scanner)

    def __repr__(self) -> str:
        return f"<ParserRegistry: [{', '.join(self.list_scanners())}]>"


# Registry used by the gate unless one is passed in explicitly
default_registry = ParserRegistry()


def register_parser(parser: ScanParser) -> None:
    """Register a parser in the default registry."""
    default_registry.register(parser)


def get_parser(scanner: str) -> ScanParser:
    """Get a parser from the default registry."""
    return default_registry.get(scanner)


def parse(
    scanner: str,
    raw: bytes | str,
    source: str = "<memory>",
    registry: ParserRegistry | None = None,
) -> VulnerabilityCounts:
    """
    Parse one raw report with the parser registered for `scanner`.

    Raises:
        UnsupportedScannerError: Unknown scanner identity
        MalformedReportError: Report is not valid JSON or has the wrong shape
    """
    parser = (registry or default_registry).get(scanner)
    return parser.parse(raw, source=source)


def load_report(
    scanner: str,
    path: Path | str,
    registry: ParserRegistry | None = None,
) -> ScanReport:
    """
    Read and parse a report file.

    Raises:
        UnsupportedScannerError: Unknown scanner identity
        ReportNotFoundError: File missing or unreadable
        MalformedReportError: Report is not valid JSON or has the wrong shape
    """
    parser = (registry or default_registry).get(scanner)
    path = Path(path)
    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        raise ReportNotFoundError(scanner=parser.name, source=str(path)) from None
    except OSError as e:
        raise ReportNotFoundError(
            scanner=parser.name,
            source=str(path),
            message=f"Cannot read scan report {path}: {e}",
        ) from e

    return ScanReport(scanner=parser.name, source=str(path), counts=parser.parse(raw, source=str(path)))


def load_reports(
    scanner: str,
    paths: Iterable[Path | str],
    registry: ParserRegistry | None = None,
) -> ScanReport:
    """
    Parse several reports from the same scanner and sum their counts.

    Used when one artifact is covered by more than one report (for example
    an image scan plus a filesystem scan).

    Raises:
        ValueError: If no paths are given
    """
    reports = [load_report(scanner, p, registry) for p in paths]
    if not reports:
        msg = "At least one report path is required"
        raise ValueError(msg)

    counts = VulnerabilityCounts()
    for report in reports:
        counts = counts + report.counts

    return ScanReport(
        scanner=reports[0].scanner,
        source=", ".join(r.source for r in reports),
        counts=counts,
    )
