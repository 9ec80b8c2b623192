"""
Exception hierarchy for policy-gate.

All policy-gate exceptions inherit from GateError, allowing callers to catch
all gate-specific exceptions with a single except clause.

Exception Categories:
    - UnsupportedScannerError / MalformedReportError: Bad scan input
    - ConfigError: Policy configuration could not be loaded
    - AuditWriteError: Audit entry could not be persisted (fatal)
    - MetadataFetchError / MetadataWriteError: Artifact metadata store failed
    - GateCancelledError: Evaluation interrupted between steps

Note that a FAIL verdict is never an exception. Policy violations are a
normal outcome and travel through Verdict, not through this hierarchy.

Design Principles:
    - All errors have error codes for programmatic handling
    - All errors include context (scanner, report path, artifact, config path)
    - All errors provide actionable suggestions where possible
"""

from dataclasses import dataclass, field
from typing import Any


# =============================================================================
# Error Codes
# =============================================================================

# Input errors: 1xxx
ERROR_UNSUPPORTED_SCANNER = 1001
ERROR_MALFORMED_REPORT = 1002
ERROR_REPORT_NOT_FOUND = 1003

# Config errors: 2xxx
ERROR_CONFIG_INVALID = 2001
ERROR_CONFIG_NOT_FOUND = 2002

# Audit errors: 3xxx
ERROR_AUDIT_WRITE_FAILED = 3001

# Metadata errors: 4xxx
ERROR_METADATA_FETCH_FAILED = 4001
ERROR_METADATA_WRITE_FAILED = 4002

# Orchestration errors: 5xxx
ERROR_GATE_CANCELLED = 5001


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class GateError(Exception):
    """
    Base exception for all policy-gate errors.

    Attributes:
        message: Human-readable error description
        code: Numeric error code for programmatic handling
        suggestion: Optional hint for how to resolve the error
        context: Optional dict with additional debugging info
    """

    message: str = ""
    code: int = 0
    suggestion: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Format error for display."""
        parts = [f"[E{self.code}] {self.message}"]
        if self.suggestion:
            parts.append(f"\nSuggestion: {self.suggestion}")
        return "".join(parts)

    def __repr__(self) -> str:
        """Format error for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
            "context": self.context,
        }


# =============================================================================
# Input Errors
# =============================================================================


@dataclass
class InputError(GateError):
    """
    Base class for errors in the scan input handed to the gate.

    Input errors stop the evaluation before any verdict is computed.
    The orchestrator still audits them as an evaluation error.

    Attributes:
        scanner: Scanner identity the caller asked for
        source: Where the report came from (file path or "<memory>")
    """

    scanner: str = ""
    source: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context.update({
            "scanner": self.scanner,
            "source": self.source,
        })


@dataclass
class UnsupportedScannerError(InputError):
    """Raised when no parser is registered for the scanner identity."""

    supported: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Unsupported scanner: {self.scanner!r}"
        if self.code == 0:
            self.code = ERROR_UNSUPPORTED_SCANNER
        if not self.suggestion and self.supported:
            self.suggestion = f"Use one of: {', '.join(self.supported)}"
        super().__post_init__()
        self.context["supported"] = list(self.supported)


@dataclass
class MalformedReportError(InputError):
    """Raised when a report is not valid JSON or lacks the expected structure."""

    detail: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Malformed {self.scanner} report {self.source}: {self.detail}"
        if self.code == 0:
            self.code = ERROR_MALFORMED_REPORT
        if not self.suggestion:
            self.suggestion = f"Re-run {self.scanner or 'the scanner'} with JSON output enabled"
        super().__post_init__()
        self.context["detail"] = self.detail


@dataclass
class ReportNotFoundError(InputError):
    """Raised when a report file cannot be read."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Scan report not found: {self.source}"
        if self.code == 0:
            self.code = ERROR_REPORT_NOT_FOUND
        if not self.suggestion:
            self.suggestion = "Check the --report path and that the scan step produced output"
        super().__post_init__()


# =============================================================================
# Config Errors
# =============================================================================


@dataclass
class ConfigError(GateError):
    """
    Raised when the gate configuration is invalid.

    Misconfiguration (negative thresholds, unknown keys) is caught here at
    load time so the evaluator itself never has to fail.

    Attributes:
        config_path: Path of the offending config file (if any)
        detail: Validation error text
    """

    config_path: str = ""
    detail: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            where = self.config_path or "<inline>"
            self.message = f"Invalid gate config {where}: {self.detail}"
        if self.code == 0:
            self.code = ERROR_CONFIG_INVALID
        self.context.update({
            "config_path": self.config_path,
            "detail": self.detail,
        })


@dataclass
class ConfigNotFoundError(ConfigError):
    """Raised when an explicitly requested config file does not exist."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Config file not found: {self.config_path}"
        if self.code == 0:
            self.code = ERROR_CONFIG_NOT_FOUND
        if not self.suggestion:
            self.suggestion = "Pass --config with an existing file or drop the flag to use defaults"
        super().__post_init__()


# =============================================================================
# Audit Errors
# =============================================================================


@dataclass
class AuditWriteError(GateError):
    """
    Raised when an audit entry cannot be appended to the log.

    This is fatal to the gate run: an unauditable decision is treated as FAIL.

    Attributes:
        log_path: The audit log file being written
        underlying_error: The OS error text
    """

    log_path: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Audit write failed for {self.log_path}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_AUDIT_WRITE_FAILED
        if not self.suggestion:
            self.suggestion = "Check that the audit directory exists, is writable, and the disk is not full"
        self.context.update({
            "log_path": self.log_path,
            "underlying_error": self.underlying_error,
        })


# =============================================================================
# Metadata Errors
# =============================================================================


@dataclass
class MetadataError(GateError):
    """
    Base class for artifact metadata store errors.

    These are non-fatal: the verdict already stands and has been audited.
    They surface as warnings in the final report.

    Attributes:
        artifact_ref: The artifact whose metadata was being updated
        underlying_error: Transport or IO error text
    """

    artifact_ref: str = ""
    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context.update({
            "artifact_ref": self.artifact_ref,
            "underlying_error": self.underlying_error,
        })


@dataclass
class MetadataFetchError(MetadataError):
    """Raised when existing metadata cannot be read."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Metadata fetch failed for {self.artifact_ref}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_METADATA_FETCH_FAILED
        super().__post_init__()


@dataclass
class MetadataWriteError(MetadataError):
    """Raised when merged metadata cannot be written back."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Metadata write failed for {self.artifact_ref}: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_METADATA_WRITE_FAILED
        super().__post_init__()


# =============================================================================
# Orchestration Errors
# =============================================================================


@dataclass
class GateCancelledError(GateError):
    """Raised when the evaluation is cancelled between steps."""

    state: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Gate evaluation cancelled in state {self.state}"
        if self.code == 0:
            self.code = ERROR_GATE_CANCELLED
        self.context["state"] = self.state
