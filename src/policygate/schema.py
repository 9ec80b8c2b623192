"""
Schema definitions for policy-gate.

This module defines the Pydantic models used throughout the gate:
- VulnerabilityCounts/ScanReport: Normalized scanner output
- SeverityRule/PolicyConfig: The active ruleset for one evaluation
- Violation/Verdict: The evaluator's decision and its explanation
- BypassRequest/BypassRecord: Emergency override input and outcome
- AuditEntry: The immutable record of one evaluation
- SecuritySection: The block merged into artifact metadata
- GateConfig: Policy plus audit and metadata store settings

Design Decisions:
    - Models are immutable (frozen=True); a verdict is never recomputed
    - Unknown keys are rejected (extra="forbid") so typos fail at load time
    - Wire formats are camelCase (aliases); Python attributes are snake_case
    - Absent severities are 0, never None
"""

from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from policygate.errors import ConfigError, ConfigNotFoundError


# =============================================================================
# Enums
# =============================================================================


class Severity(str, Enum):
    """Normalized vulnerability importance tier."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# Evaluation order. Violations are always reported in this order.
SEVERITY_ORDER: tuple[Severity, ...] = (
    Severity.CRITICAL,
    Severity.HIGH,
    Severity.MEDIUM,
    Severity.LOW,
)


class VerdictKind(str, Enum):
    """The gate's decision."""

    PASS = "PASS"
    FAIL = "FAIL"
    BYPASS = "BYPASS"


class AuditStatus(str, Enum):
    """Outcome recorded in the audit log. ERROR marks an evaluation that never produced a verdict."""

    PASS = "PASS"
    FAIL = "FAIL"
    BYPASS = "BYPASS"
    ERROR = "ERROR"


# =============================================================================
# Scan Models
# =============================================================================


class VulnerabilityCounts(BaseModel):
    """
    Per-severity vulnerability tally.

    Derived once per evaluation from a scanner's report and never mutated.

    Attributes:
        critical: Number of critical findings
        high: Number of high findings
        medium: Number of medium findings
        low: Number of low findings
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    critical: int = Field(default=0, ge=0, description="Critical findings")
    high: int = Field(default=0, ge=0, description="High findings")
    medium: int = Field(default=0, ge=0, description="Medium findings")
    low: int = Field(default=0, ge=0, description="Low findings")

    def get(self, severity: Severity | str) -> int:
        """Return the count for one severity."""
        return getattr(self, Severity(severity).value)

    @property
    def total(self) -> int:
        """Sum across all severities."""
        return self.critical + self.high + self.medium + self.low

    def as_dict(self) -> dict[str, int]:
        """Counts keyed by severity name, in evaluation order."""
        return {s.value: self.get(s) for s in SEVERITY_ORDER}

    def __add__(self, other: "VulnerabilityCounts") -> "VulnerabilityCounts":
        if not isinstance(other, VulnerabilityCounts):
            return NotImplemented
        return VulnerabilityCounts(
            critical=self.critical + other.critical,
            high=self.high + other.high,
            medium=self.medium + other.medium,
            low=self.low + other.low,
        )


class ScanReport(BaseModel):
    """
    A parsed scanner report.

    Attributes:
        scanner: Scanner identity (e.g. "trivy", "grype")
        source: Where the raw document came from
        counts: Normalized counts
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    scanner: str = Field(..., min_length=1, description="Scanner identity")
    source: str = Field(default="<memory>", description="Origin of the raw report")
    counts: VulnerabilityCounts = Field(default_factory=VulnerabilityCounts)


# =============================================================================
# Policy Models
# =============================================================================


class SeverityRule(BaseModel):
    """
    Threshold for a single severity.

    A violation is recorded when fail_on is true and the observed count is
    strictly greater than max_allowed.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    fail_on: bool = Field(
        default=False,
        alias="failOn",
        description="Whether this severity can fail the gate",
    )
    max_allowed: int = Field(
        default=0,
        alias="maxAllowed",
        ge=0,
        description="Maximum tolerated findings at this severity",
    )


class PolicyConfig(BaseModel):
    """
    The active ruleset for one evaluation run.

    Defaults mirror the historical gate: critical and high block (0 and 5
    allowed), medium and low are informational (20 and 50).

    Attributes:
        critical/high/medium/low: Per-severity rules
        bypass_enabled: Whether emergency bypass may be granted at all
        authorized_principals: Principals allowed to request a bypass
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    critical: SeverityRule = Field(
        default_factory=lambda: SeverityRule(fail_on=True, max_allowed=0),
    )
    high: SeverityRule = Field(
        default_factory=lambda: SeverityRule(fail_on=True, max_allowed=5),
    )
    medium: SeverityRule = Field(
        default_factory=lambda: SeverityRule(fail_on=False, max_allowed=20),
    )
    low: SeverityRule = Field(
        default_factory=lambda: SeverityRule(fail_on=False, max_allowed=50),
    )
    bypass_enabled: bool = Field(
        default=True,
        alias="bypassEnabled",
        description="Whether bypass requests are considered",
    )
    authorized_principals: frozenset[str] = Field(
        default_factory=frozenset,
        alias="authorizedPrincipals",
        description="Principals allowed to bypass a failing gate",
    )

    @field_validator("authorized_principals")
    @classmethod
    def strip_principals(cls, v: frozenset[str]) -> frozenset[str]:
        """Drop blank principal names; they could never authorize anything."""
        return frozenset(p.strip() for p in v if p and p.strip())

    def rule_for(self, severity: Severity | str) -> SeverityRule:
        """Return the rule for one severity."""
        return getattr(self, Severity(severity).value)

    def snapshot(self) -> dict[str, Any]:
        """Policy as written into artifact metadata (principals omitted)."""
        snap: dict[str, Any] = {
            s.value: self.rule_for(s).model_dump(mode="json", by_alias=True)
            for s in SEVERITY_ORDER
        }
        snap["bypassEnabled"] = self.bypass_enabled
        return snap


# =============================================================================
# Decision Models
# =============================================================================


class Violation(BaseModel):
    """One severity whose observed count exceeded its threshold."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    severity: Severity
    observed_count: int = Field(..., alias="observedCount", ge=0)
    allowed_max: int = Field(..., alias="allowedMax", ge=0)
    message: str = ""

    def to_record(self) -> dict[str, Any]:
        """camelCase dict for the audit log and JSON report."""
        return self.model_dump(mode="json", by_alias=True)


class Verdict(BaseModel):
    """
    The gate's decision for one evaluation.

    Attributes:
        kind: PASS, FAIL or BYPASS
        violations: Violations that triggered FAIL (kept on BYPASS)
        scanner: Scanner identity the counts came from
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: VerdictKind
    violations: tuple[Violation, ...] = ()
    scanner: str = ""

    @property
    def passed(self) -> bool:
        """Whether the artifact may proceed (PASS or BYPASS)."""
        return self.kind != VerdictKind.FAIL


class BypassRequest(BaseModel):
    """
    An emergency override request.

    Valid iff bypass is enabled, token and reason are non-empty, and the
    principal is authorized. The token is never logged or persisted.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    token: str = Field(default="", repr=False)
    reason: str = ""
    principal: str = ""


class BypassRecord(BaseModel):
    """What the bypass authority decided."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    used: bool = False
    reason: str | None = None
    principal: str | None = None

    @classmethod
    def not_used(cls) -> "BypassRecord":
        """Record for a bypass that was absent or refused."""
        return cls(used=False)


# =============================================================================
# Audit / Metadata Models
# =============================================================================


class AuditEntry(BaseModel):
    """
    Immutable record of one gate evaluation.

    Written exactly once per evaluation, whatever the outcome.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    evaluation_id: str = Field(..., alias="evaluationId")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    scanner_used: str = Field(default="", alias="scannerUsed")
    artifact_ref: str | None = Field(default=None, alias="artifactRef")
    counts: VulnerabilityCounts = Field(default_factory=VulnerabilityCounts)
    verdict: AuditStatus
    violations: tuple[Violation, ...] = ()
    bypass_used: bool = Field(default=False, alias="bypassUsed")
    bypass_reason: str | None = Field(default=None, alias="bypassReason")
    principal: str | None = None
    error: str | None = None

    def to_record(self) -> dict[str, Any]:
        """The JSON object written as one line of the audit log."""
        return self.model_dump(mode="json", by_alias=True)


class SecuritySection(BaseModel):
    """The `security` block the gate owns inside an artifact's metadata."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    gate_status: VerdictKind = Field(..., alias="gateStatus")
    scan_timestamp: datetime = Field(..., alias="timestamp")
    counts: VulnerabilityCounts
    policy_snapshot: dict[str, Any] = Field(default_factory=dict, alias="policySnapshot")

    def to_document(self) -> dict[str, Any]:
        """JSON-ready dict for the metadata document."""
        return self.model_dump(mode="json", by_alias=True)


# =============================================================================
# Gate Configuration
# =============================================================================


class AuditSettings(BaseModel):
    """Where audit entries are written."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    log_dir: str = Field(default="logs/audit", alias="logDir", min_length=1)


class MetadataSettings(BaseModel):
    """
    Artifact metadata store settings.

    Attributes:
        backend: "file" writes <root>/<ref>.metadata.json, "http" talks to a
            Nexus-style raw repository
        root: Base directory for the file backend
        base_url: Repository manager URL for the http backend
        repository: Repository name under /repository/
        username: Basic auth user
        password_env: Environment variable holding the password
        timeout_seconds: Per-request timeout
        retries: Extra attempts after a transport failure (at most one)
        conditional_writes: Send If-Match with the fetched ETag on PUT
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    backend: Literal["file", "http"] = "file"
    root: str = "."
    base_url: str | None = Field(default=None, alias="baseUrl")
    repository: str = "raw-hosted"
    username: str | None = None
    password_env: str = Field(default="NEXUS_PASSWORD", alias="passwordEnv")
    timeout_seconds: float = Field(default=10.0, alias="timeoutSeconds", gt=0, le=300)
    retries: int = Field(default=1, ge=0, le=1)
    conditional_writes: bool = Field(default=False, alias="conditionalWrites")


# Keys that belong to PolicyConfig when a bare policy document is loaded
_POLICY_KEYS = frozenset({
    "critical",
    "high",
    "medium",
    "low",
    "bypassEnabled",
    "bypass_enabled",
    "authorizedPrincipals",
    "authorized_principals",
})


class GateConfig(BaseModel):
    """
    Complete gate configuration: policy plus where to audit and publish.

    A bare policy document (severity and bypass keys at the top level) is
    accepted and treated as the `policy` section.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    policy: PolicyConfig = Field(default_factory=PolicyConfig)
    audit: AuditSettings = Field(default_factory=AuditSettings)
    metadata: MetadataSettings = Field(default_factory=MetadataSettings)

    @model_validator(mode="before")
    @classmethod
    def lift_bare_policy(cls, data: Any) -> Any:
        """Move top-level severity/bypass keys under `policy`."""
        if not isinstance(data, dict) or "policy" in data:
            return data
        bare = {k: v for k, v in data.items() if k in _POLICY_KEYS}
        if not bare:
            return data
        rest = {k: v for k, v in data.items() if k not in _POLICY_KEYS}
        rest["policy"] = bare
        return rest


# =============================================================================
# YAML Loading Helpers
# =============================================================================

CONFIG_FILENAMES = ("policy-gate.yaml", ".policy-gate.yaml", "policy-gate.yml")


def load_config(path: Path | str) -> GateConfig:
    """
    Load gate configuration from a YAML (or JSON) file.

    Args:
        path: Path to the config file

    Returns:
        Validated GateConfig

    Raises:
        ConfigNotFoundError: If the file doesn't exist
        ConfigError: If the file isn't valid YAML or doesn't match the schema
    """
    path = Path(path)
    try:
        with path.open() as f:
            content = f.read()
    except FileNotFoundError:
        raise ConfigNotFoundError(config_path=str(path)) from None
    except OSError as e:
        raise ConfigError(config_path=str(path), detail=str(e)) from e

    return load_config_from_string(content, source=str(path))


def load_config_from_string(content: str, source: str = "") -> GateConfig:
    """Load gate configuration from a YAML string."""
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(config_path=source, detail=f"not valid YAML: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(
            config_path=source,
            detail=f"top level must be a mapping, got {type(data).__name__}",
        )

    try:
        return GateConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(config_path=source, detail=_summarize_validation(e)) from e


def find_config(cwd: Path | str | None = None) -> Path | None:
    """Return the first conventional config file in cwd, if any."""
    base = Path(cwd) if cwd is not None else Path.cwd()
    for name in CONFIG_FILENAMES:
        candidate = base / name
        if candidate.is_file():
            return candidate
    return None


def resolve_config(
    path: Path | str | None = None,
    cwd: Path | str | None = None,
) -> tuple[GateConfig, Path | None]:
    """
    Load the explicit config, else a discovered one, else defaults.

    Returns:
        (config, path it was loaded from or None for built-in defaults)
    """
    if path is not None:
        return load_config(path), Path(path)
    found = find_config(cwd)
    if found is not None:
        return load_config(found), found
    return GateConfig(), None


def _summarize_validation(error: ValidationError) -> str:
    """One line per field error, e.g. `policy.high.maxAllowed: ...`."""
    lines = []
    for err in error.errors():
        loc = ".".join(str(p) for p in err["loc"])
        lines.append(f"{loc}: {err['msg']}")
    return "; ".join(lines)
