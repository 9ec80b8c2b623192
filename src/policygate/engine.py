"""
Gate Orchestrator for policy-gate.

The Gate drives one evaluation through a fixed state machine:

    INIT -> PARSED -> EVALUATED -> (BYPASS_CHECKED) -> AUDITED -> PUBLISHED -> DONE
                                                        any step -> ERROR

Execution Flow:
    1. Parse the scan report(s) into counts
    2. Evaluate counts against the policy
    3. If the verdict is FAIL, ask the bypass authority
    4. Append exactly one audit entry (always, whatever happened above)
    5. Publish the verdict into artifact metadata if an artifact was named
    6. Map the outcome to a process exit code

Design Principles:
    - Fail-closed: an evaluation that cannot be audited is a FAIL, and if
      even the FAIL cannot be audited the gate exits with a fatal status
    - Full audit: input errors and cancellations still produce an entry
    - Non-fatal publishing: metadata failures become report warnings
    - Cooperative cancellation: a threading.Event is checked between steps
"""

import threading
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from policygate.audit import AuditRecorder
from policygate.errors import (
    AuditWriteError,
    GateCancelledError,
    GateError,
    InputError,
    MetadataError,
    ReportNotFoundError,
)
from policygate.log import get_evaluation_logger, get_logger
from policygate.metadata import MetadataPublisher
from policygate.parsers import ParserRegistry, load_reports
from policygate.policy import PolicyEngine, try_bypass, validate_bypass
from policygate.schema import (
    AuditEntry,
    AuditStatus,
    BypassRecord,
    BypassRequest,
    GateConfig,
    Verdict,
    VerdictKind,
    VulnerabilityCounts,
)

logger = get_logger(__name__)

# Process exit codes
EXIT_PASS = 0
EXIT_FAIL = 1
EXIT_INTERNAL = 2
EXIT_USAGE = 64


class GateState(str, Enum):
    """Orchestrator states. ERROR is absorbing."""

    INIT = "INIT"
    PARSED = "PARSED"
    EVALUATED = "EVALUATED"
    BYPASS_CHECKED = "BYPASS_CHECKED"
    AUDITED = "AUDITED"
    PUBLISHED = "PUBLISHED"
    DONE = "DONE"
    ERROR = "ERROR"


@dataclass
class GateRequest:
    """
    Input for one gate evaluation.

    Attributes:
        scanner: Scanner identity ("trivy", "grype")
        report_paths: One or more report files from that scanner
        artifact_ref: Artifact to publish the verdict for; empty skips publishing
        bypass: Optional emergency override
    """

    scanner: str
    report_paths: list[str | Path] = field(default_factory=list)
    artifact_ref: str = ""
    bypass: BypassRequest | None = None


@dataclass
class GateResult:
    """
    Outcome of one gate evaluation.

    Attributes:
        evaluation_id: Unique id, also written to the audit entry
        scanner: Scanner identity the counts came from
        artifact_ref: Artifact the verdict belongs to
        state: Final orchestrator state (DONE or ERROR)
        states: Every state visited, in order
        verdict: Final verdict, None if no verdict was reached
        counts: Parsed counts (zeros if parsing failed)
        bypass: What the bypass authority decided
        audit_entry: The entry that was persisted
        audit_path: File the entry went to
        published: Whether artifact metadata was updated
        warnings: Non-fatal problems for the report
        error: The error that ended the evaluation, if any
        exit_code: Process exit code
        cancelled: Whether a cancellation was observed
    """

    evaluation_id: str
    scanner: str = ""
    artifact_ref: str = ""
    state: GateState = GateState.INIT
    states: list[GateState] = field(default_factory=lambda: [GateState.INIT])
    verdict: Verdict | None = None
    counts: VulnerabilityCounts = field(default_factory=VulnerabilityCounts)
    bypass: BypassRecord = field(default_factory=BypassRecord.not_used)
    audit_entry: AuditEntry | None = None
    audit_path: Path | None = None
    published: bool = False
    warnings: list[str] = field(default_factory=list)
    error: GateError | None = None
    exit_code: int = EXIT_INTERNAL
    cancelled: bool = False

    @property
    def passed(self) -> bool:
        """Whether the artifact may proceed."""
        return self.exit_code == EXIT_PASS

    @property
    def status(self) -> AuditStatus:
        """PASS/FAIL/BYPASS, or ERROR when no verdict stands."""
        if self.error is not None or self.verdict is None:
            return AuditStatus.ERROR
        return AuditStatus(self.verdict.kind.value)


def new_evaluation_id() -> str:
    return uuid.uuid4().hex


def error_entry(
    evaluation_id: str,
    scanner: str,
    artifact_ref: str,
    error: GateError,
    counts: VulnerabilityCounts | None = None,
) -> AuditEntry:
    """Audit entry for an evaluation that never reached a verdict."""
    return AuditEntry(
        evaluation_id=evaluation_id,
        scanner_used=scanner,
        artifact_ref=artifact_ref or None,
        counts=counts or VulnerabilityCounts(),
        verdict=AuditStatus.ERROR,
        error=error.message,
    )


def audit_input_error(
    recorder: AuditRecorder,
    request: GateRequest,
    error: GateError,
    evaluation_id: str | None = None,
) -> AuditEntry:
    """
    Record an evaluation that failed before the Gate could run.

    Used when the config itself cannot be loaded, so the run still leaves
    one entry in the audit log.

    Raises:
        AuditWriteError: The entry could not be written
    """
    entry = error_entry(
        evaluation_id or new_evaluation_id(),
        request.scanner,
        request.artifact_ref,
        error,
    )
    recorder.record(entry)
    return entry


class Gate:
    """
    Security policy gate for one build artifact.

    Usage:
        gate = Gate(config, AuditRecorder("logs/audit"), publisher)
        result = gate.run(GateRequest(scanner="trivy", report_paths=["scan.json"]))
        sys.exit(result.exit_code)

    Attributes:
        config: Immutable gate configuration
        recorder: Audit log writer
        publisher: Metadata publisher (None disables publishing)
        registry: Parser registry (defaults to the global one)
        cancel_event: Set from outside to stop between steps
    """

    def __init__(
        self,
        config: GateConfig,
        recorder: AuditRecorder,
        publisher: MetadataPublisher | None = None,
        registry: ParserRegistry | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.config = config
        self.recorder = recorder
        self.publisher = publisher
        self.registry = registry
        self.cancel_event = cancel_event or threading.Event()
        self.policy_engine = PolicyEngine(config.policy)

    def cancel(self) -> None:
        """Request cancellation; honored at the next step boundary."""
        self.cancel_event.set()

    def run(self, request: GateRequest) -> GateResult:
        """
        Evaluate one request end to end.

        Never raises for gate outcomes; inspect result.exit_code.
        """
        result = GateResult(
            evaluation_id=new_evaluation_id(),
            scanner=request.scanner,
            artifact_ref=request.artifact_ref,
        )
        log = get_evaluation_logger(
            __name__,
            result.evaluation_id,
            scanner=request.scanner,
            artifact=request.artifact_ref,
        )

        # =====================================================================
        # Parse, evaluate, bypass
        # =====================================================================
        try:
            self._checkpoint(result)
            report = self._parse(request)
            result.scanner = report.scanner
            result.counts = report.counts
            self._advance(result, GateState.PARSED)
            log.debug("parsed %s: %s", report.source, report.counts.as_dict())

            self._checkpoint(result)
            verdict = self.policy_engine.evaluate(report.counts, scanner=report.scanner)
            self._advance(result, GateState.EVALUATED)

            bypass = BypassRecord.not_used()
            if verdict.kind == VerdictKind.FAIL:
                self._checkpoint(result)
                verdict, bypass = try_bypass(verdict, request.bypass, self.config.policy)
                self._advance(result, GateState.BYPASS_CHECKED)
                if request.bypass is not None and not bypass.used:
                    problems = validate_bypass(request.bypass, self.config.policy)
                    result.warnings.append(f"Bypass not granted: {'; '.join(problems)}")
            elif request.bypass is not None:
                log.info("bypass requested but not needed; verdict is %s", verdict.kind.value)

            result.verdict = verdict
            result.bypass = bypass
            self._checkpoint(result)
        except InputError as e:
            log.error("%s", e.message)
            return self._finish_error(result, request, e, EXIT_USAGE)
        except GateCancelledError as e:
            log.warning("%s", e.message)
            result.cancelled = True
            return self._finish_error(result, request, e, EXIT_INTERNAL)

        # =====================================================================
        # Audit (fail-closed)
        # =====================================================================
        entry = self._verdict_entry(result, request)
        if not self._audit(result, entry, log):
            return result
        self._advance(result, GateState.AUDITED)

        # =====================================================================
        # Publish (non-fatal)
        # =====================================================================
        if request.artifact_ref:
            if self.cancel_event.is_set():
                result.cancelled = True
                result.warnings.append(
                    f"Cancelled after audit; metadata for {request.artifact_ref} was not updated"
                )
            elif self.publisher is None:
                log.debug("no metadata publisher configured")
            else:
                try:
                    self.publisher.publish_verdict(
                        request.artifact_ref,
                        result.verdict,
                        result.counts,
                        scanned_at=result.audit_entry.timestamp,
                    )
                    result.published = True
                except MetadataError as e:
                    log.warning("%s", e.message)
                    result.warnings.append(e.message)
        self._advance(result, GateState.PUBLISHED)

        self._advance(result, GateState.DONE)
        result.exit_code = EXIT_PASS if result.verdict.passed else EXIT_FAIL
        log.info("gate %s (exit %d)", result.verdict.kind.value, result.exit_code)
        return result

    # =========================================================================
    # Steps
    # =========================================================================

    def _parse(self, request: GateRequest):
        if not request.report_paths:
            raise ReportNotFoundError(
                scanner=request.scanner,
                source="",
                message="No scan report given",
            )
        return load_reports(request.scanner, request.report_paths, self.registry)

    def _verdict_entry(self, result: GateResult, request: GateRequest) -> AuditEntry:
        # A refused bypass still records who asked and why; the token never leaves the request.
        reason = result.bypass.reason
        principal = result.bypass.principal
        if not result.bypass.used and request.bypass is not None:
            reason = request.bypass.reason.strip() or None
            principal = request.bypass.principal.strip() or None

        return AuditEntry(
            evaluation_id=result.evaluation_id,
            scanner_used=result.scanner,
            artifact_ref=request.artifact_ref or None,
            counts=result.counts,
            verdict=AuditStatus(result.verdict.kind.value),
            violations=result.verdict.violations,
            bypass_used=result.bypass.used,
            bypass_reason=reason,
            principal=principal,
        )

    def _audit(self, result: GateResult, entry: AuditEntry, log) -> bool:
        """
        Persist the verdict entry, escalating to FAIL if the first write fails.

        Returns:
            False if the evaluation ended in ERROR (result is finalized)
        """
        try:
            result.audit_path = self.recorder.record(entry)
            result.audit_entry = entry
            return True
        except AuditWriteError as first:
            log.error("%s", first.message)
            result.warnings.append(
                f"First audit write failed, verdict escalated to FAIL: {first.underlying_error}"
            )

        result.verdict = Verdict(
            kind=VerdictKind.FAIL,
            violations=result.verdict.violations,
            scanner=result.verdict.scanner,
        )
        # A FAIL carries no granted bypass; the attempted reason and principal stay on the entry
        result.bypass = BypassRecord.not_used()
        escalated = entry.model_copy(update={
            "verdict": AuditStatus.FAIL,
            "bypass_used": False,
            "error": "audit write failed on first attempt; verdict escalated to FAIL",
        })
        try:
            result.audit_path = self.recorder.record(escalated)
            result.audit_entry = escalated
            return True
        except AuditWriteError as second:
            log.error("%s", second.message)
            result.error = second
            result.exit_code = EXIT_INTERNAL
            self._advance(result, GateState.ERROR)
            return False

    def _finish_error(
        self,
        result: GateResult,
        request: GateRequest,
        error: GateError,
        exit_code: int,
    ) -> GateResult:
        """Audit an evaluation that ended without a verdict and finalize it."""
        result.error = error
        result.verdict = None
        result.exit_code = exit_code
        self._advance(result, GateState.ERROR)

        entry = error_entry(
            result.evaluation_id,
            result.scanner,
            request.artifact_ref,
            error,
            result.counts,
        )
        for attempt in (1, 2):
            try:
                result.audit_path = self.recorder.record(entry)
                result.audit_entry = entry
                return result
            except AuditWriteError as e:
                logger.error("audit of failed evaluation (attempt %d): %s", attempt, e.message)
                last = e

        result.warnings.append(f"Evaluation error could not be audited: {last.underlying_error}")
        result.exit_code = EXIT_INTERNAL
        return result

    def _checkpoint(self, result: GateResult) -> None:
        if self.cancel_event.is_set():
            raise GateCancelledError(state=result.state.value)

    def _advance(self, result: GateResult, state: GateState) -> None:
        result.state = state
        result.states.append(state)
