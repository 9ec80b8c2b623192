"""
Integration tests for the Gate orchestrator.

Tests cover:
- End-to-end PASS / FAIL / BYPASS evaluations with real files
- Input errors audited as ERROR and mapped to exit 64
- Fail-closed audit: escalation to FAIL, then fatal exit 2
- Non-fatal metadata publishing
- Cancellation before and after the audit step
- Audit completeness (exactly one entry per evaluation)
"""

import json
from pathlib import Path
from typing import Callable
from unittest.mock import MagicMock

import pytest
from rich.console import Console

from policygate.audit import AuditRecorder
from policygate.engine import (
    EXIT_FAIL,
    EXIT_INTERNAL,
    EXIT_PASS,
    EXIT_USAGE,
    Gate,
    GateRequest,
    GateState,
    audit_input_error,
)
from policygate.errors import (
    AuditWriteError,
    ConfigError,
    MalformedReportError,
    MetadataWriteError,
    UnsupportedScannerError,
)
from policygate.metadata import FileMetadataStore, MetadataPublisher, MetadataStore
from policygate.report import render_console_report
from policygate.schema import (
    AuditStatus,
    BypassRequest,
    GateConfig,
    PolicyConfig,
    VerdictKind,
    VulnerabilityCounts,
)


# =============================================================================
# Test Fixtures
# =============================================================================


def audit_records(audit_dir: Path) -> list[dict]:
    """Every record in every daily log under audit_dir."""
    records = []
    for path in sorted(audit_dir.glob("policy-gate-*.log")):
        records += [json.loads(line) for line in path.read_text().splitlines() if line.strip()]
    return records


@pytest.fixture
def audit_dir(temp_dir: Path) -> Path:
    return temp_dir / "audit"


@pytest.fixture
def metadata_dir(temp_dir: Path) -> Path:
    return temp_dir / "metadata"


@pytest.fixture
def make_gate(audit_dir: Path, metadata_dir: Path) -> Callable[..., Gate]:
    def _make(policy: PolicyConfig, **kwargs) -> Gate:
        config = GateConfig(policy=policy)
        recorder = kwargs.pop("recorder", None) or AuditRecorder(audit_dir)
        publisher = kwargs.pop("publisher", None) or MetadataPublisher(FileMetadataStore(metadata_dir), policy)
        return Gate(config, recorder, publisher, **kwargs)

    return _make


@pytest.fixture
def scan_report(write_report: Callable[..., Path], trivy_doc: Callable[..., dict]) -> Path:
    """Trivy report with {critical:0, high:2, medium:5, low:10}."""
    return write_report(trivy_doc(critical=0, high=2, medium=5, low=10), name="trivy.json")


# =============================================================================
# Verdicts
# =============================================================================


class TestVerdicts:
    """End-to-end verdicts."""

    def test_pass(self, make_gate, scenario_policy: PolicyConfig, scan_report: Path, audit_dir: Path) -> None:
        result = make_gate(scenario_policy).run(GateRequest(scanner="trivy", report_paths=[scan_report]))

        assert result.exit_code == EXIT_PASS
        assert result.passed
        assert result.verdict.kind == VerdictKind.PASS
        assert result.counts == VulnerabilityCounts(critical=0, high=2, medium=5, low=10)
        assert result.states == [
            GateState.INIT,
            GateState.PARSED,
            GateState.EVALUATED,
            GateState.AUDITED,
            GateState.PUBLISHED,
            GateState.DONE,
        ]
        records = audit_records(audit_dir)
        assert len(records) == 1
        assert records[0]["verdict"] == "PASS"
        assert records[0]["evaluationId"] == result.evaluation_id
        assert records[0]["scannerUsed"] == "trivy"

    def test_fail(self, make_gate, strict_high_policy: PolicyConfig, scan_report: Path, audit_dir: Path) -> None:
        result = make_gate(strict_high_policy).run(GateRequest(scanner="trivy", report_paths=[scan_report]))

        assert result.exit_code == EXIT_FAIL
        assert result.verdict.kind == VerdictKind.FAIL
        assert GateState.BYPASS_CHECKED in result.states
        [record] = audit_records(audit_dir)
        assert record["verdict"] == "FAIL"
        assert record["violations"] == [
            {"severity": "high", "observedCount": 2, "allowedMax": 1, "message": "HIGH: 2 found (max allowed: 1)"}
        ]

    def test_bypass(self, make_gate, strict_high_policy: PolicyConfig, scan_report: Path, audit_dir: Path) -> None:
        request = GateRequest(
            scanner="trivy",
            report_paths=[scan_report],
            bypass=BypassRequest(token="t1", reason="hotfix", principal="security-team"),
        )
        result = make_gate(strict_high_policy).run(request)

        assert result.exit_code == EXIT_PASS
        assert result.verdict.kind == VerdictKind.BYPASS
        assert len(result.verdict.violations) == 1
        assert result.verdict.violations[0].observed_count == 2

        [record] = audit_records(audit_dir)
        assert record["verdict"] == "BYPASS"
        assert record["bypassUsed"] is True
        assert record["bypassReason"] == "hotfix"
        assert record["principal"] == "security-team"
        assert record["violations"][0]["severity"] == "high"
        assert '"t1"' not in next(audit_dir.glob("*.log")).read_text()

    def test_refused_bypass_is_recorded(
        self, make_gate, strict_high_policy: PolicyConfig, scan_report: Path, audit_dir: Path
    ) -> None:
        request = GateRequest(
            scanner="trivy",
            report_paths=[scan_report],
            bypass=BypassRequest(token="t1", reason="please", principal="mallory"),
        )
        result = make_gate(strict_high_policy).run(request)

        assert result.exit_code == EXIT_FAIL
        assert any("not authorized" in w for w in result.warnings)
        [record] = audit_records(audit_dir)
        assert record["bypassUsed"] is False
        assert record["principal"] == "mallory"

    def test_grype_reports_are_summed(
        self, make_gate, strict_high_policy: PolicyConfig, write_report, grype_doc, audit_dir: Path
    ) -> None:
        first = write_report(grype_doc(high=1), name="image.json")
        second = write_report(grype_doc(high=1, low=3), name="fs.json")
        result = make_gate(strict_high_policy).run(GateRequest(scanner="grype", report_paths=[first, second]))

        assert result.counts == VulnerabilityCounts(high=2, low=3)
        assert result.exit_code == EXIT_FAIL
        assert len(audit_records(audit_dir)) == 1


# =============================================================================
# Input errors
# =============================================================================


class TestInputErrors:
    """Parse failures are audited and exit 64."""

    def test_malformed_report(
        self, make_gate, scenario_policy: PolicyConfig, write_report, audit_dir: Path
    ) -> None:
        path = write_report("{not json", name="broken.json")
        result = make_gate(scenario_policy).run(GateRequest(scanner="trivy", report_paths=[path], artifact_ref="app"))

        assert result.exit_code == EXIT_USAGE
        assert isinstance(result.error, MalformedReportError)
        assert result.state == GateState.ERROR
        assert result.verdict is None
        [record] = audit_records(audit_dir)
        assert record["verdict"] == "ERROR"
        assert record["scannerUsed"] == "trivy"
        assert "broken.json" in record["error"]

    def test_malformed_report_not_published(
        self, make_gate, scenario_policy: PolicyConfig, write_report, metadata_dir: Path
    ) -> None:
        path = write_report("[]", name="broken.json")
        make_gate(scenario_policy).run(GateRequest(scanner="trivy", report_paths=[path], artifact_ref="app"))
        assert not (metadata_dir / "app.metadata.json").exists()

    def test_unsupported_scanner(
        self, make_gate, scenario_policy: PolicyConfig, scan_report: Path, audit_dir: Path
    ) -> None:
        result = make_gate(scenario_policy).run(GateRequest(scanner="snyk", report_paths=[scan_report]))
        assert result.exit_code == EXIT_USAGE
        assert isinstance(result.error, UnsupportedScannerError)
        [record] = audit_records(audit_dir)
        assert record["verdict"] == "ERROR"
        assert record["scannerUsed"] == "snyk"

    def test_missing_report(self, make_gate, scenario_policy: PolicyConfig, temp_dir: Path, audit_dir: Path) -> None:
        result = make_gate(scenario_policy).run(GateRequest(scanner="trivy", report_paths=[temp_dir / "nope.json"]))
        assert result.exit_code == EXIT_USAGE
        assert len(audit_records(audit_dir)) == 1

    def test_no_report_paths(self, make_gate, scenario_policy: PolicyConfig, audit_dir: Path) -> None:
        result = make_gate(scenario_policy).run(GateRequest(scanner="trivy"))
        assert result.exit_code == EXIT_USAGE
        assert audit_records(audit_dir)[0]["error"] == "No scan report given"

    def test_error_audit_failure_is_fatal(self, make_gate, scenario_policy: PolicyConfig, write_report) -> None:
        recorder = MagicMock(spec=AuditRecorder)
        recorder.record.side_effect = AuditWriteError(log_path="x.log", underlying_error="read-only")
        path = write_report("{", name="broken.json")

        result = make_gate(scenario_policy, recorder=recorder).run(GateRequest(scanner="trivy", report_paths=[path]))

        assert result.exit_code == EXIT_INTERNAL
        assert isinstance(result.error, MalformedReportError)
        assert recorder.record.call_count == 2


# =============================================================================
# Fail-closed audit
# =============================================================================


class TestAuditFailure:
    """Audit write failures."""

    def test_first_failure_escalates_to_fail(
        self, make_gate, scenario_policy: PolicyConfig, scan_report: Path, audit_dir: Path
    ) -> None:
        real = AuditRecorder(audit_dir)
        recorder = MagicMock(spec=AuditRecorder)
        recorder.record.side_effect = _first_call_fails(real)

        result = make_gate(scenario_policy, recorder=recorder).run(
            GateRequest(scanner="trivy", report_paths=[scan_report])
        )

        assert result.exit_code == EXIT_FAIL
        assert result.verdict.kind == VerdictKind.FAIL
        assert result.audit_entry.verdict == AuditStatus.FAIL
        assert any("escalated to FAIL" in w for w in result.warnings)
        [record] = audit_records(audit_dir)
        assert record["verdict"] == "FAIL"
        assert "escalated" in record["error"]

    def test_escalation_revokes_bypass(
        self, make_gate, strict_high_policy: PolicyConfig, scan_report: Path, audit_dir: Path
    ) -> None:
        recorder = MagicMock(spec=AuditRecorder)
        recorder.record.side_effect = _first_call_fails(AuditRecorder(audit_dir))
        request = GateRequest(
            scanner="trivy",
            report_paths=[scan_report],
            bypass=BypassRequest(token="t1", reason="hotfix", principal="security-team"),
        )

        result = make_gate(strict_high_policy, recorder=recorder).run(request)

        assert result.exit_code == EXIT_FAIL
        assert result.verdict.kind == VerdictKind.FAIL
        assert not result.bypass.used
        [record] = audit_records(audit_dir)
        assert record["verdict"] == "FAIL"
        assert record["bypassUsed"] is False
        assert record["bypassReason"] == "hotfix"
        assert record["principal"] == "security-team"

        console = Console(record=True, width=120)
        render_console_report(result, strict_high_policy, console)
        assert "Bypass granted" not in console.export_text()

    def test_repeated_failure_exits_internal(
        self, make_gate, scenario_policy: PolicyConfig, scan_report: Path, metadata_dir: Path
    ) -> None:
        recorder = MagicMock(spec=AuditRecorder)
        recorder.record.side_effect = AuditWriteError(log_path="x.log", underlying_error="disk full")

        result = make_gate(scenario_policy, recorder=recorder).run(
            GateRequest(scanner="trivy", report_paths=[scan_report], artifact_ref="app")
        )

        assert result.exit_code == EXIT_INTERNAL
        assert result.state == GateState.ERROR
        assert isinstance(result.error, AuditWriteError)
        assert recorder.record.call_count == 2
        assert not (metadata_dir / "app.metadata.json").exists()


def _first_call_fails(real: AuditRecorder):
    calls = []

    def record(entry):
        calls.append(entry)
        if len(calls) == 1:
            raise AuditWriteError(log_path="x.log", underlying_error="EIO")
        return real.record(entry)

    return record


# =============================================================================
# Publishing
# =============================================================================


class TestPublishing:
    """Metadata publication after audit."""

    def test_publishes_security_section(
        self, make_gate, strict_high_policy: PolicyConfig, scan_report: Path, metadata_dir: Path
    ) -> None:
        (metadata_dir / "app").mkdir(parents=True)
        (metadata_dir / "app" / "app.tar.gz.metadata.json").write_text(json.dumps({"build": {"id": 9}}))

        result = make_gate(strict_high_policy).run(
            GateRequest(scanner="trivy", report_paths=[scan_report], artifact_ref="app/app.tar.gz")
        )

        assert result.published
        stored = json.loads((metadata_dir / "app" / "app.tar.gz.metadata.json").read_text())
        assert stored["build"] == {"id": 9}
        assert stored["security"]["gateStatus"] == "FAIL"
        assert stored["security"]["timestamp"] == result.audit_entry.to_record()["timestamp"]

    def test_no_artifact_skips_publishing(self, make_gate, scenario_policy: PolicyConfig, scan_report: Path) -> None:
        publisher = MagicMock(spec=MetadataPublisher)
        result = make_gate(scenario_policy, publisher=publisher).run(
            GateRequest(scanner="trivy", report_paths=[scan_report])
        )
        publisher.publish_verdict.assert_not_called()
        assert not result.published
        assert result.state == GateState.DONE

    def test_publish_failure_is_warning(
        self, make_gate, strict_high_policy: PolicyConfig, scan_report: Path, audit_dir: Path
    ) -> None:
        store = MagicMock(spec=MetadataStore)
        store.fetch.return_value = None
        store.put.side_effect = MetadataWriteError(artifact_ref="app", underlying_error="HTTP 503")
        publisher = MetadataPublisher(store, strict_high_policy)

        result = make_gate(strict_high_policy, publisher=publisher).run(
            GateRequest(scanner="trivy", report_paths=[scan_report], artifact_ref="app")
        )

        assert result.exit_code == EXIT_FAIL
        assert not result.published
        assert any("HTTP 503" in w for w in result.warnings)
        assert len(audit_records(audit_dir)) == 1


# =============================================================================
# Cancellation
# =============================================================================


class TestCancellation:
    """Cooperative cancellation between steps."""

    def test_cancel_before_start(self, make_gate, scenario_policy: PolicyConfig, scan_report: Path, audit_dir: Path) -> None:
        gate = make_gate(scenario_policy)
        gate.cancel()
        result = gate.run(GateRequest(scanner="trivy", report_paths=[scan_report]))

        assert result.cancelled
        assert result.exit_code == EXIT_INTERNAL
        [record] = audit_records(audit_dir)
        assert record["verdict"] == "ERROR"
        assert "cancelled" in record["error"]

    def test_cancel_after_audit_skips_publish(
        self, make_gate, scenario_policy: PolicyConfig, scan_report: Path, audit_dir: Path, metadata_dir: Path
    ) -> None:
        real = AuditRecorder(audit_dir)
        recorder = MagicMock(spec=AuditRecorder)
        gate = make_gate(scenario_policy, recorder=recorder)

        def record_then_cancel(entry):
            path = real.record(entry)
            gate.cancel()
            return path

        recorder.record.side_effect = record_then_cancel
        result = gate.run(GateRequest(scanner="trivy", report_paths=[scan_report], artifact_ref="app"))

        assert result.cancelled
        assert result.exit_code == EXIT_PASS
        assert not result.published
        assert not (metadata_dir / "app.metadata.json").exists()
        assert any("not updated" in w for w in result.warnings)
        assert len(audit_records(audit_dir)) == 1


# =============================================================================
# Audit completeness
# =============================================================================


class TestAuditCompleteness:
    """Every evaluation leaves exactly one entry."""

    def test_one_entry_per_run(
        self, make_gate, strict_high_policy: PolicyConfig, write_report, trivy_doc, audit_dir: Path
    ) -> None:
        good = write_report(trivy_doc(high=1), name="good.json")
        bad = write_report(trivy_doc(high=3), name="bad.json")
        broken = write_report("nope", name="broken.json")
        gate = make_gate(strict_high_policy)

        requests = [
            GateRequest(scanner="trivy", report_paths=[good]),
            GateRequest(scanner="trivy", report_paths=[bad]),
            GateRequest(scanner="trivy", report_paths=[broken]),
            GateRequest(scanner="grype", report_paths=[good]),
            GateRequest(
                scanner="trivy",
                report_paths=[bad],
                bypass=BypassRequest(token="t", reason="r", principal="security-team"),
            ),
        ]
        for i, request in enumerate(requests, start=1):
            gate.run(request)
            assert len(audit_records(audit_dir)) == i

        verdicts = [r["verdict"] for r in audit_records(audit_dir)]
        assert verdicts == ["PASS", "FAIL", "ERROR", "ERROR", "BYPASS"]

    def test_audit_input_error(self, audit_dir: Path) -> None:
        recorder = AuditRecorder(audit_dir)
        error = ConfigError(config_path="gate.yaml", detail="bad")
        entry = audit_input_error(recorder, GateRequest(scanner="trivy", artifact_ref="app"), error)

        assert entry.verdict == AuditStatus.ERROR
        [record] = audit_records(audit_dir)
        assert record["artifactRef"] == "app"
        assert "gate.yaml" in record["error"]
