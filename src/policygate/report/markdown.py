"""
Markdown report file for policy-gate.

Writes `policy-gate-report-YYYYMMDD-HHMMSS.md` into a report directory so
CI systems can archive the decision next to other build artifacts or link
it from a job summary.
"""

from datetime import UTC, datetime
from pathlib import Path

from policygate.engine import GateResult
from policygate.schema import SEVERITY_ORDER, AuditStatus, PolicyConfig

REPORT_PREFIX = "policy-gate-report-"


def report_filename(when: datetime) -> str:
    return f"{REPORT_PREFIX}{when.strftime('%Y%m%d-%H%M%S')}.md"


def render_markdown_report(
    result: GateResult,
    policy: PolicyConfig,
    generated_at: datetime | None = None,
) -> str:
    """Markdown text of the report."""
    generated_at = generated_at or datetime.now(UTC)
    status = result.status
    violated = {v.severity for v in result.verdict.violations} if result.verdict else set()

    lines = [
        "# Security Policy Gate Report",
        "",
        f"**Generated:** {generated_at.strftime('%Y-%m-%d %H:%M:%S %Z')}  ",
        f"**Scanner:** {result.scanner or '-'}  ",
    ]
    if result.artifact_ref:
        lines.append(f"**Artifact:** {result.artifact_ref}  ")
    lines += [
        f"**Evaluation:** {result.evaluation_id}  ",
        f"**Gate Status:** **{status.value}**",
        "",
        "## Vulnerability Summary",
        "",
        "| Severity | Count | Threshold | Fail On | Status |",
        "|----------|-------|-----------|---------|--------|",
    ]
    for severity in SEVERITY_ORDER:
        rule = policy.rule_for(severity)
        mark = "❌ FAIL" if severity in violated else "✅ PASS"
        lines.append(
            f"| {severity.value.capitalize()} | {result.counts.get(severity)} "
            f"| {rule.max_allowed} | {'yes' if rule.fail_on else 'no'} | {mark} |"
        )

    lines += [
        "",
        "## Policy Configuration",
        "",
    ]
    for severity in SEVERITY_ORDER:
        lines.append(f"- **Fail on {severity.value.capitalize()}:** {str(policy.rule_for(severity).fail_on).lower()}")
    lines.append(f"- **Bypass enabled:** {str(policy.bypass_enabled).lower()}")

    lines += ["", "## Gate Decision", ""]
    if status == AuditStatus.PASS:
        lines += [
            "✅ **SECURITY GATE PASSED**",
            "",
            "The artifact meets all security policy requirements and is approved for deployment.",
        ]
    elif status == AuditStatus.BYPASS:
        lines += [
            "⚠️ **SECURITY GATE BYPASSED**",
            "",
            f"Deployment allowed with override by `{result.bypass.principal}`: {result.bypass.reason}",
            "",
            "The following violations were waived:",
            "",
        ]
        lines += [f"- {v.message}" for v in result.verdict.violations]
    elif status == AuditStatus.FAIL:
        lines += [
            "❌ **SECURITY GATE FAILED**",
            "",
            "The following policy violations were detected:",
            "",
        ]
        lines += [f"- {v.message}" for v in result.verdict.violations]
        lines += ["", "**Action Required:** Address the security vulnerabilities before deployment."]
    else:
        lines += [
            "❌ **SECURITY GATE ERROR**",
            "",
            f"{result.error.message if result.error else 'No verdict was reached.'}",
        ]

    if result.warnings:
        lines += ["", "## Warnings", ""]
        lines += [f"- {w}" for w in result.warnings]

    lines += ["", "## Audit Trail", ""]
    if result.audit_path is not None:
        lines.append(f"This gate decision has been logged to: `{result.audit_path}`")
    else:
        lines.append("This gate decision could not be written to the audit log.")

    return "\n".join(lines) + "\n"


def write_markdown_report(
    result: GateResult,
    policy: PolicyConfig,
    report_dir: str | Path,
    generated_at: datetime | None = None,
) -> Path:
    """
    Write the Markdown report into report_dir.

    Returns:
        Path of the written file

    Raises:
        OSError: The directory or file could not be written
    """
    generated_at = generated_at or datetime.now(UTC)
    report_dir = Path(report_dir)
    report_dir.mkdir(parents=True, exist_ok=True)
    path = report_dir / report_filename(generated_at)
    path.write_text(render_markdown_report(result, policy, generated_at), encoding="utf-8")
    return path
