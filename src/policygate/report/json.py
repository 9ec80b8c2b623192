"""
JSON report generator for policy-gate.

The machine-readable report mirrors the audit entry (same camelCase keys)
and adds what only the caller needs: the exit code, warnings, the policy
the verdict was computed against, and the orchestrator's state trace.
"""

import json
from typing import Any

from policygate.engine import GateResult
from policygate.schema import PolicyConfig

REPORT_VERSION = "1.0"


def generate_json_report(
    result: GateResult,
    policy: PolicyConfig,
    indent: int = 2,
) -> str:
    """
    Generate a JSON report for a gate result.

    Args:
        result: Outcome of Gate.run()
        policy: Policy the result was evaluated against
        indent: JSON indentation level (default: 2)

    Returns:
        JSON string
    """
    return json.dumps(build_report_dict(result, policy), indent=indent)


def build_report_dict(result: GateResult, policy: PolicyConfig) -> dict[str, Any]:
    """
    Build the report dictionary for a gate result.

    When an audit entry was written, its record is the body of the report,
    so the JSON on stdout and the line in the audit log agree field for field.
    """
    if result.audit_entry is not None:
        report = result.audit_entry.to_record()
    else:
        report = {
            "evaluationId": result.evaluation_id,
            "scannerUsed": result.scanner,
            "artifactRef": result.artifact_ref or None,
            "counts": result.counts.as_dict(),
            "verdict": result.status.value,
            "violations": [v.to_record() for v in result.verdict.violations] if result.verdict else [],
            "bypassUsed": result.bypass.used,
            "bypassReason": result.bypass.reason,
            "principal": result.bypass.principal,
            "error": result.error.message if result.error else None,
        }

    report.update({
        "reportVersion": REPORT_VERSION,
        "exitCode": result.exit_code,
        "warnings": list(result.warnings),
        "policy": policy.snapshot(),
        "states": [s.value for s in result.states],
        "auditLog": str(result.audit_path) if result.audit_path else None,
        "published": result.published,
    })
    if result.error is not None:
        report["errorDetail"] = result.error.to_dict()
    return report
