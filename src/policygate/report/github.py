"""GitHub Actions step outputs and job summary."""

import os
from pathlib import Path
from typing import Mapping

from policygate.engine import GateResult
from policygate.schema import AuditStatus

_SUMMARY_LINE = {
    AuditStatus.PASS: "✅ Security gate passed - deployment approved",
    AuditStatus.FAIL: "❌ Security gate failed - deployment blocked",
    AuditStatus.BYPASS: "⚠️ Security gate bypassed - deployment allowed with override",
    AuditStatus.ERROR: "❌ Security gate error - deployment blocked",
}


def write_github_outputs(
    result: GateResult,
    report_file: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> list[Path]:
    """
    Append gate outputs for GitHub Actions when running under it.

    Writes `gate_status` and `gate_report` to $GITHUB_OUTPUT and a short
    summary to $GITHUB_STEP_SUMMARY. Unset variables are skipped.

    Returns:
        Files that were appended to
    """
    env = os.environ if env is None else env
    status = result.status
    written = []

    output_file = env.get("GITHUB_OUTPUT")
    if output_file:
        with open(output_file, "a", encoding="utf-8") as f:
            f.write(f"gate_status={status.value}\n")
            f.write(f"gate_report={report_file or ''}\n")
        written.append(Path(output_file))

    summary_file = env.get("GITHUB_STEP_SUMMARY")
    if summary_file:
        lines = [
            "## Security Policy Gate Results",
            "",
            f"**Status:** {status.value}",
        ]
        if report_file:
            lines.append(f"**Report:** [View Report]({report_file})")
        lines += ["", _SUMMARY_LINE[status], ""]
        with open(summary_file, "a", encoding="utf-8") as f:
            f.write("\n".join(lines) + "\n")
        written.append(Path(summary_file))

    return written
