"""
Reporting module for policy-gate.

Output formats:
    - Console: Rich table of counts vs. thresholds, verdict, bypass justification
    - JSON: The audit record plus exit code, warnings and policy snapshot
    - Markdown: Archivable report file (policy-gate-report-YYYYMMDD-HHMMSS.md)
    - GitHub Actions: gate_status / gate_report outputs and a job summary
    - Jenkins: gate.properties with GATE_STATUS / GATE_REPORT

Example:
    from policygate.report import render_console_report, generate_json_report

    render_console_report(result, config.policy)
    print(generate_json_report(result, config.policy))
"""

from policygate.report.console import render_console_report, render_security_section
from policygate.report.github import write_github_outputs
from policygate.report.jenkins import write_jenkins_properties
from policygate.report.json import build_report_dict, generate_json_report
from policygate.report.markdown import render_markdown_report, write_markdown_report

__all__ = [
    "build_report_dict",
    "generate_json_report",
    "render_console_report",
    "render_markdown_report",
    "render_security_section",
    "write_github_outputs",
    "write_jenkins_properties",
    "write_markdown_report",
]
