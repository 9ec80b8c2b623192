"""
Console report generator for policy-gate.

Renders a gate result for humans using Rich: a header panel with the
verdict, a table of counts against thresholds, the violations, any bypass
justification, and warnings collected along the way.

Design Principles:
    - Status at a glance: verdict first, colored by outcome
    - Same table whatever the outcome, so runs are easy to compare
    - Warnings are never hidden, even on PASS
"""

from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from policygate.engine import GateResult
from policygate.schema import SEVERITY_ORDER, AuditStatus, PolicyConfig


# Status icons
ICON_PASS = "[green]✓[/green]"
ICON_FAIL = "[red]✗[/red]"
ICON_BYPASS = "[yellow]⚠[/yellow]"
ICON_INFO = "[dim]·[/dim]"

_STATUS_STYLE = {
    AuditStatus.PASS: ("green", ICON_PASS, "Artifact approved for deployment"),
    AuditStatus.FAIL: ("red", ICON_FAIL, "Policy violations detected; deployment blocked"),
    AuditStatus.BYPASS: ("yellow", ICON_BYPASS, "Deployment allowed with override"),
    AuditStatus.ERROR: ("red", ICON_FAIL, "The gate could not reach a verdict"),
}


def render_console_report(
    result: GateResult,
    policy: PolicyConfig,
    console: Console | None = None,
) -> None:
    """
    Print the report for one gate result.

    Args:
        result: Outcome of Gate.run()
        policy: Policy the result was evaluated against
        console: Rich Console instance (creates one if not provided)
    """
    if console is None:
        console = Console()

    _print_header(console, result)
    console.print()

    if result.error is not None:
        console.print(f"[red]{escape(result.error.message)}[/red]")
        if result.error.suggestion:
            console.print(f"[dim]Suggestion:[/dim] {escape(result.error.suggestion)}")
        console.print()
    else:
        _print_counts(console, result, policy)
        console.print()
        _print_violations(console, result)
        _print_bypass(console, result)

    _print_footer(console, result)


def _print_header(console: Console, result: GateResult) -> None:
    """Print the verdict panel."""
    status = result.status
    style, icon, blurb = _STATUS_STYLE[status]

    header = Text()
    header.append(" Security Policy Gate ", style="bold")
    header.append("│ ", style="dim")
    header.append(status.value, style=f"bold {style}")
    header.append(" ")
    header.append_text(Text.from_markup(icon))
    if result.scanner:
        header.append(" │ ", style="dim")
        header.append(result.scanner, style="cyan")

    console.print(Panel(header, expand=False))
    console.print(f"  {blurb}")
    if result.artifact_ref:
        console.print(f"  [dim]Artifact:[/dim]   {result.artifact_ref}")
    console.print(f"  [dim]Evaluation:[/dim] {result.evaluation_id}")


def _print_counts(console: Console, result: GateResult, policy: PolicyConfig) -> None:
    """Print counts against thresholds."""
    table = Table(show_header=True, header_style="bold")
    table.add_column("Severity", style="cyan")
    table.add_column("Count", justify="right")
    table.add_column("Fail on", justify="center")
    table.add_column("Max allowed", justify="right")
    table.add_column("Status", justify="center")

    violated = {v.severity for v in result.verdict.violations} if result.verdict else set()

    for severity in SEVERITY_ORDER:
        rule = policy.rule_for(severity)
        count = result.counts.get(severity)
        if severity in violated:
            status = ICON_FAIL
        elif count > rule.max_allowed:
            # Over threshold but informational only
            status = ICON_INFO
        else:
            status = ICON_PASS
        table.add_row(
            severity.value.capitalize(),
            str(count),
            "yes" if rule.fail_on else "no",
            str(rule.max_allowed),
            status,
        )

    console.print(table)


def _print_violations(console: Console, result: GateResult) -> None:
    """Print violation messages, if any."""
    if result.verdict is None or not result.verdict.violations:
        return
    console.print("[bold]Violations[/bold]")
    for violation in result.verdict.violations:
        console.print(f"  [red]-[/red] {escape(violation.message)}")
    console.print()


def _print_bypass(console: Console, result: GateResult) -> None:
    """Print the bypass justification when a bypass was granted."""
    if not result.bypass.used:
        return
    console.print("[bold yellow]Bypass granted[/bold yellow]")
    console.print(f"  [dim]Principal:[/dim] {result.bypass.principal}")
    console.print(f"  [dim]Reason:[/dim]    {escape(result.bypass.reason or '')}")
    console.print()


def _print_footer(console: Console, result: GateResult) -> None:
    """Print warnings and where the audit entry went."""
    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/yellow] {escape(warning)}")
    if result.warnings:
        console.print()

    if result.audit_path is not None:
        console.print(f"[dim]Audit log:[/dim] {result.audit_path}")
    else:
        console.print("[red]No audit entry was written[/red]")
    if result.published:
        console.print(f"[dim]Metadata:[/dim]  security section updated for {result.artifact_ref}")


def render_security_section(
    artifact_ref: str,
    section: dict[str, Any] | None,
    console: Console | None = None,
) -> None:
    """Print the stored security section of an artifact (`gate status`)."""
    if console is None:
        console = Console()

    if section is None:
        console.print(f"[yellow]No security metadata for {artifact_ref}[/yellow]")
        return

    status = section.get("gateStatus", "UNKNOWN")
    style = {"PASS": "green", "FAIL": "red", "BYPASS": "yellow"}.get(status, "dim")

    header = Text()
    header.append(f" {artifact_ref} ", style="bold")
    header.append("│ ", style="dim")
    header.append(status, style=f"bold {style}")
    console.print(Panel(header, expand=False))
    console.print(f"  [dim]Scanned:[/dim] {section.get('timestamp', '-')}")

    counts = section.get("counts") or {}
    table = Table(show_header=True, header_style="bold")
    table.add_column("Severity", style="cyan")
    table.add_column("Count", justify="right")
    for severity in SEVERITY_ORDER:
        table.add_row(severity.value.capitalize(), str(counts.get(severity.value, 0)))
    console.print(table)
