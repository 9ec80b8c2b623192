"""
CLI entry point for policy-gate.

This module provides the Typer-based command-line interface for the gate.

Commands:
    evaluate    Evaluate scan report(s) against the security policy
    status      Show the security section stored for an artifact
    audit       List the audit entries recorded on one day

Exit codes:
    0   PASS or BYPASS
    1   FAIL (blocked by policy)
    2   The gate itself failed (audit write, config, internal error)
    64  Usage error (bad flags, unsupported scanner, unreadable report)

Architecture Note:
    The CLI is intentionally thin - it resolves configuration, wires the
    recorder and publisher together, and delegates to policygate.engine.Gate.
"""

import json
import signal
import threading
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Annotated, Iterator, Optional

import click
import typer
from rich.console import Console
from rich.table import Table

from policygate import __version__
from policygate.audit import AuditRecorder
from policygate.engine import (
    EXIT_FAIL,
    EXIT_INTERNAL,
    EXIT_PASS,
    EXIT_USAGE,
    Gate,
    GateRequest,
    audit_input_error,
)
from policygate.errors import AuditWriteError, ConfigError, MetadataError
from policygate.log import configure_logging, get_logger
from policygate.metadata import MetadataPublisher, build_store, read_security_section
from policygate.report import (
    generate_json_report,
    render_console_report,
    render_security_section,
    write_github_outputs,
    write_jenkins_properties,
    write_markdown_report,
)
from policygate.schema import BypassRequest, GateConfig, resolve_config

logger = get_logger(__name__)

# Initialize Typer app with metadata
app = typer.Typer(
    name="gate",
    help="Security policy gate for vulnerability scan results.",
    add_completion=False,
    no_args_is_help=True,
)

# Rich consoles: reports on stdout, problems on stderr
console = Console()
err_console = Console(stderr=True)


def _click_base(name: str) -> type[Exception]:
    return next(c for c in typer.BadParameter.__mro__ if c.__name__ == name)


# Newer typer releases raise their own copies of the click exceptions
USAGE_ERRORS = (click.UsageError, _click_base("UsageError"))
CLICK_ERRORS = (click.ClickException, _click_base("ClickException"))
ABORT_ERRORS = (click.exceptions.Abort, typer.Abort)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]policy-gate[/bold] version {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log debug detail to stderr."),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option("--quiet", "-q", help="Only log warnings and errors."),
    ] = False,
) -> None:
    """
    policy-gate - Block artifacts whose scan results exceed the security policy.

    Every evaluation is written to an append-only audit log, and the verdict
    can be published into the artifact's metadata.
    """
    if verbose:
        level = "DEBUG"
    elif quiet:
        level = "WARNING"
    else:
        level = "INFO"
    configure_logging(level=level, structured=verbose)


# =============================================================================
# evaluate
# =============================================================================


@app.command()
def evaluate(
    scanner: Annotated[
        str,
        typer.Option("--scanner", "-s", help="Scanner that produced the report (trivy, grype)."),
    ],
    reports: Annotated[
        list[Path],
        typer.Option("--report", "-r", help="Scan report JSON file. Repeat to sum several reports."),
    ],
    artifact: Annotated[
        str,
        typer.Option("--artifact", "-a", help="Artifact reference to publish the verdict for."),
    ] = "",
    bypass_token: Annotated[
        Optional[str],
        typer.Option("--bypass-token", help="Emergency bypass token."),
    ] = None,
    bypass_reason: Annotated[
        Optional[str],
        typer.Option("--bypass-reason", help="Justification for the bypass."),
    ] = None,
    principal: Annotated[
        Optional[str],
        typer.Option("--principal", help="Who is requesting the bypass."),
    ] = None,
    config_path: Annotated[
        Optional[Path],
        typer.Option(
            "--config",
            "-c",
            help="Gate config YAML. Defaults to ./policy-gate.yaml if present.",
            envvar="POLICY_GATE_CONFIG",
        ),
    ] = None,
    audit_dir: Annotated[
        Optional[Path],
        typer.Option(
            "--audit-dir",
            help="Directory for the daily audit logs (overrides audit.logDir).",
            envvar="POLICY_GATE_AUDIT_DIR",
        ),
    ] = None,
    metadata_root: Annotated[
        Optional[Path],
        typer.Option("--metadata-root", help="Root directory for the file metadata store."),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output the result as JSON."),
    ] = False,
    report_dir: Annotated[
        Optional[Path],
        typer.Option("--report-dir", help="Also write a Markdown report into this directory."),
    ] = None,
    ci_outputs: Annotated[
        bool,
        typer.Option(
            "--ci-outputs/--no-ci-outputs",
            help="Write GitHub Actions outputs (GITHUB_OUTPUT) and Jenkins gate.properties (JENKINS_URL).",
        ),
    ] = True,
) -> None:
    """
    Evaluate scan report(s) against the security policy.

    Example:
        $ gate evaluate --scanner trivy --report trivy.json --artifact app/1.2.0/app.tar.gz
    """
    bypass = None
    if any(v is not None for v in (bypass_token, bypass_reason, principal)):
        bypass = BypassRequest(
            token=bypass_token or "",
            reason=bypass_reason or "",
            principal=principal or "",
        )
    request = GateRequest(
        scanner=scanner,
        report_paths=list(reports),
        artifact_ref=artifact,
        bypass=bypass,
    )

    try:
        config, config_file = resolve_config(config_path)
        recorder = AuditRecorder(audit_dir or config.audit.log_dir)
        publisher = None
        if artifact:
            store = build_store(config.metadata, str(metadata_root) if metadata_root else None)
            publisher = MetadataPublisher(store, config.policy)
    except ConfigError as e:
        _audit_config_error(request, e, audit_dir)
        _print_error(e, json_output)
        raise typer.Exit(code=EXIT_INTERNAL)

    if config_file is not None:
        logger.debug("loaded config %s", config_file)
    else:
        logger.debug("no config file found; using built-in policy defaults")

    gate = Gate(config, recorder, publisher)
    with _cancel_on_signals(gate.cancel_event):
        result = gate.run(request)

    report_file = None
    if report_dir is not None:
        try:
            report_file = write_markdown_report(result, config.policy, report_dir)
        except OSError as e:
            result.warnings.append(f"Markdown report not written: {e}")

    if ci_outputs:
        try:
            write_github_outputs(result, report_file)
        except OSError as e:
            result.warnings.append(f"GitHub Actions outputs not written: {e}")
        try:
            write_jenkins_properties(result, report_file)
        except OSError as e:
            result.warnings.append(f"Jenkins properties not written: {e}")

    if json_output:
        print(generate_json_report(result, config.policy))
    else:
        render_console_report(result, config.policy, console)
        if report_file is not None:
            console.print(f"[dim]Report:[/dim]    {report_file}")

    raise typer.Exit(code=result.exit_code)


def _audit_config_error(request: GateRequest, error: ConfigError, audit_dir: Path | None) -> None:
    """Best-effort audit entry for a run whose config could not be loaded."""
    recorder = AuditRecorder(audit_dir or GateConfig().audit.log_dir)
    try:
        audit_input_error(recorder, request, error)
    except AuditWriteError as e:
        logger.error("%s", e.message)


@contextmanager
def _cancel_on_signals(event: threading.Event) -> Iterator[None]:
    """Set event on SIGINT/SIGTERM while the gate runs."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def handler(signum, frame):
        logger.warning("received %s, cancelling at the next step", signal.Signals(signum).name)
        event.set()

    previous = {
        sig: signal.signal(sig, handler)
        for sig in (signal.SIGINT, signal.SIGTERM)
    }
    try:
        yield
    finally:
        for sig, old in previous.items():
            signal.signal(sig, old)


def _print_error(error: Exception, json_output: bool) -> None:
    if json_output:
        payload = error.to_dict() if hasattr(error, "to_dict") else {"message": str(error)}
        print(json.dumps({"error": payload}, indent=2))
    else:
        err_console.print(f"[red]Error:[/red] {error}")


# =============================================================================
# status
# =============================================================================


@app.command()
def status(
    artifact: Annotated[
        str,
        typer.Argument(help="Artifact reference whose security metadata to show."),
    ],
    config_path: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Gate config YAML.", envvar="POLICY_GATE_CONFIG"),
    ] = None,
    metadata_root: Annotated[
        Optional[Path],
        typer.Option("--metadata-root", help="Root directory for the file metadata store."),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output the section as JSON."),
    ] = False,
) -> None:
    """
    Show the security section stored in an artifact's metadata.

    Exits 0 when a section exists, 1 when the artifact has none.

    Example:
        $ gate status app/1.2.0/app.tar.gz --metadata-root dist
    """
    try:
        config, _ = resolve_config(config_path)
        store = build_store(config.metadata, str(metadata_root) if metadata_root else None)
        section = read_security_section(store, artifact)
    except (ConfigError, MetadataError) as e:
        _print_error(e, json_output)
        raise typer.Exit(code=EXIT_INTERNAL)

    if json_output:
        print(json.dumps({"artifactRef": artifact, "security": section}, indent=2))
    else:
        render_security_section(artifact, section, console)

    raise typer.Exit(code=EXIT_PASS if section is not None else EXIT_FAIL)


# =============================================================================
# audit
# =============================================================================


def _parse_day(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    try:
        datetime.strptime(value, "%Y%m%d")
    except ValueError:
        raise typer.BadParameter(f"expected YYYYMMDD, got {value!r}") from None
    return value


@app.command()
def audit(
    day: Annotated[
        Optional[str],
        typer.Option(
            "--date",
            "-d",
            help="UTC day to list, as YYYYMMDD. Defaults to today.",
            callback=_parse_day,
        ),
    ] = None,
    audit_dir: Annotated[
        Optional[Path],
        typer.Option("--audit-dir", help="Directory holding the audit logs.", envvar="POLICY_GATE_AUDIT_DIR"),
    ] = None,
    config_path: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="Gate config YAML.", envvar="POLICY_GATE_CONFIG"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output entries as JSON."),
    ] = False,
) -> None:
    """
    List the audit entries recorded on one day.

    Example:
        $ gate audit --date 20261018
    """
    if audit_dir is None:
        try:
            config, _ = resolve_config(config_path)
        except ConfigError as e:
            _print_error(e, json_output)
            raise typer.Exit(code=EXIT_INTERNAL)
        audit_dir = Path(config.audit.log_dir)

    when = datetime.strptime(day, "%Y%m%d").replace(tzinfo=UTC) if day else datetime.now(UTC)
    recorder = AuditRecorder(audit_dir)
    entries = recorder.read_entries(when)

    if json_output:
        print(json.dumps([e.to_record() for e in entries], indent=2))
        raise typer.Exit(code=EXIT_PASS)

    if not entries:
        console.print(f"[dim]No audit entries in {recorder.log_path_for(when)}[/dim]")
        raise typer.Exit(code=EXIT_PASS)

    table = Table(title=str(recorder.log_path_for(when)), show_header=True, header_style="bold")
    table.add_column("Time (UTC)", style="dim")
    table.add_column("Evaluation", style="cyan")
    table.add_column("Scanner")
    table.add_column("Artifact", overflow="fold")
    table.add_column("Verdict")
    table.add_column("Bypass")

    styles = {"PASS": "green", "FAIL": "red", "BYPASS": "yellow", "ERROR": "red"}
    for entry in entries:
        verdict = entry.verdict.value
        table.add_row(
            entry.timestamp.strftime("%H:%M:%S"),
            entry.evaluation_id[:12],
            entry.scanner_used or "-",
            entry.artifact_ref or "-",
            f"[{styles[verdict]}]{verdict}[/{styles[verdict]}]",
            (entry.principal or "-") if entry.bypass_used else "-",
        )
    console.print(table)
    raise typer.Exit(code=EXIT_PASS)


# =============================================================================
# Entry points
# =============================================================================


def main(argv: list[str] | None = None) -> int:
    """
    Run the CLI and return its exit code.

    Click reports usage errors with status 2, which the gate reserves for
    its own failures, so they are remapped to 64 here.
    """
    try:
        rv = app(args=argv, prog_name="gate", standalone_mode=False)
    except USAGE_ERRORS as e:
        e.show()
        return EXIT_USAGE
    except CLICK_ERRORS as e:
        e.show()
        return e.exit_code
    except ABORT_ERRORS:
        err_console.print("[red]Aborted[/red]")
        return EXIT_INTERNAL
    return rv if isinstance(rv, int) else EXIT_PASS


def run() -> None:
    """Console script entry point."""
    raise SystemExit(main())


if __name__ == "__main__":
    run()
