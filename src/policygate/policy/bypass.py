"""
Bypass Authority for policy-gate.

Decides whether a failing verdict may be overridden. This is the only place
a FAIL can become non-blocking, and it never touches the recorded
violations: a BYPASS verdict carries the exact violations of the FAIL it
replaced so the audit trail still shows what was waived.

A request is valid iff:
    1. bypass is enabled in the policy
    2. the token is non-empty
    3. the reason is non-empty
    4. the principal is in the policy's authorized set

An invalid request is not an error; the original FAIL simply stands.
"""

from policygate.schema import (
    BypassRecord,
    BypassRequest,
    PolicyConfig,
    Verdict,
    VerdictKind,
)


def validate_bypass(request: BypassRequest | None, policy: PolicyConfig) -> list[str]:
    """
    Explain why a bypass request would be refused.

    Args:
        request: The request, or None if none was made
        policy: The active ruleset

    Returns:
        Refusal reasons; an empty list means the request is valid
    """
    if request is None:
        return ["no bypass requested"]

    problems = []
    if not policy.bypass_enabled:
        problems.append("bypass is disabled by policy")
    if not request.token.strip():
        problems.append("bypass token is empty")
    if not request.reason.strip():
        problems.append("bypass reason is empty")
    if not request.principal.strip():
        problems.append("principal is empty")
    elif request.principal.strip() not in policy.authorized_principals:
        problems.append(f"principal {request.principal!r} is not authorized")
    return problems


def try_bypass(
    verdict: Verdict,
    request: BypassRequest | None,
    policy: PolicyConfig,
) -> tuple[Verdict, BypassRecord]:
    """
    Attempt to convert a FAIL verdict into BYPASS.

    Args:
        verdict: The evaluator's verdict
        request: Optional bypass request
        policy: The active ruleset (bypass switch and authorized principals)

    Returns:
        (verdict, record). PASS verdicts and refused requests come back
        unchanged with record.used == False.
    """
    if verdict.kind != VerdictKind.FAIL:
        return verdict, BypassRecord.not_used()

    if validate_bypass(request, policy):
        return verdict, BypassRecord.not_used()

    bypassed = Verdict(
        kind=VerdictKind.BYPASS,
        violations=verdict.violations,
        scanner=verdict.scanner,
    )
    record = BypassRecord(
        used=True,
        reason=request.reason.strip(),
        principal=request.principal.strip(),
    )
    return bypassed, record
