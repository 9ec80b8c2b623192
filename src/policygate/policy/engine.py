"""
Threshold Policy Evaluator for policy-gate.

Applies the configured per-severity limits to normalized counts and
produces a PASS/FAIL verdict plus the list of violated rules.

Design Principles:
    - Pure: no I/O, no clock, no randomness
    - Predictable: same (counts, policy) always yields the same verdict and
      the same violation order (critical, high, medium, low)
    - Never raises: invalid policies are rejected when the config is loaded

How it works:
    For each severity in fixed order, a violation is recorded when the
    rule's fail_on is set and the observed count is strictly greater than
    max_allowed. Any violation makes the verdict FAIL.
"""

from policygate.schema import (
    SEVERITY_ORDER,
    PolicyConfig,
    Verdict,
    VerdictKind,
    Violation,
    VulnerabilityCounts,
)


def evaluate(
    counts: VulnerabilityCounts,
    policy: PolicyConfig,
    scanner: str = "",
) -> Verdict:
    """
    Evaluate counts against the policy thresholds.

    Args:
        counts: Normalized vulnerability counts
        policy: The active ruleset
        scanner: Scanner identity, carried into the verdict

    Returns:
        Verdict of kind PASS or FAIL (never BYPASS)
    """
    violations: list[Violation] = []

    for severity in SEVERITY_ORDER:
        rule = policy.rule_for(severity)
        observed = counts.get(severity)
        if rule.fail_on and observed > rule.max_allowed:
            violations.append(
                Violation(
                    severity=severity,
                    observed_count=observed,
                    allowed_max=rule.max_allowed,
                    message=f"{severity.value.upper()}: {observed} found (max allowed: {rule.max_allowed})",
                )
            )

    kind = VerdictKind.FAIL if violations else VerdictKind.PASS
    return Verdict(kind=kind, violations=tuple(violations), scanner=scanner)


class PolicyEngine:
    """
    Evaluator bound to one PolicyConfig.

    Usage:
        engine = PolicyEngine(policy)
        verdict = engine.evaluate(counts, scanner="trivy")
        if not verdict.passed:
            # consider a bypass, then audit

    Attributes:
        policy: The ruleset to enforce
    """

    def __init__(self, policy: PolicyConfig) -> None:
        self.policy = policy

    def evaluate(self, counts: VulnerabilityCounts, scanner: str = "") -> Verdict:
        """Evaluate counts against this engine's policy."""
        return evaluate(counts, self.policy, scanner=scanner)
