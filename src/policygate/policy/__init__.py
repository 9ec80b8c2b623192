"""
Policy module for policy-gate.

Key concepts:
    - evaluate(): Apply severity thresholds to counts (PASS/FAIL + violations)
    - try_bypass(): Let an authorized principal turn FAIL into BYPASS
    - PolicyEngine: Evaluator bound to one PolicyConfig

Both functions are pure; auditing and publication happen in the gate.
"""

from policygate.policy.bypass import try_bypass, validate_bypass
from policygate.policy.engine import PolicyEngine, evaluate

__all__ = [
    "PolicyEngine",
    "evaluate",
    "try_bypass",
    "validate_bypass",
]
