"""
policy-gate - Security policy gate for vulnerability scan results.

Reads a scanner report (Trivy or Grype), counts findings per severity,
applies configurable thresholds, optionally honors an authorized emergency
bypass, records every decision in an append-only audit log, and publishes
the verdict into the artifact's metadata.

Example usage:
    $ gate evaluate --scanner trivy --report trivy.json --artifact app.tar.gz
    $ gate status app.tar.gz
    $ gate audit --date 20261018
"""

__version__ = "0.1.0"

__all__ = [
    "__version__",
]
