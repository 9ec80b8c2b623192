"""
Audit module for policy-gate.

Every gate evaluation, including ones that error out, is recorded as one
newline-delimited JSON object in a day-partitioned, append-only log.
The audit trail is the authoritative record of gate decisions; failing to
write it fails the gate.
"""

from policygate.audit.recorder import AuditRecorder, encode_entry, log_filename

__all__ = [
    "AuditRecorder",
    "encode_entry",
    "log_filename",
]
