"""
Metadata Publisher for policy-gate.

Writes the gate verdict into an artifact's metadata document as a
read-merge-write: the existing document is fetched, only its top-level
`security` key is replaced, and the result is written back. Unrelated
fields (build info, upload info, anything another tool added) are carried
over untouched.

Publication is optional and non-fatal. An empty artifact reference is a
no-op; store failures raise MetadataError for the gate to report as a
warning, since the verdict has already been audited.
"""

from datetime import UTC, datetime
from typing import Any

from policygate.log import get_logger
from policygate.metadata.base import MetadataStore
from policygate.schema import (
    PolicyConfig,
    SecuritySection,
    Verdict,
    VulnerabilityCounts,
)

logger = get_logger(__name__)

SECURITY_KEY = "security"


def merge_security_section(document: dict[str, Any], section: SecuritySection) -> dict[str, Any]:
    """Return a copy of document whose `security` key is replaced by section."""
    merged = dict(document)
    merged[SECURITY_KEY] = section.to_document()
    return merged


def read_security_section(store: MetadataStore, artifact_ref: str) -> dict[str, Any] | None:
    """
    The `security` section currently stored for an artifact, if any.

    Raises:
        MetadataFetchError: The store could not be read
    """
    document = store.fetch(artifact_ref)
    if document is None:
        return None
    section = document.content.get(SECURITY_KEY)
    return section if isinstance(section, dict) else None


class MetadataPublisher:
    """
    Publishes verdicts into artifact metadata.

    Usage:
        publisher = MetadataPublisher(FileMetadataStore("dist"), policy)
        document = publisher.publish_verdict("app.tar.gz", verdict, counts)

    Attributes:
        store: Where metadata documents live
        policy: The ruleset in force, snapshotted into every section
    """

    def __init__(self, store: MetadataStore, policy: PolicyConfig) -> None:
        self.store = store
        self.policy = policy

    def build_section(
        self,
        verdict: Verdict,
        counts: VulnerabilityCounts,
        scanned_at: datetime,
    ) -> SecuritySection:
        """The security section for one verdict."""
        return SecuritySection(
            gate_status=verdict.kind,
            scan_timestamp=scanned_at,
            counts=counts,
            policy_snapshot=self.policy.snapshot(),
        )

    def publish_verdict(
        self,
        artifact_ref: str,
        verdict: Verdict,
        counts: VulnerabilityCounts,
        scanned_at: datetime | None = None,
    ) -> dict[str, Any] | None:
        """
        Merge the verdict into the artifact's metadata document.

        Args:
            artifact_ref: Artifact reference; empty means "don't publish"
            verdict: Final verdict (after any bypass)
            counts: Counts the verdict was computed from
            scanned_at: Evaluation timestamp. Passing the same value makes
                repeated publishes of one verdict produce identical sections.
                When omitted, a stored section recording the same decision
                keeps its timestamp, otherwise the current time is used.

        Returns:
            The document that was written, or None if publication was skipped

        Raises:
            MetadataFetchError: Existing metadata could not be read
            MetadataWriteError: Merged metadata could not be written
        """
        if not artifact_ref:
            return None

        existing = self.store.fetch(artifact_ref)
        base = existing.content if existing is not None else {}

        section = self.build_section(verdict, counts, scanned_at or datetime.now(UTC))
        if scanned_at is None:
            previous = _unchanged_since(base, section)
            if previous is not None:
                section = self.build_section(verdict, counts, previous)
        merged = merge_security_section(base, section)

        self.store.put(
            artifact_ref,
            merged,
            version=existing.version if existing is not None else None,
        )
        logger.info(
            "published %s for %s to %s",
            verdict.kind.value, artifact_ref, self.store.describe(artifact_ref),
        )
        return merged


def _unchanged_since(document: dict[str, Any], section: SecuritySection) -> datetime | None:
    """Timestamp of the stored section if it records the same decision as section."""
    stored = document.get(SECURITY_KEY)
    if not isinstance(stored, dict):
        return None
    fresh = section.to_document()
    if any(stored.get(key) != value for key, value in fresh.items() if key != "timestamp"):
        return None
    try:
        return datetime.fromisoformat(stored["timestamp"])
    except (KeyError, TypeError, ValueError):
        return None
