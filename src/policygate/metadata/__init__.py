"""
Artifact metadata module for policy-gate.

Publishes the gate verdict into the metadata document kept alongside each
build artifact, without clobbering fields owned by other tools.

Stores:
    - FileMetadataStore: <root>/<ref>.metadata.json on local disk
    - HttpMetadataStore: Nexus-style raw repository over HTTP (httpx)
"""

from policygate.metadata.base import MetadataDocument, MetadataStore
from policygate.metadata.file import FileMetadataStore
from policygate.metadata.http import HttpMetadataStore
from policygate.metadata.publisher import (
    MetadataPublisher,
    merge_security_section,
    read_security_section,
)
from policygate.schema import MetadataSettings


def build_store(settings: MetadataSettings, root: str | None = None) -> MetadataStore:
    """
    Create the store selected by settings.backend.

    Args:
        settings: Metadata section of the gate config
        root: Overrides settings.root for the file backend

    Raises:
        ConfigError: The http backend is selected without a base URL
    """
    if settings.backend == "http":
        return HttpMetadataStore.from_settings(settings)
    return FileMetadataStore(root or settings.root)


__all__ = [
    "FileMetadataStore",
    "HttpMetadataStore",
    "MetadataDocument",
    "MetadataPublisher",
    "MetadataStore",
    "build_store",
    "merge_security_section",
    "read_security_section",
]
