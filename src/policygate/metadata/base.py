"""
Artifact metadata store interface.

The gate only needs two operations against the artifact repository: read
the metadata document for an artifact, and write it back. Stores return a
MetadataDocument whose `version` slot carries an optimistic-concurrency
token (an ETag for HTTP stores) so conditional writes can be enabled
without changing the publisher.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class MetadataDocument:
    """
    A fetched metadata document.

    Attributes:
        content: The parsed JSON object
        version: Concurrency token from the store, if it provides one
    """

    content: dict[str, Any] = field(default_factory=dict)
    version: str | None = None


class MetadataStore(ABC):
    """
    Abstract key/path put-get store for artifact metadata documents.

    Subclasses must implement:
    - fetch(): Return the document for a reference, or None if absent
    - put(): Replace the document for a reference

    Implementations raise MetadataFetchError / MetadataWriteError for
    transport or IO failures; a missing document is not an error.
    """

    @property
    def name(self) -> str:
        """Short store identity for logs and reports."""
        return type(self).__name__

    @abstractmethod
    def fetch(self, artifact_ref: str) -> MetadataDocument | None:
        """
        Read the metadata document for an artifact.

        Raises:
            MetadataFetchError: The store could not be read
        """
        ...

    @abstractmethod
    def put(
        self,
        artifact_ref: str,
        content: dict[str, Any],
        version: str | None = None,
    ) -> None:
        """
        Write the metadata document for an artifact.

        Args:
            artifact_ref: Artifact reference (repository path)
            content: Complete document to store
            version: Token from fetch(); stores that support conditional
                writes may use it to reject a concurrent update

        Raises:
            MetadataWriteError: The store could not be written
        """
        ...

    def describe(self, artifact_ref: str) -> str:
        """Where the document for artifact_ref lives (path or URL)."""
        return artifact_ref

    def __repr__(self) -> str:
        return f"<MetadataStore: {self.name}>"
