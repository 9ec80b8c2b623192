"""
Filesystem metadata store.

Keeps each artifact's metadata next to it as `<ref>.metadata.json` under a
root directory. Writes go to a temp file in the same directory followed by
os.replace, so a reader never sees a half-written document.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from policygate.errors import MetadataError, MetadataFetchError, MetadataWriteError
from policygate.metadata.base import MetadataDocument, MetadataStore

METADATA_SUFFIX = ".metadata.json"


class FileMetadataStore(MetadataStore):
    """
    Metadata documents stored as JSON files.

    Attributes:
        root: Directory relative artifact references are resolved against
    """

    def __init__(self, root: str | Path = ".") -> None:
        self.root = Path(root)

    @property
    def name(self) -> str:
        return "file"

    def path_for(self, artifact_ref: str) -> Path:
        """Path of the metadata file for an artifact reference."""
        return self.root / f"{artifact_ref}{METADATA_SUFFIX}"

    def _checked_path(self, artifact_ref: str, error_cls: type[MetadataError]) -> Path:
        """path_for(), refusing references that resolve outside root."""
        if "\x00" in artifact_ref:
            raise error_cls(artifact_ref=artifact_ref, underlying_error="reference contains a null byte")
        path = self.path_for(artifact_ref)
        try:
            path.resolve().relative_to(self.root.resolve())
        except ValueError:
            raise error_cls(
                artifact_ref=artifact_ref,
                underlying_error=f"{path} is outside the metadata root {self.root}",
            ) from None
        return path

    def describe(self, artifact_ref: str) -> str:
        return str(self.path_for(artifact_ref))

    def fetch(self, artifact_ref: str) -> MetadataDocument | None:
        path = self._checked_path(artifact_ref, MetadataFetchError)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise MetadataFetchError(artifact_ref=artifact_ref, underlying_error=str(e)) from e

        try:
            content = json.loads(text) if text.strip() else {}
        except json.JSONDecodeError as e:
            raise MetadataFetchError(
                artifact_ref=artifact_ref,
                underlying_error=f"{path} is not valid JSON: {e.msg}",
            ) from e

        if not isinstance(content, dict):
            raise MetadataFetchError(
                artifact_ref=artifact_ref,
                underlying_error=f"{path} does not hold a JSON object",
            )
        return MetadataDocument(content=content, version=None)

    def put(
        self,
        artifact_ref: str,
        content: dict[str, Any],
        version: str | None = None,
    ) -> None:
        path = self._checked_path(artifact_ref, MetadataWriteError)
        tmp_name = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=path.parent,
                prefix=f".{path.name}.",
                suffix=".tmp",
                delete=False,
            ) as tmp:
                tmp_name = tmp.name
                json.dump(content, tmp, indent=2, ensure_ascii=False)
                tmp.write("\n")
            os.replace(tmp_name, path)
        except (OSError, TypeError, ValueError) as e:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise MetadataWriteError(artifact_ref=artifact_ref, underlying_error=str(e)) from e
