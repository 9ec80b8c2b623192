"""
HTTP metadata store for Nexus-style raw repositories.

Documents live at:
    {base_url}/repository/{repository}/{artifact_ref}.metadata.json

Reads are GET (404 means "no metadata yet"), writes are PUT with a JSON
body. Basic auth credentials come from settings, with the password read
from an environment variable so it never sits in the config file.

Network behavior:
    - Every request carries an explicit timeout (default 10s)
    - Transport failures and 5xx responses are retried at most once
    - If-Match is sent on PUT only when conditional writes are enabled and
      the fetch returned an ETag; a 412 surfaces as MetadataWriteError
"""

import json
import os
from typing import Any, Mapping
from urllib.parse import quote

import httpx

from policygate.errors import (
    ConfigError,
    MetadataError,
    MetadataFetchError,
    MetadataWriteError,
)
from policygate.log import get_logger
from policygate.metadata.base import MetadataDocument, MetadataStore
from policygate.metadata.file import METADATA_SUFFIX
from policygate.schema import MetadataSettings

logger = get_logger(__name__)


class HttpMetadataStore(MetadataStore):
    """
    Metadata documents stored in a repository manager over HTTP.

    Example:
        store = HttpMetadataStore("https://nexus.example.com", "raw-hosted",
                                  username="ci", password="secret")
        doc = store.fetch("myapp/1.4.2/myapp.tar.gz")
    """

    def __init__(
        self,
        base_url: str,
        repository: str,
        username: str | None = None,
        password: str | None = None,
        timeout_seconds: float = 10.0,
        retries: int = 1,
        conditional_writes: bool = False,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.repository = repository.strip("/")
        self.username = username
        self._password = password
        self.timeout_seconds = timeout_seconds
        self.retries = max(0, min(retries, 1))
        self.conditional_writes = conditional_writes
        self._transport = transport

    @classmethod
    def from_settings(
        cls,
        settings: MetadataSettings,
        env: Mapping[str, str] | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> "HttpMetadataStore":
        """
        Build a store from config, filling gaps from NEXUS_URL / NEXUS_USERNAME.

        Raises:
            ConfigError: If no base URL is configured anywhere
        """
        env = os.environ if env is None else env
        base_url = settings.base_url or env.get("NEXUS_URL")
        if not base_url:
            raise ConfigError(
                detail="metadata.backend is 'http' but no baseUrl is set",
                suggestion="Set metadata.baseUrl in the config or export NEXUS_URL",
            )
        return cls(
            base_url=base_url,
            repository=settings.repository,
            username=settings.username or env.get("NEXUS_USERNAME"),
            password=env.get(settings.password_env),
            timeout_seconds=settings.timeout_seconds,
            retries=settings.retries,
            conditional_writes=settings.conditional_writes,
            transport=transport,
        )

    @property
    def name(self) -> str:
        return "http"

    def url_for(self, artifact_ref: str) -> str:
        """URL of the metadata document for an artifact reference."""
        path = quote(artifact_ref.lstrip("/"), safe="/")
        return f"{self.base_url}/repository/{self.repository}/{path}{METADATA_SUFFIX}"

    def describe(self, artifact_ref: str) -> str:
        return self.url_for(artifact_ref)

    def fetch(self, artifact_ref: str) -> MetadataDocument | None:
        response = self._request("GET", artifact_ref, MetadataFetchError)

        if response.status_code == 404:
            return None
        if not response.is_success:
            raise MetadataFetchError(
                artifact_ref=artifact_ref,
                underlying_error=f"GET {self.url_for(artifact_ref)} returned HTTP {response.status_code}",
            )

        try:
            content = response.json()
        except ValueError as e:
            raise MetadataFetchError(
                artifact_ref=artifact_ref,
                underlying_error=f"response is not valid JSON: {e}",
            ) from e
        if not isinstance(content, dict):
            raise MetadataFetchError(
                artifact_ref=artifact_ref,
                underlying_error="response does not hold a JSON object",
            )

        return MetadataDocument(content=content, version=response.headers.get("ETag"))

    def put(
        self,
        artifact_ref: str,
        content: dict[str, Any],
        version: str | None = None,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if self.conditional_writes and version:
            headers["If-Match"] = version

        body = json.dumps(content, indent=2, ensure_ascii=False).encode("utf-8")
        response = self._request("PUT", artifact_ref, MetadataWriteError, content=body, headers=headers)

        if response.status_code == 412:
            raise MetadataWriteError(
                artifact_ref=artifact_ref,
                underlying_error="metadata was modified concurrently (HTTP 412)",
                suggestion="Re-run the gate to publish against the latest document",
            )
        if not response.is_success:
            raise MetadataWriteError(
                artifact_ref=artifact_ref,
                underlying_error=f"PUT {self.url_for(artifact_ref)} returned HTTP {response.status_code}",
            )

    def _client(self) -> httpx.Client:
        auth = (self.username, self._password or "") if self.username else None
        return httpx.Client(
            timeout=self.timeout_seconds,
            auth=auth,
            transport=self._transport,
            headers={"Accept": "application/json"},
        )

    def _request(
        self,
        method: str,
        artifact_ref: str,
        error_cls: type[MetadataError],
        **kwargs: Any,
    ) -> httpx.Response:
        """
        Send one request, retrying once on transport errors and 5xx.

        The final 5xx response is returned to the caller; only a request
        that never produced a response raises here.
        """
        url = self.url_for(artifact_ref)
        attempts = 1 + self.retries
        last_error = ""

        with self._client() as client:
            for attempt in range(1, attempts + 1):
                try:
                    response = client.request(method, url, **kwargs)
                except httpx.TimeoutException:
                    last_error = f"{method} {url} timed out after {self.timeout_seconds}s"
                except httpx.TransportError as e:
                    last_error = f"{method} {url} failed: {type(e).__name__}: {e}"
                else:
                    if response.status_code >= 500 and attempt < attempts:
                        logger.warning(
                            "%s %s returned HTTP %d, retrying (%d/%d)",
                            method, url, response.status_code, attempt, attempts,
                        )
                        continue
                    return response

                if attempt < attempts:
                    logger.warning("%s, retrying (%d/%d)", last_error, attempt, attempts)

        raise error_cls(artifact_ref=artifact_ref, underlying_error=last_error)
