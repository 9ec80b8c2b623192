"""
Unit tests for the HTTP metadata store.

Tests cover:
- URL layout and settings/env resolution
- 404 as absent, ETag as version
- At most one retry on transport errors and 5xx
- If-Match only with conditional writes, 412 as MetadataWriteError
"""

import json

import httpx
import pytest

from policygate.errors import ConfigError, MetadataFetchError, MetadataWriteError
from policygate.metadata import HttpMetadataStore, build_store
from policygate.schema import MetadataSettings

BASE = "https://nexus.example.com"


def make_store(handler, **kwargs) -> HttpMetadataStore:
    return HttpMetadataStore(
        BASE,
        "raw-hosted",
        username="ci",
        password="secret",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class TestConstruction:
    """Tests for URL building and settings."""

    def test_url_for(self) -> None:
        store = HttpMetadataStore(BASE + "/", "/raw-hosted/")
        assert store.url_for("app/1.0/app v2.tar.gz") == (
            f"{BASE}/repository/raw-hosted/app/1.0/app%20v2.tar.gz.metadata.json"
        )
        assert store.describe("a") == f"{BASE}/repository/raw-hosted/a.metadata.json"

    def test_retries_capped_at_one(self) -> None:
        assert HttpMetadataStore(BASE, "r", retries=5).retries == 1

    def test_from_settings_uses_env(self) -> None:
        settings = MetadataSettings(backend="http", repository="artifacts")
        env = {"NEXUS_URL": BASE, "NEXUS_USERNAME": "ci", "NEXUS_PASSWORD": "pw"}
        store = HttpMetadataStore.from_settings(settings, env=env)
        assert store.base_url == BASE
        assert store.username == "ci"
        assert store.repository == "artifacts"

    def test_settings_win_over_env(self) -> None:
        settings = MetadataSettings(backend="http", base_url="https://other.example.com", username="svc")
        store = HttpMetadataStore.from_settings(settings, env={"NEXUS_URL": BASE, "NEXUS_USERNAME": "ci"})
        assert store.base_url == "https://other.example.com"
        assert store.username == "svc"

    def test_missing_base_url(self) -> None:
        with pytest.raises(ConfigError, match="baseUrl"):
            HttpMetadataStore.from_settings(MetadataSettings(backend="http"), env={})

    def test_build_store_selects_backend(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("NEXUS_URL", BASE)
        assert isinstance(build_store(MetadataSettings(backend="http")), HttpMetadataStore)
        assert build_store(MetadataSettings()).name == "file"


class TestFetch:
    """GET behavior."""

    def test_document_and_etag(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "GET"
            assert request.url.path == "/repository/raw-hosted/app.tar.gz.metadata.json"
            assert request.headers["Authorization"].startswith("Basic ")
            return httpx.Response(200, json={"build": 1}, headers={"ETag": '"v1"'})

        doc = make_store(handler).fetch("app.tar.gz")
        assert doc.content == {"build": 1}
        assert doc.version == '"v1"'

    def test_not_found_is_absent(self) -> None:
        assert make_store(lambda r: httpx.Response(404)).fetch("app.tar.gz") is None

    def test_client_error(self) -> None:
        with pytest.raises(MetadataFetchError, match="HTTP 403"):
            make_store(lambda r: httpx.Response(403)).fetch("app.tar.gz")

    def test_non_json_body(self) -> None:
        with pytest.raises(MetadataFetchError, match="not valid JSON"):
            make_store(lambda r: httpx.Response(200, text="<html>")).fetch("app.tar.gz")

    def test_non_object_body(self) -> None:
        with pytest.raises(MetadataFetchError):
            make_store(lambda r: httpx.Response(200, json=[1, 2])).fetch("app.tar.gz")

    def test_retries_once_on_5xx(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(503)
            return httpx.Response(200, json={})

        assert make_store(handler).fetch("app.tar.gz").content == {}
        assert len(calls) == 2

    def test_gives_up_after_one_retry(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(MetadataFetchError, match="ConnectError"):
            make_store(handler).fetch("app.tar.gz")
        assert len(calls) == 2

    def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(MetadataFetchError, match="timed out"):
            make_store(handler, retries=0).fetch("app.tar.gz")

    def test_persistent_5xx(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(500)

        with pytest.raises(MetadataFetchError, match="HTTP 500"):
            make_store(handler).fetch("app.tar.gz")
        assert len(calls) == 2


class TestPut:
    """PUT behavior."""

    def test_put_sends_json(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["body"] = json.loads(request.content)
            seen["if_match"] = request.headers.get("If-Match")
            return httpx.Response(201)

        make_store(handler).put("app.tar.gz", {"security": {"gateStatus": "PASS"}}, version='"v1"')
        assert seen == {"method": "PUT", "body": {"security": {"gateStatus": "PASS"}}, "if_match": None}

    def test_conditional_write_sends_if_match(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["if_match"] = request.headers.get("If-Match")
            return httpx.Response(204)

        make_store(handler, conditional_writes=True).put("app.tar.gz", {}, version='"v1"')
        assert seen["if_match"] == '"v1"'

    def test_precondition_failed(self) -> None:
        with pytest.raises(MetadataWriteError, match="412"):
            make_store(lambda r: httpx.Response(412), conditional_writes=True).put("a", {}, version='"v0"')

    def test_server_error(self) -> None:
        with pytest.raises(MetadataWriteError, match="HTTP 502"):
            make_store(lambda r: httpx.Response(502)).put("a", {})
