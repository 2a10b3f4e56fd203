"""Tests for lifesync/cloud.py: HttpRemoteStore against a mocked backend.

Covers:
- validate_backend_url: scheme/host validation
- request shape: paths, bearer token, JSON bodies
- status mapping: 401/403, 404, 409, 413, 429/5xx, other 4xx
- transport failures: connection errors and timeouts
- health_check: unauthenticated, never raises
"""

import json

import httpx
import pytest

from lifesync.cloud import HttpRemoteStore, validate_backend_url
from lifesync.config import SyncConfig
from lifesync.protocols import (
    ConflictError,
    PayloadTooLargeError,
    RemoteRejectedError,
    SyncTimeoutError,
    UnauthorizedError,
    UnreachableError,
)
from lifesync.types import BackupSnapshot, RemoteDataset

BASE = "https://api.lifesync.test"


def _store(handler, token="tok123"):
    return HttpRemoteStore(BASE, token=token, transport=httpx.MockTransport(handler))


def _respond(status, body=None):
    def handler(request):
        return httpx.Response(status, json=body if body is not None else {})

    return handler


# ---------------------------------------------------------------------------
# URL validation
# ---------------------------------------------------------------------------


class TestValidateBackendUrl:
    def test_https_passes_and_is_normalized(self):
        assert validate_backend_url("https://api.example.com/") == "https://api.example.com"

    def test_http_localhost_passes(self):
        assert validate_backend_url("http://localhost:8000") == "http://localhost:8000"

    def test_http_loopback_passes(self):
        assert validate_backend_url("http://127.0.0.1:8000") == "http://127.0.0.1:8000"

    def test_http_localhost_can_be_disallowed(self):
        assert validate_backend_url("http://localhost:8000", allow_localhost_http=False) is None

    @pytest.mark.parametrize(
        "url", ["http://evil.example.com", "ftp://example.com", "https://", "just-a-path", "", None]
    )
    def test_rejected(self, url):
        assert validate_backend_url(url) is None

    def test_constructor_refuses_unsafe_url(self):
        with pytest.raises(ValueError):
            HttpRemoteStore("http://evil.example.com", token="tok")

    def test_from_config(self):
        config = SyncConfig(backend_url=BASE, auth_token="abc", call_timeout_seconds=3.0)
        store = HttpRemoteStore.from_config(config)
        assert store.backend_url == BASE
        assert store.timeout == 3.0


# ---------------------------------------------------------------------------
# Dataset calls
# ---------------------------------------------------------------------------


class TestDataset:
    @pytest.mark.asyncio
    async def test_fetch_dataset(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(
                200,
                json={
                    "data": {"tasks": [{"id": "t1"}]},
                    "version": "2.0.0",
                    "revision": 4,
                    "updated_at": "2024-01-01T00:00:00+00:00",
                },
            )

        remote = await _store(handler).fetch_dataset("user-1")

        assert remote.revision == 4
        assert remote.data == {"tasks": [{"id": "t1"}]}
        assert seen[0].method == "GET"
        assert seen[0].url == f"{BASE}/sync"
        assert seen[0].headers["Authorization"] == "Bearer tok123"

    @pytest.mark.asyncio
    async def test_fetch_missing_dataset_is_none(self):
        assert await _store(_respond(404, {"detail": "No data"})).fetch_dataset("user-1") is None

    @pytest.mark.asyncio
    async def test_push_dataset_sends_expected_revision(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"revision": 3, "unchanged": False})

        dataset = RemoteDataset(data={"tasks": []}, version="2.0.0", revision=2)
        revision = await _store(handler).push_dataset("user-1", dataset, 2)

        assert revision == 3
        assert bodies == [{"data": {"tasks": []}, "version": "2.0.0", "expected_revision": 2}]

    @pytest.mark.asyncio
    async def test_token_provider_is_called_per_request(self):
        tokens = iter(["first", "second"])
        seen = []

        def handler(request):
            seen.append(request.headers["Authorization"])
            return httpx.Response(404)

        store = HttpRemoteStore(
            BASE, token=lambda: next(tokens), transport=httpx.MockTransport(handler)
        )
        await store.fetch_dataset("user-1")
        await store.fetch_dataset("user-1")

        assert seen == ["Bearer first", "Bearer second"]

    @pytest.mark.asyncio
    async def test_missing_token_is_unauthorized_without_a_request(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200)

        with pytest.raises(UnauthorizedError):
            await _store(handler, token=None).fetch_dataset("user-1")
        assert calls == []


# ---------------------------------------------------------------------------
# Status mapping
# ---------------------------------------------------------------------------


class TestStatusMapping:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403])
    async def test_auth_failures(self, status):
        with pytest.raises(UnauthorizedError):
            await _store(_respond(status, {"detail": "Invalid token"})).fetch_dataset("user-1")

    @pytest.mark.asyncio
    async def test_conflict_carries_current_revision(self):
        handler = _respond(409, {"detail": {"message": "Revision mismatch", "current_revision": 7}})

        with pytest.raises(ConflictError) as exc:
            await _store(handler).push_dataset("user-1", RemoteDataset(), 5)

        assert exc.value.current_revision == 7
        assert "Revision mismatch" in str(exc.value)

    @pytest.mark.asyncio
    async def test_payload_too_large(self):
        handler = _respond(413, {"detail": {"message": "Too large", "size": 9, "limit": 5}})

        with pytest.raises(PayloadTooLargeError) as exc:
            await _store(handler).push_dataset("user-1", RemoteDataset(), 0)

        assert (exc.value.size, exc.value.limit) == (9, 5)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [429, 500, 502, 503])
    async def test_transient_statuses_are_unreachable(self, status):
        with pytest.raises(UnreachableError) as exc:
            await _store(_respond(status, {"detail": "busy"})).fetch_dataset("user-1")
        assert exc.value.retryable

    @pytest.mark.asyncio
    async def test_other_client_errors_are_rejected(self):
        with pytest.raises(RemoteRejectedError) as exc:
            await _store(_respond(422, {"detail": "bad body"})).push_dataset(
                "user-1", RemoteDataset(), 0
            )
        assert exc.value.status_code == 422
        assert not exc.value.retryable

    @pytest.mark.asyncio
    async def test_non_json_error_body(self):
        def handler(request):
            return httpx.Response(400, text="<html>bad gateway</html>")

        with pytest.raises(RemoteRejectedError, match="bad gateway"):
            await _store(handler).fetch_dataset("user-1")


class TestTransportFailures:
    @pytest.mark.asyncio
    async def test_connection_error_is_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        with pytest.raises(UnreachableError):
            await _store(handler).fetch_dataset("user-1")

    @pytest.mark.asyncio
    async def test_timeout_is_sync_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out")

        with pytest.raises(SyncTimeoutError):
            await _store(handler).fetch_dataset("user-1")


# ---------------------------------------------------------------------------
# Backups and health
# ---------------------------------------------------------------------------


class TestBackups:
    @pytest.mark.asyncio
    async def test_create_backup_body(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(201, json={})

        snapshot = BackupSnapshot(
            id="b1", owner_id="user-1", version="2.0.0", created_at="2024-01-01", data={"x": []}
        )
        await _store(handler).create_backup("user-1", snapshot)

        assert bodies == [
            {"id": "b1", "version": "2.0.0", "created_at": "2024-01-01", "data": {"x": []}}
        ]

    @pytest.mark.asyncio
    async def test_fetch_latest_backup(self):
        handler = _respond(
            200,
            {
                "id": "b1",
                "user_id": "user-1",
                "version": "2.0.0",
                "created_at": "2024-01-01T00:00:00+00:00",
                "data": {"tasks": []},
            },
        )
        snapshot = await _store(handler).fetch_latest_backup("user-1")
        assert snapshot.id == "b1"
        assert snapshot.data == {"tasks": []}

    @pytest.mark.asyncio
    async def test_no_backup_is_none(self):
        assert await _store(_respond(404)).fetch_latest_backup("user-1") is None

    @pytest.mark.asyncio
    async def test_prune_passes_keep_count(self):
        seen = []

        def handler(request):
            seen.append(request.url.params["keep"])
            return httpx.Response(200, json={"ok": True, "deleted": 3})

        assert await _store(handler).prune_backups("user-1", 7) == 3
        assert seen == ["7"]


class TestHealthCheck:
    @pytest.mark.asyncio
    async def test_healthy_without_token(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"status": "healthy"})

        assert await _store(handler, token=None).health_check()
        assert "Authorization" not in seen[0].headers

    @pytest.mark.asyncio
    async def test_unreachable_is_unhealthy(self):
        def handler(request):
            raise httpx.ConnectError("down")

        assert not await _store(handler).health_check()

    @pytest.mark.asyncio
    async def test_degraded_is_unhealthy(self):
        assert not await _store(_respond(503)).health_check()
