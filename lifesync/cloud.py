"""HTTP client for the lifesync backend.

Implements the RemoteStore protocol against the FastAPI service in
``backend/``. Pure HTTP logic: no local storage coupling. The owner is
identified by the bearer token; the owner_id arguments only label logs.

Status mapping:
    401/403 -> UnauthorizedError
    404     -> None (nothing stored yet)
    409     -> ConflictError
    413     -> PayloadTooLargeError
    429/5xx, connection errors -> UnreachableError
    timeouts -> SyncTimeoutError
    other 4xx -> RemoteRejectedError
"""

import logging
from typing import Any, Callable, Dict, Optional, Union
from urllib.parse import urlparse

import httpx

from lifesync.config import DEFAULT_MAX_PAYLOAD_BYTES, SyncConfig
from lifesync.protocols import (
    ConflictError,
    PayloadTooLargeError,
    RemoteRejectedError,
    SyncTimeoutError,
    UnauthorizedError,
    UnreachableError,
)
from lifesync.types import BackupSnapshot, RemoteDataset

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Optional[str]]


def validate_backend_url(url: Optional[str], *, allow_localhost_http: bool = True) -> Optional[str]:
    """Return url if it is safe to send a bearer token to, else None.

    Only https is accepted, except plain http to localhost/127.0.0.1.
    """
    if not url:
        return None
    parsed = urlparse(url)
    if parsed.scheme not in {"https", "http"}:
        logger.warning("Invalid backend_url scheme; only http/https allowed.")
        return None
    if not parsed.netloc:
        logger.warning("Invalid backend_url; missing host.")
        return None
    if parsed.scheme == "http":
        host = parsed.hostname or ""
        if not allow_localhost_http or host not in {"localhost", "127.0.0.1"}:
            logger.warning("Refusing non-local http backend_url for security.")
            return None
    return url.rstrip("/")


def _detail(response: httpx.Response) -> Any:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict) and "detail" in body:
        return body["detail"]
    return body


class HttpRemoteStore:
    """RemoteStore backed by the lifesync HTTP API.

    Args:
        backend_url: Base URL of the backend.
        token: Bearer token, or a callable returning the current token.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        backend_url: str,
        token: Union[str, TokenProvider, None] = None,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        validated = validate_backend_url(backend_url)
        if validated is None:
            raise ValueError(f"Unsafe or invalid backend URL: {backend_url!r}")
        self.backend_url = validated
        self._token = token
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_config(
        cls, config: SyncConfig, token: Union[str, TokenProvider, None] = None
    ) -> "HttpRemoteStore":
        return cls(
            config.backend_url,
            token=token if token is not None else config.auth_token,
            timeout=config.call_timeout_seconds,
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _auth_token(self) -> Optional[str]:
        if callable(self._token):
            return self._token()
        return self._token

    async def _request(
        self, method: str, path: str, *, auth: bool = True, **kwargs
    ) -> httpx.Response:
        headers = {"Content-Type": "application/json"}
        if auth:
            token = self._auth_token()
            if not token:
                raise UnauthorizedError("Not authenticated")
            headers["Authorization"] = f"Bearer {token}"

        try:
            return await self._get_client().request(
                method, f"{self.backend_url}{path}", headers=headers, **kwargs
            )
        except httpx.TimeoutException as e:
            raise SyncTimeoutError(f"{method} {path} timed out: {e}") from e
        except httpx.HTTPError as e:
            raise UnreachableError(f"{method} {path} failed: {e}") from e

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return
        detail = _detail(response)
        message = detail.get("message", str(detail)) if isinstance(detail, dict) else str(detail)

        if status in (401, 403):
            raise UnauthorizedError(message or "Unauthorized")
        if status == 409:
            current = detail.get("current_revision") if isinstance(detail, dict) else None
            raise ConflictError(message, current_revision=current)
        if status == 413:
            info = detail if isinstance(detail, dict) else {}
            raise PayloadTooLargeError(
                info.get("size", 0), info.get("limit", DEFAULT_MAX_PAYLOAD_BYTES)
            )
        if status == 429 or status >= 500:
            raise UnreachableError(f"Backend returned HTTP {status}: {message}")
        raise RemoteRejectedError(message, status_code=status)

    # === Dataset ===

    async def fetch_dataset(self, owner_id: str) -> Optional[RemoteDataset]:
        response = await self._request("GET", "/sync")
        if response.status_code == 404:
            return None
        self._raise_for_status(response)
        body = response.json()
        return RemoteDataset(
            data=body.get("data") or {},
            version=body.get("version") or "1.0.0",
            revision=int(body.get("revision") or 0),
            updated_at=body.get("updated_at"),
        )

    async def push_dataset(
        self, owner_id: str, dataset: RemoteDataset, expected_revision: int
    ) -> int:
        response = await self._request(
            "POST",
            "/sync",
            json={
                "data": dataset.data,
                "version": dataset.version,
                "expected_revision": expected_revision,
            },
        )
        self._raise_for_status(response)
        revision = int(response.json()["revision"])
        logger.debug(f"Pushed dataset for {owner_id}: revision {expected_revision} -> {revision}")
        return revision

    # === Backups ===

    async def fetch_latest_backup(self, owner_id: str) -> Optional[BackupSnapshot]:
        response = await self._request("GET", "/backup")
        if response.status_code == 404:
            return None
        self._raise_for_status(response)
        body: Dict[str, Any] = response.json()
        return BackupSnapshot(
            id=str(body["id"]),
            owner_id=body.get("user_id") or owner_id,
            version=body["version"],
            created_at=body["created_at"],
            data=body.get("data") or {},
        )

    async def create_backup(self, owner_id: str, snapshot: BackupSnapshot) -> None:
        response = await self._request(
            "POST",
            "/backup",
            json={
                "id": snapshot.id,
                "version": snapshot.version,
                "created_at": snapshot.created_at,
                "data": snapshot.data,
            },
        )
        self._raise_for_status(response)

    async def prune_backups(self, owner_id: str, keep_count: int) -> int:
        response = await self._request("DELETE", "/backup", params={"keep": keep_count})
        self._raise_for_status(response)
        return int(response.json().get("deleted", 0))

    async def health_check(self) -> bool:
        try:
            response = await self._request("GET", "/health", auth=False)
        except (UnreachableError, SyncTimeoutError) as e:
            logger.debug(f"Backend health check failed: {e}")
            return False
        return response.status_code == 200
