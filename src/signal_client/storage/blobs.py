"""Blob storage for post media, chat attachments and profile images.

Two backends are provided: an in-memory store for tests and an HTTP store
that PUTs objects to a storage gateway with :mod:`httpx`.
"""

from __future__ import annotations

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass

import httpx

from signal_client.core.errors import BlobStoreError, PermissionDeniedError, TransientStoreError
from signal_client.core.settings import Settings

logger = logging.getLogger(__name__)

# HTTP status codes
HTTP_INTERNAL_SERVER_ERROR = 500
HTTP_TOO_MANY_REQUESTS = 429
HTTP_UNAUTHORIZED = 401
HTTP_FORBIDDEN = 403

_UNSAFE_NAME = re.compile(r"[^A-Za-z0-9._-]+")


def safe_filename(name: str) -> str:
    """Strip path separators and unusual characters from a client file name."""
    cleaned = _UNSAFE_NAME.sub("_", name.rsplit("/", 1)[-1]).strip("._")
    return cleaned or "file"


class BlobStore(ABC):
    """Abstract object storage returning publicly resolvable URLs."""

    @abstractmethod
    async def put(self, path: str, data: bytes, content_type: str | None = None) -> str:
        """Upload ``data`` under ``path`` and return its download URL."""

    async def close(self) -> None:
        """Release underlying resources."""


@dataclass
class StoredBlob:
    data: bytes
    content_type: str | None


class MemoryBlobStore(BlobStore):
    """Keeps uploads in a dictionary; URLs use the ``memory://`` scheme."""

    def __init__(self) -> None:
        self.blobs: dict[str, StoredBlob] = {}

    async def put(self, path: str, data: bytes, content_type: str | None = None) -> str:
        self.blobs[path] = StoredBlob(data=data, content_type=content_type)
        return f"memory://{path}"


class HttpBlobStore(BlobStore):
    """Uploads objects to an HTTP storage gateway.

    Each upload is a ``PUT {base_url}/{path}``. When the gateway answers with a
    JSON body carrying ``url`` that value is returned, otherwise the URL is
    derived from ``public_url`` (or ``base_url``) and the object path.
    """

    def __init__(
        self,
        base_url: str,
        *,
        public_url: str | None = None,
        timeout_seconds: float = 10.0,
        auth_token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.public_url = (public_url or base_url).rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._auth_token = auth_token
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, config: Settings) -> HttpBlobStore:
        if not config.blob_base_url:
            raise BlobStoreError("SIGNAL_BLOB_BASE_URL is not configured")
        return cls(
            config.blob_base_url,
            public_url=config.blob_public_url,
            timeout_seconds=config.blob_http_timeout_seconds,
            auth_token=config.blob_auth_token,
        )

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                headers = {}
                if self._auth_token:
                    headers["Authorization"] = f"Bearer {self._auth_token}"
                self._client = httpx.AsyncClient(
                    base_url=self.base_url,
                    timeout=httpx.Timeout(self.timeout_seconds),
                    headers=headers,
                    transport=self._transport,
                )
        return self._client

    async def put(self, path: str, data: bytes, content_type: str | None = None) -> str:
        client = await self._ensure_client()
        headers = {"Content-Type": content_type or "application/octet-stream"}
        object_path = path.lstrip("/")

        try:
            response = await client.put(f"/{object_path}", content=data, headers=headers)
        except (httpx.TimeoutException, httpx.NetworkError) as exc:
            raise TransientStoreError(f"Blob upload failed: {exc}") from exc
        except httpx.HTTPError as exc:
            raise BlobStoreError(f"Blob upload failed: {exc}") from exc

        if response.status_code in {HTTP_UNAUTHORIZED, HTTP_FORBIDDEN}:
            raise PermissionDeniedError(f"Blob storage refused the upload ({response.status_code})")
        if (
            response.status_code >= HTTP_INTERNAL_SERVER_ERROR
            or response.status_code == HTTP_TOO_MANY_REQUESTS
        ):
            raise TransientStoreError(f"Blob storage responded with {response.status_code}")
        if response.is_error:
            raise BlobStoreError(f"Blob storage responded with {response.status_code}")

        url = None
        if response.content:
            try:
                payload = response.json()
            except ValueError:
                payload = None
            if isinstance(payload, dict):
                url = payload.get("url")

        logger.debug("Uploaded %d bytes to %s", len(data), object_path)
        return url or f"{self.public_url}/{object_path}"

    async def close(self) -> None:
        """Clean up underlying HTTP client resources."""

        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None


def build_blob_store(config: Settings) -> BlobStore:
    """HTTP store when a gateway is configured, in-memory otherwise."""
    if config.blob_base_url:
        return HttpBlobStore.from_settings(config)
    return MemoryBlobStore()


@dataclass(frozen=True)
class Upload:
    """A file picked by the user, ready to be stored."""

    filename: str
    data: bytes
    content_type: str | None = None
