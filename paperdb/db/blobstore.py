"""
PaperDB Blob Stores — content-addressed storage for manifests and files.

Provides:
- BlobStore: the protocol consumed by collections and BlobFile
- MemoryBlobStore: in-process store, refs are hex sha256 of the content
- GatewayBlobStore: read-only client for an HTTP gateway (httpx)

A collection id is the ref of its manifest, so equal manifests give
equal ids.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Dict, Optional, Protocol, Set, runtime_checkable

import httpx

from paperdb.engine.errors import BlobNotFoundError, PaperDBStoreError

logger = logging.getLogger("paperdb.db.blobstore")


@runtime_checkable
class BlobStore(Protocol):

    async def get(self, ref: str) -> bytes:
        ...

    async def put(self, data: bytes) -> str:
        ...

    async def pin(self, ref: str, name: Optional[str] = None) -> None:
        ...


def content_ref(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class MemoryBlobStore:
    """Content-addressed blobs held in a dict."""

    def __init__(self):
        self._blobs: Dict[str, bytes] = {}
        self._pins: Dict[str, Optional[str]] = {}

    async def put(self, data: bytes) -> str:
        if isinstance(data, str):
            data = data.encode("utf-8")
        ref = content_ref(data)
        self._blobs[ref] = bytes(data)
        return ref

    async def get(self, ref: str) -> bytes:
        try:
            return self._blobs[ref]
        except KeyError:
            raise BlobNotFoundError(f"Blob not found: {ref}", object_ref=ref) from None

    async def pin(self, ref: str, name: Optional[str] = None) -> None:
        if ref not in self._blobs:
            raise BlobNotFoundError(f"Cannot pin missing blob: {ref}", object_ref=ref)
        self._pins[ref] = name
        logger.debug(f"Pinned {ref}" + (f" ({name})" if name else ""))

    async def unpin(self, ref: str) -> bool:
        return self._pins.pop(ref, False) is not False

    def is_pinned(self, ref: str) -> bool:
        return ref in self._pins

    @property
    def pinned(self) -> Set[str]:
        return set(self._pins)

    async def close(self) -> None:
        return None

    def __contains__(self, ref: object) -> bool:
        return ref in self._blobs

    def __len__(self) -> int:
        return len(self._blobs)


class GatewayBlobStore:
    """
    Read-only blob store over an HTTP gateway.

    Fetches ``GET {base_url}/ipfs/{ref}``. Used to instant-load a
    collection manifest (metainfo + preload document) without running a
    local store. One pooled httpx.AsyncClient per instance.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout, connect=10.0),
                follow_redirects=True,
            )
            logger.info(f"Created httpx client for gateway {self.base_url}")
        return self._client

    async def get(self, ref: str) -> bytes:
        url = f"{self.base_url}/ipfs/{ref}"
        try:
            response = await self._get_client().get(url)
        except httpx.HTTPError as e:
            raise PaperDBStoreError(f"Gateway request failed for {ref}: {e}", object_ref=ref) from e

        if response.status_code == 404:
            raise BlobNotFoundError(f"Blob not found on gateway: {ref}", object_ref=ref)
        if response.status_code >= 400:
            raise PaperDBStoreError(
                f"Gateway returned HTTP {response.status_code} for {ref}",
                object_ref=ref,
                status_code=response.status_code,
            )
        return response.content

    async def put(self, data: bytes) -> str:
        raise PaperDBStoreError("GatewayBlobStore is read-only")

    async def pin(self, ref: str, name: Optional[str] = None) -> None:
        logger.debug(f"Gateway store cannot pin {ref}, skipped")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info(f"Closed httpx client for gateway {self.base_url}")
