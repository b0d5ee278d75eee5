"""Data types exchanged with the object store client.

These are raw, store-level shapes. Folder semantics live in
``bucketbird.hierarchy``; nothing here knows about folders.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

# Streaming chunk size: 64 KB
DEFAULT_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class StoreObject:
    """One raw entry from a prefix listing.

    Attributes:
        key: The full object key.
        size: Size in bytes.
        last_modified: Last modification time reported by the store, if any.
        etag: ETag with surrounding quotes stripped.
    """

    key: str
    size: int = 0
    last_modified: datetime | None = None
    etag: str = ""


@dataclass
class ListPage:
    """A single page of a prefix listing.

    Attributes:
        objects: Entries on this page, in store order.
        next_token: Opaque cursor for the next page, if the store supplied one.
        is_truncated: Whether the store reported more pages.
    """

    objects: list[StoreObject] = field(default_factory=list)
    next_token: str | None = None
    is_truncated: bool = False


@dataclass
class ObjectMetadata:
    """Metadata returned by a HEAD request."""

    key: str
    size: int = 0
    last_modified: datetime | None = None
    content_type: str = "application/octet-stream"
    etag: str = ""
    metadata: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "size": self.size,
            "lastModified": self.last_modified.isoformat() if self.last_modified else None,
            "contentType": self.content_type,
            "etag": self.etag,
            "metadata": dict(self.metadata),
        }


@dataclass
class PresignedURL:
    """A time-limited signed URL.

    Attributes:
        url: The signed URL.
        method: Upper-case HTTP method the URL is valid for.
        expires_at: Expiry as Unix seconds.
    """

    url: str
    method: str
    expires_at: int

    def to_dict(self) -> dict[str, Any]:
        return {"url": self.url, "method": self.method, "expires": self.expires_at}


class ObjectBody:
    """A streamed object body.

    Wraps any stream exposing ``async read(n)`` and ``close()`` (an
    aiobotocore ``StreamingBody`` or an in-memory equivalent). Use as an
    async context manager so the underlying connection is released as soon
    as the body has been consumed.
    """

    def __init__(
        self,
        stream: Any,
        content_type: str = "application/octet-stream",
        content_length: int = 0,
    ) -> None:
        self._stream = stream
        self.content_type = content_type
        self.content_length = content_length
        self.closed = False

    async def read(self, amount: int | None = None) -> bytes:
        return await self._stream.read(amount)

    async def iter_chunks(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> AsyncIterator[bytes]:
        """Yield the body in chunks of at most ``chunk_size`` bytes."""
        while True:
            chunk = await self._stream.read(chunk_size)
            if not chunk:
                break
            yield chunk

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._stream.close()

    async def __aenter__(self) -> "ObjectBody":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()
