"""In-memory object store client for BucketBird.

Implements the ObjectStoreClient protocol using Python dictionaries. Keys
are listed in lexical order like S3, and the page size is configurable so
pagination behaviour can be exercised without a real store. Nothing
survives a restart.
"""

import base64
import hashlib
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from urllib.parse import quote

from bucketbird.errors import NotFound
from bucketbird.storage.backend import (
    DEFAULT_PRESIGN_TTL,
    MAX_DELETE_BATCH,
    normalize_presign_method,
)
from bucketbird.storage.models import (
    ListPage,
    ObjectBody,
    ObjectMetadata,
    PresignedURL,
    StoreObject,
)

logger = logging.getLogger(__name__)


@dataclass
class _StoredObject:
    data: bytes
    content_type: str
    last_modified: datetime
    etag: str
    metadata: dict[str, str] = field(default_factory=dict)


class _BytesStream:
    """Async read/close shim over an in-memory bytes value."""

    def __init__(self, data: bytes) -> None:
        self._data = data
        self._pos = 0
        self.closed = False

    async def read(self, amount: int | None = None) -> bytes:
        if amount is None or amount < 0:
            amount = len(self._data) - self._pos
        chunk = self._data[self._pos : self._pos + amount]
        self._pos += len(chunk)
        return chunk

    def close(self) -> None:
        self.closed = True


def _encode_token(key: str) -> str:
    return base64.urlsafe_b64encode(key.encode("utf-8")).decode("ascii")


def _decode_token(token: str) -> str:
    return base64.urlsafe_b64decode(token.encode("ascii")).decode("utf-8")


class MemoryObjectStore:
    """Object store client that holds every bucket in memory.

    Attributes:
        page_size: Maximum number of keys returned by one ``list_page`` call.
    """

    def __init__(self, page_size: int = 1000) -> None:
        """Initialize the memory store.

        Args:
            page_size: Default listing page size. Must be at least 1.
        """
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        self.page_size = page_size
        # bucket -> key -> stored object
        self._buckets: dict[str, dict[str, _StoredObject]] = {}

    async def init(self) -> None:
        logger.info("Memory object store initialized (page_size=%d)", self.page_size)

    async def close(self) -> None:
        pass

    def _bucket(self, bucket: str) -> dict[str, _StoredObject]:
        try:
            return self._buckets[bucket]
        except KeyError:
            raise NotFound(bucket=bucket) from None

    def _object(self, bucket: str, key: str) -> _StoredObject:
        try:
            return self._bucket(bucket)[key]
        except KeyError:
            raise NotFound(bucket=bucket, key=key) from None

    async def test_connection(self) -> None:
        pass

    async def list_buckets(self) -> list[str]:
        return sorted(self._buckets)

    async def ensure_bucket(self, bucket: str) -> None:
        self._buckets.setdefault(bucket, {})

    async def delete_bucket(self, bucket: str) -> None:
        self._bucket(bucket)
        del self._buckets[bucket]

    async def list_page(
        self,
        bucket: str,
        prefix: str = "",
        continuation_token: str | None = None,
        max_keys: int | None = None,
    ) -> ListPage:
        objects = self._bucket(bucket)
        limit = min(max_keys or self.page_size, self.page_size)
        start_after = _decode_token(continuation_token) if continuation_token else None

        matching = sorted(
            k for k in objects if k.startswith(prefix) and (start_after is None or k > start_after)
        )
        page_keys = matching[:limit]
        truncated = len(matching) > limit
        return ListPage(
            objects=[
                StoreObject(
                    key=k,
                    size=len(objects[k].data),
                    last_modified=objects[k].last_modified,
                    etag=objects[k].etag,
                )
                for k in page_keys
            ],
            next_token=_encode_token(page_keys[-1]) if truncated else None,
            is_truncated=truncated,
        )

    async def put(
        self, bucket: str, key: str, body: bytes, content_type: str | None = None
    ) -> None:
        self._bucket(bucket)[key] = _StoredObject(
            data=bytes(body),
            content_type=content_type or "application/octet-stream",
            last_modified=datetime.now(timezone.utc),
            etag=hashlib.md5(body).hexdigest(),
        )

    async def put_empty(self, bucket: str, key: str, content_type: str | None = None) -> None:
        await self.put(bucket, key, b"", content_type=content_type)

    async def get(self, bucket: str, key: str) -> ObjectBody:
        obj = self._object(bucket, key)
        return ObjectBody(
            _BytesStream(obj.data),
            content_type=obj.content_type,
            content_length=len(obj.data),
        )

    async def head(self, bucket: str, key: str) -> ObjectMetadata:
        obj = self._object(bucket, key)
        return ObjectMetadata(
            key=key,
            size=len(obj.data),
            last_modified=obj.last_modified,
            content_type=obj.content_type,
            etag=obj.etag,
            metadata=dict(obj.metadata),
        )

    async def delete_many(self, bucket: str, keys: list[str]) -> list[str]:
        if len(keys) > MAX_DELETE_BATCH:
            raise ValueError(f"at most {MAX_DELETE_BATCH} keys per delete call, got {len(keys)}")
        objects = self._bucket(bucket)
        for key in keys:
            objects.pop(key, None)
        return []

    async def copy(self, bucket: str, source_key: str, destination_key: str) -> None:
        src = self._object(bucket, source_key)
        self._bucket(bucket)[destination_key] = _StoredObject(
            data=src.data,
            content_type=src.content_type,
            last_modified=datetime.now(timezone.utc),
            etag=src.etag,
            metadata=dict(src.metadata),
        )

    async def presign(
        self,
        bucket: str,
        key: str,
        method: str,
        expires_in: int,
        content_type: str | None = None,
    ) -> PresignedURL:
        method = normalize_presign_method(method)
        if expires_in <= 0:
            expires_in = DEFAULT_PRESIGN_TTL
        expires_at = int(time.time()) + expires_in
        url = f"memory://{bucket}/{quote(key)}?method={method}&expires={expires_at}"
        if method == "PUT" and content_type:
            url += f"&content-type={quote(content_type, safe='')}"
        return PresignedURL(url=url, method=method, expires_at=expires_at)
