"""Abstract object store client protocol for BucketBird."""

from typing import Protocol

from bucketbird.errors import UnsupportedMethod
from bucketbird.storage.models import ListPage, ObjectBody, ObjectMetadata, PresignedURL

# Maximum number of keys accepted by a single batch delete call.
MAX_DELETE_BATCH = 1000

# Content type stored on zero-length folder marker objects.
FOLDER_CONTENT_TYPE = "application/x-directory"


class ObjectStoreClient(Protocol):
    """Protocol defining the primitive operations on a flat object namespace.

    Implementations know nothing about folders. They never retry; retry
    policy belongs to the caller. Missing buckets or keys raise
    ``NotFound``; any other store failure raises ``StoreTransportError``.
    """

    async def init(self) -> None:
        """Connect to the store."""
        ...

    async def close(self) -> None:
        """Release resources held by the client."""
        ...

    async def test_connection(self) -> None:
        """Issue a cheap request to verify credentials and reachability."""
        ...

    async def list_buckets(self) -> list[str]:
        """Return the names of every bucket visible to the credentials."""
        ...

    async def ensure_bucket(self, bucket: str) -> None:
        """Create the bucket if a HEAD reports it missing."""
        ...

    async def delete_bucket(self, bucket: str) -> None:
        """Remove every object in the bucket, then the bucket itself."""
        ...

    async def list_page(
        self,
        bucket: str,
        prefix: str = "",
        continuation_token: str | None = None,
        max_keys: int | None = None,
    ) -> ListPage:
        """Return one page of objects whose keys start with ``prefix``.

        Args:
            bucket: The bucket name.
            prefix: Key prefix to filter by ("" for the whole bucket).
            continuation_token: Opaque cursor from a previous page.
            max_keys: Optional page size hint.

        Returns:
            The page, with the next cursor and truncation flag.
        """
        ...

    async def put(
        self, bucket: str, key: str, body: bytes, content_type: str | None = None
    ) -> None:
        """Store an object's bytes."""
        ...

    async def put_empty(self, bucket: str, key: str, content_type: str | None = None) -> None:
        """Store a zero-length object (used for folder markers)."""
        ...

    async def get(self, bucket: str, key: str) -> ObjectBody:
        """Open an object's body for streaming."""
        ...

    async def head(self, bucket: str, key: str) -> ObjectMetadata:
        """Fetch an object's metadata without its body."""
        ...

    async def delete_many(self, bucket: str, keys: list[str]) -> list[str]:
        """Delete up to ``MAX_DELETE_BATCH`` keys in one quiet batch call.

        Returns:
            Keys the store reported as not deleted (empty on full success).

        Raises:
            ValueError: If more than ``MAX_DELETE_BATCH`` keys are given.
        """
        ...

    async def copy(self, bucket: str, source_key: str, destination_key: str) -> None:
        """Server-side copy within one bucket; content never leaves the store."""
        ...

    async def presign(
        self,
        bucket: str,
        key: str,
        method: str,
        expires_in: int,
        content_type: str | None = None,
    ) -> PresignedURL:
        """Create a time-limited signed GET or PUT URL for one object."""
        ...


# Presign TTL used when the caller asks for a non-positive expiry.
DEFAULT_PRESIGN_TTL = 15 * 60

_PRESIGN_METHODS = {"GET", "PUT"}


def normalize_presign_method(method: str) -> str:
    """Upper-case and validate a presign method.

    Raises:
        UnsupportedMethod: If the method is not GET or PUT.
    """
    normalized = (method or "").strip().upper()
    if normalized not in _PRESIGN_METHODS:
        raise UnsupportedMethod(normalized)
    return normalized
