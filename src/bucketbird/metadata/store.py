"""Abstract bucket size store protocol for BucketBird."""

from typing import Protocol

from bucketbird.metadata.models import BucketSize


class SizeStore(Protocol):
    """Protocol for persisting the aggregated size of each bucket.

    This is the only durable state the object core writes. The full bucket
    record (owner, credentials, description) belongs to the application's
    own metadata database; implementations here only keep the size.
    """

    async def init_db(self) -> None:
        """Initialize storage. Must be idempotent (safe on every startup)."""
        ...

    async def close(self) -> None:
        """Release resources."""
        ...

    async def update_size(self, bucket: str, size_bytes: int) -> None:
        """Record the latest total for a bucket, replacing any previous value.

        Args:
            bucket: The bucket name.
            size_bytes: Sum of every object size in the bucket.
        """
        ...

    async def get_size(self, bucket: str) -> BucketSize | None:
        """Return the last recorded total, or None if never recorded."""
        ...

    async def delete_size(self, bucket: str) -> None:
        """Forget the recorded total of a deleted bucket. No-op if none exists."""
        ...
