"""In-memory bucket size store for BucketBird."""

from bucketbird.metadata.models import BucketSize, now_iso


class MemorySizeStore:
    """Size store held in a dictionary; nothing survives a restart."""

    def __init__(self) -> None:
        self._sizes: dict[str, BucketSize] = {}

    async def init_db(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def update_size(self, bucket: str, size_bytes: int) -> None:
        self._sizes[bucket] = BucketSize(bucket=bucket, size_bytes=size_bytes, updated_at=now_iso())

    async def get_size(self, bucket: str) -> BucketSize | None:
        return self._sizes.get(bucket)

    async def delete_size(self, bucket: str) -> None:
        self._sizes.pop(bucket, None)
