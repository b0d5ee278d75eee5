"""Bucket size persistence for BucketBird."""

from typing import TYPE_CHECKING

from bucketbird.metadata.models import BucketSize
from bucketbird.metadata.store import SizeStore

if TYPE_CHECKING:
    from bucketbird.config import MetadataConfig

__all__ = [
    "BucketSize",
    "create_size_store",
    "SizeStore",
]


def create_size_store(config: "MetadataConfig") -> SizeStore:
    """Create a size store instance based on configuration.

    Args:
        config: The metadata configuration.

    Returns:
        A store implementing the SizeStore protocol.

    Raises:
        ValueError: If the engine is unknown.
    """
    engine = config.engine

    if engine == "sqlite":
        from bucketbird.metadata.sqlite import SQLiteSizeStore

        return SQLiteSizeStore(config.sqlite_path)

    elif engine == "memory":
        from bucketbird.metadata.memory import MemorySizeStore

        return MemorySizeStore()

    else:
        raise ValueError(f"Unknown metadata engine: {engine}")
