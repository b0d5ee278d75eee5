"""Data model types for BucketBird metadata."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from bucketbird.hierarchy import format_byte_size


def now_iso() -> str:
    """Return the current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")


@dataclass
class BucketSize:
    """The recorded size of one bucket.

    Attributes:
        bucket: The bucket name.
        size_bytes: Total bytes across every object in the bucket.
        updated_at: ISO 8601 timestamp of the recalculation that produced it.
    """

    bucket: str
    size_bytes: int = 0
    updated_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "bucket": self.bucket,
            "sizeBytes": self.size_bytes,
            "size": format_byte_size(self.size_bytes),
            "updatedAt": self.updated_at or None,
        }
