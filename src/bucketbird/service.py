"""Bucket-scoped facade over the object core.

``BucketObjectService`` is what request handlers call. It combines
enumeration, projection, the recursive operations, the zip encoder and the
size recalculator, records metrics, and schedules a size recalculation
after every mutation. It also creates, lists and deletes whole buckets.
"""

from __future__ import annotations

import contextlib
import logging
import re

from bucketbird import metrics
from bucketbird.archive import ZipStream, stream_zip
from bucketbird.config import ArchiveConfig, PresignConfig
from bucketbird.enumeration import enumerate_all
from bucketbird.errors import InvalidArgument
from bucketbird.hierarchy import (
    ObjectEntry,
    normalize_prefix,
    project,
    search_entries,
    sort_entries,
)
from bucketbird.metadata.models import BucketSize
from bucketbird.metadata.store import SizeStore
from bucketbird.operations import (
    OperationOutcome,
    copy_key,
    create_folder,
    delete_keys,
    rename_key,
)
from bucketbird.sizing import SizeRecalculator
from bucketbird.storage.backend import ObjectStoreClient, normalize_presign_method
from bucketbird.storage.models import ObjectBody, ObjectMetadata, PresignedURL

logger = logging.getLogger(__name__)


# S3 bucket naming: 3-63 lowercase letters, digits, dots and hyphens,
# starting and ending with a letter or digit, not shaped like an IP address.
_BUCKET_RE = re.compile(r"^[a-z0-9][a-z0-9.\-]{1,61}[a-z0-9]$")
_IP_RE = re.compile(r"^\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}$")


def validate_bucket_name(name: str) -> None:
    """Raise InvalidArgument unless ``name`` is a valid S3 bucket name."""
    if not _BUCKET_RE.match(name) or _IP_RE.match(name) or ".." in name:
        raise InvalidArgument(f"invalid bucket name: {name}")


class BucketObjectService:
    """Folder-aware operations on the buckets of one object store.

    Attributes:
        client: The object store client.
        size_store: Persisted bucket sizes.
        recalculator: Background size recalculation.
        archive_config: Zip streaming settings.
        presign_config: Presigned URL defaults.
    """

    def __init__(
        self,
        client: ObjectStoreClient,
        size_store: SizeStore,
        *,
        recalculator: SizeRecalculator | None = None,
        archive_config: ArchiveConfig | None = None,
        presign_config: PresignConfig | None = None,
    ) -> None:
        self.client = client
        self.size_store = size_store
        self.recalculator = recalculator or SizeRecalculator(client, size_store)
        self.archive_config = archive_config or ArchiveConfig()
        self.presign_config = presign_config or PresignConfig()

    # -- Buckets --------------------------------------------------------------

    async def list_buckets(self) -> list[str]:
        return await self.client.list_buckets()

    async def create_bucket(self, bucket: str) -> None:
        """Create ``bucket``; an existing bucket is left untouched.

        Raises:
            InvalidArgument: If the name breaks the S3 bucket naming rules.
        """
        validate_bucket_name(bucket)
        await self.client.ensure_bucket(bucket)
        logger.info("Created bucket", extra={"bucket": bucket, "operation": "create_bucket"})

    async def delete_bucket(self, bucket: str) -> None:
        """Delete ``bucket`` with every object in it and forget its size.

        Raises:
            NotFound: If the bucket does not exist.
        """
        await self.client.delete_bucket(bucket)
        await self.size_store.delete_size(bucket)
        if metrics.bucket_size_bytes is not None:
            with contextlib.suppress(KeyError):
                metrics.bucket_size_bytes.remove(bucket)
        logger.info("Deleted bucket", extra={"bucket": bucket, "operation": "delete_bucket"})

    # -- Browsing -------------------------------------------------------------

    async def list_objects(
        self,
        bucket: str,
        prefix: str | None = None,
        sort_by: str = "name",
        descending: bool = False,
    ) -> list[ObjectEntry]:
        """List the immediate children of a folder.

        Args:
            bucket: The bucket name.
            prefix: The folder to list; ``None`` or ``""`` is the bucket root.
            sort_by: One of ``hierarchy.SORT_FIELDS``.
            descending: Reverse the order within folders and within files.

        Returns:
            Folder entries followed by file entries.

        Raises:
            NotFound: If the bucket does not exist.
            InvalidArgument: If ``sort_by`` is unknown.
            StoreTransportError: If enumeration fails.
        """
        prefix = normalize_prefix(prefix)
        objects = await enumerate_all(self.client, bucket, prefix)
        entries = project(objects, prefix)
        if sort_by != "name" or descending:
            entries = sort_entries(entries, sort_by, descending)
        return entries

    async def search(self, bucket: str, query: str) -> list[ObjectEntry]:
        """Find every key in the bucket whose path contains ``query``."""
        query = (query or "").strip()
        if not query:
            raise InvalidArgument("search query is required")
        objects = await enumerate_all(self.client, bucket, "")
        return search_entries(objects, query)

    async def metadata(self, bucket: str, key: str) -> ObjectMetadata:
        if not key:
            raise InvalidArgument("key is required")
        return await self.client.head(bucket, key)

    async def download_object(self, bucket: str, key: str) -> ObjectBody:
        """Open a single object for streaming. The caller must close the body."""
        if not key or key.endswith("/"):
            raise InvalidArgument("key must name a file")
        return await self.client.get(bucket, key)

    async def zip_folder(self, bucket: str, prefix: str | None) -> ZipStream:
        """Enumerate a folder and return a zip stream over its contents."""
        return await stream_zip(
            self.client,
            bucket,
            normalize_prefix(prefix),
            compression=self.archive_config.compression,
            chunk_size=self.archive_config.chunk_size,
            queue_size=self.archive_config.queue_size,
        )

    async def presign(
        self,
        bucket: str,
        key: str,
        method: str = "GET",
        expires_in: int | None = None,
        content_type: str | None = None,
    ) -> PresignedURL:
        """Create a signed URL for one object.

        Raises:
            InvalidArgument: If the key is empty.
            UnsupportedMethod: If the method is not GET or PUT.
        """
        if not key:
            raise InvalidArgument("key is required")
        method = normalize_presign_method(method)
        if expires_in is None or expires_in <= 0:
            expires_in = self.presign_config.default_expires_seconds
        return await self.client.presign(
            bucket,
            key,
            method,
            expires_in,
            content_type=content_type if method == "PUT" else None,
        )

    # -- Mutations ------------------------------------------------------------

    async def upload(
        self, bucket: str, key: str, body: bytes, content_type: str | None = None
    ) -> None:
        if not key or key.endswith("/"):
            raise InvalidArgument("key must name a file")
        await self.client.put(bucket, key, body, content_type=content_type)
        logger.info(
            "Uploaded %d byte(s)",
            len(body),
            extra={"bucket": bucket, "key": key, "operation": "upload"},
        )
        self.recalculator.schedule(bucket)

    async def create_folder(self, bucket: str, name: str, prefix: str | None = None) -> str:
        key = await create_folder(self.client, bucket, name, prefix)
        logger.info("Created folder", extra={"bucket": bucket, "key": key, "operation": "mkdir"})
        return key

    async def delete(self, bucket: str, keys: list[str]) -> OperationOutcome:
        if not keys:
            raise InvalidArgument("at least one key is required")
        outcome = await delete_keys(self.client, bucket, keys)
        return self._finish(bucket, "delete", outcome)

    async def rename(self, bucket: str, source: str, destination: str) -> OperationOutcome:
        outcome = await rename_key(self.client, bucket, source, destination)
        return self._finish(bucket, "rename", outcome)

    async def copy(self, bucket: str, source: str, destination: str) -> OperationOutcome:
        outcome = await copy_key(self.client, bucket, source, destination)
        return self._finish(bucket, "copy", outcome)

    def _finish(self, bucket: str, operation: str, outcome: OperationOutcome) -> OperationOutcome:
        metrics.record_outcome(operation, outcome.status, len(outcome.succeeded_keys))
        if outcome.succeeded_keys:
            self.recalculator.schedule(bucket)
        return outcome

    # -- Sizes ----------------------------------------------------------------

    async def get_size(self, bucket: str) -> BucketSize:
        """Return the last persisted size, or zero if never calculated."""
        stored = await self.size_store.get_size(bucket)
        if stored is None:
            return BucketSize(bucket=bucket)
        return stored

    async def recalculate_size(self, bucket: str) -> BucketSize:
        await self.recalculator.recalculate_now(bucket)
        return await self.get_size(bucket)
