"""Folder-aware delete, rename, and copy over a flat object store.

A key ending in ``/`` names a folder. Folder operations first enumerate
every key under it, then act on each key individually and collect the
per-key results into an ``OperationOutcome``. Nothing here is
transactional: a rename that fails partway leaves the keys copied so far
in place at the destination, still present at the source, and says so.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

from bucketbird.enumeration import enumerate_all
from bucketbird.errors import InvalidArgument, NotFound, StoreTransportError
from bucketbird.hierarchy import EntryKind, normalize_prefix
from bucketbird.storage.backend import (
    FOLDER_CONTENT_TYPE,
    MAX_DELETE_BATCH,
    ObjectStoreClient,
)

logger = logging.getLogger(__name__)


@dataclass
class OperationOutcome:
    """Result of a multi-key mutation.

    Attributes:
        succeeded_keys: Source keys the operation completed for.
        failed_keys: Source keys that failed or were never attempted.
        error: Description of the first failure, if any.
    """

    succeeded_keys: list[str] = field(default_factory=list)
    failed_keys: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def is_noop(self) -> bool:
        """True when nothing matched the target."""
        return not self.succeeded_keys and not self.failed_keys

    @property
    def ok(self) -> bool:
        return not self.failed_keys

    @property
    def partial(self) -> bool:
        return bool(self.succeeded_keys) and bool(self.failed_keys)

    @property
    def status(self) -> str:
        if self.is_noop:
            return "noop"
        if self.ok:
            return "ok"
        if self.partial:
            return "partial"
        return "failed"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "succeeded": list(self.succeeded_keys),
            "failed": list(self.failed_keys),
            "error": self.error,
        }


def _chunks(keys: list[str], size: int = MAX_DELETE_BATCH) -> Iterator[list[str]]:
    for start in range(0, len(keys), size):
        yield keys[start : start + size]


async def _expand(client: ObjectStoreClient, bucket: str, key: str) -> list[str]:
    """Return every key a target stands for.

    A file is a singleton. A folder is every key enumerated under it plus
    its own marker; a folder with nothing under it expands to nothing.
    """
    if EntryKind.from_key(key) is EntryKind.FILE:
        return [key]
    keys = [obj.key for obj in await enumerate_all(client, bucket, key)]
    if keys and key not in keys:
        keys.append(key)
    return keys


async def _delete_in_batches(
    client: ObjectStoreClient, bucket: str, keys: list[str]
) -> OperationOutcome:
    """Issue one batch delete per chunk; a failed chunk does not stop the rest."""
    outcome = OperationOutcome()
    for chunk in _chunks(keys):
        try:
            refused = set(await client.delete_many(bucket, chunk))
        except StoreTransportError as exc:
            logger.warning("Batch delete of %d key(s) in %s failed: %s", len(chunk), bucket, exc)
            outcome.failed_keys.extend(chunk)
            if outcome.error is None:
                outcome.error = f"failed to delete objects: {exc.message}"
            continue
        for key in chunk:
            (outcome.failed_keys if key in refused else outcome.succeeded_keys).append(key)
        if refused and outcome.error is None:
            outcome.error = f"store refused to delete {len(refused)} object(s)"
    return outcome


async def delete_keys(
    client: ObjectStoreClient, bucket: str, keys: list[str]
) -> OperationOutcome:
    """Delete files and folders.

    Every folder is expanded to its full key set (marker included) before
    anything is deleted, duplicates are dropped, and the union is deleted in
    chunks of at most ``MAX_DELETE_BATCH`` keys. Deleting something that
    does not exist is a no-op, not an error.

    Raises:
        NotFound: If the bucket does not exist.
        StoreTransportError: If enumerating a folder fails; nothing is
            deleted in that case.
    """
    targets: list[str] = []
    seen: set[str] = set()
    for key in keys:
        for expanded in await _expand(client, bucket, key):
            if expanded not in seen:
                seen.add(expanded)
                targets.append(expanded)

    if not targets:
        return OperationOutcome()

    outcome = await _delete_in_batches(client, bucket, targets)
    logger.info(
        "Deleted %d of %d object(s) in %s",
        len(outcome.succeeded_keys),
        len(targets),
        bucket,
        extra={"bucket": bucket, "operation": "delete"},
    )
    return outcome


def _plan_transfer(source: str, destination: str) -> str:
    """Validate a copy/rename pair and return the normalized destination."""
    if not source:
        raise InvalidArgument("source key is required")
    if not destination:
        raise InvalidArgument("destination key is required")

    if EntryKind.from_key(source) is EntryKind.FOLDER:
        destination = normalize_prefix(destination)
        if destination == source:
            raise InvalidArgument("source and destination are the same")
        if destination.startswith(source):
            raise InvalidArgument("cannot place a folder inside itself")
        return destination

    if destination.endswith("/"):
        raise InvalidArgument("destination for a file must not end with '/'")
    if destination == source:
        raise InvalidArgument("source and destination are the same")
    return destination


async def _transfer(
    client: ObjectStoreClient,
    bucket: str,
    source: str,
    destination: str,
    *,
    remove_source: bool,
) -> OperationOutcome:
    destination = _plan_transfer(source, destination)
    is_folder = EntryKind.from_key(source) is EntryKind.FOLDER

    if is_folder:
        enumerated = [obj.key for obj in await enumerate_all(client, bucket, source)]
        if not enumerated:
            return OperationOutcome()
        marker_present = source in enumerated
        # Descendants first, the marker last.
        keys = [k for k in enumerated if k != source] + [source]
    else:
        marker_present = False
        keys = [source]

    outcome = OperationOutcome()
    copied: list[str] = []
    for index, key in enumerate(keys):
        target = destination + key[len(source) :] if is_folder else destination
        try:
            if is_folder and key == source and not marker_present:
                # Implicit folder: give the destination a visible marker.
                await client.put_empty(bucket, target, content_type=FOLDER_CONTENT_TYPE)
            else:
                await client.copy(bucket, key, target)
        except NotFound as exc:
            if not exc.key:
                raise
            if not is_folder:
                return OperationOutcome()
            outcome.error = f"failed to copy object {key}: {exc.message}"
            outcome.failed_keys = keys[index:]
            break
        except StoreTransportError as exc:
            outcome.error = f"failed to copy object {key}: {exc.message}"
            outcome.failed_keys = keys[index:]
            break
        copied.append(key)

    if outcome.failed_keys:
        # Completed copies stay where they are; sources are left untouched.
        logger.warning(
            "Copy of %s to %s aborted after %d of %d object(s): %s",
            source,
            destination,
            len(copied),
            len(keys),
            outcome.error,
            extra={"bucket": bucket},
        )
        outcome.succeeded_keys = copied
        return outcome

    if not remove_source:
        outcome.succeeded_keys = copied
        return outcome

    return await _delete_in_batches(client, bucket, copied)


async def rename_key(
    client: ObjectStoreClient, bucket: str, source: str, destination: str
) -> OperationOutcome:
    """Rename a file or folder by copying every key and then deleting the sources.

    If any copy fails, no further copies are attempted and no source is
    deleted: keys already copied are reported as succeeded and the rest as
    failed. Renaming a folder with no contents, or a file that does not
    exist, is a no-op.

    Raises:
        InvalidArgument: For an empty, identical or self-nesting destination.
        NotFound: If the bucket does not exist.
    """
    outcome = await _transfer(client, bucket, source, destination, remove_source=True)
    logger.info(
        "Renamed %s -> %s in %s: %s",
        source,
        destination,
        bucket,
        outcome.status,
        extra={"bucket": bucket, "operation": "rename"},
    )
    return outcome


async def copy_key(
    client: ObjectStoreClient, bucket: str, source: str, destination: str
) -> OperationOutcome:
    """Copy a file or folder; sources are never deleted.

    Uses the same abort-on-first-failure policy as ``rename_key``.
    """
    outcome = await _transfer(client, bucket, source, destination, remove_source=False)
    logger.info(
        "Copied %s -> %s in %s: %s",
        source,
        destination,
        bucket,
        outcome.status,
        extra={"bucket": bucket, "operation": "copy"},
    )
    return outcome


async def create_folder(
    client: ObjectStoreClient, bucket: str, name: str, prefix: str | None = None
) -> str:
    """Create a visible empty folder by writing its marker object.

    Returns:
        The marker key, always ending in ``/``.
    """
    name = (name or "").strip("/")
    if not name:
        raise InvalidArgument("folder name is required")
    if ".." in name.split("/"):
        raise InvalidArgument("folder name must not escape its parent")
    key = normalize_prefix(prefix) + name + "/"
    await client.put_empty(bucket, key, content_type=FOLDER_CONTENT_TYPE)
    return key
