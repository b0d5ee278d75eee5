"""Streaming zip download of a folder.

The archive is built by a producer task that fetches one object at a time
and writes it through ``zipfile`` into a non-seekable sink. The sink's
bytes travel to the consumer over a bounded ``asyncio.Queue``, so the
caller receives the first bytes before the last object is fetched and
memory stays bounded by the queue size.

Closing the consumer early cancels the producer; a failure in the producer
is re-raised in the consumer. Such a stream ends without a central
directory, so a client never mistakes it for a complete archive.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import posixpath
import zipfile
from collections.abc import AsyncIterator
from dataclasses import dataclass

from bucketbird import metrics
from bucketbird.enumeration import enumerate_all
from bucketbird.errors import NotFound, StoreTransportError, UnsafeArchivePath
from bucketbird.hierarchy import normalize_prefix
from bucketbird.storage.backend import ObjectStoreClient
from bucketbird.storage.models import DEFAULT_CHUNK_SIZE, StoreObject

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 8

_COMPRESSION = {
    "deflate": zipfile.ZIP_DEFLATED,
    "store": zipfile.ZIP_STORED,
}

# Earliest timestamp the zip format can represent.
_ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)

_EOF = object()


@dataclass(frozen=True)
class ArchiveEntry:
    """An object accepted into the archive under its sanitized path."""

    source_key: str
    relative_path: str


def sanitize_relative_path(key: str, prefix: str) -> str:
    """Return ``key`` relative to ``prefix``, cleaned for use inside a zip.

    Raises:
        UnsafeArchivePath: If the cleaned path is empty, ``.``, or climbs
            out of the archive root through a ``..`` segment.
    """
    relative = key[len(prefix) :] if key.startswith(prefix) else key
    cleaned = posixpath.normpath(relative).lstrip("/") if relative else ""
    if cleaned in ("", "."):
        raise UnsafeArchivePath(key)
    if ".." in cleaned.split("/"):
        raise UnsafeArchivePath(key)
    return cleaned


def archive_filename(prefix: str) -> str:
    """Suggested download name: ``<folder>.zip`` or ``download.zip`` for the root."""
    folder = prefix.rstrip("/").rsplit("/", 1)[-1]
    return f"{folder or 'download'}.zip"


def plan_entries(objects: list[StoreObject], prefix: str) -> list[tuple[ArchiveEntry, StoreObject]]:
    """Pair every enumerated object with its archive path.

    Unsafe paths are dropped. Distinct keys that clean to the same path
    (``d/a`` and ``d//a``) keep only the first in enumeration order.
    """
    planned: list[tuple[ArchiveEntry, StoreObject]] = []
    used: set[str] = set()
    for obj in objects:
        if obj.key == prefix:
            continue
        try:
            relative = sanitize_relative_path(obj.key, prefix)
        except UnsafeArchivePath:
            logger.warning("Skipping object with unsafe path", extra={"key": obj.key})
            metrics.record_archive_entry("skipped_unsafe")
            continue
        if obj.key.endswith("/"):
            # Nested folder marker: keep empty folders as directory entries.
            relative += "/"
        if relative in used:
            logger.warning(
                "Skipping object whose archive path %s is already taken",
                relative,
                extra={"key": obj.key},
            )
            metrics.record_archive_entry("skipped_duplicate")
            continue
        used.add(relative)
        planned.append((ArchiveEntry(obj.key, relative), obj))
    return planned


class _ChunkSink:
    """Write-only, non-seekable file object that collects zip output.

    ``zipfile`` detects the missing ``tell``/``seek`` and switches to data
    descriptors, which is what makes single-pass streaming possible.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()

    def write(self, data: bytes) -> int:
        self._buffer.extend(data)
        return len(data)

    def flush(self) -> None:
        pass

    def take(self) -> bytes:
        data = bytes(self._buffer)
        self._buffer.clear()
        return data

    def __len__(self) -> int:
        return len(self._buffer)


def _zip_info(entry: ArchiveEntry, obj: StoreObject, compression: int) -> zipfile.ZipInfo:
    date_time = _ZIP_EPOCH
    if obj.last_modified is not None and obj.last_modified.year >= 1980:
        date_time = obj.last_modified.timetuple()[:6]
    info = zipfile.ZipInfo(entry.relative_path, date_time=date_time)
    info.compress_type = compression
    # Lets zipfile choose zip64 headers up front for large objects.
    info.file_size = obj.size
    return info


class ZipStream:
    """An archive of one folder, ready to be iterated exactly once.

    Attributes:
        filename: Suggested download filename.
        entries: The archive entries, in write order.
    """

    def __init__(
        self,
        client: ObjectStoreClient,
        bucket: str,
        prefix: str,
        planned: list[tuple[ArchiveEntry, StoreObject]],
        *,
        compression: int = zipfile.ZIP_DEFLATED,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ) -> None:
        self._client = client
        self._bucket = bucket
        self._prefix = prefix
        self._planned = planned
        self._compression = compression
        self._chunk_size = chunk_size
        self._queue_size = max(1, queue_size)
        self._started = False
        self.filename = archive_filename(prefix)
        self.entries = [entry for entry, _ in planned]

    def __aiter__(self) -> AsyncIterator[bytes]:
        if self._started:
            raise RuntimeError("ZipStream can only be iterated once")
        self._started = True
        return self._consume()

    async def _consume(self) -> AsyncIterator[bytes]:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        producer = asyncio.create_task(
            self._produce(queue), name=f"zip:{self._bucket}/{self._prefix}"
        )
        try:
            while True:
                item = await queue.get()
                if item is _EOF:
                    break
                if isinstance(item, BaseException):
                    raise item
                yield item
            await producer
        finally:
            if not producer.done():
                producer.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await producer

    async def _drain(self, sink: _ChunkSink, queue: asyncio.Queue, force: bool = False) -> None:
        if len(sink) >= self._chunk_size or (force and len(sink)):
            await queue.put(sink.take())

    async def _produce(self, queue: asyncio.Queue) -> None:
        try:
            sink = _ChunkSink()
            written = 0
            with zipfile.ZipFile(
                sink, mode="w", compression=self._compression, allowZip64=True
            ) as archive:
                for entry, obj in self._planned:
                    if await self._write_entry(archive, sink, queue, entry, obj):
                        written += 1
                        metrics.record_archive_entry("written")
                    else:
                        metrics.record_archive_entry("skipped_error")
                    await self._drain(sink, queue, force=True)
            await self._drain(sink, queue, force=True)
            logger.info(
                "Streamed %d of %d object(s) from %s/%s",
                written,
                len(self._planned),
                self._bucket,
                self._prefix,
            )
        except Exception as exc:
            logger.exception("Zip stream for %s/%s failed", self._bucket, self._prefix)
            await queue.put(exc)
            return
        await queue.put(_EOF)

    async def _write_entry(
        self,
        archive: zipfile.ZipFile,
        sink: _ChunkSink,
        queue: asyncio.Queue,
        entry: ArchiveEntry,
        obj: StoreObject,
    ) -> bool:
        """Copy one object into the archive; its body is closed before returning.

        Returns False, with nothing written, when the object cannot be
        fetched or its first chunk cannot be read. Once the entry header is
        in the archive a read failure propagates: a streamed entry cannot be
        withdrawn, and finishing it would leave a truncated file.
        """
        if entry.relative_path.endswith("/"):
            archive.writestr(entry.relative_path, b"")
            return True

        try:
            body = await self._client.get(self._bucket, entry.source_key)
        except (NotFound, StoreTransportError) as exc:
            logger.warning("Failed to get object for zip: %s", exc, extra={"key": entry.source_key})
            return False

        async with body:
            chunks = body.iter_chunks(self._chunk_size)
            try:
                first = await anext(chunks, b"")
            except StoreTransportError as exc:
                logger.warning(
                    "Failed to read object for zip: %s", exc, extra={"key": entry.source_key}
                )
                return False

            with archive.open(_zip_info(entry, obj, self._compression), mode="w") as dest:
                dest.write(first)
                await self._drain(sink, queue)
                async for chunk in chunks:
                    dest.write(chunk)
                    await self._drain(sink, queue)
        return True


async def stream_zip(
    client: ObjectStoreClient,
    bucket: str,
    prefix: str,
    *,
    compression: str = "deflate",
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    queue_size: int = DEFAULT_QUEUE_SIZE,
) -> ZipStream:
    """Enumerate ``prefix`` and return a stream that zips everything under it.

    Enumeration happens here, before any byte is produced, so listing
    errors surface to the caller while it can still choose a status code.

    Raises:
        NotFound: If the bucket does not exist.
        StoreTransportError: If enumeration fails.
    """
    prefix = normalize_prefix(prefix)
    try:
        compress_type = _COMPRESSION[compression]
    except KeyError:
        raise ValueError(f"Unknown archive compression: {compression}") from None

    objects = await enumerate_all(client, bucket, prefix)
    return ZipStream(
        client,
        bucket,
        prefix,
        plan_entries(objects, prefix),
        compression=compress_type,
        chunk_size=chunk_size,
        queue_size=queue_size,
    )
