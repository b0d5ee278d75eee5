"""Tests for the streaming zip encoder."""

import asyncio
import io
import zipfile

import pytest

from bucketbird.archive import (
    ArchiveEntry,
    archive_filename,
    plan_entries,
    sanitize_relative_path,
    stream_zip,
)
from bucketbird.errors import NotFound, StoreTransportError, UnsafeArchivePath
from bucketbird.storage.memory import MemoryObjectStore
from bucketbird.storage.models import ObjectBody, StoreObject


class BreakingStream:
    """Serves the first ``limit`` bytes, then fails like a dropped connection."""

    def __init__(self, data, limit):
        self._data = data[:limit]
        self._pos = 0

    async def read(self, amount=None):
        if self._pos >= len(self._data):
            raise StoreTransportError("connection reset")
        chunk = self._data[self._pos : self._pos + amount]
        self._pos += len(chunk)
        return chunk

    def close(self):
        pass


class TrackingStore(MemoryObjectStore):
    """Memory store that records every body it hands out."""

    def __init__(self, fail_keys=(), explode_on=None, break_after=None) -> None:
        super().__init__(page_size=2)
        self.bodies = []
        self.max_open = 0
        self.fail_keys = set(fail_keys)
        self.explode_on = explode_on
        self.break_after = break_after or {}

    async def get(self, bucket, key):
        if key == self.explode_on:
            raise RuntimeError("disk on fire")
        if key in self.fail_keys:
            raise NotFound(bucket=bucket, key=key)
        if key in self.break_after:
            data = self._buckets[bucket][key].data
            return ObjectBody(BreakingStream(data, self.break_after[key]))
        open_now = sum(1 for b in self.bodies if not b.closed)
        self.max_open = max(self.max_open, open_now + 1)
        body = await super().get(bucket, key)
        self.bodies.append(body)
        return body


async def _store(*items, **kwargs) -> TrackingStore:
    store = TrackingStore(**kwargs)
    await store.ensure_bucket("b")
    for key, data in items:
        await store.put("b", key, data)
    return store


async def _collect(stream) -> bytes:
    return b"".join([chunk async for chunk in stream])


class TestSanitizeRelativePath:
    @pytest.mark.parametrize(
        "key,prefix,expected",
        [
            ("docs/a.txt", "docs/", "a.txt"),
            ("docs/sub/b.txt", "docs/", "sub/b.txt"),
            ("docs//c.txt", "docs/", "c.txt"),
            ("a/../b", "", "b"),
            ("x", "", "x"),
        ],
    )
    def test_safe(self, key, prefix, expected):
        assert sanitize_relative_path(key, prefix) == expected

    @pytest.mark.parametrize("key", ["../evil", "a/../../b", "..", ".", "docs/"])
    def test_unsafe(self, key):
        prefix = "docs/" if key == "docs/" else ""
        with pytest.raises(UnsafeArchivePath):
            sanitize_relative_path(key, prefix)


class TestPlanEntries:
    def test_only_safe_keys_survive(self):
        objects = [StoreObject("x"), StoreObject("../evil"), StoreObject("a/../../b")]
        planned = plan_entries(objects, "")
        assert [entry for entry, _ in planned] == [ArchiveEntry("x", "x")]

    def test_skips_own_marker_keeps_nested_folders(self):
        objects = [StoreObject("d/"), StoreObject("d/sub/"), StoreObject("d/sub/f")]
        planned = plan_entries(objects, "d/")
        assert [entry.relative_path for entry, _ in planned] == ["sub/", "sub/f"]

    def test_colliding_paths_keep_first(self):
        objects = [
            StoreObject("d/a"),
            StoreObject("d//a"),
            StoreObject("d/./a"),
            StoreObject("d/b"),
        ]
        planned = plan_entries(objects, "d/")
        assert [entry for entry, _ in planned] == [
            ArchiveEntry("d/a", "a"),
            ArchiveEntry("d/b", "b"),
        ]


class TestArchiveFilename:
    def test_names(self):
        assert archive_filename("photos/2024/") == "2024.zip"
        assert archive_filename("photos/") == "photos.zip"
        assert archive_filename("") == "download.zip"


class TestStreamZip:
    async def test_round_trip(self):
        store = await _store(
            ("d/", b""),
            ("d/a.txt", b"alpha"),
            ("d/sub/b.bin", bytes(range(256)) * 100),
            ("other.txt", b"not included"),
        )
        stream = await stream_zip(store, "b", "d/")
        assert stream.filename == "d.zip"

        data = await _collect(stream)

        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            assert sorted(zf.namelist()) == ["a.txt", "sub/b.bin"]
            assert zf.read("a.txt") == b"alpha"
            assert zf.read("sub/b.bin") == bytes(range(256)) * 100
            assert zf.testzip() is None

    async def test_bodies_closed_one_at_a_time(self):
        store = await _store(*[(f"d/f{i}", b"x" * 1000) for i in range(5)])
        await _collect(await stream_zip(store, "b", "d/", chunk_size=64))
        assert len(store.bodies) == 5
        assert all(body.closed for body in store.bodies)
        assert store.max_open == 1

    async def test_unsafe_keys_never_fetched(self):
        store = await _store(("x", b"1"), ("../evil", b"2"), ("a/../../b", b"3"))
        data = await _collect(await stream_zip(store, "b", ""))
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            assert zf.namelist() == ["x"]
        assert len(store.bodies) == 1

    async def test_failed_get_is_skipped(self):
        store = await _store(("d/a", b"a"), ("d/b", b"b"), fail_keys={"d/a"})
        data = await _collect(await stream_zip(store, "b", "d/"))
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            assert zf.namelist() == ["b"]

    async def test_colliding_paths_written_once(self):
        # Lexical listing puts "d//a" ahead of "d/a".
        store = await _store(("d/a", b"second"), ("d//a", b"first"))
        data = await _collect(await stream_zip(store, "b", "d/"))
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            assert zf.namelist() == ["a"]
            assert zf.read("a") == b"first"

    async def test_unreadable_object_is_skipped(self):
        store = await _store(
            ("d/a", b"aaaa"), ("d/b", b"bbbb"), ("d/c", b"cc"), break_after={"d/b": 0}
        )
        data = await _collect(await stream_zip(store, "b", "d/"))
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            assert zf.namelist() == ["a", "c"]

    async def test_read_failure_mid_object_aborts_stream(self):
        store = await _store(
            ("d/a", b"aaaa"),
            ("d/b", b"b" * 64),
            ("d/c", b"cc"),
            break_after={"d/b": 16},
        )
        stream = await stream_zip(store, "b", "d/", chunk_size=8, compression="store")

        received = []
        with pytest.raises(StoreTransportError, match="connection reset"):
            async for chunk in stream:
                received.append(chunk)

        partial = b"".join(received)
        assert b"b" * 8 in partial
        with pytest.raises(zipfile.BadZipFile):
            zipfile.ZipFile(io.BytesIO(partial))

    async def test_stored_compression(self):
        store = await _store(("f", b"plain"))
        data = await _collect(await stream_zip(store, "b", "", compression="store"))
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            assert zf.getinfo("f").compress_type == zipfile.ZIP_STORED

    async def test_unknown_compression(self):
        store = await _store()
        with pytest.raises(ValueError):
            await stream_zip(store, "b", "", compression="lzma9000")

    async def test_missing_bucket_raises_before_streaming(self):
        store = await _store()
        with pytest.raises(NotFound):
            await stream_zip(store, "nope", "")

    async def test_producer_error_reaches_consumer(self):
        store = await _store(("a", b"1"), ("b", b"2"), explode_on="b")
        stream = await stream_zip(store, "b", "")
        with pytest.raises(RuntimeError, match="disk on fire"):
            await _collect(stream)

    async def test_iterates_once(self):
        store = await _store(("a", b"1"))
        stream = await stream_zip(store, "b", "")
        await _collect(stream)
        with pytest.raises(RuntimeError):
            stream.__aiter__()

    async def test_early_close_cancels_producer(self):
        store = await _store(*[(f"f{i}", bytes(4096)) for i in range(20)])
        stream = await stream_zip(store, "b", "", chunk_size=512, queue_size=1, compression="store")

        agen = stream.__aiter__()
        first = await agen.__anext__()
        assert first
        await agen.aclose()

        await asyncio.sleep(0)
        leftover = [t for t in asyncio.all_tasks() if t.get_name().startswith("zip:")]
        assert leftover == []
        assert len(store.bodies) < 20
