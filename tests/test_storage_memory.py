"""Tests for the in-memory object store client."""

import pytest

from bucketbird.errors import NotFound
from bucketbird.storage.memory import MemoryObjectStore


@pytest.fixture
async def mem():
    store = MemoryObjectStore(page_size=2)
    await store.init()
    await store.ensure_bucket("b")
    return store


class TestListPage:
    async def test_lexical_pages(self, mem):
        for key in ["c", "a", "b"]:
            await mem.put("b", key, b"x")

        first = await mem.list_page("b")
        assert [o.key for o in first.objects] == ["a", "b"]
        assert first.is_truncated is True

        second = await mem.list_page("b", continuation_token=first.next_token)
        assert [o.key for o in second.objects] == ["c"]
        assert second.is_truncated is False
        assert second.next_token is None

    async def test_prefix_filter(self, mem):
        await mem.put("b", "a/1", b"")
        await mem.put("b", "ab", b"")
        page = await mem.list_page("b", "a/")
        assert [o.key for o in page.objects] == ["a/1"]

    async def test_missing_bucket(self, mem):
        with pytest.raises(NotFound) as excinfo:
            await mem.list_page("nope")
        assert excinfo.value.key == ""

    def test_rejects_zero_page_size(self):
        with pytest.raises(ValueError):
            MemoryObjectStore(page_size=0)


class TestObjects:
    async def test_put_get_head(self, mem):
        await mem.put("b", "doc.txt", b"hello", content_type="text/plain")
        body = await mem.get("b", "doc.txt")
        async with body:
            assert await body.read() == b"hello"
        assert body.closed

        meta = await mem.head("b", "doc.txt")
        assert meta.size == 5
        assert meta.content_type == "text/plain"
        assert meta.etag

    async def test_get_missing_key(self, mem):
        with pytest.raises(NotFound) as excinfo:
            await mem.get("b", "nope")
        assert excinfo.value.key == "nope"

    async def test_copy_and_delete(self, mem):
        await mem.put("b", "src", b"data")
        await mem.copy("b", "src", "dst")
        assert await mem.delete_many("b", ["src", "never-existed"]) == []
        page = await mem.list_page("b")
        assert [o.key for o in page.objects] == ["dst"]

    async def test_delete_bucket(self, mem):
        await mem.put("b", "x", b"")
        await mem.delete_bucket("b")
        assert await mem.list_buckets() == []

    async def test_presign_default_ttl(self, mem):
        url = await mem.presign("b", "x y", "put", 0, content_type="text/plain")
        assert url.method == "PUT"
        assert url.url.startswith("memory://b/x%20y?method=PUT")
        assert "content-type=text%2Fplain" in url.url
