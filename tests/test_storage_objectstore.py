"""Unit tests for the S3-compatible object store client.

All tests use mocked aiobotocore; no credentials or network access are
required. The mock S3 client is injected directly onto store._client to
bypass session creation.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest
from botocore.exceptions import ClientError, EndpointConnectionError, IncompleteReadError

from bucketbird.errors import InvalidArgument, NotFound, StoreTransportError
from bucketbird.storage.objectstore import S3ObjectStore, normalize_endpoint


def _client_error(code: str, message: str = "error") -> ClientError:
    """Create a botocore ClientError with the given error code."""
    return ClientError(
        {"Error": {"Code": code, "Message": message}},
        "TestOperation",
    )


def _make_store(region="us-east-1"):
    """Create an S3ObjectStore with a mock client (skip init)."""
    store = S3ObjectStore(
        endpoint="minio.local:9000", access_key="ak", secret_key="sk", region=region
    )
    store._client = AsyncMock()
    store._client_ctx = AsyncMock()
    return store


class TestConstruction:
    def test_bare_host_gets_https(self):
        assert normalize_endpoint("minio.local:9000", True) == "https://minio.local:9000"

    def test_bare_host_gets_http(self):
        assert normalize_endpoint("minio.local:9000", False) == "http://minio.local:9000"

    def test_scheme_follows_use_ssl(self):
        """An explicit scheme is rewritten to agree with use_ssl."""
        assert normalize_endpoint("http://s3.example.com", True) == "https://s3.example.com"
        assert normalize_endpoint("https://s3.example.com", False) == "http://s3.example.com"

    def test_empty_endpoint_rejected(self):
        with pytest.raises(ValueError, match="endpoint"):
            normalize_endpoint("  ", True)

    def test_missing_credentials_rejected(self):
        with pytest.raises(ValueError, match="credentials"):
            S3ObjectStore(endpoint="minio.local", access_key="", secret_key="sk")


class TestInit:
    """Tests for init() and close()."""

    async def test_init_creates_path_style_client(self):
        with patch("bucketbird.storage.objectstore.AioSession") as mock_session_cls:
            mock_client = AsyncMock()
            mock_ctx = AsyncMock()
            mock_ctx.__aenter__ = AsyncMock(return_value=mock_client)
            mock_ctx.__aexit__ = AsyncMock(return_value=False)
            mock_session_cls.return_value.create_client.return_value = mock_ctx

            store = S3ObjectStore(
                endpoint="minio.local:9000", access_key="ak", secret_key="sk", use_ssl=False
            )
            await store.init()

            mock_session_cls.return_value.set_credentials.assert_called_once_with("ak", "sk")
            _, kwargs = mock_session_cls.return_value.create_client.call_args
            assert kwargs["endpoint_url"] == "http://minio.local:9000"
            assert kwargs["config"].s3 == {"addressing_style": "path"}
            assert kwargs["config"].signature_version == "s3v4"
            assert store._client is mock_client
            await store.close()
            mock_ctx.__aexit__.assert_awaited_once()

    async def test_close_noop_when_not_initialized(self):
        store = S3ObjectStore(endpoint="minio.local", access_key="ak", secret_key="sk")
        await store.close()  # Should not raise


class TestListPage:
    async def test_maps_contents_and_token(self):
        store = _make_store()
        ts = datetime(2024, 1, 2, tzinfo=timezone.utc)
        store._client.list_objects_v2.return_value = {
            "Contents": [
                {"Key": "a/x", "Size": 3, "LastModified": ts, "ETag": '"abc"'},
                {"Key": "a/", "Size": 0, "LastModified": ts, "ETag": '"d41d"'},
            ],
            "IsTruncated": True,
            "NextContinuationToken": "tok-2",
        }

        page = await store.list_page("b", "a/", continuation_token="tok-1")

        store._client.list_objects_v2.assert_awaited_once_with(
            Bucket="b", Prefix="a/", ContinuationToken="tok-1"
        )
        assert [o.key for o in page.objects] == ["a/x", "a/"]
        assert page.objects[0].size == 3
        assert page.objects[0].etag == "abc"
        assert page.objects[0].last_modified == ts
        assert page.is_truncated is True
        assert page.next_token == "tok-2"

    async def test_empty_page(self):
        store = _make_store()
        store._client.list_objects_v2.return_value = {"IsTruncated": False}
        page = await store.list_page("b")
        store._client.list_objects_v2.assert_awaited_once_with(Bucket="b")
        assert page.objects == []
        assert page.next_token is None

    async def test_missing_bucket(self):
        store = _make_store()
        store._client.list_objects_v2.side_effect = _client_error("NoSuchBucket")
        with pytest.raises(NotFound) as excinfo:
            await store.list_page("gone")
        assert excinfo.value.bucket == "gone"
        assert excinfo.value.key == ""

    async def test_transport_error(self):
        store = _make_store()
        store._client.list_objects_v2.side_effect = EndpointConnectionError(
            endpoint_url="http://minio.local"
        )
        with pytest.raises(StoreTransportError):
            await store.list_page("b")


class TestObjects:
    async def test_put_with_content_type(self):
        store = _make_store()
        await store.put("b", "k.txt", b"hi", content_type="text/plain")
        store._client.put_object.assert_awaited_once_with(
            Bucket="b", Key="k.txt", Body=b"hi", ContentType="text/plain"
        )

    async def test_put_empty_marker(self):
        store = _make_store()
        await store.put_empty("b", "dir/", content_type="application/x-directory")
        store._client.put_object.assert_awaited_once_with(
            Bucket="b", Key="dir/", Body=b"", ContentType="application/x-directory"
        )

    async def test_get_wraps_body(self):
        store = _make_store()
        stream = MagicMock()
        stream.read = AsyncMock(side_effect=[b"abc", b""])
        store._client.get_object.return_value = {
            "Body": stream,
            "ContentType": "text/plain",
            "ContentLength": 3,
        }

        body = await store.get("b", "k")
        async with body:
            chunks = [c async for c in body.iter_chunks(16)]

        assert chunks == [b"abc"]
        assert body.content_type == "text/plain"
        assert body.content_length == 3
        stream.close.assert_called_once()

    async def test_body_read_failure_is_transport_error(self):
        """A stream that drops mid-body raises StoreTransportError, not botocore's error."""
        store = _make_store()
        stream = MagicMock()
        stream.read = AsyncMock(
            side_effect=[b"part", IncompleteReadError(actual_bytes=4, expected_bytes=10)]
        )
        store._client.get_object.return_value = {"Body": stream, "ContentLength": 10}

        body = await store.get("b", "d/bad")
        received = []
        with pytest.raises(StoreTransportError, match="d/bad"):
            async with body:
                async for chunk in body.iter_chunks(4):
                    received.append(chunk)

        assert received == [b"part"]
        stream.close.assert_called_once()

    async def test_body_payload_error_is_transport_error(self):
        store = _make_store()
        stream = MagicMock()
        stream.read = AsyncMock(side_effect=aiohttp.ClientPayloadError("connection reset"))
        store._client.get_object.return_value = {"Body": stream}

        body = await store.get("b", "k")
        with pytest.raises(StoreTransportError):
            await body.read(10)

    async def test_get_missing_key(self):
        store = _make_store()
        store._client.get_object.side_effect = _client_error("NoSuchKey")
        with pytest.raises(NotFound) as excinfo:
            await store.get("b", "missing")
        assert excinfo.value.key == "missing"

    async def test_head_strips_etag_and_defaults_content_type(self):
        store = _make_store()
        store._client.head_object.return_value = {
            "ContentLength": 10,
            "ETag": '"xyz"',
            "Metadata": {"owner": "me"},
        }
        meta = await store.head("b", "k")
        assert meta.size == 10
        assert meta.etag == "xyz"
        assert meta.content_type == "application/octet-stream"
        assert meta.metadata == {"owner": "me"}

    async def test_head_404(self):
        """HEAD failures carry a bare 404 code rather than NoSuchKey."""
        store = _make_store()
        store._client.head_object.side_effect = _client_error("404")
        with pytest.raises(NotFound):
            await store.head("b", "k")

    async def test_copy_uses_copy_source_dict(self):
        store = _make_store()
        await store.copy("b", "a/file name.txt", "b/file name.txt")
        store._client.copy_object.assert_awaited_once_with(
            Bucket="b",
            Key="b/file name.txt",
            CopySource={"Bucket": "b", "Key": "a/file name.txt"},
        )

    async def test_other_client_error_keeps_code(self):
        store = _make_store()
        store._client.copy_object.side_effect = _client_error("SlowDown", "reduce rate")
        with pytest.raises(StoreTransportError) as excinfo:
            await store.copy("b", "x", "y")
        assert excinfo.value.store_code == "SlowDown"
        assert excinfo.value.http_status == 502


class TestDeleteMany:
    async def test_quiet_batch(self):
        store = _make_store()
        store._client.delete_objects.return_value = {}
        refused = await store.delete_many("b", ["a", "b"])
        assert refused == []
        store._client.delete_objects.assert_awaited_once_with(
            Bucket="b",
            Delete={"Objects": [{"Key": "a"}, {"Key": "b"}], "Quiet": True},
        )

    async def test_reports_refused_keys(self):
        store = _make_store()
        store._client.delete_objects.return_value = {
            "Errors": [{"Key": "b", "Code": "AccessDenied"}]
        }
        assert await store.delete_many("b", ["a", "b"]) == ["b"]

    async def test_rejects_oversized_batch(self):
        store = _make_store()
        with pytest.raises(ValueError):
            await store.delete_many("b", [f"k{i}" for i in range(1001)])
        store._client.delete_objects.assert_not_awaited()

    async def test_empty_batch_skips_call(self):
        store = _make_store()
        assert await store.delete_many("b", []) == []
        store._client.delete_objects.assert_not_awaited()


class TestBuckets:
    async def test_ensure_bucket_exists(self):
        store = _make_store()
        await store.ensure_bucket("b")
        store._client.create_bucket.assert_not_awaited()

    async def test_ensure_bucket_creates_with_region(self):
        store = _make_store(region="eu-west-1")
        store._client.head_bucket.side_effect = _client_error("404")
        await store.ensure_bucket("b")
        store._client.create_bucket.assert_awaited_once_with(
            Bucket="b", CreateBucketConfiguration={"LocationConstraint": "eu-west-1"}
        )

    async def test_ensure_bucket_forbidden(self):
        store = _make_store()
        store._client.head_bucket.side_effect = _client_error("403")
        with pytest.raises(StoreTransportError):
            await store.ensure_bucket("b")

    async def test_list_buckets(self):
        store = _make_store()
        store._client.list_buckets.return_value = {"Buckets": [{"Name": "a"}, {"Name": "b"}]}
        assert await store.list_buckets() == ["a", "b"]


class TestPresign:
    async def test_get_url(self):
        store = _make_store()
        store._client.generate_presigned_url.return_value = "https://signed/get"
        url = await store.presign("b", "k", "get", 60)
        store._client.generate_presigned_url.assert_awaited_once_with(
            "get_object", Params={"Bucket": "b", "Key": "k"}, ExpiresIn=60
        )
        assert url.method == "GET"
        assert url.url == "https://signed/get"

    async def test_put_binds_content_type(self):
        store = _make_store()
        store._client.generate_presigned_url.return_value = "https://signed/put"
        await store.presign("b", "k", "PUT", 60, content_type="image/png")
        store._client.generate_presigned_url.assert_awaited_once_with(
            "put_object",
            Params={"Bucket": "b", "Key": "k", "ContentType": "image/png"},
            ExpiresIn=60,
        )

    async def test_non_positive_ttl_uses_default(self):
        store = _make_store()
        store._client.generate_presigned_url.return_value = "https://signed/get"
        await store.presign("b", "k", "GET", 0)
        _, kwargs = store._client.generate_presigned_url.call_args
        assert kwargs["ExpiresIn"] == 15 * 60

    async def test_unsupported_method(self):
        store = _make_store()
        with pytest.raises(InvalidArgument):
            await store.presign("b", "k", "DELETE", 60)
