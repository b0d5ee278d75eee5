"""S3-compatible object store client for BucketBird.

Thin adapter over aiobotocore exposing the primitive operations of a flat
object namespace. Every botocore failure is translated at this boundary:
missing buckets/keys become ``NotFound``, everything else becomes
``StoreTransportError``. Requests are never retried here.
"""

import asyncio
import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from urllib.parse import urlsplit, urlunsplit

import aiohttp
from aiobotocore.session import AioSession
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from bucketbird.errors import NotFound, StoreTransportError
from bucketbird.storage.backend import (
    DEFAULT_PRESIGN_TTL,
    MAX_DELETE_BATCH,
    normalize_presign_method,
)
from bucketbird.storage.models import (
    ListPage,
    ObjectBody,
    ObjectMetadata,
    PresignedURL,
    StoreObject,
)

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"NoSuchKey", "NoSuchBucket", "NotFound", "404"}
_BUCKET_NOT_FOUND_CODES = {"NoSuchBucket"}


def normalize_endpoint(endpoint: str, use_ssl: bool) -> str:
    """Return ``endpoint`` with a scheme matching ``use_ssl``.

    A bare host gets ``https://`` or ``http://``; an explicit scheme is
    rewritten to agree with the flag.

    Raises:
        ValueError: If the endpoint is empty.
    """
    endpoint = (endpoint or "").strip()
    if not endpoint:
        raise ValueError("s3 endpoint is required")
    if "://" not in endpoint:
        endpoint = f"{'https' if use_ssl else 'http'}://{endpoint}"
    parts = urlsplit(endpoint)
    scheme = "https" if use_ssl else "http"
    return urlunsplit((scheme, parts.netloc, parts.path, parts.query, parts.fragment))


def _error_code(exc: Exception) -> str:
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code", "")
    return ""


@contextmanager
def _translate_errors(bucket: str, key: str = "") -> Iterator[None]:
    """Map botocore exceptions onto the BucketBird error taxonomy."""
    try:
        yield
    except ClientError as e:
        code = _error_code(e)
        if code in _BUCKET_NOT_FOUND_CODES:
            raise NotFound(bucket=bucket) from e
        if code in _NOT_FOUND_CODES:
            raise NotFound(bucket=bucket, key=key) from e
        raise StoreTransportError(str(e), store_code=code) from e
    except BotoCoreError as e:
        raise StoreTransportError(str(e)) from e


class _S3BodyStream:
    """Wraps an aiobotocore ``StreamingBody`` so read failures are translated.

    A connection dropped mid-body surfaces from botocore
    (``IncompleteReadError``, ``ResponseStreamingError``) or from aiohttp
    (``ClientPayloadError``) and becomes ``StoreTransportError``.
    """

    def __init__(self, body, bucket: str, key: str) -> None:
        self._body = body
        self._bucket = bucket
        self._key = key

    async def read(self, amount: int | None = None) -> bytes:
        try:
            return await self._body.read(amount)
        except (BotoCoreError, aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise StoreTransportError(
                f"failed to read {self._bucket}/{self._key}: {e}"
            ) from e

    def close(self) -> None:
        self._body.close()


class S3ObjectStore:
    """Object store client backed by any S3-compatible endpoint.

    Uses path-style addressing and SigV4 signing so it works against
    MinIO, Ceph, Garage and AWS alike.

    Attributes:
        endpoint_url: Normalized endpoint URL including scheme.
        region: Region used for signing.
    """

    def __init__(
        self,
        endpoint: str,
        access_key: str,
        secret_key: str,
        region: str = "us-east-1",
        use_ssl: bool = True,
    ) -> None:
        if not access_key or not secret_key:
            raise ValueError("s3 credentials are required")
        self.endpoint_url = normalize_endpoint(endpoint, use_ssl)
        self.region = region or "us-east-1"
        self._access_key = access_key
        self._secret_key = secret_key
        self._session = AioSession()
        self._client = None
        self._client_ctx = None

    async def init(self) -> None:
        """Create the aiobotocore S3 client."""
        self._session.set_credentials(self._access_key, self._secret_key)
        self._client_ctx = self._session.create_client(
            "s3",
            region_name=self.region,
            endpoint_url=self.endpoint_url,
            config=BotoConfig(
                signature_version="s3v4",
                s3={"addressing_style": "path"},
                retries={"max_attempts": 1, "mode": "standard"},
            ),
        )
        self._client = await self._client_ctx.__aenter__()
        logger.info("S3 object store client initialized: endpoint=%s", self.endpoint_url)

    async def close(self) -> None:
        """Close the aiobotocore client session."""
        if self._client_ctx is not None:
            await self._client_ctx.__aexit__(None, None, None)
            self._client = None
            self._client_ctx = None

    async def test_connection(self) -> None:
        with _translate_errors(""):
            await self._client.list_buckets()

    async def list_buckets(self) -> list[str]:
        with _translate_errors(""):
            resp = await self._client.list_buckets()
        return [b["Name"] for b in resp.get("Buckets", [])]

    async def ensure_bucket(self, bucket: str) -> None:
        """Create ``bucket`` unless a HEAD finds it already present."""
        try:
            await self._client.head_bucket(Bucket=bucket)
            return
        except ClientError as e:
            if _error_code(e) not in _NOT_FOUND_CODES:
                raise StoreTransportError(str(e), store_code=_error_code(e)) from e
        except BotoCoreError as e:
            raise StoreTransportError(str(e)) from e

        kwargs: dict = {"Bucket": bucket}
        if self.region != "us-east-1":
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": self.region}
        with _translate_errors(bucket):
            await self._client.create_bucket(**kwargs)
        logger.info("Created bucket %s", bucket)

    async def delete_bucket(self, bucket: str) -> None:
        """Empty the bucket page by page, then delete it.

        Each listing page holds at most 1000 keys, matching the batch delete
        limit, so pages are deleted as they arrive.
        """
        with _translate_errors(bucket):
            paginator = self._client.get_paginator("list_objects_v2")
            async for page in paginator.paginate(Bucket=bucket):
                contents = page.get("Contents", [])
                if not contents:
                    continue
                objects = [{"Key": obj["Key"]} for obj in contents]
                await self._client.delete_objects(
                    Bucket=bucket,
                    Delete={"Objects": objects, "Quiet": True},
                )
            await self._client.delete_bucket(Bucket=bucket)
        logger.info("Deleted bucket %s", bucket)

    async def list_page(
        self,
        bucket: str,
        prefix: str = "",
        continuation_token: str | None = None,
        max_keys: int | None = None,
    ) -> ListPage:
        params: dict = {"Bucket": bucket}
        if prefix:
            params["Prefix"] = prefix
        if continuation_token:
            params["ContinuationToken"] = continuation_token
        if max_keys:
            params["MaxKeys"] = max_keys

        with _translate_errors(bucket):
            resp = await self._client.list_objects_v2(**params)

        objects = [
            StoreObject(
                key=obj["Key"],
                size=int(obj.get("Size") or 0),
                last_modified=obj.get("LastModified"),
                etag=(obj.get("ETag") or "").strip('"'),
            )
            for obj in resp.get("Contents", [])
            if obj.get("Key") is not None
        ]
        return ListPage(
            objects=objects,
            next_token=resp.get("NextContinuationToken"),
            is_truncated=bool(resp.get("IsTruncated", False)),
        )

    async def put(
        self, bucket: str, key: str, body: bytes, content_type: str | None = None
    ) -> None:
        kwargs: dict = {"Bucket": bucket, "Key": key, "Body": body}
        if content_type:
            kwargs["ContentType"] = content_type
        with _translate_errors(bucket, key):
            await self._client.put_object(**kwargs)

    async def put_empty(self, bucket: str, key: str, content_type: str | None = None) -> None:
        await self.put(bucket, key, b"", content_type=content_type)

    async def get(self, bucket: str, key: str) -> ObjectBody:
        """Open an object for streaming.

        Raises:
            NotFound: If the object does not exist.
        """
        with _translate_errors(bucket, key):
            resp = await self._client.get_object(Bucket=bucket, Key=key)
        return ObjectBody(
            _S3BodyStream(resp["Body"], bucket, key),
            content_type=resp.get("ContentType") or "application/octet-stream",
            content_length=int(resp.get("ContentLength") or 0),
        )

    async def head(self, bucket: str, key: str) -> ObjectMetadata:
        with _translate_errors(bucket, key):
            resp = await self._client.head_object(Bucket=bucket, Key=key)
        return ObjectMetadata(
            key=key,
            size=int(resp.get("ContentLength") or 0),
            last_modified=resp.get("LastModified"),
            content_type=resp.get("ContentType") or "application/octet-stream",
            etag=(resp.get("ETag") or "").strip('"'),
            metadata=dict(resp.get("Metadata") or {}),
        )

    async def delete_many(self, bucket: str, keys: list[str]) -> list[str]:
        """Batch-delete ``keys`` in quiet mode.

        Quiet mode only reports failures, so the returned list is the set of
        keys the store refused to delete.
        """
        if len(keys) > MAX_DELETE_BATCH:
            raise ValueError(f"at most {MAX_DELETE_BATCH} keys per delete call, got {len(keys)}")
        if not keys:
            return []
        with _translate_errors(bucket):
            resp = await self._client.delete_objects(
                Bucket=bucket,
                Delete={"Objects": [{"Key": k} for k in keys], "Quiet": True},
            )
        failed = [err["Key"] for err in resp.get("Errors", []) if "Key" in err]
        if failed:
            logger.warning("Store refused to delete %d key(s) in %s", len(failed), bucket)
        return failed

    async def copy(self, bucket: str, source_key: str, destination_key: str) -> None:
        """Server-side copy; botocore escapes the copy source key."""
        with _translate_errors(bucket, source_key):
            await self._client.copy_object(
                Bucket=bucket,
                Key=destination_key,
                CopySource={"Bucket": bucket, "Key": source_key},
            )

    async def presign(
        self,
        bucket: str,
        key: str,
        method: str,
        expires_in: int,
        content_type: str | None = None,
    ) -> PresignedURL:
        """Sign a GET or PUT URL.

        For PUT, ``content_type`` is bound into the signature so the
        uploader must send the same Content-Type.
        """
        method = normalize_presign_method(method)
        if expires_in <= 0:
            expires_in = DEFAULT_PRESIGN_TTL

        params: dict = {"Bucket": bucket, "Key": key}
        if method == "PUT":
            client_method = "put_object"
            if content_type:
                params["ContentType"] = content_type
        else:
            client_method = "get_object"

        with _translate_errors(bucket, key):
            url = await self._client.generate_presigned_url(
                client_method,
                Params=params,
                ExpiresIn=expires_in,
            )
        return PresignedURL(url=url, method=method, expires_at=int(time.time()) + expires_in)
