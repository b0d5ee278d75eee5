"""Folder-aware object request handlers for BucketBird.

Implements the JSON API over ``BucketObjectService``:
    - ListBuckets (GET /buckets)
    - CreateBucket (PUT /buckets/{bucket})
    - DeleteBucket (DELETE /buckets/{bucket})
    - ListObjects (GET /buckets/{bucket}/objects)
    - Search (GET /buckets/{bucket}/search)
    - CreateFolder (POST /buckets/{bucket}/folders)
    - DeleteObjects (POST /buckets/{bucket}/objects/delete)
    - RenameObject (POST /buckets/{bucket}/objects/rename)
    - CopyObject (POST /buckets/{bucket}/objects/copy)
    - PutObject (PUT /buckets/{bucket}/objects/{key})
    - Download (GET /buckets/{bucket}/download) as an object or a zip stream
    - HeadObject (GET /buckets/{bucket}/metadata)
    - Presign (POST /buckets/{bucket}/presign)
    - BucketSize (GET and POST /buckets/{bucket}/size)
"""

import json
import logging
from typing import Any
from urllib.parse import quote

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse

from bucketbird.errors import InvalidArgument
from bucketbird.operations import OperationOutcome
from bucketbird.service import BucketObjectService
from bucketbird.storage.models import ObjectBody

logger = logging.getLogger(__name__)


def _content_disposition(filename: str) -> str:
    """Build an attachment header that survives non-ASCII filenames."""
    ascii_name = filename.encode("ascii", "replace").decode().replace('"', "")
    return f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(filename)}"


async def _read_json(request: Request) -> dict[str, Any]:
    """Parse a JSON object body.

    Raises:
        InvalidArgument: If the body is empty, not JSON, or not an object.
    """
    raw = await request.body()
    if not raw:
        raise InvalidArgument("request body is required")
    try:
        payload = json.loads(raw)
    except (ValueError, UnicodeDecodeError):
        raise InvalidArgument("request body is not valid JSON") from None
    if not isinstance(payload, dict):
        raise InvalidArgument("request body must be a JSON object")
    return payload


def _require_str(payload: dict[str, Any], field: str) -> str:
    value = payload.get(field)
    if not isinstance(value, str) or not value:
        raise InvalidArgument(f"{field} is required")
    return value


def _outcome_response(outcome: OperationOutcome) -> JSONResponse:
    """Render an outcome; a partial failure is 207, a total failure 502."""
    status = 200
    if outcome.partial:
        status = 207
    elif outcome.failed_keys:
        status = 502
    return JSONResponse(outcome.to_dict(), status_code=status)


async def _stream_body(body: ObjectBody, chunk_size: int):
    async with body:
        async for chunk in body.iter_chunks(chunk_size):
            yield chunk


class ObjectHandler:
    """Handles folder-aware object operations.

    Attributes:
        app: The parent FastAPI application.
    """

    def __init__(self, app: FastAPI) -> None:
        """Initialize the object handler.

        Args:
            app: The FastAPI application instance.
        """
        self.app = app

    @property
    def service(self) -> BucketObjectService:
        """Shortcut to the BucketObjectService on app.state."""
        return self.app.state.service

    @property
    def config(self):
        """Shortcut to the BucketBirdConfig on app.state."""
        return self.app.state.config

    async def list_buckets(self, request: Request) -> Response:
        buckets = await self.service.list_buckets()
        return JSONResponse({"buckets": buckets})

    async def create_bucket(self, request: Request, bucket: str) -> Response:
        await self.service.create_bucket(bucket)
        return JSONResponse({"bucket": bucket}, status_code=201)

    async def delete_bucket(self, request: Request, bucket: str) -> Response:
        """Delete a bucket and everything in it."""
        await self.service.delete_bucket(bucket)
        return Response(status_code=204)

    async def list_objects(self, request: Request, bucket: str) -> Response:
        """List one folder level.

        Query parameters: ``prefix``, ``sort`` (name, modified, size,
        extension) and ``order`` (asc or desc).
        """
        params = request.query_params
        prefix = params.get("prefix", "")
        sort_by = params.get("sort", "name") or "name"
        order = params.get("order", "asc").lower()
        if order not in ("asc", "desc"):
            raise InvalidArgument("order must be 'asc' or 'desc'")

        entries = await self.service.list_objects(
            bucket, prefix, sort_by=sort_by, descending=order == "desc"
        )
        return JSONResponse(
            {
                "bucket": bucket,
                "prefix": prefix,
                "entries": [entry.to_dict() for entry in entries],
            }
        )

    async def search(self, request: Request, bucket: str) -> Response:
        query = request.query_params.get("q", "")
        entries = await self.service.search(bucket, query)
        return JSONResponse(
            {"bucket": bucket, "query": query, "entries": [e.to_dict() for e in entries]}
        )

    async def create_folder(self, request: Request, bucket: str) -> Response:
        payload = await _read_json(request)
        name = _require_str(payload, "name")
        prefix = payload.get("prefix") or ""
        if not isinstance(prefix, str):
            raise InvalidArgument("prefix must be a string")
        key = await self.service.create_folder(bucket, name, prefix)
        return JSONResponse({"key": key}, status_code=201)

    async def delete_objects(self, request: Request, bucket: str) -> Response:
        payload = await _read_json(request)
        keys = payload.get("keys")
        if not isinstance(keys, list) or not all(isinstance(k, str) and k for k in keys):
            raise InvalidArgument("keys must be a list of non-empty strings")
        outcome = await self.service.delete(bucket, keys)
        return _outcome_response(outcome)

    async def rename_object(self, request: Request, bucket: str) -> Response:
        payload = await _read_json(request)
        outcome = await self.service.rename(
            bucket,
            _require_str(payload, "sourceKey"),
            _require_str(payload, "destinationKey"),
        )
        return _outcome_response(outcome)

    async def copy_object(self, request: Request, bucket: str) -> Response:
        payload = await _read_json(request)
        outcome = await self.service.copy(
            bucket,
            _require_str(payload, "sourceKey"),
            _require_str(payload, "destinationKey"),
        )
        return _outcome_response(outcome)

    async def put_object(self, request: Request, bucket: str, key: str) -> Response:
        """Store the raw request body at ``key``."""
        body = await request.body()
        content_type = request.headers.get("content-type")
        await self.service.upload(bucket, key, body, content_type=content_type)
        return JSONResponse({"key": key, "size": len(body)}, status_code=201)

    async def download(self, request: Request, bucket: str) -> Response:
        """Stream one object, or a zip of a folder when the key names one.

        An empty ``key`` zips the whole bucket.
        """
        key = request.query_params.get("key", "")
        chunk_size = self.config.archive.chunk_size

        if not key or key.endswith("/"):
            archive = await self.service.zip_folder(bucket, key)
            logger.info(
                "Streaming zip of %d entries",
                len(archive.entries),
                extra={"bucket": bucket, "key": key, "operation": "zip"},
            )
            return StreamingResponse(
                archive,
                media_type="application/zip",
                headers={"Content-Disposition": _content_disposition(archive.filename)},
            )

        body = await self.service.download_object(bucket, key)
        filename = key.rsplit("/", 1)[-1]
        headers = {"Content-Disposition": _content_disposition(filename)}
        if body.content_length:
            headers["Content-Length"] = str(body.content_length)
        return StreamingResponse(
            _stream_body(body, chunk_size),
            media_type=body.content_type,
            headers=headers,
        )

    async def head_object(self, request: Request, bucket: str) -> Response:
        key = request.query_params.get("key", "")
        meta = await self.service.metadata(bucket, key)
        return JSONResponse(meta.to_dict())

    async def presign(self, request: Request, bucket: str) -> Response:
        payload = await _read_json(request)
        expires_in = payload.get("expiresIn")
        if expires_in is not None and (
            isinstance(expires_in, bool) or not isinstance(expires_in, int)
        ):
            raise InvalidArgument("expiresIn must be an integer number of seconds")
        method = payload.get("method") or "GET"
        if not isinstance(method, str):
            raise InvalidArgument("method must be a string")
        content_type = payload.get("contentType")
        if content_type is not None and not isinstance(content_type, str):
            raise InvalidArgument("contentType must be a string")

        presigned = await self.service.presign(
            bucket,
            _require_str(payload, "key"),
            method=method,
            expires_in=expires_in,
            content_type=content_type,
        )
        return JSONResponse(presigned.to_dict())

    async def get_size(self, request: Request, bucket: str) -> Response:
        size = await self.service.get_size(bucket)
        return JSONResponse(size.to_dict())

    async def recalculate_size(self, request: Request, bucket: str) -> Response:
        size = await self.service.recalculate_size(bucket)
        return JSONResponse(size.to_dict())
