"""FastAPI application factory and route setup for BucketBird."""

import logging
import secrets
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from bucketbird.config import BucketBirdConfig, StoreConfig
from bucketbird.errors import BucketBirdError
from bucketbird.handlers.objects import ObjectHandler
from bucketbird.metadata import create_size_store
from bucketbird.service import BucketObjectService
from bucketbird.sizing import SizeRecalculator
from bucketbird.storage.backend import ObjectStoreClient

logger = logging.getLogger(__name__)

# Module-level singleton so multiple create_app() calls (e.g. in tests)
# don't re-register the same Prometheus collectors in the global registry.
_instrumentator = None


def _get_instrumentator():
    global _instrumentator
    if _instrumentator is None:
        from prometheus_fastapi_instrumentator import Instrumentator

        _instrumentator = Instrumentator(
            should_instrument_requests_inprogress=True,
            excluded_handlers=["/metrics"],
        )
    return _instrumentator


def _error_body(code: str, message: str, request_id: str, extra: dict | None = None) -> dict:
    body = {"error": code, "message": message, "requestId": request_id}
    if extra:
        body.update(extra)
    return body


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(config: BucketBirdConfig) -> FastAPI:
    """Create and configure the BucketBird FastAPI application.

    The lifespan context manager opens the object store and the size store
    on startup and wires the service onto ``app.state``. On shutdown it
    waits for pending size recalculations (up to the shutdown timeout)
    before closing both stores.

    Args:
        config: The loaded BucketBird configuration.

    Returns:
        A configured FastAPI application ready to run.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store = create_object_store(config.store)
        await store.init()
        app.state.store = store

        size_store = create_size_store(config.metadata)
        await size_store.init_db()
        app.state.size_store = size_store

        recalculator = SizeRecalculator(store, size_store)
        app.state.service = BucketObjectService(
            store,
            size_store,
            recalculator=recalculator,
            archive_config=config.archive,
            presign_config=config.presign,
        )
        logger.info(
            "Object store initialized: %s, size store: %s",
            config.store.backend,
            config.metadata.engine,
        )

        yield

        await recalculator.close(timeout=config.server.shutdown_timeout)
        await store.close()
        await size_store.close()
        logger.info("Object store and size store closed")

    app = FastAPI(
        title="BucketBird",
        version="0.1.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
    )
    app.state.config = config

    _register_exception_handlers(app)
    _register_middleware(app)

    if config.observability.metrics:
        import bucketbird.metrics as _metrics

        _metrics.init_metrics()
        _get_instrumentator().instrument(app, metric_namespace="bucketbird").expose(
            app, endpoint="/metrics"
        )

    _setup_routes(app, config)

    return app


def create_object_store(config: StoreConfig) -> ObjectStoreClient:
    """Create an object store client based on configuration.

    Supports the 's3' and 'memory' backends.

    Args:
        config: The store configuration.

    Returns:
        A client implementing the ObjectStoreClient protocol.

    Raises:
        ValueError: If the backend is unknown or required config is missing.
    """
    backend = config.backend
    if backend == "s3":
        from bucketbird.storage.objectstore import S3ObjectStore

        return S3ObjectStore(
            endpoint=config.endpoint,
            access_key=config.access_key,
            secret_key=config.secret_key,
            region=config.region,
            use_ssl=config.use_ssl,
        )
    elif backend == "memory":
        from bucketbird.storage.memory import MemoryObjectStore

        return MemoryObjectStore(page_size=config.memory_page_size)
    else:
        raise ValueError(f"Unknown store backend: {backend}")


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


def _register_exception_handlers(app: FastAPI) -> None:
    """Register exception handlers on the FastAPI app."""

    @app.exception_handler(BucketBirdError)
    async def bucketbird_error_handler(request: Request, exc: BucketBirdError) -> Response:
        """Render BucketBirdError exceptions as JSON with their HTTP status."""
        request_id = getattr(request.state, "request_id", "")
        if exc.http_status >= 500:
            logger.warning("%s: %s", exc.code, exc.message, extra={"request_id": request_id})
        return JSONResponse(
            _error_body(exc.code, exc.message, request_id, exc.extra_fields),
            status_code=exc.http_status,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> Response:
        """Map FastAPI validation errors to an InvalidArgument body."""
        request_id = getattr(request.state, "request_id", "")
        messages = []
        for err in exc.errors():
            loc = " -> ".join(str(p) for p in err.get("loc", []))
            msg = err.get("msg", "Invalid value")
            messages.append(f"{loc}: {msg}" if loc else msg)
        combined = "; ".join(messages) or "Invalid request parameters"
        return JSONResponse(
            _error_body("InvalidArgument", combined, request_id), status_code=400
        )

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception) -> Response:
        """Catch unexpected exceptions and return InternalError."""
        logger.exception("Unhandled exception in request handler")
        request_id = getattr(request.state, "request_id", "")
        return JSONResponse(
            _error_body("InternalError", "We encountered an internal error.", request_id),
            status_code=500,
        )


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


def _register_middleware(app: FastAPI) -> None:
    """Register the request id and access log middleware."""

    # Paths to suppress from per-request logging
    _QUIET_PATHS = {"/metrics", "/health"}

    @app.middleware("http")
    async def request_log_middleware(request: Request, call_next) -> Response:
        """Tag every response with a request id and log it.

        The id is stored on request.state so exception handlers can echo it.
        """
        request_id = secrets.token_hex(8).upper()
        request.state.request_id = request_id
        start = time.monotonic()

        response = await call_next(request)

        duration_ms = round((time.monotonic() - start) * 1000, 2)
        response.headers["X-Request-Id"] = request_id

        if request.url.path not in _QUIET_PATHS:
            logger.info(
                "%s %s %d %.2fms",
                request.method,
                request.url.path,
                response.status_code,
                duration_ms,
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status": response.status_code,
                    "duration_ms": duration_ms,
                    "request_id": request_id,
                },
            )

        return response


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------


async def _check_store(app: FastAPI) -> dict:
    """Check the object store with a lightweight call.

    Returns a dict with ``status`` and ``latency_ms`` keys.
    """
    store = getattr(app.state, "store", None)
    if store is None:
        return {"status": "error", "error": "object store not initialized", "latency_ms": 0}
    start = time.monotonic()
    try:
        await store.test_connection()
    except BucketBirdError as exc:
        return {"status": "error", "error": exc.message, "latency_ms": 0}
    latency = round((time.monotonic() - start) * 1000, 1)
    return {"status": "ok", "latency_ms": latency}


# ---------------------------------------------------------------------------
# Route handlers
# ---------------------------------------------------------------------------


def _setup_routes(app: FastAPI, config: BucketBirdConfig) -> None:
    """Register all bucket routes on the application.

    Args:
        app: The FastAPI application to attach routes to.
        config: The BucketBird configuration.
    """
    object_handler = ObjectHandler(app)
    health_check_enabled = config.observability.health_check

    @app.get("/health")
    async def health_check(request: Request) -> Response:
        """Return health status.

        When health_check is enabled the object store is checked and the
        response carries the result; a failed check yields 503.
        """
        if not health_check_enabled:
            return JSONResponse({"status": "ok"})

        store_check = await _check_store(app)
        ok = store_check["status"] == "ok"
        return JSONResponse(
            {"status": "ok" if ok else "degraded", "checks": {"store": store_check}},
            status_code=200 if ok else 503,
        )

    @app.get("/buckets")
    async def handle_list_buckets(request: Request) -> Response:
        return await object_handler.list_buckets(request)

    @app.put("/buckets/{bucket}")
    async def handle_create_bucket(bucket: str, request: Request) -> Response:
        return await object_handler.create_bucket(request, bucket)

    @app.delete("/buckets/{bucket}")
    async def handle_delete_bucket(bucket: str, request: Request) -> Response:
        return await object_handler.delete_bucket(request, bucket)

    @app.get("/buckets/{bucket}/objects")
    async def handle_list(bucket: str, request: Request) -> Response:
        return await object_handler.list_objects(request, bucket)

    @app.get("/buckets/{bucket}/search")
    async def handle_search(bucket: str, request: Request) -> Response:
        return await object_handler.search(request, bucket)

    @app.post("/buckets/{bucket}/folders")
    async def handle_create_folder(bucket: str, request: Request) -> Response:
        return await object_handler.create_folder(request, bucket)

    @app.post("/buckets/{bucket}/objects/delete")
    async def handle_delete(bucket: str, request: Request) -> Response:
        return await object_handler.delete_objects(request, bucket)

    @app.post("/buckets/{bucket}/objects/rename")
    async def handle_rename(bucket: str, request: Request) -> Response:
        return await object_handler.rename_object(request, bucket)

    @app.post("/buckets/{bucket}/objects/copy")
    async def handle_copy(bucket: str, request: Request) -> Response:
        return await object_handler.copy_object(request, bucket)

    @app.put("/buckets/{bucket}/objects/{key:path}")
    async def handle_put(bucket: str, key: str, request: Request) -> Response:
        return await object_handler.put_object(request, bucket, key)

    @app.get("/buckets/{bucket}/download")
    async def handle_download(bucket: str, request: Request) -> Response:
        """Handle GET /buckets/{bucket}/download -- object or zip by key shape."""
        return await object_handler.download(request, bucket)

    @app.get("/buckets/{bucket}/metadata")
    async def handle_metadata(bucket: str, request: Request) -> Response:
        return await object_handler.head_object(request, bucket)

    @app.post("/buckets/{bucket}/presign")
    async def handle_presign(bucket: str, request: Request) -> Response:
        return await object_handler.presign(request, bucket)

    @app.get("/buckets/{bucket}/size")
    async def handle_size(bucket: str, request: Request) -> Response:
        return await object_handler.get_size(request, bucket)

    @app.post("/buckets/{bucket}/size/recalculate")
    async def handle_recalculate(bucket: str, request: Request) -> Response:
        return await object_handler.recalculate_size(request, bucket)
