"""Shared pytest fixtures for BucketBird tests.

A single FastAPI app is created per test session to avoid duplicate
Prometheus metric registration errors (the instrumentator registers
collectors in the global prometheus_client registry).

The object store, size store and service are manually placed on the app
for each test to avoid needing to run the full lifespan.
"""

import pytest
from httpx import ASGITransport, AsyncClient

from bucketbird.config import (
    BucketBirdConfig,
    MetadataConfig,
    ServerConfig,
    StoreConfig,
)
from bucketbird.metadata.memory import MemorySizeStore
from bucketbird.server import create_app
from bucketbird.service import BucketObjectService
from bucketbird.storage.memory import MemoryObjectStore

TEST_BUCKET = "photos"


@pytest.fixture(scope="session")
def config() -> BucketBirdConfig:
    """Create a test config backed by the in-memory store."""
    return BucketBirdConfig(
        server=ServerConfig(host="127.0.0.1", port=8089),
        store=StoreConfig(backend="memory", memory_page_size=2),
        metadata=MetadataConfig(engine="memory"),
    )


@pytest.fixture(scope="session")
def app(config: BucketBirdConfig):
    """Create a single test FastAPI application for the whole session."""
    return create_app(config)


@pytest.fixture
async def store() -> MemoryObjectStore:
    """A fresh memory store with one empty bucket.

    The small page size makes every listing span several pages.
    """
    store = MemoryObjectStore(page_size=2)
    await store.init()
    await store.ensure_bucket(TEST_BUCKET)
    return store


@pytest.fixture
def size_store() -> MemorySizeStore:
    return MemorySizeStore()


@pytest.fixture
async def service(store, size_store, config) -> BucketObjectService:
    svc = BucketObjectService(
        store,
        size_store,
        archive_config=config.archive,
        presign_config=config.presign,
    )
    yield svc
    await svc.recalculator.close()


@pytest.fixture
async def client(app, store, size_store, service) -> AsyncClient:
    """Create an async test client wired to a fresh store and service.

    The lifespan context doesn't auto-run with ASGITransport, so the
    components it would create are assigned directly.
    """
    app.state.store = store
    app.state.size_store = size_store
    app.state.service = service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac
