"""Tests for Prometheus metrics."""

from prometheus_client import REGISTRY

import bucketbird.metrics as metrics
from conftest import TEST_BUCKET


def _value(name: str, labels: dict) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


class TestInitMetrics:
    def test_idempotent(self, app):
        """init_metrics() may be called repeatedly without re-registering."""
        metrics.init_metrics()
        metrics.init_metrics()
        assert metrics.folder_operations_total is not None
        assert metrics.bucket_size_bytes is not None


class TestMetricsEndpoint:
    async def test_exposes_custom_metrics(self, client):
        resp = await client.get("/metrics")
        assert resp.status_code == 200
        assert "bucketbird_folder_operations_total" in resp.text

    async def test_counts_folder_operations(self, client):
        labels = {"operation": "delete", "status": "ok"}
        before = _value("bucketbird_folder_operations_total", labels)
        affected_before = _value("bucketbird_objects_affected_total", {"operation": "delete"})

        await client.put(f"/buckets/{TEST_BUCKET}/objects/d/x", content=b"1")
        await client.post(f"/buckets/{TEST_BUCKET}/objects/delete", json={"keys": ["d/"]})

        assert _value("bucketbird_folder_operations_total", labels) == before + 1
        # d/x plus the implicit marker key.
        assert _value("bucketbird_objects_affected_total", {"operation": "delete"}) == (
            affected_before + 2
        )

    async def test_bucket_size_gauge(self, client, service):
        await client.put(f"/buckets/{TEST_BUCKET}/objects/g", content=b"12345")
        await service.recalculator.wait_idle()
        assert _value("bucketbird_bucket_size_bytes", {"bucket": TEST_BUCKET}) == 5

    async def test_archive_entries(self, client):
        before = _value("bucketbird_archive_entries_total", {"status": "written"})
        await client.put(f"/buckets/{TEST_BUCKET}/objects/z/a", content=b"1")
        resp = await client.get(f"/buckets/{TEST_BUCKET}/download", params={"key": "z/"})
        assert resp.status_code == 200
        assert _value("bucketbird_archive_entries_total", {"status": "written"}) == before + 1
