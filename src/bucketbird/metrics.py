"""Prometheus metrics definitions for BucketBird.

All custom metrics use the ``bucketbird_`` prefix. These count folder-level
work done by the object core; ``prometheus-fastapi-instrumentator`` covers
HTTP request counts, durations and sizes.

Counters reset to zero on restart. The bucket size gauge is set whenever a
recalculation persists a new total.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge

# Flag indicating whether metrics have been initialised via init_metrics().
_initialized: bool = False

# ---------------------------------------------------------------------------
# Folder operation counters
# ---------------------------------------------------------------------------
folder_operations_total: Counter | None = None
objects_affected_total: Counter | None = None

# ---------------------------------------------------------------------------
# Archive entries  (labels: status = written | skipped_unsafe | skipped_duplicate | skipped_error)
# ---------------------------------------------------------------------------
archive_entries_total: Counter | None = None

# ---------------------------------------------------------------------------
# Bucket size gauge
# ---------------------------------------------------------------------------
bucket_size_bytes: Gauge | None = None


def init_metrics() -> None:
    """Create and register all Prometheus metrics.

    Call once when metrics are enabled. When disabled the module-level
    references stay ``None`` and callers skip recording.
    """
    global _initialized
    global folder_operations_total, objects_affected_total
    global archive_entries_total, bucket_size_bytes

    if _initialized:
        return

    folder_operations_total = Counter(
        "bucketbird_folder_operations_total",
        "Delete, rename and copy operations by outcome",
        ["operation", "status"],
    )

    objects_affected_total = Counter(
        "bucketbird_objects_affected_total",
        "Keys successfully processed by delete, rename and copy",
        ["operation"],
    )

    archive_entries_total = Counter(
        "bucketbird_archive_entries_total",
        "Objects considered for zip downloads by outcome",
        ["status"],
    )

    bucket_size_bytes = Gauge(
        "bucketbird_bucket_size_bytes",
        "Last recalculated size of each bucket",
        ["bucket"],
    )

    _initialized = True


def record_outcome(operation: str, status: str, affected: int) -> None:
    """Count one folder operation and the keys it processed."""
    if folder_operations_total is not None:
        folder_operations_total.labels(operation=operation, status=status).inc()
    if objects_affected_total is not None and affected:
        objects_affected_total.labels(operation=operation).inc(affected)


def record_archive_entry(status: str) -> None:
    if archive_entries_total is not None:
        archive_entries_total.labels(status=status).inc()
