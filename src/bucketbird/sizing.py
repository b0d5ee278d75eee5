"""Bucket size aggregation.

A bucket's size is the sum of every object size found by a full
enumeration. Mutations schedule a recalculation in the background. Runs for
one bucket never overlap: a request that arrives while a run is in flight
marks that run stale, and a fresh run starts when it finishes. Only a run
that finishes without being marked stale writes its total, so the stored
value always reflects an enumeration that began after the latest mutation.
"""

from __future__ import annotations

import asyncio
import logging

from bucketbird import metrics
from bucketbird.enumeration import enumerate_all
from bucketbird.errors import BucketBirdError
from bucketbird.metadata.store import SizeStore
from bucketbird.storage.backend import ObjectStoreClient

logger = logging.getLogger(__name__)


async def recalculate(client: ObjectStoreClient, bucket: str) -> int:
    """Return the total size in bytes of every object in ``bucket``."""
    objects = await enumerate_all(client, bucket, "")
    return sum(obj.size for obj in objects)


class SizeRecalculator:
    """Single-flight, per-bucket background size recalculation.

    Attributes:
        client: The object store client used for enumeration.
        size_store: Where finished totals are persisted.
    """

    def __init__(self, client: ObjectStoreClient, size_store: SizeStore) -> None:
        self.client = client
        self.size_store = size_store
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._stale: set[str] = set()
        # bucket -> number of totals persisted by this recalculator
        self._persisted: dict[str, int] = {}

    def schedule(self, bucket: str) -> asyncio.Task[None]:
        """Request a recalculation of ``bucket`` without waiting for it.

        If a run for the bucket is already in flight it is marked stale and
        the same task performs another run once it finishes.

        Returns:
            The task that will eventually persist the bucket's size.
        """
        task = self._tasks.get(bucket)
        if task is not None and not task.done():
            self._stale.add(bucket)
            return task

        task = asyncio.create_task(self._run(bucket), name=f"size-recalc:{bucket}")
        self._tasks[bucket] = task
        return task

    async def _run(self, bucket: str) -> None:
        try:
            while True:
                self._stale.discard(bucket)
                try:
                    total = await recalculate(self.client, bucket)
                except BucketBirdError as exc:
                    logger.warning(
                        "Size recalculation for %s failed: %s",
                        bucket,
                        exc.message,
                        extra={"bucket": bucket, "operation": "recalculate"},
                    )
                    if bucket in self._stale:
                        continue
                    return

                if bucket in self._stale:
                    logger.debug("Discarding stale size for %s", bucket)
                    continue

                await self.size_store.update_size(bucket, total)
                self._persisted[bucket] = self._persisted.get(bucket, 0) + 1
                if metrics.bucket_size_bytes is not None:
                    metrics.bucket_size_bytes.labels(bucket=bucket).set(total)
                logger.info(
                    "Bucket %s size is %d bytes",
                    bucket,
                    total,
                    extra={"bucket": bucket, "operation": "recalculate"},
                )
                if bucket not in self._stale:
                    return
        except Exception:
            logger.exception("Unexpected error recalculating size of %s", bucket)
        finally:
            if self._tasks.get(bucket) is asyncio.current_task():
                del self._tasks[bucket]

    async def recalculate_now(self, bucket: str) -> int:
        """Recalculate ``bucket`` in the foreground and persist the total.

        Errors propagate to the caller. If a background run is in flight it is
        told to run once more and awaited, and the total it persisted is
        returned. When that run persists nothing the bucket is enumerated
        here instead, so its failure reaches the caller.

        Raises:
            NotFound: If the bucket does not exist.
            StoreTransportError: If enumeration fails.
        """
        task = self._tasks.get(bucket)
        if task is not None and not task.done():
            persisted = self._persisted.get(bucket, 0)
            self._stale.add(bucket)
            await asyncio.shield(task)
            if self._persisted.get(bucket, 0) != persisted:
                stored = await self.size_store.get_size(bucket)
                if stored is not None:
                    return stored.size_bytes

        total = await recalculate(self.client, bucket)
        await self.size_store.update_size(bucket, total)
        self._persisted[bucket] = self._persisted.get(bucket, 0) + 1
        if metrics.bucket_size_bytes is not None:
            metrics.bucket_size_bytes.labels(bucket=bucket).set(total)
        return total

    @property
    def pending(self) -> list[str]:
        """Buckets with a recalculation in flight."""
        return [bucket for bucket, task in self._tasks.items() if not task.done()]

    async def wait_idle(self) -> None:
        """Wait until no recalculation is in flight."""
        while True:
            tasks = [task for task in self._tasks.values() if not task.done()]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    async def close(self, timeout: float | None = None) -> None:
        """Wait for in-flight runs, cancelling whatever outlives ``timeout``."""
        tasks = [task for task in self._tasks.values() if not task.done()]
        if not tasks:
            return
        _, still_running = await asyncio.wait(tasks, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning("Cancelled %d size recalculation(s) on shutdown", len(still_running))
            await asyncio.gather(*still_running, return_exceptions=True)
