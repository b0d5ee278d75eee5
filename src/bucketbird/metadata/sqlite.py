"""SQLite-backed bucket size store for BucketBird.

Uses aiosqlite for async access. The schema is a single table keyed by
bucket name and is created with CREATE TABLE IF NOT EXISTS, so opening an
existing database is always safe.
"""

import logging

import aiosqlite

from bucketbird.metadata.models import BucketSize, now_iso

logger = logging.getLogger(__name__)


class SQLiteSizeStore:
    """Size store backed by a local SQLite database.

    Attributes:
        db_path: Path to the SQLite database file.
        _db: The aiosqlite connection, set after init_db().
    """

    def __init__(self, db_path: str) -> None:
        """Initialize the SQLite size store.

        Args:
            db_path: Filesystem path to the SQLite database file.
                     Use ':memory:' for an in-memory database (useful in tests).
        """
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def init_db(self) -> None:
        """Open the database and create the table if it does not exist."""
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row

        await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.execute("PRAGMA synchronous = NORMAL")
        await self._db.execute("PRAGMA busy_timeout = 5000")

        await self._db.execute(
            """
            CREATE TABLE IF NOT EXISTS bucket_sizes (
                bucket      TEXT PRIMARY KEY,
                size_bytes  INTEGER NOT NULL DEFAULT 0,
                updated_at  TEXT NOT NULL
            )
            """
        )
        await self._db.commit()
        logger.info("SQLite size store opened at %s", self.db_path)

    async def close(self) -> None:
        """Close the database connection."""
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def update_size(self, bucket: str, size_bytes: int) -> None:
        assert self._db is not None
        await self._db.execute(
            """
            INSERT INTO bucket_sizes (bucket, size_bytes, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(bucket) DO UPDATE SET
                size_bytes = excluded.size_bytes,
                updated_at = excluded.updated_at
            """,
            (bucket, size_bytes, now_iso()),
        )
        await self._db.commit()

    async def get_size(self, bucket: str) -> BucketSize | None:
        assert self._db is not None
        async with self._db.execute(
            "SELECT bucket, size_bytes, updated_at FROM bucket_sizes WHERE bucket = ?",
            (bucket,),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return BucketSize(
            bucket=row["bucket"],
            size_bytes=row["size_bytes"],
            updated_at=row["updated_at"],
        )

    async def delete_size(self, bucket: str) -> None:
        assert self._db is not None
        await self._db.execute("DELETE FROM bucket_sizes WHERE bucket = ?", (bucket,))
        await self._db.commit()
