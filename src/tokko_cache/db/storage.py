"""SQLite storage for the warm cache tier."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import aiosqlite

from tokko_cache.db.checkpoints import CheckpointRepository
from tokko_cache.db.row_mappers import (
    build_property_columns,
    row_to_image,
    row_to_property,
)
from tokko_cache.logging import get_logger
from tokko_cache.models import (
    CacheStats,
    Checkpoint,
    CheckpointStatus,
    ImageStatus,
    ProcessType,
    Property,
    PropertyImage,
    SearchFilters,
    SyncStatus,
)

logger = get_logger(__name__)

# Stays under SQLite's bound-parameter limit.
_ID_CHUNK = 500


class CacheStorage:
    """SQLite-based storage for cached properties, their images and job checkpoints."""

    def __init__(self, db_path: str, *, max_images_per_property: int = 10) -> None:
        """Initialize storage with database path.

        Args:
            db_path: Path to SQLite database file, or ":memory:" for in-memory.
            max_images_per_property: Image rows kept per property on upsert.
        """
        self.db_path = db_path
        self.max_images_per_property = max_images_per_property
        self._conn: aiosqlite.Connection | None = None
        self._ensure_directory()
        self._checkpoints = CheckpointRepository(self._get_connection)

    def _ensure_directory(self) -> None:
        """Ensure the directory for the database exists."""
        if self.db_path != ":memory:":
            path = Path(self.db_path)
            path.parent.mkdir(parents=True, exist_ok=True)

    async def _get_connection(self) -> aiosqlite.Connection:
        """Get or create the database connection."""
        if self._conn is None:
            self._conn = await aiosqlite.connect(self.db_path)
            self._conn.row_factory = aiosqlite.Row
            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._conn.execute("PRAGMA busy_timeout=5000")
            await self._conn.execute("PRAGMA synchronous=NORMAL")
            await self._conn.execute("PRAGMA foreign_keys=ON")
        return self._conn

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            conn = await self._get_connection()
            cursor = await conn.execute("SELECT 1")
            return await cursor.fetchone() is not None
        except (aiosqlite.Error, OSError) as e:
            logger.warning("warm_ping_failed", error=str(e))
            return False

    async def initialize(self) -> None:
        """Initialize the database schema."""
        conn = await self._get_connection()
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS properties_cache (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                tokko_id INTEGER NOT NULL UNIQUE,
                title TEXT NOT NULL,
                reference_code TEXT NOT NULL,
                description TEXT,
                rich_description TEXT,
                prices TEXT NOT NULL DEFAULT '[]',
                main_price TEXT NOT NULL,
                main_price_amount REAL NOT NULL DEFAULT 0,
                main_currency TEXT,
                available_operations TEXT NOT NULL DEFAULT '[]',
                operation TEXT,
                surface REAL DEFAULT 0,
                covered_surface REAL DEFAULT 0,
                uncovered_surface REAL DEFAULT 0,
                total_surface REAL DEFAULT 0,
                location_name TEXT,
                full_location TEXT,
                short_location TEXT,
                address TEXT,
                real_address TEXT,
                coordinates TEXT,
                property_type TEXT,
                property_type_code TEXT,
                age INTEGER,
                condition TEXT,
                situation TEXT,
                zonification TEXT,
                rooms INTEGER DEFAULT 0,
                bathrooms INTEGER DEFAULT 0,
                toilets INTEGER DEFAULT 0,
                suites INTEGER DEFAULT 0,
                parking_spaces INTEGER DEFAULT 0,
                floors INTEGER DEFAULT 1,
                videos TEXT NOT NULL DEFAULT '[]',
                features TEXT,
                tags TEXT NOT NULL DEFAULT '[]',
                contact TEXT,
                featured BOOLEAN NOT NULL DEFAULT 0,
                status INTEGER DEFAULT 0,
                transaction_requirements TEXT,
                has_temporary_rent BOOLEAN DEFAULT 0,
                expenses REAL DEFAULT 0,
                origin_created_at TEXT,
                origin_deleted_at TEXT,
                public_url TEXT,
                sync_status TEXT NOT NULL DEFAULT 'synced',
                last_synced_at TEXT NOT NULL,
                access_count INTEGER NOT NULL DEFAULT 0,
                last_accessed_at TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_properties_sync_status
            ON properties_cache(sync_status)
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_properties_featured_updated
            ON properties_cache(featured DESC, updated_at DESC)
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_properties_price
            ON properties_cache(main_price_amount)
        """)

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS property_images (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                property_id INTEGER NOT NULL,
                original_url TEXT NOT NULL,
                description TEXT,
                display_order INTEGER NOT NULL DEFAULT 0,
                webp_url TEXT,
                thumbnail_url TEXT,
                width INTEGER,
                height INTEGER,
                file_size_original INTEGER,
                file_size_webp INTEGER,
                processing_status TEXT NOT NULL DEFAULT 'pending',
                processing_error TEXT,
                processed_at TEXT,
                created_at TEXT NOT NULL,
                FOREIGN KEY (property_id) REFERENCES properties_cache(tokko_id)
                    ON DELETE CASCADE,
                UNIQUE(property_id, original_url)
            )
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_property_images_status
            ON property_images(processing_status)
        """)

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS processing_checkpoints (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                process_type TEXT NOT NULL,
                process_id TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                total_items INTEGER NOT NULL DEFAULT 0,
                processed_items INTEGER NOT NULL DEFAULT 0,
                failed_items INTEGER NOT NULL DEFAULT 0,
                current_batch INTEGER NOT NULL DEFAULT 0,
                last_processed_tokko_id INTEGER,
                checkpoint_data TEXT NOT NULL DEFAULT '{}',
                error_log TEXT NOT NULL DEFAULT '[]',
                started_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                completed_at TEXT,
                UNIQUE(process_type, process_id)
            )
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_checkpoints_status
            ON processing_checkpoints(status)
        """)

        # Migrate: add columns that may not exist in older databases
        for column, col_type, default in [
            ("public_url", "TEXT", None),
            ("access_count", "INTEGER", "0"),
            ("last_accessed_at", "TEXT", None),
        ]:
            try:
                default_clause = f" DEFAULT {default}" if default is not None else ""
                await conn.execute(
                    f"ALTER TABLE properties_cache ADD COLUMN {column} {col_type}{default_clause}"
                )
            except aiosqlite.OperationalError as e:
                if "duplicate column" not in str(e).lower():
                    raise

        await conn.commit()

        logger.info("database_initialized", db_path=self.db_path)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    async def upsert_property(self, prop: Property) -> None:
        """Save or refresh a property and register its images.

        The row is marked ``synced``. Existing image rows keep their
        processing state; new ones start as ``pending``.
        """
        conn = await self._get_connection()
        now = datetime.now(UTC).isoformat()
        columns, values = build_property_columns(prop)
        columns.extend(["sync_status", "last_synced_at", "created_at", "updated_at"])
        values.extend([SyncStatus.SYNCED.value, now, now, now])

        col_list = ", ".join(columns)
        placeholders = ", ".join("?" for _ in columns)
        preserved = {"tokko_id", "created_at"}
        updates = ", ".join(f"{c} = excluded.{c}" for c in columns if c not in preserved)
        await conn.execute(
            f"""
            INSERT INTO properties_cache ({col_list})
            VALUES ({placeholders})
            ON CONFLICT(tokko_id) DO UPDATE SET {updates}
            """,
            values,
        )

        images = prop.images[: self.max_images_per_property]
        if images:
            await conn.executemany(
                """
                INSERT INTO property_images
                    (property_id, original_url, description, display_order, created_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(property_id, original_url) DO UPDATE SET
                    description = excluded.description,
                    display_order = excluded.display_order
                """,
                [
                    (prop.id, img.url, img.description, order, now)
                    for order, img in enumerate(images)
                ],
            )
        await conn.commit()

        logger.debug("property_cached", tokko_id=prop.id, images=len(images))

    async def get_property(
        self,
        tokko_id: int,
        *,
        max_age: timedelta | None = None,
        touch: bool = True,
    ) -> Property | None:
        """Get a synced property from the warm tier.

        Args:
            tokko_id: Tokko property ID.
            max_age: Rows last synced longer ago than this are ignored.
            touch: Bump the access counter on a hit.

        Returns:
            The property, or None if absent, stale or too old.
        """
        conn = await self._get_connection()
        query = "SELECT * FROM properties_cache WHERE tokko_id = ? AND sync_status = ?"
        params: list[Any] = [tokko_id, SyncStatus.SYNCED.value]
        if max_age is not None:
            query += " AND last_synced_at >= ?"
            params.append((datetime.now(UTC) - max_age).isoformat())
        cursor = await conn.execute(query, params)
        row = await cursor.fetchone()
        if row is None:
            return None

        if touch:
            await conn.execute(
                """
                UPDATE properties_cache
                SET access_count = access_count + 1, last_accessed_at = ?
                WHERE tokko_id = ?
                """,
                (datetime.now(UTC).isoformat(), tokko_id),
            )
            await conn.commit()

        images = await self.get_property_images(tokko_id)
        return row_to_property(row, images)

    async def search_properties(self, filters: SearchFilters) -> tuple[list[Property], int]:
        """Filter synced properties, featured first, then most recently updated.

        Returns:
            The requested page of properties and the total match count.
        """
        conn = await self._get_connection()
        clauses = ["sync_status = ?"]
        params: list[Any] = [SyncStatus.SYNCED.value]

        if filters.query:
            pattern = f"%{filters.query.lower()}%"
            clauses.append(
                "(LOWER(title) LIKE ? OR LOWER(description) LIKE ?"
                " OR LOWER(full_location) LIKE ? OR LOWER(address) LIKE ?)"
            )
            params.extend([pattern] * 4)
        if filters.type:
            clauses.append("(property_type_code = ? OR LOWER(property_type) = LOWER(?))")
            params.extend([filters.type, filters.type])
        if filters.operation:
            clauses.append(
                "(operation = ? OR EXISTS ("
                "SELECT 1 FROM json_each(properties_cache.available_operations)"
                " WHERE json_each.value = ?))"
            )
            params.extend([filters.operation, filters.operation])
        if filters.featured is not None:
            clauses.append("featured = ?")
            params.append(int(filters.featured))
        if filters.min_price is not None:
            clauses.append("main_price_amount >= ?")
            params.append(filters.min_price)
        if filters.max_price is not None:
            clauses.append("main_price_amount <= ?")
            params.append(filters.max_price)
        if filters.min_surface is not None:
            clauses.append("surface >= ?")
            params.append(filters.min_surface)
        if filters.max_surface is not None:
            clauses.append("surface <= ?")
            params.append(filters.max_surface)
        if filters.tags:
            tag_placeholders = ", ".join("?" for _ in filters.tags)
            clauses.append(
                "EXISTS (SELECT 1 FROM json_each(properties_cache.tags)"
                f" WHERE json_each.value IN ({tag_placeholders}))"
            )
            params.extend(filters.tags)

        where = " AND ".join(clauses)
        cursor = await conn.execute(f"SELECT COUNT(*) FROM properties_cache WHERE {where}", params)
        count_row = await cursor.fetchone()
        total = count_row[0] if count_row else 0

        cursor = await conn.execute(
            f"""
            SELECT * FROM properties_cache
            WHERE {where}
            ORDER BY featured DESC, updated_at DESC, tokko_id DESC
            LIMIT ? OFFSET ?
            """,
            [*params, filters.limit, filters.offset],
        )
        rows = await cursor.fetchall()
        images = await self._images_by_property(row["tokko_id"] for row in rows)
        properties = [row_to_property(row, images.get(row["tokko_id"], [])) for row in rows]
        return properties, total

    async def count_properties(self) -> int:
        """Number of rows in the warm table, whatever their sync status."""
        conn = await self._get_connection()
        cursor = await conn.execute("SELECT COUNT(*) FROM properties_cache")
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def mark_stale(self, tokko_id: int) -> bool:
        """Mark a row stale so it is no longer served. Returns True if it existed."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            "UPDATE properties_cache SET sync_status = ?, updated_at = ? WHERE tokko_id = ?",
            (SyncStatus.STALE.value, datetime.now(UTC).isoformat(), tokko_id),
        )
        await conn.commit()
        return cursor.rowcount > 0

    async def mark_stale_before(self, cutoff: datetime) -> list[int]:
        """Mark stale every synced row not refreshed since ``cutoff``.

        Returns:
            Tokko ids of the rows that were marked.
        """
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT tokko_id FROM properties_cache WHERE sync_status = ? AND last_synced_at < ?",
            (SyncStatus.SYNCED.value, cutoff.isoformat()),
        )
        ids = [row["tokko_id"] for row in await cursor.fetchall()]
        if not ids:
            return []
        now = datetime.now(UTC).isoformat()
        for start in range(0, len(ids), _ID_CHUNK):
            chunk = ids[start : start + _ID_CHUNK]
            placeholders = ",".join("?" * len(chunk))
            await conn.execute(
                f"UPDATE properties_cache SET sync_status = ?, updated_at = ? "
                f"WHERE tokko_id IN ({placeholders})",
                (SyncStatus.STALE.value, now, *chunk),
            )
        await conn.commit()
        return ids

    async def get_warm_candidates(self, limit: int) -> list[Property]:
        """Most accessed (then featured, then newest) synced properties."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            SELECT * FROM properties_cache
            WHERE sync_status = ?
            ORDER BY access_count DESC, featured DESC, updated_at DESC
            LIMIT ?
            """,
            (SyncStatus.SYNCED.value, limit),
        )
        rows = await cursor.fetchall()
        images = await self._images_by_property(row["tokko_id"] for row in rows)
        return [row_to_property(row, images.get(row["tokko_id"], [])) for row in rows]

    async def get_cache_stats(self) -> CacheStats:
        conn = await self._get_connection()
        day_ago = (datetime.now(UTC) - timedelta(hours=24)).isoformat()
        cursor = await conn.execute(
            """
            SELECT
                COUNT(*) AS total,
                COALESCE(SUM(CASE WHEN featured = 1 THEN 1 ELSE 0 END), 0) AS featured,
                COALESCE(SUM(CASE WHEN sync_status = ? THEN 1 ELSE 0 END), 0) AS stale,
                COALESCE(SUM(CASE WHEN last_accessed_at >= ? THEN 1 ELSE 0 END), 0)
                    AS accessed,
                MAX(last_synced_at) AS last_sync
            FROM properties_cache
            """,
            (SyncStatus.STALE.value, day_ago),
        )
        row = await cursor.fetchone()

        cursor = await conn.execute(
            "SELECT processing_status, COUNT(*) AS n FROM property_images"
            " GROUP BY processing_status"
        )
        image_counts = {r["processing_status"]: r["n"] for r in await cursor.fetchall()}

        return CacheStats(
            total_properties=row["total"] if row else 0,
            featured_properties=row["featured"] if row else 0,
            stale_properties=row["stale"] if row else 0,
            accessed_last_24h=row["accessed"] if row else 0,
            last_sync_time=row["last_sync"] if row else None,
            pending_images=image_counts.get(ImageStatus.PENDING.value, 0),
            processed_images=image_counts.get(ImageStatus.COMPLETED.value, 0),
            failed_images=image_counts.get(ImageStatus.ERROR.value, 0),
        )

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    async def get_property_images(self, tokko_id: int) -> list[PropertyImage]:
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            SELECT * FROM property_images
            WHERE property_id = ?
            ORDER BY display_order, id
            """,
            (tokko_id,),
        )
        return [row_to_image(row) for row in await cursor.fetchall()]

    async def _images_by_property(
        self, tokko_ids: Iterable[int]
    ) -> dict[int, list[PropertyImage]]:
        ids = list(tokko_ids)
        if not ids:
            return {}
        conn = await self._get_connection()
        placeholders = ", ".join("?" for _ in ids)
        cursor = await conn.execute(
            f"""
            SELECT * FROM property_images
            WHERE property_id IN ({placeholders})
            ORDER BY property_id, display_order, id
            """,
            ids,
        )
        grouped: dict[int, list[PropertyImage]] = {}
        for row in await cursor.fetchall():
            grouped.setdefault(row["property_id"], []).append(row_to_image(row))
        return grouped

    async def get_pending_images(self, limit: int) -> list[PropertyImage]:
        """Oldest pending images, featured properties first."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            SELECT i.* FROM property_images i
            JOIN properties_cache p ON p.tokko_id = i.property_id
            WHERE i.processing_status = ?
            ORDER BY p.featured DESC, i.property_id, i.display_order
            LIMIT ?
            """,
            (ImageStatus.PENDING.value, limit),
        )
        return [row_to_image(row) for row in await cursor.fetchall()]

    async def mark_image_processing(self, image_id: int) -> None:
        conn = await self._get_connection()
        await conn.execute(
            "UPDATE property_images SET processing_status = ?, processing_error = NULL"
            " WHERE id = ?",
            (ImageStatus.PROCESSING.value, image_id),
        )
        await conn.commit()

    async def reset_image(self, image_id: int) -> None:
        """Put an image claimed for processing back in the pending queue."""
        conn = await self._get_connection()
        await conn.execute(
            "UPDATE property_images SET processing_status = ?"
            " WHERE id = ? AND processing_status = ?",
            (ImageStatus.PENDING.value, image_id, ImageStatus.PROCESSING.value),
        )
        await conn.commit()

    async def complete_image(
        self,
        image_id: int,
        *,
        webp_url: str,
        thumbnail_url: str,
        width: int,
        height: int,
        file_size_original: int,
        file_size_webp: int,
    ) -> None:
        conn = await self._get_connection()
        await conn.execute(
            """
            UPDATE property_images
            SET webp_url = ?, thumbnail_url = ?, width = ?, height = ?,
                file_size_original = ?, file_size_webp = ?,
                processing_status = ?, processing_error = NULL, processed_at = ?
            WHERE id = ?
            """,
            (
                webp_url,
                thumbnail_url,
                width,
                height,
                file_size_original,
                file_size_webp,
                ImageStatus.COMPLETED.value,
                datetime.now(UTC).isoformat(),
                image_id,
            ),
        )
        await conn.commit()

    async def fail_image(self, image_id: int, error: str) -> None:
        conn = await self._get_connection()
        await conn.execute(
            """
            UPDATE property_images
            SET processing_status = ?, processing_error = ?, processed_at = ?
            WHERE id = ?
            """,
            (ImageStatus.ERROR.value, error[:500], datetime.now(UTC).isoformat(), image_id),
        )
        await conn.commit()

    # ------------------------------------------------------------------
    # Checkpoints (delegated to CheckpointRepository)
    # ------------------------------------------------------------------

    async def save_checkpoint(
        self, process_type: ProcessType, process_id: str, **fields: Any
    ) -> Checkpoint:
        return await self._checkpoints.save_checkpoint(process_type, process_id, **fields)

    async def get_checkpoint(
        self, process_type: ProcessType, process_id: str
    ) -> Checkpoint | None:
        return await self._checkpoints.get_checkpoint(process_type, process_id)

    async def find_checkpoint(self, process_id: str) -> Checkpoint | None:
        return await self._checkpoints.find_by_process_id(process_id)

    async def list_active_checkpoints(
        self, process_type: ProcessType | None = None
    ) -> list[Checkpoint]:
        return await self._checkpoints.list_active(process_type)

    async def complete_checkpoint(
        self,
        process_type: ProcessType,
        process_id: str,
        status: CheckpointStatus = CheckpointStatus.COMPLETED,
        *,
        error_message: str | None = None,
    ) -> bool:
        return await self._checkpoints.complete_checkpoint(
            process_type, process_id, status, error_message=error_message
        )

    async def pause_checkpoint(self, process_type: ProcessType, process_id: str) -> bool:
        return await self._checkpoints.pause_checkpoint(process_type, process_id)

    async def append_checkpoint_error(
        self, process_type: ProcessType, process_id: str, message: str
    ) -> None:
        await self._checkpoints.append_error(process_type, process_id, message)

    async def cleanup_old_checkpoints(self, days: int = 7) -> int:
        return await self._checkpoints.cleanup_old(days)
