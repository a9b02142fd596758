"""Checkpoint repository: progress rows for long-running batch jobs."""

from __future__ import annotations

import json
from collections.abc import Callable, Coroutine
from datetime import UTC, datetime, timedelta
from typing import Any, Final

import aiosqlite

from tokko_cache.db.row_mappers import row_to_checkpoint
from tokko_cache.logging import get_logger
from tokko_cache.models import (
    ACTIVE_CHECKPOINT_STATUSES,
    Checkpoint,
    CheckpointStatus,
    ProcessType,
)

logger = get_logger(__name__)

# Oldest messages are dropped once the log grows past this.
MAX_ERROR_LOG_ENTRIES: Final = 100

_ACTIVE = tuple(s.value for s in ACTIVE_CHECKPOINT_STATUSES)
_ACTIVE_PLACEHOLDERS = ", ".join("?" for _ in _ACTIVE)


class CheckpointRepository:
    """Database operations on ``processing_checkpoints``.

    Rows are keyed by (process_type, process_id). Writes are last-write-wins:
    concurrent jobs sharing a process id simply overwrite each other.
    """

    def __init__(
        self,
        get_connection: Callable[[], Coroutine[Any, Any, aiosqlite.Connection]],
    ) -> None:
        self._get_connection = get_connection

    async def save_checkpoint(
        self,
        process_type: ProcessType,
        process_id: str,
        *,
        status: CheckpointStatus = CheckpointStatus.RUNNING,
        total_items: int = 0,
        processed_items: int = 0,
        failed_items: int = 0,
        current_batch: int = 0,
        last_processed_tokko_id: int | None = None,
        checkpoint_data: dict[str, Any] | None = None,
        preserve_pause: bool = False,
    ) -> Checkpoint:
        """Insert or update a checkpoint and return the stored row.

        ``started_at`` and the error log survive updates. With
        ``preserve_pause`` a paused row stays paused, so a stop request that
        lands mid-batch is not overwritten by the progress save.
        """
        conn = await self._get_connection()
        now = datetime.now(UTC).isoformat()
        await conn.execute(
            """
            INSERT INTO processing_checkpoints (
                process_type, process_id, status, total_items, processed_items,
                failed_items, current_batch, last_processed_tokko_id,
                checkpoint_data, error_log, started_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, '[]', ?, ?)
            ON CONFLICT(process_type, process_id) DO UPDATE SET
                status = CASE
                    WHEN ? AND processing_checkpoints.status = ?
                        THEN processing_checkpoints.status
                    ELSE excluded.status
                END,
                total_items = excluded.total_items,
                processed_items = excluded.processed_items,
                failed_items = excluded.failed_items,
                current_batch = excluded.current_batch,
                last_processed_tokko_id = excluded.last_processed_tokko_id,
                checkpoint_data = excluded.checkpoint_data,
                updated_at = excluded.updated_at,
                completed_at = NULL
            """,
            (
                process_type.value,
                process_id,
                status.value,
                total_items,
                processed_items,
                failed_items,
                current_batch,
                last_processed_tokko_id,
                json.dumps(checkpoint_data or {}),
                now,
                now,
                preserve_pause,
                CheckpointStatus.PAUSED.value,
            ),
        )
        await conn.commit()
        checkpoint = await self.get_checkpoint(process_type, process_id)
        if checkpoint is None:
            raise RuntimeError(f"Checkpoint {process_type}/{process_id} missing after save")
        return checkpoint

    async def get_checkpoint(
        self, process_type: ProcessType, process_id: str
    ) -> Checkpoint | None:
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT * FROM processing_checkpoints WHERE process_type = ? AND process_id = ?",
            (process_type.value, process_id),
        )
        row = await cursor.fetchone()
        return row_to_checkpoint(row) if row else None

    async def find_by_process_id(self, process_id: str) -> Checkpoint | None:
        """Look a checkpoint up by process id alone (most recently updated wins)."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            SELECT * FROM processing_checkpoints
            WHERE process_id = ?
            ORDER BY updated_at DESC
            LIMIT 1
            """,
            (process_id,),
        )
        row = await cursor.fetchone()
        return row_to_checkpoint(row) if row else None

    async def list_active(self, process_type: ProcessType | None = None) -> list[Checkpoint]:
        """Pending, running and paused checkpoints, newest first."""
        conn = await self._get_connection()
        query = f"SELECT * FROM processing_checkpoints WHERE status IN ({_ACTIVE_PLACEHOLDERS})"
        params: list[Any] = list(_ACTIVE)
        if process_type is not None:
            query += " AND process_type = ?"
            params.append(process_type.value)
        query += " ORDER BY started_at DESC, id DESC"
        cursor = await conn.execute(query, params)
        rows = await cursor.fetchall()
        return [row_to_checkpoint(row) for row in rows]

    async def complete_checkpoint(
        self,
        process_type: ProcessType,
        process_id: str,
        status: CheckpointStatus = CheckpointStatus.COMPLETED,
        *,
        error_message: str | None = None,
    ) -> bool:
        """Move a checkpoint to a terminal state.

        Args:
            process_type: Job kind.
            process_id: Job identifier.
            status: ``completed`` or ``failed``.
            error_message: Appended to the error log when given.

        Returns:
            True if a row was updated.
        """
        if status not in (CheckpointStatus.COMPLETED, CheckpointStatus.FAILED):
            raise ValueError(f"{status} is not a terminal checkpoint status")
        if error_message:
            await self.append_error(process_type, process_id, error_message)
        conn = await self._get_connection()
        now = datetime.now(UTC).isoformat()
        cursor = await conn.execute(
            """
            UPDATE processing_checkpoints
            SET status = ?, completed_at = ?, updated_at = ?
            WHERE process_type = ? AND process_id = ?
            """,
            (status.value, now, now, process_type.value, process_id),
        )
        await conn.commit()
        return cursor.rowcount > 0

    async def pause_checkpoint(self, process_type: ProcessType, process_id: str) -> bool:
        """Pause an active checkpoint. Returns False if none is active."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            f"""
            UPDATE processing_checkpoints
            SET status = ?, updated_at = ?
            WHERE process_type = ? AND process_id = ? AND status IN ({_ACTIVE_PLACEHOLDERS})
            """,
            (
                CheckpointStatus.PAUSED.value,
                datetime.now(UTC).isoformat(),
                process_type.value,
                process_id,
                *_ACTIVE,
            ),
        )
        await conn.commit()
        paused = cursor.rowcount > 0
        if paused:
            logger.info("checkpoint_paused", process_type=process_type, process_id=process_id)
        return paused

    async def append_error(
        self, process_type: ProcessType, process_id: str, message: str
    ) -> None:
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            SELECT error_log FROM processing_checkpoints
            WHERE process_type = ? AND process_id = ?
            """,
            (process_type.value, process_id),
        )
        row = await cursor.fetchone()
        if row is None:
            logger.warning(
                "checkpoint_missing_for_error",
                process_type=process_type,
                process_id=process_id,
            )
            return
        log: list[str] = json.loads(row["error_log"] or "[]")
        log.append(f"{datetime.now(UTC).isoformat()} {message}")
        await conn.execute(
            """
            UPDATE processing_checkpoints
            SET error_log = ?, updated_at = ?
            WHERE process_type = ? AND process_id = ?
            """,
            (
                json.dumps(log[-MAX_ERROR_LOG_ENTRIES:]),
                datetime.now(UTC).isoformat(),
                process_type.value,
                process_id,
            ),
        )
        await conn.commit()

    async def cleanup_old(self, days: int = 7) -> int:
        """Delete completed or failed checkpoints older than ``days`` days."""
        conn = await self._get_connection()
        cutoff = (datetime.now(UTC) - timedelta(days=days)).isoformat()
        cursor = await conn.execute(
            """
            DELETE FROM processing_checkpoints
            WHERE status IN (?, ?) AND updated_at < ?
            """,
            (CheckpointStatus.COMPLETED.value, CheckpointStatus.FAILED.value, cutoff),
        )
        await conn.commit()
        if cursor.rowcount:
            logger.info("checkpoints_cleaned_up", deleted=cursor.rowcount, days=days)
        return cursor.rowcount
