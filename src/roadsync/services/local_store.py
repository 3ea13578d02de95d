"""
Local fallback store.

Stands in for on-device storage (local cache, IndexedDB): the last link of
the write chain, used when neither the backend nor the cloud is reachable.
Any storage failure here is fatal for the write and raised as WriteFailedError.
It also queues changes to existing records while the backend is away.
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

import aiosqlite

from .database import DatabaseService
from .errors import WriteFailedError
from .models import PendingUpdate, RecordKind, RecordSource, SyncableRecord

logger = logging.getLogger(__name__)


LOCAL_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS records (
        local_id INTEGER PRIMARY KEY AUTOINCREMENT,
        record_id TEXT NOT NULL UNIQUE,
        kind TEXT NOT NULL,
        cloud_id TEXT,
        owner_account_id INTEGER,
        payload TEXT NOT NULL,
        synced INTEGER NOT NULL DEFAULT 0,
        source TEXT NOT NULL DEFAULT 'LOCAL',
        created_at DATETIME NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_records_kind_synced ON records(kind, synced)",
    """
    CREATE TABLE IF NOT EXISTS pending_updates (
        record_id TEXT PRIMARY KEY,
        kind TEXT NOT NULL,
        backend_id TEXT,
        changes TEXT NOT NULL,
        queued_at DATETIME NOT NULL
    )
    """,
]

_RECORD_COLUMNS = (
    "local_id, record_id, kind, cloud_id, owner_account_id, payload, synced, source, created_at"
)


def _row_to_record(row: Sequence[Any]) -> SyncableRecord:
    try:
        payload = json.loads(row[5])
    except (json.JSONDecodeError, TypeError) as e:
        logger.warning(f"Failed to parse payload for record {row[1]}: {e}")
        payload = {}
    return SyncableRecord(
        local_id=row[0],
        record_id=row[1],
        kind=RecordKind(row[2]),
        cloud_id=row[3],
        owner_account_id=row[4],
        payload=payload if isinstance(payload, dict) else {},
        synced=bool(row[6]),
        source=RecordSource(row[7]),
        created_at=datetime.fromisoformat(row[8]) if row[8] else None,
    )


class LocalRecordStore:
    """SQLite-backed record store with a per-record synced flag."""

    def __init__(self, db_path: str = "data/local_cache.db"):
        self.db = DatabaseService(db_path, schema=LOCAL_SCHEMA)

    @property
    def is_initialized(self) -> bool:
        return self.db.is_initialized

    async def initialize(self) -> None:
        if not self.db.is_initialized:
            await self.db.initialize()

    async def close(self) -> None:
        await self.db.close()

    async def insert(self, record: SyncableRecord) -> SyncableRecord:
        """
        Persist a record, unsynced.

        Inserting a record_id that is already stored returns the stored row.

        Raises:
            WriteFailedError: The local store could not persist the record
        """
        created_at = record.created_at or datetime.now()
        try:
            async with self.db.get_connection() as conn:
                await conn.write(
                    """
                    INSERT OR IGNORE INTO records
                    (record_id, kind, cloud_id, owner_account_id, payload,
                     synced, source, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.record_id,
                        record.kind.value,
                        record.cloud_id,
                        record.owner_account_id,
                        json.dumps(record.payload, ensure_ascii=False, separators=(",", ":")),
                        1 if record.synced else 0,
                        record.source.value,
                        created_at.isoformat(),
                    ),
                )
                row = await conn.fetchone(
                    f"SELECT {_RECORD_COLUMNS} FROM records WHERE record_id = ?",
                    (record.record_id,),
                )
        except (aiosqlite.Error, RuntimeError, TypeError, ValueError) as e:
            logger.error(f"Local write failed for record {record.record_id}: {e}")
            raise WriteFailedError(f"Local store could not persist {record.record_id}: {e}") from e

        if row is None:
            raise WriteFailedError(f"Record {record.record_id} missing after local insert")

        stored = _row_to_record(row)
        logger.debug(f"Stored {stored.kind.value} {stored.record_id} locally (#{stored.local_id})")
        return stored

    async def get(self, local_id: int) -> Optional[SyncableRecord]:
        async with self.db.get_connection() as conn:
            row = await conn.fetchone(
                f"SELECT {_RECORD_COLUMNS} FROM records WHERE local_id = ?", (local_id,)
            )
        return _row_to_record(row) if row else None

    async def list_unsynced(self, kind: Optional[RecordKind] = None) -> List[SyncableRecord]:
        """Unsynced records, oldest first."""
        query = f"SELECT {_RECORD_COLUMNS} FROM records WHERE synced = 0"
        params: List[Any] = []
        if kind is not None:
            query += " AND kind = ?"
            params.append(kind.value)
        query += " ORDER BY created_at, local_id"

        async with self.db.get_connection() as conn:
            rows = await conn.fetchall(query, params)
        return [_row_to_record(row) for row in rows]

    async def mark_synced(self, local_ids: Iterable[int]) -> List[int]:
        """Flag records as synced; returns the ids that exist."""
        ids = list(dict.fromkeys(local_ids))
        if not ids:
            return []
        async with self.db.get_connection() as conn:
            cursors = await conn.write_many(
                [
                    ("UPDATE records SET synced = 1 WHERE local_id = ?", (local_id,))
                    for local_id in ids
                ]
            )
        return [local_id for local_id, cursor in zip(ids, cursors) if cursor.rowcount > 0]

    async def attach_cloud_id(self, local_id: int, cloud_id: str) -> bool:
        async with self.db.get_connection() as conn:
            cursor = await conn.write(
                "UPDATE records SET cloud_id = ? WHERE local_id = ?", (cloud_id, local_id)
            )
        return cursor.rowcount > 0

    async def queue_update(self, update: PendingUpdate) -> PendingUpdate:
        """
        Hold payload changes until the backend can take them.

        One entry per record: a newer update for the same record_id replaces
        the queued one, keeping a known backend id.

        Raises:
            WriteFailedError: The queue could not be written
        """
        queued_at = update.queued_at or datetime.now()
        try:
            async with self.db.get_connection() as conn:
                await conn.write(
                    """
                    INSERT INTO pending_updates (record_id, kind, backend_id, changes, queued_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(record_id) DO UPDATE SET
                        kind = excluded.kind,
                        backend_id = COALESCE(excluded.backend_id, pending_updates.backend_id),
                        changes = excluded.changes,
                        queued_at = excluded.queued_at
                    """,
                    (
                        update.record_id,
                        update.kind.value,
                        update.backend_id,
                        json.dumps(update.changes, ensure_ascii=False),
                        queued_at.isoformat(),
                    ),
                )
        except (aiosqlite.Error, RuntimeError, TypeError, ValueError) as e:
            logger.error(f"Could not queue update for record {update.record_id}: {e}")
            raise WriteFailedError(f"Local store could not queue {update.record_id}: {e}") from e

        logger.debug(f"Queued update for {update.kind.value} {update.record_id}")
        return PendingUpdate(
            record_id=update.record_id,
            kind=update.kind,
            changes=dict(update.changes),
            backend_id=update.backend_id,
            queued_at=queued_at,
        )

    async def list_pending_updates(self) -> List[PendingUpdate]:
        """Queued updates, oldest first."""
        async with self.db.get_connection() as conn:
            rows = await conn.fetchall(
                "SELECT record_id, kind, backend_id, changes, queued_at "
                "FROM pending_updates ORDER BY queued_at, record_id"
            )

        updates = []
        for record_id, kind, backend_id, changes, queued_at in rows:
            try:
                parsed = json.loads(changes)
            except (json.JSONDecodeError, TypeError) as e:
                logger.warning(f"Failed to parse queued update for record {record_id}: {e}")
                parsed = {}
            updates.append(
                PendingUpdate(
                    record_id=record_id,
                    kind=RecordKind(kind),
                    changes=parsed if isinstance(parsed, dict) else {},
                    backend_id=backend_id,
                    queued_at=datetime.fromisoformat(queued_at) if queued_at else None,
                )
            )
        return updates

    async def remove_pending_update(self, record_id: str) -> bool:
        async with self.db.get_connection() as conn:
            cursor = await conn.write(
                "DELETE FROM pending_updates WHERE record_id = ?", (record_id,)
            )
        return cursor.rowcount > 0

    async def get_stats(self) -> Dict[str, Dict[str, int]]:
        """Per-kind counters: total, synced, unsynced, from_cloud, from_local."""
        async with self.db.get_connection() as conn:
            rows = await conn.fetchall(
                """
                SELECT
                    kind,
                    COUNT(*),
                    SUM(CASE WHEN synced = 1 THEN 1 ELSE 0 END),
                    SUM(CASE WHEN source = 'CLOUD' THEN 1 ELSE 0 END)
                FROM records
                GROUP BY kind
                """
            )

        stats = {
            kind.value: {"total": 0, "synced": 0, "unsynced": 0, "from_cloud": 0, "from_local": 0}
            for kind in RecordKind
        }
        for kind, total, synced, from_cloud in rows:
            synced = synced or 0
            from_cloud = from_cloud or 0
            stats[kind] = {
                "total": total,
                "synced": synced,
                "unsynced": total - synced,
                "from_cloud": from_cloud,
                "from_local": total - from_cloud,
            }
        return stats
