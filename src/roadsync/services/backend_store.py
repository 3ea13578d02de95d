"""
In-process authoritative backend.

Serves the same calls as BackendClient straight from the relational store's
`backend_records` table, for deployments where the sync core runs inside the
backend process itself.
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import aiosqlite

from .database import DatabaseService
from .errors import BackendRequestError
from .models import RecordKind, SyncableRecord

logger = logging.getLogger(__name__)

_COLUMNS = "id, record_id, kind, owner_account_id, payload, source, synced, created_at"

_PATCHABLE = {"payload", "synced", "owner_account_id"}


def _row_to_dict(row: Sequence[Any]) -> Dict[str, Any]:
    try:
        payload = json.loads(row[4])
    except (json.JSONDecodeError, TypeError):
        payload = {}
    return {
        "id": row[0],
        "record_id": row[1],
        "kind": row[2],
        "owner_account_id": row[3],
        "payload": payload,
        "source": row[5],
        "synced": bool(row[6]),
        "created_at": row[7],
    }


class BackendRecordStore:
    """Backend record operations over DatabaseService."""

    def __init__(self, db: DatabaseService):
        self.db = db

    async def start(self) -> None:
        if not self.db.is_initialized:
            await self.db.initialize()

    async def stop(self) -> None:
        pass

    def reset_resolution(self) -> None:
        pass

    async def ping(self) -> bool:
        return self.db.is_initialized

    async def _find(self, record_id: str) -> Optional[Dict[str, Any]]:
        async with self.db.get_connection() as conn:
            row = await conn.fetchone(
                f"SELECT {_COLUMNS} FROM backend_records WHERE record_id = ?", (record_id,)
            )
        return _row_to_dict(row) if row else None

    async def _insert(self, record: SyncableRecord) -> Optional[int]:
        """Insert unless the record_id exists; returns the new row id or None."""
        created_at = (record.created_at or datetime.now()).isoformat()
        try:
            async with self.db.get_connection() as conn:
                cursor = await conn.write(
                    """
                    INSERT OR IGNORE INTO backend_records
                    (record_id, kind, owner_account_id, payload, source, synced, created_at)
                    VALUES (?, ?, ?, ?, ?, 1, ?)
                    """,
                    (
                        record.record_id,
                        record.kind.value,
                        record.owner_account_id,
                        json.dumps(record.payload, ensure_ascii=False),
                        record.source.value,
                        created_at,
                    ),
                )
        except aiosqlite.IntegrityError as e:
            raise BackendRequestError(422, str(e)) from e
        return cursor.lastrowid if cursor.rowcount > 0 else None

    async def create_record(self, record: SyncableRecord) -> Dict[str, Any]:
        """Store a new record; an existing record_id is a 409."""
        row_id = await self._insert(record)
        if row_id is None:
            raise BackendRequestError(409, f"record {record.record_id} already exists")
        logger.debug(f"Backend stored {record.kind.value} {record.record_id} as #{row_id}")
        return {"id": row_id, "created": True}

    async def upsert_record(self, record: SyncableRecord) -> Dict[str, Any]:
        """Store a record, or overwrite the payload stored under its record_id."""
        row_id = await self._insert(record)
        if row_id is not None:
            return {"id": row_id, "created": True}

        async with self.db.get_connection() as conn:
            await conn.write(
                """
                UPDATE backend_records
                SET payload = ?, source = ?, owner_account_id = COALESCE(?, owner_account_id)
                WHERE record_id = ?
                """,
                (
                    json.dumps(record.payload, ensure_ascii=False),
                    record.source.value,
                    record.owner_account_id,
                    record.record_id,
                ),
            )
        existing = await self._find(record.record_id)
        logger.debug(f"Backend refreshed {record.kind.value} {record.record_id}")
        return {"id": existing["id"] if existing else None, "created": False}

    async def list_records(
        self, kind: Optional[RecordKind] = None, **filters: Any
    ) -> List[Dict[str, Any]]:
        query = f"SELECT {_COLUMNS} FROM backend_records WHERE 1 = 1"
        params: List[Any] = []
        if kind is not None:
            query += " AND kind = ?"
            params.append(kind.value)
        for column in ("owner_account_id", "source", "record_id"):
            if filters.get(column) is not None:
                query += f" AND {column} = ?"
                params.append(filters[column])
        query += " ORDER BY id"

        async with self.db.get_connection() as conn:
            rows = await conn.fetchall(query, params)
        return [_row_to_dict(row) for row in rows]

    async def _get(self, backend_id: str) -> Dict[str, Any]:
        async with self.db.get_connection() as conn:
            row = await conn.fetchone(
                f"SELECT {_COLUMNS} FROM backend_records WHERE id = ?", (backend_id,)
            )
        if row is None:
            raise BackendRequestError(404, f"record {backend_id} not found")
        return _row_to_dict(row)

    async def update_record(self, backend_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply a partial update.

        Keys under ``payload`` are merged into the stored payload; ``synced``
        and ``owner_account_id`` are replaced.

        Raises:
            BackendRequestError: 400 for an unknown field, 404 for an unknown id
        """
        unknown = set(patch) - _PATCHABLE
        if unknown:
            raise BackendRequestError(400, f"cannot patch {', '.join(sorted(unknown))}")

        current = await self._get(backend_id)
        assignments = []
        params: List[Any] = []
        for column, value in patch.items():
            assignments.append(f"{column} = ?")
            if column == "payload":
                if not isinstance(value, dict):
                    raise BackendRequestError(400, "payload must be an object")
                value = json.dumps({**current["payload"], **value}, ensure_ascii=False)
            elif column == "synced":
                value = 1 if value else 0
            params.append(value)

        if assignments:
            async with self.db.get_connection() as conn:
                cursor = await conn.write(
                    f"UPDATE backend_records SET {', '.join(assignments)} WHERE id = ?",
                    [*params, backend_id],
                )
            if cursor.rowcount == 0:
                raise BackendRequestError(404, f"record {backend_id} not found")

        return await self._get(backend_id)
