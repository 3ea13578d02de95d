"""
Database service for RoadSync.

Wraps an aiosqlite connection with schema creation and serialized access.
The same service backs the relational store (accounts, backend records)
and the on-device fallback store, each with its own schema.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import aiosqlite

logger = logging.getLogger(__name__)

BUSY_TIMEOUT_MS = 5000


RELATIONAL_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS accounts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        cloud_subject_id TEXT UNIQUE,
        email TEXT NOT NULL UNIQUE COLLATE NOCASE,
        display_name TEXT NOT NULL DEFAULT '',
        given_name TEXT NOT NULL DEFAULT '',
        family_name TEXT NOT NULL DEFAULT '',
        created_from_cloud INTEGER NOT NULL DEFAULT 0,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS backend_records (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        record_id TEXT NOT NULL UNIQUE,
        kind TEXT NOT NULL,
        owner_account_id INTEGER,
        payload TEXT NOT NULL,
        source TEXT NOT NULL DEFAULT 'LOCAL',
        synced INTEGER NOT NULL DEFAULT 1,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (owner_account_id) REFERENCES accounts(id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_backend_records_kind ON backend_records(kind)",
]


class DatabaseService:
    """
    SQLite-based store using aiosqlite for async operations.

    Statements go through `get_connection()`, whose proxy holds the service
    lock for each execute/commit so concurrent coroutines never interleave
    on the shared connection.
    """

    def __init__(self, db_path: str = "roadsync.db", schema: Optional[Sequence[str]] = None):
        """
        Args:
            db_path: File path, ``sqlite://`` URL, or ":memory:"
            schema: CREATE statements run on initialization (default: relational schema)
        """
        self.db_path = _strip_sqlite_scheme(db_path)
        self.schema = list(schema) if schema is not None else list(RELATIONAL_SCHEMA)
        self.connection: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()
        self._initialized = False

    @property
    def is_memory(self) -> bool:
        return self.db_path == ":memory:"

    @property
    def is_initialized(self) -> bool:
        return self._initialized and self.connection is not None

    async def initialize(self) -> None:
        """Open the connection and create the schema; a second call is a no-op."""
        async with self._lock:
            if self._initialized:
                logger.debug(f"Store {self.db_path} already open")
                return

            if not self.is_memory:
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

            connection = await aiosqlite.connect(self.db_path)
            try:
                await connection.execute(f"PRAGMA busy_timeout = {BUSY_TIMEOUT_MS}")
                if not self.is_memory:
                    await connection.execute("PRAGMA journal_mode=WAL")
                for statement in self.schema:
                    await connection.execute(statement)
                await connection.commit()
            except aiosqlite.Error as e:
                logger.error(f"Could not create schema in {self.db_path}: {e}")
                await connection.close()
                raise

            self.connection = connection
            self._initialized = True
            logger.info(f"Opened store {self.db_path} ({len(self.schema)} schema statements)")

    async def close(self) -> None:
        async with self._lock:
            if self.connection is None:
                return
            await self.connection.close()
            self.connection = None
            self._initialized = False
            logger.info(f"Closed store {self.db_path}")

    async def get_stats(self) -> Dict[str, Any]:
        """
        Row count of every table plus file details.

        Raises:
            RuntimeError: The store is not open
        """
        async with self.get_connection() as conn:
            tables = await conn.fetchall(
                "SELECT name FROM sqlite_master WHERE type = 'table' "
                "AND name NOT LIKE 'sqlite_%' ORDER BY name"
            )
            row_counts: Dict[str, int] = {}
            for (table,) in tables:
                row = await conn.fetchone(f"SELECT COUNT(*) FROM {table}")
                row_counts[table] = row[0] if row else 0

        db_file = Path(self.db_path)
        size = db_file.stat().st_size if not self.is_memory and db_file.exists() else 0
        return {
            "tables": row_counts,
            "db_path": self.db_path,
            "db_size_bytes": size,
            "is_memory": self.is_memory,
            "is_initialized": self.is_initialized,
        }

    def get_connection(self) -> "DatabaseConnectionManager":
        """Context manager yielding a locked proxy over the shared connection."""
        return DatabaseConnectionManager(self)


class DatabaseConnectionManager:
    def __init__(self, db_service: DatabaseService):
        self.db_service = db_service

    async def __aenter__(self) -> "DatabaseConnectionProxy":
        if not self.db_service.is_initialized:
            raise RuntimeError("Database not initialized")
        return DatabaseConnectionProxy(self.db_service)

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        pass


class DatabaseConnectionProxy:
    """
    Locked access to the shared aiosqlite connection.

    `execute`, `commit` and `rollback` each take the lock on their own, so
    another coroutine may run between them. `write` and `write_many` hold the
    lock across the statements and the commit, and roll back on failure.
    Store mutations go through them.
    """

    def __init__(self, db_service: DatabaseService):
        self.db_service = db_service

    def _connection(self) -> aiosqlite.Connection:
        if self.db_service.connection is None:
            raise RuntimeError("Database connection is None")
        return self.db_service.connection

    async def execute(self, query: str, parameters=None) -> aiosqlite.Cursor:
        async with self.db_service._lock:
            return await self._connection().execute(query, parameters or [])

    async def fetchone(self, query: str, parameters=None):
        async with self.db_service._lock:
            cursor = await self._connection().execute(query, parameters or [])
            row = await cursor.fetchone()
            await cursor.close()
            return row

    async def fetchall(self, query: str, parameters=None):
        async with self.db_service._lock:
            cursor = await self._connection().execute(query, parameters or [])
            rows = await cursor.fetchall()
            await cursor.close()
            return rows

    async def commit(self) -> None:
        async with self.db_service._lock:
            await self._connection().commit()

    async def rollback(self) -> None:
        async with self.db_service._lock:
            await self._connection().rollback()

    async def write(self, query: str, parameters=None) -> aiosqlite.Cursor:
        """Execute one statement and commit it atomically."""
        cursors = await self.write_many([(query, parameters)])
        return cursors[0]

    async def write_many(
        self, statements: Sequence[Tuple[str, Optional[Sequence[Any]]]]
    ) -> List[aiosqlite.Cursor]:
        """
        Execute statements in one transaction.

        Returns:
            One cursor per statement, in order

        Raises:
            aiosqlite.Error: The transaction was rolled back
        """
        async with self.db_service._lock:
            connection = self._connection()
            cursors: List[aiosqlite.Cursor] = []
            try:
                for query, parameters in statements:
                    cursors.append(await connection.execute(query, parameters or []))
                await connection.commit()
            except aiosqlite.Error:
                await connection.rollback()
                raise
            return cursors


def _strip_sqlite_scheme(url: str) -> str:
    for prefix in ("sqlite:///", "sqlite://"):
        if url.startswith(prefix):
            return url[len(prefix) :]
    return url
