"""Account repository over the relational store."""

import logging
from datetime import datetime
from typing import Any, List, Optional, Sequence

import aiosqlite

from .database import DatabaseService
from .errors import ConflictSkipped
from .models import Account

logger = logging.getLogger(__name__)

_ACCOUNT_COLUMNS = (
    "id, email, display_name, given_name, family_name, "
    "cloud_subject_id, created_from_cloud, created_at"
)


def _row_to_account(row: Sequence[Any]) -> Account:
    created_at = row[7]
    if isinstance(created_at, str):
        try:
            created_at = datetime.fromisoformat(created_at)
        except ValueError:
            created_at = None
    return Account(
        id=row[0],
        email=row[1],
        display_name=row[2] or "",
        given_name=row[3] or "",
        family_name=row[4] or "",
        cloud_subject_id=row[5],
        created_from_cloud=bool(row[6]),
        created_at=created_at,
    )


class AccountRepository:
    """
    CRUD for accounts.

    Email matching is case-insensitive (column collation). Uniqueness of
    email and cloud subject id is enforced by the schema; a violation is
    reported as ConflictSkipped so callers can count it as already present.
    """

    def __init__(self, db: DatabaseService):
        self.db = db

    async def list_all(self) -> List[Account]:
        """Return every account ordered by id."""
        async with self.db.get_connection() as conn:
            rows = await conn.fetchall(f"SELECT {_ACCOUNT_COLUMNS} FROM accounts ORDER BY id")
        return [_row_to_account(row) for row in rows]

    async def get(self, account_id: int) -> Optional[Account]:
        async with self.db.get_connection() as conn:
            row = await conn.fetchone(
                f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE id = ?", (account_id,)
            )
        return _row_to_account(row) if row else None

    async def find_by_email(self, email: str) -> Optional[Account]:
        async with self.db.get_connection() as conn:
            row = await conn.fetchone(
                f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE email = ?", (email.strip(),)
            )
        return _row_to_account(row) if row else None

    async def find_by_subject_id(self, subject_id: str) -> Optional[Account]:
        async with self.db.get_connection() as conn:
            row = await conn.fetchone(
                f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE cloud_subject_id = ?",
                (subject_id,),
            )
        return _row_to_account(row) if row else None

    async def create(
        self,
        email: str,
        display_name: str = "",
        given_name: str = "",
        family_name: str = "",
        cloud_subject_id: Optional[str] = None,
        created_from_cloud: bool = False,
    ) -> Account:
        """
        Insert a new account.

        Raises:
            ConflictSkipped: An account with this email or subject id already exists
        """
        created_at = datetime.now()
        try:
            async with self.db.get_connection() as conn:
                cursor = await conn.write(
                    """
                    INSERT INTO accounts
                    (email, display_name, given_name, family_name,
                     cloud_subject_id, created_from_cloud, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        email.strip(),
                        display_name,
                        given_name,
                        family_name,
                        cloud_subject_id,
                        1 if created_from_cloud else 0,
                        created_at.isoformat(),
                    ),
                )
                account_id = cursor.lastrowid
        except aiosqlite.IntegrityError as e:
            raise ConflictSkipped(f"Account {email} already exists: {e}") from e

        logger.debug(f"Created account {account_id} for {email}")
        return Account(
            id=account_id,
            email=email.strip(),
            display_name=display_name,
            given_name=given_name,
            family_name=family_name,
            cloud_subject_id=cloud_subject_id,
            created_from_cloud=created_from_cloud,
            created_at=created_at,
        )

    async def attach_subject_id(self, account_id: int, subject_id: str) -> bool:
        """
        Set the cloud subject id of an account that has none.

        Returns:
            True if the row was updated, False if it already had one

        Raises:
            ConflictSkipped: The subject id is already attached to another account
        """
        try:
            async with self.db.get_connection() as conn:
                cursor = await conn.write(
                    """
                    UPDATE accounts SET cloud_subject_id = ?
                    WHERE id = ? AND cloud_subject_id IS NULL
                    """,
                    (subject_id, account_id),
                )
        except aiosqlite.IntegrityError as e:
            raise ConflictSkipped(f"Subject id {subject_id} already attached: {e}") from e

        updated = cursor.rowcount > 0
        if updated:
            logger.debug(f"Attached cloud subject {subject_id} to account {account_id}")
        return updated
