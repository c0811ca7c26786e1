"""
Persistent storage for user records.

Each row holds the whole record as a JSON document plus a few denormalised
flag columns used to answer the startup scans without decoding every row.
"""

from __future__ import annotations

import json
from typing import List

import aiosqlite

from warden.entities.user_record import UserRecord
from warden.util.logger import get_logger

logger = get_logger("user_repo")


class UserRepo:
    """Low-level CRUD for the ``users`` table."""

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @staticmethod
    async def upsert(conn: aiosqlite.Connection, record: UserRecord) -> None:
        """Insert or replace the document for ``record.id``."""
        await conn.execute(
            """
            INSERT INTO users (user_id, tag, document, is_jailed, has_persistent_roles, updated_at)
            VALUES (?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(user_id) DO UPDATE SET
                tag                  = excluded.tag,
                document             = excluded.document,
                is_jailed            = excluded.is_jailed,
                has_persistent_roles = excluded.has_persistent_roles,
                updated_at           = excluded.updated_at
            """,
            (
                str(record.id),
                record.tag,
                json.dumps(record.to_document()),
                int(record.is_jailed()),
                int(record.has_persistent_roles()),
            ),
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    async def get(conn: aiosqlite.Connection, user_id: str) -> UserRecord | None:
        cursor = await conn.execute(
            "SELECT document FROM users WHERE user_id = ? LIMIT 1",
            (str(user_id),),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return UserRecord.from_document(json.loads(row[0]))

    @staticmethod
    async def get_all(conn: aiosqlite.Connection) -> List[UserRecord]:
        cursor = await conn.execute("SELECT document FROM users")
        return UserRepo._decode_rows(await cursor.fetchall())

    @staticmethod
    async def get_jailed(conn: aiosqlite.Connection) -> List[UserRecord]:
        cursor = await conn.execute("SELECT document FROM users WHERE is_jailed = 1")
        return UserRepo._decode_rows(await cursor.fetchall())

    @staticmethod
    def _decode_rows(rows) -> List[UserRecord]:
        records = []
        for row in rows:
            try:
                records.append(UserRecord.from_document(json.loads(row[0])))
            except (ValueError, KeyError) as exc:
                logger.error("[USER REPO] Skipping unreadable user document: %s", exc)
        return records
