"""
User record store.

Wraps :class:`UserRepo` with the shared connection so services can load,
create and save whole user records without touching SQL.

A record is written back as a whole document, so every read-modify-write
of one user runs under that user's lock (:meth:`UserStore.locked`).
:meth:`UserStore.update` is the usual way in; callers that have to await
other work between the read and the write (Discord API calls) take the lock
themselves. The lock is re-entrant within one task.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Dict, List, TypeVar

from warden.database.db_connection import ConnectionManager, db_connection
from warden.datatypes.discord_datatypes import UserID
from warden.entities.user_record import UNKNOWN_TAG, UserRecord
from warden.repositories.user_repo import UserRepo
from warden.util.logger import get_logger

logger = get_logger("user_store")

T = TypeVar("T")


class _UserLock:
    __slots__ = ("lock", "owner", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.owner: asyncio.Task | None = None
        self.users = 0


class UserStore:
    def __init__(self, connection: ConnectionManager = db_connection):
        self._connection = connection
        self._locks: Dict[str, _UserLock] = {}

    @asynccontextmanager
    async def locked(self, user_id: UserID | int | str) -> AsyncIterator[None]:
        """Hold the write lock for one user."""
        key = str(UserID(user_id))
        entry = self._locks.setdefault(key, _UserLock())
        task = asyncio.current_task()
        if entry.owner is task:
            yield
            return

        entry.users += 1
        try:
            async with entry.lock:
                entry.owner = task
                try:
                    yield
                finally:
                    entry.owner = None
        finally:
            entry.users -= 1
            if entry.users == 0:
                self._locks.pop(key, None)

    async def update(
        self,
        user_id: UserID | int | str,
        mutate: Callable[[UserRecord], T],
        tag: str | None = None,
    ) -> T:
        """Load (or create) the record, apply ``mutate`` and save, all under the user's lock.

        Nothing is saved when ``mutate`` raises.
        """
        async with self.locked(user_id):
            record = await self.get_or_create(user_id, tag)
            result = mutate(record)
            await self.save(record)
            return result

    async def get(self, user_id: UserID | int | str) -> UserRecord | None:
        async with self._connection.read() as conn:
            return await UserRepo.get(conn, str(UserID(user_id)))

    async def get_or_create(self, user_id: UserID | int | str, tag: str | None = None) -> UserRecord:
        """Load the record, creating an unsaved one when it does not exist.

        A known ``tag`` replaces a stale or placeholder tag on the loaded record.
        """
        record = await self.get(user_id)
        if record is None:
            record = UserRecord(user_id, tag or UNKNOWN_TAG)
            logger.debug("[USER STORE] Created new record for user %s", record.id)
        elif tag and tag != record.tag:
            record.tag = tag
        return record

    async def save(self, record: UserRecord) -> None:
        async with self._connection.transaction() as conn:
            await UserRepo.upsert(conn, record)

    async def find_many(self, predicate: Callable[[UserRecord], bool] | None = None) -> List[UserRecord]:
        async with self._connection.read() as conn:
            records = await UserRepo.get_all(conn)
        if predicate is None:
            return records
        return [r for r in records if predicate(r)]

    async def find_jailed(self) -> List[UserRecord]:
        async with self._connection.read() as conn:
            return await UserRepo.get_jailed(conn)
