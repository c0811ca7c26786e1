"""
Durable moderation history.

The ledger is the source of truth for every moderation action and for the
reversal timers that have to be rebuilt after a restart. Records are kept
per user; the guild an action happened in is carried in its metadata.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List

from warden.datatypes.discord_datatypes import GuildID, UserID
from warden.datatypes.moderation_datatypes import ModerationAction, ModerationKind
from warden.entities.user_record import UserRecord
from warden.services.user_store import UserStore
from warden.util.logger import get_logger

logger = get_logger("moderation_ledger")


@dataclass(frozen=True, slots=True)
class PendingReversal:
    """A reversal derived from the ledger that still has to happen."""

    user_id: UserID
    guild_id: GuildID
    kind: ModerationKind
    expires_at: int
    reason: str


class ModerationLedger:
    """Append-only moderation history on top of the user store."""

    def __init__(self, user_store: UserStore):
        self.user_store = user_store

    async def record(
        self,
        user_id: UserID | int | str,
        kind: ModerationKind,
        moderator_id: str | int,
        reason: str,
        metadata: Dict[str, Any] | None = None,
        tag: str | None = None,
        update: Callable[[UserRecord], None] | None = None,
    ) -> ModerationAction:
        """Append one action to the user's record and persist it.

        ``update`` is applied to the record before the action is appended so
        that a state change and its ledger entry land in the same write.
        """
        def append(record: UserRecord) -> ModerationAction:
            if update is not None:
                update(record)
            return record.add_moderation_action(kind, moderator_id, reason, metadata=metadata)

        action = await self.user_store.update(user_id, append, tag)
        logger.debug("[LEDGER] Recorded %s for user %s (%s)", kind.value, user_id, action.id)
        return action

    async def mark_temporary_ban(
        self,
        user_id: UserID | int | str,
        action_id: str,
        expires_at: int,
        duration_seconds: float,
    ) -> ModerationAction:
        return await self.user_store.update(
            user_id, lambda record: record.mark_temporary_ban(action_id, expires_at, duration_seconds)
        )

    async def history(
        self,
        user_id: UserID | int | str,
        kind: ModerationKind | None = None,
        limit: int | None = None,
    ) -> List[ModerationAction]:
        record = await self.user_store.get(user_id)
        if record is None:
            return []
        return record.get_moderation_history(kind, limit)

    async def is_jailed(self, user_id: UserID | int | str) -> bool:
        record = await self.user_store.get(user_id)
        return record is not None and record.is_jailed()

    async def pending_reversals(self, guild_id: GuildID | int, now: float | None = None) -> List[PendingReversal]:
        """Scan every record for reversals still owed in ``guild_id``.

        Expired entries are included; the caller decides to fire them
        immediately rather than schedule them.
        """
        guild_id = GuildID(guild_id)
        now = time.time() if now is None else now
        pending: List[PendingReversal] = []

        for record in await self.user_store.find_many():
            tempban = _pending_tempban(record, guild_id)
            if tempban is not None:
                pending.append(tempban)
            jail = _pending_jail(record, guild_id)
            if jail is not None:
                pending.append(jail)

        logger.debug(
            "[LEDGER] Guild %s has %d pending reversals (%d already due)",
            guild_id,
            len(pending),
            sum(1 for p in pending if p.expires_at <= now),
        )
        return pending


def _guild_actions(record: UserRecord, guild_id: GuildID) -> List[ModerationAction]:
    """History for one guild, oldest first."""
    return [a for a in record.moderation_history if a.guild_id == guild_id.to_int()]


def _pending_tempban(record: UserRecord, guild_id: GuildID) -> PendingReversal | None:
    latest_ban = None
    unbanned_after = False
    for action in _guild_actions(record, guild_id):
        if action.kind is ModerationKind.BAN:
            latest_ban = action
            unbanned_after = False
        elif action.kind is ModerationKind.UNBAN and latest_ban is not None:
            unbanned_after = True

    if latest_ban is None or unbanned_after:
        return None
    meta = latest_ban.metadata
    if meta.get("permanent", True) or meta.get("expires_at") is None:
        return None
    return PendingReversal(record.id, guild_id, ModerationKind.TEMPBAN, int(meta["expires_at"]), latest_ban.reason)


def _pending_jail(record: UserRecord, guild_id: GuildID) -> PendingReversal | None:
    if not record.is_jailed_in(guild_id):
        return None
    latest_jail = None
    for action in _guild_actions(record, guild_id):
        if action.kind is ModerationKind.JAIL:
            latest_jail = action
        elif action.kind is ModerationKind.UNJAIL:
            latest_jail = None
    if latest_jail is None or latest_jail.metadata.get("expires_at") is None:
        return None
    return PendingReversal(
        record.id, guild_id, ModerationKind.JAIL, int(latest_jail.metadata["expires_at"]), latest_jail.reason
    )
