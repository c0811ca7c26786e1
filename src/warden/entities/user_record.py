"""
User entity: moderation history, jail backup and persistent roles.

A UserRecord is the single durable document kept per user. Every mutation
goes through the methods below so the entity invariants hold:

- ``is_jailed()`` is true exactly when ``original_roles`` is non-empty.
- A jail backup belongs to the guild it was taken in (``jail_guild_id``).
- ``moderation_history`` is append-only and kept in insertion order.
- ``persistent_roles`` never contains duplicates.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List

from warden.datatypes.discord_datatypes import GuildID, RoleID, UserID
from warden.datatypes.moderation_datatypes import (
    MAX_NOTE_LENGTH,
    MAX_REASON_LENGTH,
    ModerationAction,
    ModerationKind,
    StaffNote,
    parse_timestamp,
    utcnow,
)

UNKNOWN_TAG = "Unknown User"


class UserRecord:
    """Durable per-user moderation state."""

    def __init__(
        self,
        user_id: UserID | int | str,
        tag: str = UNKNOWN_TAG,
        *,
        original_roles: Iterable[RoleID | int | str] | None = None,
        jail_guild_id: GuildID | int | str | None = None,
        jail_role_id: RoleID | int | str | None = None,
        persistent_roles: Iterable[RoleID | int | str] | None = None,
        moderation_history: Iterable[ModerationAction] | None = None,
        staff_notes: Iterable[StaffNote] | None = None,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
    ) -> None:
        self.id = UserID(user_id)
        self.tag = tag.strip() if isinstance(tag, str) and tag.strip() else UNKNOWN_TAG
        self._original_roles: List[RoleID] = [RoleID(r) for r in (original_roles or [])]
        self._jail_guild_id = GuildID(jail_guild_id) if jail_guild_id is not None else None
        self._jail_role_id = RoleID(jail_role_id) if jail_role_id is not None else None
        self._persistent_roles: List[RoleID] = []
        self._moderation_history: List[ModerationAction] = list(moderation_history or [])
        self._staff_notes: List[StaffNote] = list(staff_notes or [])
        self.created_at = created_at or utcnow()
        self.updated_at = updated_at or self.created_at
        self.add_persistent_roles(persistent_roles or [], touch=False)

    def __repr__(self) -> str:
        return f"UserRecord(id={self.id!s}, tag={self.tag!r}, jailed={self.is_jailed()})"

    def _touch(self) -> None:
        self.updated_at = utcnow()

    def _new_id(self) -> str:
        return f"{self.id}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"

    # ------------------------------------------------------------------
    # Moderation history
    # ------------------------------------------------------------------

    def add_moderation_action(
        self,
        kind: ModerationKind | str,
        moderator_id: str | int,
        reason: str,
        timestamp: datetime | None = None,
        metadata: Dict[str, Any] | None = None,
    ) -> ModerationAction:
        """Append a moderation action and return it.

        Raises:
            ValueError: If the kind is unknown, the moderator ID is empty or
                the reason is empty or longer than 500 characters.
        """
        try:
            kind = kind if isinstance(kind, ModerationKind) else ModerationKind(str(kind).lower())
        except ValueError:
            valid = ", ".join(k.value for k in ModerationKind)
            raise ValueError(f"Invalid action type: {kind}. Valid types: {valid}") from None

        moderator = str(moderator_id).strip() if moderator_id is not None else ""
        if not moderator:
            raise ValueError("Moderator ID must be a non-empty string")

        trimmed = reason.strip() if isinstance(reason, str) else ""
        if not trimmed:
            raise ValueError("Reason must be a non-empty string")
        if len(trimmed) > MAX_REASON_LENGTH:
            raise ValueError(f"Reason cannot exceed {MAX_REASON_LENGTH} characters")

        action = ModerationAction(
            id=self._new_id(),
            kind=kind,
            moderator_id=moderator,
            reason=trimmed,
            timestamp=timestamp or utcnow(),
            metadata=dict(metadata or {}),
        )
        self._moderation_history.append(action)
        self._touch()
        return action

    def mark_temporary_ban(self, action_id: str, expires_at: int, duration_seconds: float) -> ModerationAction:
        """Turn a just-recorded ``ban`` entry into a temporary ban.

        This is the one permitted amendment of a ledger entry: the metadata
        of a ban written moments earlier by the same operation gets
        ``permanent=False``, ``expires_at`` and ``duration_seconds``.

        Raises:
            KeyError: If no action with ``action_id`` exists.
            ValueError: If the action is not a ban.
        """
        for index, action in enumerate(self._moderation_history):
            if action.id != action_id:
                continue
            if action.kind is not ModerationKind.BAN:
                raise ValueError(f"Action {action_id} is a {action.kind.value}, not a ban")
            metadata = dict(action.metadata)
            metadata.update(permanent=False, expires_at=int(expires_at), duration_seconds=duration_seconds)
            amended = replace(action, metadata=metadata)
            self._moderation_history[index] = amended
            self._touch()
            return amended
        raise KeyError(action_id)

    def add_warning(
        self,
        moderator_id: str | int,
        reason: str,
        timestamp: datetime | None = None,
        metadata: Dict[str, Any] | None = None,
    ) -> ModerationAction:
        return self.add_moderation_action(ModerationKind.WARN, moderator_id, reason, timestamp, metadata)

    def get_warnings(self) -> List[ModerationAction]:
        return self.get_moderation_history(ModerationKind.WARN)

    @property
    def moderation_history(self) -> List[ModerationAction]:
        """The ledger in insertion (chronological) order."""
        return list(self._moderation_history)

    def get_moderation_history(
        self,
        kind: ModerationKind | str | None = None,
        limit: int | None = None,
    ) -> List[ModerationAction]:
        """Return actions most recent first, optionally filtered and limited."""
        history = list(reversed(self._moderation_history))
        if kind is not None:
            wanted = kind if isinstance(kind, ModerationKind) else ModerationKind(str(kind).lower())
            history = [a for a in history if a.kind is wanted]
        history.sort(key=lambda a: a.timestamp, reverse=True)
        if limit is not None and limit > 0:
            history = history[:limit]
        return history

    def get_moderation_stats(self) -> Dict[str, int]:
        stats = {kind.value: 0 for kind in ModerationKind}
        for action in self._moderation_history:
            stats[action.kind.value] += 1
        stats["total"] = len(self._moderation_history)
        return stats

    def get_recent_actions_count(self, hours: float, kind: ModerationKind | None = None) -> int:
        if hours <= 0:
            raise ValueError("Hours must be a positive number")
        cutoff = utcnow() - timedelta(hours=hours)
        return sum(
            1
            for a in self._moderation_history
            if a.timestamp >= cutoff and (kind is None or a.kind is kind)
        )

    # ------------------------------------------------------------------
    # Jail backup
    # ------------------------------------------------------------------

    def store_original_roles(
        self,
        role_ids: Iterable[RoleID | int | str],
        guild_id: GuildID | int | str | None = None,
        jail_role_id: RoleID | int | str | None = None,
    ) -> None:
        """Replace the jail backup with ``role_ids`` (order preserved).

        ``guild_id`` and ``jail_role_id`` record where the member is confined
        and with which role.
        """
        self._original_roles = [RoleID(r) for r in role_ids]
        self._jail_guild_id = GuildID(guild_id) if guild_id is not None else None
        self._jail_role_id = RoleID(jail_role_id) if jail_role_id is not None else None
        self._touch()

    def get_original_roles(self) -> List[RoleID]:
        return list(self._original_roles)

    def clear_original_roles(self) -> None:
        self._original_roles = []
        self._jail_guild_id = None
        self._jail_role_id = None
        self._touch()

    def is_jailed(self) -> bool:
        return len(self._original_roles) > 0

    def _open_jail_action(self) -> ModerationAction | None:
        latest = None
        for action in self._moderation_history:
            if action.kind is ModerationKind.JAIL:
                latest = action
            elif action.kind is ModerationKind.UNJAIL:
                latest = None
        return latest

    def get_jail_guild_id(self) -> GuildID | None:
        """Guild the current jail applies to, or None when free.

        Documents written without the field fall back to the latest jail
        entry that has no later unjail.
        """
        if not self.is_jailed():
            return None
        if self._jail_guild_id is not None:
            return self._jail_guild_id
        action = self._open_jail_action()
        return GuildID(action.guild_id) if action is not None and action.guild_id is not None else None

    def get_jail_role_id(self) -> RoleID | None:
        if not self.is_jailed():
            return None
        if self._jail_role_id is not None:
            return self._jail_role_id
        action = self._open_jail_action()
        if action is None or action.metadata.get("jail_role_id") is None:
            return None
        return RoleID(action.metadata["jail_role_id"])

    def is_jailed_in(self, guild_id: GuildID | int | str) -> bool:
        """Jailed in ``guild_id``. A jail whose guild is unknown counts for every guild."""
        if not self.is_jailed():
            return False
        jail_guild = self.get_jail_guild_id()
        return jail_guild is None or jail_guild == GuildID(guild_id)

    # ------------------------------------------------------------------
    # Persistent roles
    # ------------------------------------------------------------------

    def add_persistent_roles(self, role_ids: Iterable[RoleID | int | str], *, touch: bool = True) -> int:
        """Union ``role_ids`` into the persistent set. Returns how many were new."""
        added = 0
        for raw in role_ids:
            role_id = RoleID(raw)
            if role_id not in self._persistent_roles:
                self._persistent_roles.append(role_id)
                added += 1
        if added and touch:
            self._touch()
        return added

    def add_persistent_role(self, role_id: RoleID | int | str) -> bool:
        return self.add_persistent_roles([role_id]) == 1

    def remove_persistent_role(self, role_id: RoleID | int | str) -> bool:
        role_id = RoleID(role_id)
        if role_id not in self._persistent_roles:
            return False
        self._persistent_roles.remove(role_id)
        self._touch()
        return True

    def has_persistent_role(self, role_id: RoleID | int | str) -> bool:
        return RoleID(role_id) in self._persistent_roles

    def get_persistent_roles(self) -> List[RoleID]:
        return list(self._persistent_roles)

    def has_persistent_roles(self) -> bool:
        return len(self._persistent_roles) > 0

    def clear_persistent_roles(self) -> None:
        self._persistent_roles = []
        self._touch()

    # ------------------------------------------------------------------
    # Staff notes
    # ------------------------------------------------------------------

    def add_staff_note(
        self,
        author_id: str | int,
        content: str,
        timestamp: datetime | None = None,
        metadata: Dict[str, Any] | None = None,
    ) -> StaffNote:
        trimmed = content.strip() if isinstance(content, str) else ""
        if not trimmed:
            raise ValueError("Note content must be provided")
        if len(trimmed) > MAX_NOTE_LENGTH:
            raise ValueError(f"Note content cannot exceed {MAX_NOTE_LENGTH} characters")
        note = StaffNote(
            id=self._new_id(),
            author_id=str(author_id),
            content=trimmed,
            timestamp=timestamp or utcnow(),
            metadata=dict(metadata or {}),
        )
        self._staff_notes.append(note)
        self._touch()
        return note

    def get_staff_notes(self) -> List[StaffNote]:
        """Staff notes, most recent first."""
        return sorted(self._staff_notes, key=lambda n: n.timestamp, reverse=True)

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------

    def to_document(self) -> Dict[str, Any]:
        return {
            "_id": str(self.id),
            "tag": self.tag,
            "original_roles": [str(r) for r in self._original_roles],
            "original_roles_guild_id": str(self._jail_guild_id) if self._jail_guild_id is not None else None,
            "jail_role_id": str(self._jail_role_id) if self._jail_role_id is not None else None,
            "persistent_roles": [str(r) for r in self._persistent_roles],
            "moderation_history": [a.to_document() for a in self._moderation_history],
            "staff_notes": [n.to_document() for n in self._staff_notes],
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "UserRecord":
        if not data or not data.get("_id"):
            raise ValueError("Invalid user data: missing ID")
        return cls(
            data["_id"],
            data.get("tag") or UNKNOWN_TAG,
            original_roles=data.get("original_roles") or [],
            jail_guild_id=data.get("original_roles_guild_id"),
            jail_role_id=data.get("jail_role_id"),
            persistent_roles=data.get("persistent_roles") or [],
            moderation_history=[ModerationAction.from_document(a) for a in data.get("moderation_history") or []],
            staff_notes=[StaffNote.from_document(n) for n in data.get("staff_notes") or []],
            created_at=parse_timestamp(data.get("created_at")),
            updated_at=parse_timestamp(data.get("updated_at")),
        )

    def display_info(self) -> Dict[str, Any]:
        last_action = self._moderation_history[-1] if self._moderation_history else None
        return {
            "id": str(self.id),
            "tag": self.tag,
            "is_jailed": self.is_jailed(),
            "has_persistent_roles": self.has_persistent_roles(),
            "moderation_count": len(self._moderation_history),
            "last_action": last_action,
        }
