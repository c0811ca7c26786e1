"""
Moderation action types and result structures.

This module defines the ModerationKind enum, the immutable ModerationAction
and StaffNote ledger entries, and the OperationResult returned by every
command-facing moderation operation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List

MAX_REASON_LENGTH = 500
MAX_NOTE_LENGTH = 2000
SYSTEM_MODERATOR_ID = "system"


class ModerationKind(Enum):
    """Enumeration of moderation actions recorded in the ledger."""

    WARN = "warn"
    KICK = "kick"
    BAN = "ban"
    TEMPBAN = "tempban"
    JAIL = "jail"
    UNJAIL = "unjail"
    MUTE = "mute"
    UNMUTE = "unmute"
    UNBAN = "unban"

    def __str__(self) -> str:
        return self.value


class ErrorType(Enum):
    """Business-rule failure categories returned to command handlers."""

    PERMISSION_DENIED = "permission_denied"
    HIERARCHY_ERROR = "hierarchy_error"
    INVALID_TARGET = "invalid_target"
    INVALID_REASON = "invalid_reason"
    INVALID_DURATION = "invalid_duration"
    INVALID_CONTENT = "invalid_content"
    ALREADY_JAILED = "already_jailed"
    NOT_JAILED = "not_jailed"
    JAILED_ELSEWHERE = "jailed_elsewhere"
    NOT_CONFIGURED = "not_configured"
    ALREADY_BANNED = "already_banned"
    NOT_BANNED = "not_banned"
    NOT_A_MEMBER = "not_a_member"
    ROLE_NOT_FOUND = "role_not_found"
    MANAGED_ROLE = "managed_role"
    ALREADY_PERSISTENT = "already_persistent"
    NOT_PERSISTENT = "not_persistent"
    USER_NOT_FOUND = "user_not_found"

    def __str__(self) -> str:
        return self.value


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def reason_error(reason: Any, label: str = "Reason") -> str | None:
    """Return why ``reason`` is unusable, or None when it is a valid 1-500 character reason."""
    if not isinstance(reason, str) or not reason.strip():
        return f"{label} is required."
    if len(reason.strip()) > MAX_REASON_LENGTH:
        return f"{label} cannot exceed {MAX_REASON_LENGTH} characters."
    return None


def parse_timestamp(value: Any) -> datetime:
    """Read a timestamp stored as ISO-8601 text or unix seconds."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = datetime.fromtimestamp(value, tz=timezone.utc)
    elif isinstance(value, str) and value:
        parsed = datetime.fromisoformat(value)
    else:
        return utcnow()
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True, slots=True)
class ModerationAction:
    """A single append-only ledger entry.

    Attributes:
        id: Unique action identifier.
        kind: Which moderation action was taken.
        moderator_id: ID of the acting moderator, or ``"system"``.
        reason: Trimmed reason text (1-500 characters).
        timestamp: When the action was recorded (UTC).
        metadata: Open key/value map. Readers must tolerate missing keys.
    """

    id: str
    kind: ModerationKind
    moderator_id: str
    reason: str
    timestamp: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def guild_id(self) -> int | None:
        value = self.metadata.get("guild_id")
        try:
            return int(value) if value is not None else None
        except (TypeError, ValueError):
            return None

    def to_document(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "action": self.kind.value,
            "moderator": self.moderator_id,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "ModerationAction":
        return cls(
            id=str(data.get("id", "")),
            kind=ModerationKind(data["action"]),
            moderator_id=str(data.get("moderator", SYSTEM_MODERATOR_ID)),
            reason=str(data.get("reason", "")),
            timestamp=parse_timestamp(data.get("timestamp")),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass(frozen=True, slots=True)
class StaffNote:
    """A staff-only note attached to a user record."""

    id: str
    author_id: str
    content: str
    timestamp: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_document(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "author": self.author_id,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "StaffNote":
        return cls(
            id=str(data.get("id", "")),
            author_id=str(data.get("author", "")),
            content=str(data.get("content", "")),
            timestamp=parse_timestamp(data.get("timestamp")),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass(slots=True)
class OperationResult:
    """Structured outcome of a command-facing moderation operation.

    Successful results carry the details a caller needs to render a precise
    message (counts, IDs, reasons). Failed results carry a human readable
    ``error`` and a machine readable ``error_type``. Partial failures are
    successes with ``warnings``.
    """

    success: bool
    action: str | None = None
    error: str | None = None
    error_type: ErrorType | None = None
    details: Dict[str, Any] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    @classmethod
    def ok(cls, action: str | None = None, *, warnings: List[str] | None = None, **details: Any) -> "OperationResult":
        return cls(success=True, action=action, details=details, warnings=list(warnings or []))

    @classmethod
    def fail(cls, error: str, error_type: ErrorType, **details: Any) -> "OperationResult":
        return cls(success=False, error=error, error_type=error_type, details=details)

    def __getitem__(self, key: str) -> Any:
        return self.details[key]

    def get(self, key: str, default: Any = None) -> Any:
        return self.details.get(key, default)
