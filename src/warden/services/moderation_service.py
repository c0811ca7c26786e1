"""
Command-facing moderation operations.

Every public coroutine here corresponds to one slash command and returns an
:class:`OperationResult`. Business-rule failures (permission denied,
hierarchy, already jailed, ...) come back as failed results; database and
Discord API failures propagate as exceptions for the caller to report.
"""

from __future__ import annotations

import time
from datetime import timedelta
from typing import Any, Callable, Dict, Tuple

import discord

from warden.datatypes.discord_datatypes import GuildID, UserID
from warden.datatypes.moderation_datatypes import (
    MAX_NOTE_LENGTH,
    SYSTEM_MODERATOR_ID,
    ErrorType,
    ModerationAction,
    ModerationKind,
    OperationResult,
    StaffNote,
    reason_error,
    utcnow,
)
from warden.datatypes.target import AccountTarget, MemberTarget, Target
from warden.entities.user_record import UserRecord
from warden.moderation.jail_manager import JailLifecycleManager
from warden.moderation.member_directory import MAX_DELETE_MESSAGE_DAYS, DirectoryProvider, MemberDirectory
from warden.moderation.moderation_ledger import ModerationLedger
from warden.moderation.permission_gate import PermissionGate, PermissionRequirements
from warden.scheduler.reversal_scheduler import ReversalKind, ReversalScheduler, ReversalTimer
from warden.util.format_utils import format_duration
from warden.util.logger import get_logger

logger = get_logger("moderation_service")

DEFAULT_MAX_TEMPBAN_SECONDS = 30 * 24 * 3600
DEFAULT_REASON = "No reason provided"
TEMPBAN_EXPIRED_REASON = "Temporary ban expired"
MAX_NOTES_LIMIT = 25

KICK_REQUIREMENTS = PermissionRequirements(("kick_members",), moderator_role=True, check_hierarchy=True, destructive=True)
BAN_REQUIREMENTS = PermissionRequirements(("ban_members",), moderator_role=True, check_hierarchy=True, destructive=True)
UNBAN_REQUIREMENTS = PermissionRequirements(("ban_members",), moderator_role=True)
JAIL_REQUIREMENTS = PermissionRequirements(("manage_roles",), moderator_role=True, check_hierarchy=True, destructive=True)
UNJAIL_REQUIREMENTS = PermissionRequirements(("manage_roles",), moderator_role=True, destructive=True)
WARN_REQUIREMENTS = PermissionRequirements(moderator_role=True, check_hierarchy=True, destructive=True)
STAFF_REQUIREMENTS = PermissionRequirements(moderator_role=True)


def _not_a_member(target: Target) -> OperationResult:
    return OperationResult.fail(
        f"{target.display_name} is not a member of this server.",
        ErrorType.NOT_A_MEMBER,
        user_id=str(target.user_id),
    )


class ModerationService:
    """One entry point per moderation command."""

    def __init__(
        self,
        ledger: ModerationLedger,
        gate: PermissionGate,
        jail_manager: JailLifecycleManager,
        scheduler: ReversalScheduler,
        directories: DirectoryProvider,
        *,
        max_tempban_seconds: float = DEFAULT_MAX_TEMPBAN_SECONDS,
        directory_factory: Callable[[discord.Guild], MemberDirectory] = MemberDirectory,
    ):
        self.ledger = ledger
        self.gate = gate
        self.jail_manager = jail_manager
        self.scheduler = scheduler
        self.directories = directories
        self.max_tempban_seconds = max_tempban_seconds
        self._directory_factory = directory_factory

        scheduler.register_handler(ReversalKind.TEMPBAN, self._automatic_unban)

    async def _authorize(self, actor: discord.Member, target: Target | None, requirements: PermissionRequirements):
        result = await self.gate.authorize(actor, target, requirements)
        if result.allowed:
            return None
        logger.debug("[MODERATION] Denied %s: %s", actor, result.reason)
        return OperationResult.fail(result.reason, result.error_type)

    # ------------------------------------------------------------------
    # Kick / ban / tempban / unban
    # ------------------------------------------------------------------

    async def kick_user(self, actor: discord.Member, target: Target, reason: str = DEFAULT_REASON) -> OperationResult:
        if not isinstance(target, MemberTarget):
            return _not_a_member(target)
        denied = await self._authorize(actor, target, KICK_REQUIREMENTS)
        if denied:
            return denied
        problem = reason_error(reason)
        if problem:
            return OperationResult.fail(problem, ErrorType.INVALID_REASON)
        reason = reason.strip()

        directory = self._directory_factory(actor.guild)
        await directory.kick(target.member, reason=f"{actor}: {reason}")

        action = await self.ledger.record(
            target.user_id,
            ModerationKind.KICK,
            actor.id,
            reason,
            {"guild_id": actor.guild.id, "moderator_tag": str(actor)},
            tag=target.display_name,
        )
        logger.info("[MODERATION] %s kicked %s from guild %s", actor, target.display_name, actor.guild.id)
        return OperationResult.ok(
            "kick",
            user_id=str(target.user_id),
            user_tag=target.display_name,
            moderator_id=str(actor.id),
            reason=reason,
            action_id=action.id,
        )

    async def ban_user(
        self,
        actor: discord.Member,
        target: Target,
        reason: str = DEFAULT_REASON,
        delete_message_days: int = 0,
    ) -> OperationResult:
        denied = await self._authorize(actor, target, BAN_REQUIREMENTS)
        if denied:
            return denied
        problem = reason_error(reason)
        if problem:
            return OperationResult.fail(problem, ErrorType.INVALID_REASON)
        reason = reason.strip()

        directory = self._directory_factory(actor.guild)
        if await directory.fetch_ban(target.user_id) is not None:
            return OperationResult.fail(
                f"{target.display_name} is already banned.", ErrorType.ALREADY_BANNED, user_id=str(target.user_id)
            )

        days = max(0, min(int(delete_message_days or 0), MAX_DELETE_MESSAGE_DAYS))
        await directory.ban(target.user_id, reason=f"{actor}: {reason}", delete_message_days=days)

        try:
            action = await self.ledger.record(
                target.user_id,
                ModerationKind.BAN,
                actor.id,
                reason,
                {
                    "guild_id": actor.guild.id,
                    "moderator_tag": str(actor),
                    "delete_message_days": days,
                    "permanent": True,
                },
                tag=target.display_name,
            )
        except Exception:
            logger.critical(
                "[MODERATION] Divergence: user %s is banned in guild %s but the ban was not recorded",
                target.user_id, actor.guild.id,
            )
            raise

        logger.info("[MODERATION] %s banned %s from guild %s", actor, target.display_name, actor.guild.id)
        return OperationResult.ok(
            "ban",
            user_id=str(target.user_id),
            user_tag=target.display_name,
            moderator_id=str(actor.id),
            reason=reason,
            action_id=action.id,
            delete_message_days=days,
            permanent=True,
        )

    async def tempban_user(
        self,
        actor: discord.Member,
        target: Target,
        duration_seconds: float,
        reason: str = DEFAULT_REASON,
        delete_message_days: int = 0,
    ) -> OperationResult:
        if duration_seconds is None or duration_seconds <= 0:
            return OperationResult.fail("Temporary ban duration must be positive.", ErrorType.INVALID_DURATION)
        if duration_seconds > self.max_tempban_seconds:
            return OperationResult.fail(
                f"Temporary ban duration cannot exceed {format_duration(self.max_tempban_seconds)}.",
                ErrorType.INVALID_DURATION,
            )

        result = await self.ban_user(actor, target, reason, delete_message_days)
        if not result.success:
            return result

        guild_id = GuildID(actor.guild.id)
        expires_at = int(time.time() + duration_seconds)
        try:
            await self.ledger.mark_temporary_ban(target.user_id, result["action_id"], expires_at, duration_seconds)
        except Exception:
            logger.critical(
                "[MODERATION] Divergence: user %s in guild %s is recorded as permanently banned "
                "but should be unbanned at %s",
                target.user_id, guild_id, expires_at,
            )
            raise

        await self.scheduler.cancel(target.user_id, guild_id, ReversalKind.TEMPBAN)
        await self.scheduler.schedule(
            target.user_id, guild_id, expires_at, ReversalKind.TEMPBAN, reason=result["reason"]
        )

        details = dict(result.details)
        details.update(
            permanent=False,
            expires_at=expires_at,
            duration_seconds=duration_seconds,
            auto_unban=True,
        )
        return OperationResult.ok("tempban", **details)

    async def unban_user(
        self,
        actor: discord.Member,
        user_id: UserID | int | str,
        reason: str = "Unbanned by moderator",
    ) -> OperationResult:
        user_id = UserID(user_id)
        denied = await self._authorize(actor, AccountTarget(user_id), UNBAN_REQUIREMENTS)
        if denied:
            return denied
        problem = reason_error(reason)
        if problem:
            return OperationResult.fail(problem, ErrorType.INVALID_REASON)
        reason = reason.strip()

        directory = self._directory_factory(actor.guild)
        ban_entry = await directory.fetch_ban(user_id)
        if ban_entry is None:
            return OperationResult.fail("User is not banned or ban not found.", ErrorType.NOT_BANNED, user_id=str(user_id))

        guild_id = GuildID(actor.guild.id)
        timer_cancelled = await self.scheduler.cancel(user_id, guild_id, ReversalKind.TEMPBAN)
        await directory.unban(user_id, reason=f"{actor}: {reason}")

        tag = str(ban_entry.user) if getattr(ban_entry, "user", None) is not None else None
        action = await self.ledger.record(
            user_id,
            ModerationKind.UNBAN,
            actor.id,
            reason,
            {
                "guild_id": guild_id.to_int(),
                "moderator_tag": str(actor),
                "automatic": False,
                "platform_unbanned": True,
            },
            tag=tag,
        )
        logger.info("[MODERATION] %s unbanned %s in guild %s", actor, user_id, guild_id)
        return OperationResult.ok(
            "unban",
            user_id=str(user_id),
            user_tag=tag,
            moderator_id=str(actor.id),
            reason=reason,
            action_id=action.id,
            timer_cancelled=timer_cancelled,
        )

    async def _automatic_unban(self, timer: ReversalTimer) -> None:
        directory = self.directories(timer.guild_id)
        if directory is None:
            logger.warning(
                "[MODERATION] Guild %s unavailable, automatic unban of %s not performed",
                timer.guild_id, timer.user_id,
            )
            return

        platform_unbanned = True
        try:
            await directory.unban(timer.user_id, reason=TEMPBAN_EXPIRED_REASON)
        except discord.NotFound:
            platform_unbanned = False
            logger.warning("[MODERATION] User %s was already unbanned in guild %s", timer.user_id, timer.guild_id)
        except discord.HTTPException as exc:
            platform_unbanned = False
            logger.error("[MODERATION] Automatic unban of %s in guild %s failed: %s", timer.user_id, timer.guild_id, exc)

        await self.ledger.record(
            timer.user_id,
            ModerationKind.UNBAN,
            SYSTEM_MODERATOR_ID,
            TEMPBAN_EXPIRED_REASON,
            {"guild_id": timer.guild_id.to_int(), "automatic": True, "platform_unbanned": platform_unbanned},
        )
        logger.info("[MODERATION] Temporary ban of %s in guild %s expired", timer.user_id, timer.guild_id)

    # ------------------------------------------------------------------
    # Jail
    # ------------------------------------------------------------------

    async def jail_user(
        self,
        actor: discord.Member,
        target: Target,
        reason: str = DEFAULT_REASON,
        duration_seconds: float | None = None,
    ) -> OperationResult:
        if not isinstance(target, MemberTarget):
            return _not_a_member(target)
        denied = await self._authorize(actor, target, JAIL_REQUIREMENTS)
        if denied:
            return denied
        return await self.jail_manager.jail(
            self._directory_factory(actor.guild),
            actor.id,
            target.member,
            reason,
            duration_seconds,
            moderator_tag=str(actor),
        )

    async def unjail_user(
        self,
        actor: discord.Member,
        target: Target,
        reason: str = "Released from jail",
    ) -> OperationResult:
        if not isinstance(target, MemberTarget):
            return _not_a_member(target)
        denied = await self._authorize(actor, target, UNJAIL_REQUIREMENTS)
        if denied:
            return denied
        return await self.jail_manager.unjail(
            self._directory_factory(actor.guild),
            actor.id,
            target.member,
            reason,
            moderator_tag=str(actor),
        )

    # ------------------------------------------------------------------
    # Warnings, notes and history
    # ------------------------------------------------------------------

    async def warn_user(self, actor: discord.Member, target: Target, reason: str) -> OperationResult:
        if target.user_id == actor.id:
            return OperationResult.fail("You cannot issue a warning to yourself.", ErrorType.INVALID_TARGET)
        denied = await self._authorize(actor, target, WARN_REQUIREMENTS)
        if denied:
            return denied
        problem = reason_error(reason, "Warning reason")
        if problem:
            return OperationResult.fail(problem, ErrorType.INVALID_REASON)

        def add_warning(record: UserRecord) -> Tuple[int, ModerationAction]:
            before = len(record.get_warnings())
            return before, record.add_warning(
                actor.id,
                reason,
                metadata={
                    "guild_id": actor.guild.id,
                    "moderator_tag": str(actor),
                    "warnings_before": before,
                    "warnings_after": before + 1,
                },
            )

        before, action = await self.ledger.user_store.update(target.user_id, add_warning, target.display_name)

        logger.info("[MODERATION] %s warned %s (%d warnings)", actor, target.display_name, before + 1)
        return OperationResult.ok(
            "warn",
            user_id=str(target.user_id),
            user_tag=target.display_name,
            moderator_id=str(actor.id),
            reason=action.reason,
            action_id=action.id,
            warnings_after=before + 1,
        )

    async def add_staff_note(self, actor: discord.Member, target: Target, content: str) -> OperationResult:
        denied = await self._authorize(actor, None, STAFF_REQUIREMENTS)
        if denied:
            return denied
        trimmed = content.strip() if isinstance(content, str) else ""
        if not trimmed:
            return OperationResult.fail("Note content must be provided.", ErrorType.INVALID_CONTENT)
        if len(trimmed) > MAX_NOTE_LENGTH:
            return OperationResult.fail(
                f"Note content cannot exceed {MAX_NOTE_LENGTH} characters.", ErrorType.INVALID_CONTENT
            )

        def add_note(record: UserRecord) -> Tuple[UserRecord, StaffNote]:
            note = record.add_staff_note(
                actor.id, trimmed, metadata={"guild_id": actor.guild.id, "moderator_tag": str(actor)}
            )
            return record, note

        record, note = await self.ledger.user_store.update(target.user_id, add_note, target.display_name)
        return OperationResult.ok(
            "staff_note",
            user_id=str(target.user_id),
            user_tag=record.tag,
            note=note,
            notes_count=len(record.get_staff_notes()),
        )

    async def get_staff_notes(self, actor: discord.Member, target: Target, limit: int = 5) -> OperationResult:
        denied = await self._authorize(actor, None, STAFF_REQUIREMENTS)
        if denied:
            return denied
        try:
            safe_limit = max(1, min(MAX_NOTES_LIMIT, int(limit)))
        except (TypeError, ValueError):
            safe_limit = 5

        record = await self.ledger.user_store.get(target.user_id)
        notes = record.get_staff_notes() if record is not None else []
        return OperationResult.ok(
            "staff_notes",
            user_id=str(target.user_id),
            user_tag=record.tag if record is not None else target.display_name,
            notes=notes[:safe_limit],
            note_count=len(notes),
            limit=safe_limit,
        )

    async def get_user_moderation_history(self, user_id: UserID | int | str, days: float | None = None) -> Dict[str, Any]:
        """Summary of a user's record: statistics, history (most recent first) and current status."""
        user_id = UserID(user_id)
        record = await self.ledger.user_store.get(user_id)
        if record is None:
            return {
                "user_id": str(user_id),
                "exists": False,
                "total_actions": 0,
                "recent_actions": 0,
                "statistics": {},
                "history": [],
                "current_status": {"jailed": False, "has_persistent_roles": False},
            }

        stats = record.get_moderation_stats()
        history = record.get_moderation_history()
        recent = 0
        if days:
            cutoff = utcnow() - timedelta(days=days)
            history = [a for a in history if a.timestamp >= cutoff]
            recent = len(history)

        return {
            "user_id": str(user_id),
            "user_tag": record.tag,
            "exists": True,
            "total_actions": stats["total"],
            "recent_actions": recent,
            "statistics": stats,
            "history": history,
            "current_status": {
                "jailed": record.is_jailed(),
                "has_persistent_roles": record.has_persistent_roles(),
                "original_roles_count": len(record.get_original_roles()),
                "persistent_roles_count": len(record.get_persistent_roles()),
            },
            "timestamps": {"created_at": record.created_at, "updated_at": record.updated_at},
        }

    async def restore_reversals(self, guild_id: GuildID | int) -> int:
        """Rebuild tempban and jail timers for a guild from the ledger."""
        return await self.scheduler.restore_all(GuildID(guild_id))
