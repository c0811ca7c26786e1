"""
Jail and unjail with role backup and restore.

A member is FREE or JAILED; the user record decides which (``is_jailed()``
is true while a role backup is stored). Both transitions follow the same
order:

1. check preconditions against the stored record
2. mutate live roles through the member directory
3. write the new state and its ledger entry in one save

If step 2 raises, nothing is written. If step 3 raises after step 2
succeeded, live state and stored state disagree; the divergence is logged
at CRITICAL for manual reconciliation and the error propagates.

Steps 1-3 run under the user store's per-user lock, so no other write to
the same record can land between the precondition check and the save. A
user has one jail backup, tied to the guild it was taken in; jail and
unjail from any other guild are refused.
"""

from __future__ import annotations

import time
from typing import Dict, List, Optional

import discord

from warden.configuration.server_config import ServerConfigManager
from warden.datatypes.discord_datatypes import GuildID, RoleID, UserID
from warden.datatypes.moderation_datatypes import (
    SYSTEM_MODERATOR_ID,
    ErrorType,
    ModerationKind,
    OperationResult,
    reason_error,
)
from warden.entities.user_record import UserRecord
from warden.moderation.member_directory import DirectoryProvider, MemberDirectory
from warden.moderation.moderation_ledger import ModerationLedger
from warden.scheduler.reversal_scheduler import ReversalKind, ReversalScheduler, ReversalTimer
from warden.util.format_utils import format_duration
from warden.util.logger import get_logger

logger = get_logger("jail_manager")

DEFAULT_MAX_JAIL_SECONDS = 7 * 24 * 3600
AUTOMATIC_UNJAIL_REASON = "Jail duration expired"
SYSTEM_TAG = "System"

_MISSING_SETTING_HINTS = {
    "jail role": "Jail role not configured. Use /setup jail-role to configure.",
    "jail channel": "Jail channel not configured. Use /setup jail-channel to configure.",
}


def _jailed_elsewhere(record: UserRecord, user_id: UserID) -> OperationResult:
    return OperationResult.fail(
        "User is jailed in another server and can only be released there.",
        ErrorType.JAILED_ELSEWHERE,
        user_id=str(user_id),
        jail_guild_id=str(record.get_jail_guild_id()),
    )


class JailLifecycleManager:
    """Moves members between FREE and JAILED."""

    def __init__(
        self,
        ledger: ModerationLedger,
        server_config: ServerConfigManager,
        scheduler: ReversalScheduler,
        directories: DirectoryProvider,
        max_jail_seconds: float = DEFAULT_MAX_JAIL_SECONDS,
    ):
        self.ledger = ledger
        self.server_config = server_config
        self.scheduler = scheduler
        self.directories = directories
        self.max_jail_seconds = max_jail_seconds

        scheduler.register_handler(ReversalKind.JAIL, self._automatic_unjail)

    # ------------------------------------------------------------------
    # Jail
    # ------------------------------------------------------------------

    async def jail(
        self,
        directory: MemberDirectory,
        moderator_id: str | int,
        member: discord.Member,
        reason: str,
        duration_seconds: float | None = None,
        *,
        moderator_tag: str | None = None,
    ) -> OperationResult:
        guild_id = directory.guild_id
        user_id = UserID(member.id)

        async with self.ledger.user_store.locked(user_id):
            record = await self.ledger.user_store.get(user_id)
            if record is not None and record.is_jailed():
                if not record.is_jailed_in(guild_id):
                    return _jailed_elsewhere(record, user_id)
                return OperationResult.fail("User is already jailed.", ErrorType.ALREADY_JAILED, user_id=str(user_id))

            config = await self.server_config.get(guild_id)
            missing = config.missing_jail_settings()
            if missing:
                return OperationResult.fail(
                    _MISSING_SETTING_HINTS[missing[0]], ErrorType.NOT_CONFIGURED, missing=missing
                )

            problem = reason_error(reason, "Jail reason")
            if problem:
                return OperationResult.fail(problem, ErrorType.INVALID_REASON)
            reason = reason.strip()

            if duration_seconds is not None and not 0 < duration_seconds <= self.max_jail_seconds:
                return OperationResult.fail(
                    f"Jail duration must be between 1 second and {format_duration(self.max_jail_seconds)}.",
                    ErrorType.INVALID_DURATION,
                )

            jail_role = directory.get_role(config.jail_role_id)
            if jail_role is None:
                return OperationResult.fail(
                    "The configured jail role no longer exists. Use /setup jail-role to reconfigure.",
                    ErrorType.ROLE_NOT_FOUND,
                )
            if jail_role.position >= directory.me.top_role.position:
                return OperationResult.fail(
                    "I cannot assign the jail role because it is above my highest role.",
                    ErrorType.HIERARCHY_ERROR,
                )

            backup = self._capture_roles(directory, member, jail_role)
            tag = moderator_tag or str(moderator_id)

            await directory.set_member_roles(member, [jail_role], reason=f"Jailed by {tag}: {reason}")

            expires_at = int(time.time() + duration_seconds) if duration_seconds is not None else None
            metadata = {
                "guild_id": guild_id.to_int(),
                "moderator_tag": tag,
                "roles_backed_up": len(backup),
                "jail_role_id": jail_role.id,
            }
            if duration_seconds is not None:
                metadata.update(duration_seconds=duration_seconds, expires_at=expires_at)

            # An empty backup still has to mark the member as jailed, so the
            # guild's default role stands in for "no roles"
            stored = backup or [RoleID(guild_id.to_int())]

            def apply(user: UserRecord) -> None:
                user.store_original_roles(stored, guild_id, jail_role.id)

            try:
                action = await self.ledger.record(
                    user_id, ModerationKind.JAIL, moderator_id, reason, metadata, tag=str(member), update=apply
                )
            except Exception:
                logger.critical(
                    "[JAIL] Divergence: member %s in guild %s holds only the jail role but the jail record "
                    "was not saved. Backed-up roles: %s",
                    user_id, guild_id, [str(r) for r in backup],
                )
                raise

        if expires_at is not None:
            await self.scheduler.cancel(user_id, guild_id, ReversalKind.JAIL)
            await self.scheduler.schedule(user_id, guild_id, expires_at, ReversalKind.JAIL, reason=reason)

        logger.info(
            "[JAIL] %s jailed %s in guild %s (%d roles backed up%s)",
            tag, member, guild_id, len(backup),
            f", releases in {format_duration(duration_seconds)}" if duration_seconds else "",
        )
        return OperationResult.ok(
            "jail",
            user_id=str(user_id),
            user_tag=str(member),
            reason=reason,
            action_id=action.id,
            roles_backed_up=len(backup),
            jail_role_id=jail_role.id,
            jail_channel_id=config.jail_channel_id.to_int(),
            duration_seconds=duration_seconds,
            expires_at=expires_at,
        )

    @staticmethod
    def _capture_roles(directory: MemberDirectory, member: discord.Member, jail_role: discord.Role) -> List[RoleID]:
        """Current roles minus the default role, managed roles and the jail role itself."""
        default_id = directory.guild_id.to_int()
        return [
            RoleID(role.id)
            for role in member.roles
            if role.id != default_id and not role.managed and role.id != jail_role.id
        ]

    # ------------------------------------------------------------------
    # Unjail
    # ------------------------------------------------------------------

    async def unjail(
        self,
        directory: MemberDirectory,
        moderator_id: str | int,
        member: discord.Member,
        reason: str,
        *,
        automatic: bool = False,
        moderator_tag: str | None = None,
    ) -> OperationResult:
        guild_id = directory.guild_id
        user_id = UserID(member.id)

        async with self.ledger.user_store.locked(user_id):
            record = await self.ledger.user_store.get(user_id)
            if record is None or not record.is_jailed():
                return OperationResult.fail("User is not currently jailed.", ErrorType.NOT_JAILED, user_id=str(user_id))
            if not record.is_jailed_in(guild_id):
                return _jailed_elsewhere(record, user_id)

            problem = reason_error(reason)
            if problem:
                return OperationResult.fail(problem, ErrorType.INVALID_REASON)
            reason = reason.strip()

            original = record.get_original_roles()
            valid_roles, not_restored = self._resolve_backup(directory, original)
            tag = moderator_tag or str(moderator_id)

            await directory.set_member_roles(member, valid_roles, reason=f"Unjailed by {tag}: {reason}")

            original_count = sum(1 for r in original if r != guild_id.to_int())
            metadata = {
                "guild_id": guild_id.to_int(),
                "moderator_tag": tag,
                "roles_restored": len(valid_roles),
                "roles_not_restored": len(not_restored),
                "original_role_count": original_count,
                "automatic": automatic,
            }

            jail_role_id = record.get_jail_role_id()

            def apply(user: UserRecord) -> None:
                user.clear_original_roles()
                # A jail role picked up on departure must not come back on the next rejoin
                if jail_role_id is not None:
                    user.remove_persistent_role(jail_role_id)

            try:
                action = await self.ledger.record(
                    user_id, ModerationKind.UNJAIL, moderator_id, reason, metadata, tag=str(member), update=apply
                )
            except Exception:
                logger.critical(
                    "[JAIL] Divergence: member %s in guild %s had roles restored but is still stored as jailed. "
                    "Restored roles: %s",
                    user_id, guild_id, [r.id for r in valid_roles],
                )
                raise

        await self.scheduler.cancel(user_id, guild_id, ReversalKind.JAIL)

        warnings = [f"Role {entry['role_id']} was not restored: {entry['reason']}" for entry in not_restored]
        for warning in warnings:
            logger.warning("[JAIL] %s (member %s, guild %s)", warning, user_id, guild_id)
        logger.info(
            "[JAIL] %s unjailed %s in guild %s (%d restored, %d not restored)",
            tag, member, guild_id, len(valid_roles), len(not_restored),
        )
        return OperationResult.ok(
            "unjail",
            warnings=warnings,
            user_id=str(user_id),
            user_tag=str(member),
            reason=reason,
            action_id=action.id,
            roles_restored=len(valid_roles),
            roles_not_restored=len(not_restored),
            not_restored=not_restored,
            original_role_count=original_count,
            automatic=automatic,
        )

    @staticmethod
    def _resolve_backup(directory: MemberDirectory, original: List[RoleID]):
        """Split the backup into assignable roles and a report of the rest."""
        default_id = directory.guild_id.to_int()
        bot_top = directory.me.top_role.position
        valid: List[discord.Role] = []
        not_restored: List[Dict[str, str]] = []
        for role_id in original:
            if role_id == default_id:
                continue
            role = directory.get_role(role_id)
            if role is None:
                not_restored.append({"role_id": str(role_id), "reason": "role no longer exists"})
            elif role.managed:
                not_restored.append({"role_id": str(role_id), "reason": "role is managed by an integration"})
            elif role.position >= bot_top:
                not_restored.append({"role_id": str(role_id), "reason": "role is above my highest role"})
            else:
                valid.append(role)
        return valid, not_restored

    # ------------------------------------------------------------------
    # Timer handler
    # ------------------------------------------------------------------

    async def _automatic_unjail(self, timer: ReversalTimer) -> None:
        directory: Optional[MemberDirectory] = self.directories(timer.guild_id)
        if directory is None:
            logger.warning("[JAIL] Guild %s unavailable, cannot release user %s", timer.guild_id, timer.user_id)
            return

        member = await directory.fetch_member(timer.user_id)
        if member is None:
            logger.warning(
                "[JAIL] User %s left guild %s before the jail expired; leaving them jailed",
                timer.user_id, timer.guild_id,
            )
            return

        result = await self.unjail(
            directory, SYSTEM_MODERATOR_ID, member, AUTOMATIC_UNJAIL_REASON,
            automatic=True, moderator_tag=SYSTEM_TAG,
        )
        if not result.success:
            logger.info("[JAIL] Automatic release of %s skipped: %s", timer.user_id, result.error)
