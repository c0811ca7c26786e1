"""
Persistent ("sticky") roles.

Roles a member holds when they leave are remembered on their user record
and given back when they return. The stored set is never cleared by a
restore, so repeated leave/join cycles keep working.

A member who leaves while jailed comes back jailed: the arrival gives them
the jail role and nothing else, and the jail role itself is never stored as
a persistent role.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Tuple

import discord

from warden.datatypes.discord_datatypes import GuildID, RoleID, UserID
from warden.datatypes.moderation_datatypes import ErrorType, OperationResult
from warden.entities.user_record import UserRecord
from warden.moderation.member_directory import MemberDirectory
from warden.services.user_store import UserStore
from warden.util.logger import get_logger

logger = get_logger("role_service")

RESTORE_REASON = "Persistent role restoration"
JAIL_RESTORE_REASON = "Rejoined while jailed"


class PersistentRoleService:
    def __init__(self, user_store: UserStore):
        self.user_store = user_store

    async def store_on_departure(
        self,
        user_id: UserID | int,
        guild_id: GuildID | int,
        live_role_ids: Iterable[RoleID | int | str],
        tag: str | None = None,
    ) -> OperationResult:
        """Union the departing member's roles (minus the default role) into their stored set.

        The jail role of a member jailed in this guild is left out; their jail
        backup already records what they held before.
        """
        guild_id = GuildID(guild_id)
        role_ids = [RoleID(r) for r in live_role_ids if RoleID(r) != guild_id.to_int()]
        if not role_ids:
            return OperationResult.ok("store_persistent_roles", user_id=str(user_id), roles_stored=0)

        def add_roles(record: UserRecord) -> Tuple[int, int]:
            stored = role_ids
            if record.is_jailed_in(guild_id):
                stored = [r for r in role_ids if r != record.get_jail_role_id()]
            return record.add_persistent_roles(stored), len(record.get_persistent_roles())

        added, total = await self.user_store.update(user_id, add_roles, tag)

        logger.info(
            "[PERSISTENT ROLES] Stored %d new roles for user %s leaving guild %s (%d total)",
            added, user_id, guild_id, total,
        )
        return OperationResult.ok(
            "store_persistent_roles",
            user_id=str(user_id),
            roles_stored=added,
            total_persistent_roles=total,
        )

    async def restore_on_arrival(self, directory: MemberDirectory, member: discord.Member) -> OperationResult:
        """Give a returning member every stored role that can still be assigned.

        A member still jailed in this guild gets the jail role back instead.
        """
        async with self.user_store.locked(member.id):
            record = await self.user_store.get(member.id)
            jailed = record is not None and record.is_jailed_in(directory.guild_id)
            if jailed:
                jail_role_id = record.get_jail_role_id()
                role_ids = [jail_role_id] if jail_role_id is not None else []
                reason = JAIL_RESTORE_REASON
            else:
                role_ids = record.get_persistent_roles() if record is not None else []
                reason = RESTORE_REASON
            if not role_ids:
                return OperationResult.ok(
                    "restore_persistent_roles",
                    user_id=str(member.id),
                    roles_restored=0,
                    roles_not_restored=0,
                    restored_roles=[],
                    failed_roles=[],
                    jailed=jailed,
                )

            if record.tag != str(member):
                record.tag = str(member)
                await self.user_store.save(record)

            held = {role.id for role in member.roles}
            bot_top = directory.me.top_role.position
            restored: List[Dict[str, Any]] = []
            failed: List[Dict[str, Any]] = []

            for role_id in role_ids:
                role = directory.get_role(role_id)
                if role is None:
                    failed.append({"id": str(role_id), "reason": "Role no longer exists"})
                    continue
                if role.position >= bot_top:
                    failed.append({"id": str(role_id), "name": role.name, "reason": "Bot hierarchy too low"})
                    continue
                if role.managed:
                    failed.append({"id": str(role_id), "name": role.name, "reason": "Managed role cannot be assigned"})
                    continue
                if role.id in held:
                    restored.append({"id": str(role_id), "name": role.name, "action": "already_had"})
                    continue
                try:
                    await directory.add_role(member, role, reason=reason)
                except discord.HTTPException as exc:
                    failed.append({"id": str(role_id), "name": role.name, "reason": str(exc)})
                    continue
                restored.append({"id": str(role_id), "name": role.name, "action": "restored"})

        warnings = [f"Role {entry['id']} was not restored: {entry['reason']}" for entry in failed]
        logger.info(
            "[PERSISTENT ROLES] Restored %d roles for %s in guild %s (%d failed%s)",
            len(restored), member, directory.guild_id, len(failed), ", still jailed" if jailed else "",
        )
        return OperationResult.ok(
            "restore_persistent_roles",
            warnings=warnings,
            user_id=str(member.id),
            roles_restored=len(restored),
            roles_not_restored=len(failed),
            restored_roles=restored,
            failed_roles=failed,
            jailed=jailed,
        )

    async def assign_persistent_role(
        self,
        directory: MemberDirectory,
        member: discord.Member,
        role_id: RoleID | int,
        reason: str = "Persistent role assigned",
    ) -> OperationResult:
        role = directory.get_role(role_id)
        if role is None:
            return OperationResult.fail("Role not found.", ErrorType.ROLE_NOT_FOUND)
        if role.position >= directory.me.top_role.position:
            return OperationResult.fail("Cannot assign role due to hierarchy restrictions.", ErrorType.HIERARCHY_ERROR)
        if role.managed:
            return OperationResult.fail("Cannot assign managed roles.", ErrorType.MANAGED_ROLE)

        async with self.user_store.locked(member.id):
            record = await self.user_store.get_or_create(member.id, str(member))
            if record.has_persistent_role(role.id):
                return OperationResult.fail(
                    "Role is already marked as persistent for this user.", ErrorType.ALREADY_PERSISTENT
                )

            if all(held.id != role.id for held in member.roles):
                await directory.add_role(member, role, reason=reason)

            record.add_persistent_role(role.id)
            await self.user_store.save(record)
        return OperationResult.ok(
            "persistent_role_assigned",
            user_id=str(member.id),
            role_id=str(role.id),
            role_name=role.name,
            reason=reason,
        )

    async def remove_persistent_role(
        self,
        directory: MemberDirectory,
        member: discord.Member,
        role_id: RoleID | int,
        remove_from_member: bool = False,
        reason: str = "Persistent role removed",
    ) -> OperationResult:
        async with self.user_store.locked(member.id):
            record = await self.user_store.get(member.id)
            if record is None:
                return OperationResult.fail("User not found in database.", ErrorType.USER_NOT_FOUND)
            if not record.has_persistent_role(role_id):
                return OperationResult.fail(
                    "Role is not marked as persistent for this user.", ErrorType.NOT_PERSISTENT
                )

            record.remove_persistent_role(role_id)
            await self.user_store.save(record)

        role = directory.get_role(role_id)
        warnings = []
        if remove_from_member and role is not None and any(held.id == role.id for held in member.roles):
            try:
                await directory.remove_role(member, role, reason=reason)
            except discord.HTTPException as exc:
                logger.warning("[PERSISTENT ROLES] Failed to remove role %s from %s: %s", role_id, member, exc)
                warnings.append(f"Role could not be removed from the member: {exc}")

        return OperationResult.ok(
            "persistent_role_removed",
            warnings=warnings,
            user_id=str(member.id),
            role_id=str(RoleID(role_id)),
            role_name=role.name if role is not None else "Unknown Role",
            removed_from_member=remove_from_member,
            reason=reason,
        )
