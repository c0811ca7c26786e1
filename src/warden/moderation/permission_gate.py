"""
Authorization for moderation operations.

The gate answers one question: may this actor perform this operation on
this target? Checks short-circuit in a fixed order:

1. platform permission flags held by the actor
2. the guild's configured moderator role (cached per guild and actor)
3. self-action, for destructive operations
4. owner protection (nobody acts on the guild owner)
5. actor hierarchy (the owner always passes)
6. bot hierarchy

Hierarchy checks only apply to a live :class:`MemberTarget`; an account
that is not a member has no roles to compare.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Sequence, Tuple

import discord

from warden.configuration.server_config import ServerConfigManager
from warden.datatypes.discord_datatypes import GuildID, UserID
from warden.datatypes.moderation_datatypes import ErrorType
from warden.datatypes.target import MemberTarget, Target
from warden.util.logger import get_logger

logger = get_logger("permission_gate")

DEFAULT_CACHE_TTL = 300.0
DEFAULT_CACHE_MAX_ENTRIES = 1000

CacheKey = Tuple[GuildID, UserID]


@dataclass(frozen=True, slots=True)
class PermissionRequirements:
    """What an operation demands from its actor.

    Attributes:
        platform_permissions: ``discord.Permissions`` flag names, all required.
        moderator_role: Whether the configured moderator role is required.
        check_hierarchy: Whether actor and bot must outrank a member target.
        destructive: Whether acting on oneself is rejected.
    """

    platform_permissions: Tuple[str, ...] = ()
    moderator_role: bool = False
    check_hierarchy: bool = False
    destructive: bool = False


@dataclass(frozen=True, slots=True)
class AuthorizationResult:
    allowed: bool
    reason: str | None = None
    error_type: ErrorType | None = None

    @classmethod
    def allow(cls) -> "AuthorizationResult":
        return cls(True)

    @classmethod
    def deny(cls, reason: str, error_type: ErrorType) -> "AuthorizationResult":
        return cls(False, reason, error_type)


@dataclass(slots=True)
class _CacheEntry:
    value: bool
    expires: float


def _top_position(member: discord.Member) -> int:
    return member.top_role.position


class PermissionGate:
    """Role-hierarchy aware permission checks with a moderator-role cache."""

    def __init__(
        self,
        server_config: ServerConfigManager,
        cache_ttl: float = DEFAULT_CACHE_TTL,
        cache_max_entries: int = DEFAULT_CACHE_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._server_config = server_config
        self._cache_ttl = cache_ttl
        self._cache_max_entries = cache_max_entries
        self._clock = clock
        self._cache: Dict[CacheKey, _CacheEntry] = {}

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    async def authorize(
        self,
        actor: discord.Member,
        target: Optional[Target],
        requirements: PermissionRequirements,
    ) -> AuthorizationResult:
        if actor is None or getattr(actor, "guild", None) is None:
            return AuthorizationResult.deny(
                "This command can only be used in a server.", ErrorType.PERMISSION_DENIED
            )

        if requirements.platform_permissions and not self.has_platform_permissions(
            actor, requirements.platform_permissions
        ):
            needed = ", ".join(requirements.platform_permissions)
            return AuthorizationResult.deny(
                f"You need the following permissions: {needed}", ErrorType.PERMISSION_DENIED
            )

        if requirements.moderator_role and not await self.has_moderator_role(actor):
            return AuthorizationResult.deny(
                "You need the moderator role to use this command.", ErrorType.PERMISSION_DENIED
            )

        if target is None:
            return AuthorizationResult.allow()

        if requirements.destructive and target.user_id == actor.id:
            return AuthorizationResult.deny("You cannot perform this action on yourself.", ErrorType.INVALID_TARGET)

        if not requirements.check_hierarchy or not isinstance(target, MemberTarget):
            return AuthorizationResult.allow()

        member = target.member
        if member.id == actor.guild.owner_id:
            return AuthorizationResult.deny("You cannot moderate the server owner.", ErrorType.HIERARCHY_ERROR)

        if not self.can_moderate_user(actor, member):
            return AuthorizationResult.deny(
                "You cannot moderate this user due to role hierarchy.", ErrorType.HIERARCHY_ERROR
            )

        if not self.bot_can_moderate_user(actor.guild, member):
            return AuthorizationResult.deny(
                "I cannot moderate this user due to role hierarchy.", ErrorType.HIERARCHY_ERROR
            )

        return AuthorizationResult.allow()

    # ------------------------------------------------------------------
    # Individual checks
    # ------------------------------------------------------------------

    def has_platform_permissions(self, member: discord.Member, permissions: Sequence[str]) -> bool:
        perms = getattr(member, "guild_permissions", None)
        if perms is None:
            return False
        return all(getattr(perms, name, False) for name in permissions)

    async def has_moderator_role(self, member: discord.Member) -> bool:
        guild = getattr(member, "guild", None)
        if guild is None:
            return False

        key = (GuildID(guild.id), UserID(member.id))
        cached = self._get_cached(key)
        if cached is not None:
            return cached

        role_id = await self._server_config.get_moderator_role(GuildID(guild.id))
        if role_id is None:
            # Not cached so that configuring a role takes effect immediately
            return False

        has_role = any(role.id == role_id.to_int() for role in member.roles)
        self._set_cached(key, has_role)
        return has_role

    def can_moderate_user(self, actor: discord.Member, target: discord.Member) -> bool:
        """Actor outranks target; the owner outranks everybody, nobody outranks the owner."""
        if actor.id == target.id:
            return False
        owner_id = actor.guild.owner_id
        if target.id == owner_id:
            return False
        if actor.id == owner_id:
            return True
        return _top_position(actor) > _top_position(target)

    def bot_can_moderate_user(self, guild: discord.Guild, target: discord.Member) -> bool:
        me = guild.me
        if me is None or target.id == guild.owner_id:
            return False
        return _top_position(me) > _top_position(target)

    def can_manage_server_config(self, member: discord.Member) -> bool:
        if member is None or getattr(member, "guild", None) is None:
            return False
        if member.id == member.guild.owner_id:
            return True
        return self.has_platform_permissions(member, ("administrator",)) or self.has_platform_permissions(
            member, ("manage_guild",)
        )

    async def get_permission_level(self, member: discord.Member | None) -> str:
        """One of ``owner``, ``admin``, ``moderator``, ``member`` or ``none``."""
        if member is None or getattr(member, "guild", None) is None:
            return "none"
        if member.id == member.guild.owner_id:
            return "owner"
        if self.has_platform_permissions(member, ("administrator",)):
            return "admin"
        if await self.has_moderator_role(member):
            return "moderator"
        return "member"

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def _get_cached(self, key: CacheKey) -> bool | None:
        entry = self._cache.get(key)
        if entry is None:
            return None
        if self._clock() > entry.expires:
            del self._cache[key]
            return None
        return entry.value

    def _set_cached(self, key: CacheKey, value: bool) -> None:
        self._cache[key] = _CacheEntry(value, self._clock() + self._cache_ttl)
        if len(self._cache) > self._cache_max_entries:
            self._sweep()

    def _sweep(self) -> None:
        now = self._clock()
        expired = [key for key, entry in self._cache.items() if now > entry.expires]
        for key in expired:
            del self._cache[key]
        if expired:
            logger.debug("[PERMISSIONS] Swept %d expired cache entries", len(expired))

    def clear_cache(self, guild_id: GuildID | int | None = None) -> None:
        """Drop cached moderator-role results for one guild, or all of them."""
        if guild_id is None:
            self._cache.clear()
            return
        guild_id = GuildID(guild_id)
        for key in [k for k in self._cache if k[0] == guild_id]:
            del self._cache[key]

    def get_cache_stats(self) -> Dict[str, float]:
        now = self._clock()
        valid = sum(1 for entry in self._cache.values() if now <= entry.expires)
        total = len(self._cache)
        return {
            "total_entries": total,
            "valid_entries": valid,
            "expired_entries": total - valid,
            "cache_efficiency": valid / max(1, total),
            "cache_ttl": self._cache_ttl,
        }
