"""
Live guild membership adapter.

MemberDirectory is the only place that calls mutating py-cord APIs on a
guild. Lookups that find nothing return ``None``; any other
``discord.HTTPException`` propagates to the caller.
"""

from __future__ import annotations

from typing import Callable, Iterable, Optional

import discord

from warden.datatypes.discord_datatypes import GuildID, RoleID, UserID
from warden.util.logger import get_logger

logger = get_logger("member_directory")

MAX_DELETE_MESSAGE_DAYS = 7


class MemberDirectory:
    """Read and mutate live members and roles of one guild."""

    def __init__(self, guild: discord.Guild):
        self.guild = guild

    @property
    def guild_id(self) -> GuildID:
        return GuildID.from_guild(self.guild)

    @property
    def owner_id(self) -> int:
        return self.guild.owner_id

    @property
    def me(self) -> discord.Member:
        return self.guild.me

    @property
    def default_role_id(self) -> RoleID:
        return RoleID(self.guild.default_role.id)

    def get_role(self, role_id: RoleID | int | str) -> discord.Role | None:
        return self.guild.get_role(RoleID(role_id).to_int())

    async def fetch_member(self, user_id: UserID | int | str) -> discord.Member | None:
        user_id = UserID(user_id)
        member = self.guild.get_member(user_id.to_int())
        if member is not None:
            return member
        try:
            return await self.guild.fetch_member(user_id.to_int())
        except discord.NotFound:
            return None

    async def set_member_roles(self, member: discord.Member, roles: Iterable[discord.Role], reason: str) -> None:
        await member.edit(roles=list(roles), reason=reason)

    async def add_role(self, member: discord.Member, role: discord.Role, reason: str) -> None:
        await member.add_roles(role, reason=reason)

    async def remove_role(self, member: discord.Member, role: discord.Role, reason: str) -> None:
        await member.remove_roles(role, reason=reason)

    async def kick(self, member: discord.Member, reason: str) -> None:
        await self.guild.kick(member, reason=reason)

    async def ban(self, user_id: UserID | int | str, reason: str, delete_message_days: int = 0) -> None:
        days = max(0, min(int(delete_message_days), MAX_DELETE_MESSAGE_DAYS))
        await self.guild.ban(
            discord.Object(id=UserID(user_id).to_int()),
            reason=reason,
            delete_message_seconds=days * 86400,
        )

    async def unban(self, user_id: UserID | int | str, reason: str) -> None:
        await self.guild.unban(discord.Object(id=UserID(user_id).to_int()), reason=reason)

    async def fetch_ban(self, user_id: UserID | int | str) -> Optional[discord.guild.BanEntry]:
        """Return the ban entry for the account, or None when it is not banned."""
        try:
            return await self.guild.fetch_ban(discord.Object(id=UserID(user_id).to_int()))
        except discord.NotFound:
            return None


DirectoryProvider = Callable[[GuildID], Optional[MemberDirectory]]


def directory_provider(bot: discord.Client) -> DirectoryProvider:
    """Build a resolver from guild ID to a directory, or None when the bot is not in the guild."""

    def resolve(guild_id: GuildID) -> Optional[MemberDirectory]:
        guild = bot.get_guild(GuildID(guild_id).to_int())
        if guild is None:
            logger.debug("[DIRECTORY] Guild %s is not available", guild_id)
            return None
        return MemberDirectory(guild)

    return resolve
