"""
Persistent role cog: mark roles that survive a member leaving and rejoining.
"""

import discord
from discord import Option
from discord.ext import commands

from warden.bot.service_container import Services
from warden.datatypes.target import target_from
from warden.moderation.member_directory import MemberDirectory
from warden.moderation.permission_gate import PermissionRequirements
from warden.util.logger import get_logger

logger = get_logger("persistent_role_cog")

PERSISTENT_ROLE_REQUIREMENTS = PermissionRequirements(("manage_roles",), moderator_role=True)


class PersistentRoleCog(commands.Cog):
    persistent_group = discord.SlashCommandGroup("persistent-role", "Manage roles that persist across rejoins.")

    def __init__(self, discord_bot_instance, services: Services):
        self.discord_bot_instance = discord_bot_instance
        self.services = services
        logger.info("Persistent role cog loaded")

    async def _denied(self, ctx: discord.ApplicationContext, member: discord.Member) -> bool:
        result = await self.services.gate.authorize(ctx.author, target_from(member), PERSISTENT_ROLE_REQUIREMENTS)
        if result.allowed:
            return False
        await ctx.send_followup(f"❌ {result.reason}")
        return True

    @persistent_group.command(name="add", description="Give a member a role that is restored when they rejoin.")
    async def add(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.Member, "The member.", required=True),  # type: ignore
        role: Option(discord.Role, "The role to persist.", required=True),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        if await self._denied(ctx, user):
            return
        result = await self.services.roles.assign_persistent_role(
            MemberDirectory(ctx.guild), user, role.id, reason=f"Persistent role assigned by {ctx.author}"
        )
        if not result.success:
            await ctx.send_followup(f"❌ {result.error}")
            return
        await ctx.send_followup(f"📌 {role.mention} will now persist for **{user}**.")

    @persistent_group.command(name="remove", description="Stop restoring a role for a member.")
    async def remove(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.Member, "The member.", required=True),  # type: ignore
        role: Option(discord.Role, "The persistent role.", required=True),  # type: ignore
        remove_from_member: Option(bool, "Also take the role away now.", default=False),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        if await self._denied(ctx, user):
            return
        result = await self.services.roles.remove_persistent_role(
            MemberDirectory(ctx.guild),
            user,
            role.id,
            remove_from_member=remove_from_member,
            reason=f"Persistent role removed by {ctx.author}",
        )
        if not result.success:
            await ctx.send_followup(f"❌ {result.error}")
            return
        extra = "".join(f"\n⚠️ {w}" for w in result.warnings)
        await ctx.send_followup(f"🗑️ {role.mention} no longer persists for **{user}**.{extra}")


def setup(discord_bot_instance, services: Services):
    discord_bot_instance.add_cog(PersistentRoleCog(discord_bot_instance, services))
