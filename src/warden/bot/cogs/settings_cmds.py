"""
Settings cog: per-guild moderator role, jail role and jail channel.

All changes require the Manage Server permission (or ownership).
Responses are ephemeral to avoid leaking configuration in public channels.
"""

import discord
from discord import Option
from discord.ext import commands

from warden.bot.service_container import Services
from warden.datatypes.discord_datatypes import ChannelID, GuildID, RoleID
from warden.util.logger import get_logger

logger = get_logger("settings_cog")


def _mention_role(role_id) -> str:
    return f"<@&{role_id}>" if role_id is not None else "*not set*"


def _mention_channel(channel_id) -> str:
    return f"<#{channel_id}>" if channel_id is not None else "*not set*"


class ServerSettingsCog(commands.Cog):
    """Slash commands under ``/setup`` for configuring moderation."""

    setup_group = discord.SlashCommandGroup("setup", "Configure moderation for this server.")

    def __init__(self, discord_bot_instance, services: Services):
        self.discord_bot_instance = discord_bot_instance
        self.services = services
        logger.info("Settings cog loaded")

    async def _ensure_can_configure(self, ctx: discord.ApplicationContext) -> bool:
        if not ctx.guild_id:
            await ctx.respond("This command can only be used in a server.", ephemeral=True)
            return False
        if not self.services.gate.can_manage_server_config(ctx.author):
            await ctx.respond("You need the Manage Server permission to configure moderation.", ephemeral=True)
            return False
        return True

    @setup_group.command(name="moderator-role", description="Set the role allowed to use moderation commands.")
    async def set_moderator_role(
        self,
        ctx: discord.ApplicationContext,
        role: Option(discord.Role, "The moderator role.", required=True),  # type: ignore
    ) -> None:
        if not await self._ensure_can_configure(ctx):
            return
        guild_id = GuildID(ctx.guild_id)
        await self.services.server_config.set_moderator_role(guild_id, RoleID(role.id))
        # Cached role checks for this guild are stale now
        self.services.gate.clear_cache(guild_id)
        await ctx.respond(f"✅ Moderator role set to {role.mention}.", ephemeral=True)

    @setup_group.command(name="jail-role", description="Set the role given to jailed members.")
    async def set_jail_role(
        self,
        ctx: discord.ApplicationContext,
        role: Option(discord.Role, "The jail role.", required=True),  # type: ignore
    ) -> None:
        if not await self._ensure_can_configure(ctx):
            return
        if role.managed:
            await ctx.respond("❌ Managed roles cannot be used as the jail role.", ephemeral=True)
            return
        me = ctx.guild.me
        warning = ""
        if me is not None and role.position >= me.top_role.position:
            warning = "\n⚠️ This role is at or above my highest role, so I will not be able to assign it."
        await self.services.server_config.set_jail_role(GuildID(ctx.guild_id), RoleID(role.id))
        await ctx.respond(f"✅ Jail role set to {role.mention}.{warning}", ephemeral=True)

    @setup_group.command(name="jail-channel", description="Set the channel jailed members can still see.")
    async def set_jail_channel(
        self,
        ctx: discord.ApplicationContext,
        channel: Option(discord.TextChannel, "The jail channel.", required=True),  # type: ignore
    ) -> None:
        if not await self._ensure_can_configure(ctx):
            return
        await self.services.server_config.set_jail_channel(GuildID(ctx.guild_id), ChannelID(channel.id))
        await ctx.respond(f"✅ Jail channel set to {channel.mention}.", ephemeral=True)

    @setup_group.command(name="show", description="Show the current moderation configuration.")
    async def show(self, ctx: discord.ApplicationContext) -> None:
        if not await self._ensure_can_configure(ctx):
            return
        config = await self.services.server_config.get(GuildID(ctx.guild_id))
        lines = [
            "**Moderation configuration**",
            f"Moderator role: {_mention_role(config.moderator_role_id)}",
            f"Jail role: {_mention_role(config.jail_role_id)}",
            f"Jail channel: {_mention_channel(config.jail_channel_id)}",
        ]
        missing = config.missing_jail_settings()
        if missing:
            lines.append(f"⚠️ Jailing is unavailable until you set the {' and '.join(missing)}.")
        await ctx.respond("\n".join(lines), ephemeral=True)


def setup(discord_bot_instance, services: Services):
    """Register the settings cog with the bot."""
    discord_bot_instance.add_cog(ServerSettingsCog(discord_bot_instance, services))
