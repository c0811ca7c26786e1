"""Event listener Cog for Warden.

This cog handles bot lifecycle events (on_ready), member departures and
arrivals for persistent roles, and command error handling.
"""

import discord
from discord.ext import commands

from warden.bot.service_container import Services
from warden.moderation.member_directory import MemberDirectory
from warden.util.logger import get_logger

logger = get_logger("events_listener_cog")


class EventsListenerCog(commands.Cog):
    """Cog containing lifecycle, member and command error handlers."""

    def __init__(self, discord_bot_instance, services: Services):
        """Initialize the events listener cog.

        Parameters
        ----------
        discord_bot_instance:
            The Discord bot instance to attach this cog to.
        services:
            The moderation services shared by all cogs.
        """
        self.bot = discord_bot_instance
        self.services = services
        logger.info("Events listener cog loaded")

    @commands.Cog.listener(name="on_ready")
    async def on_ready(self):
        """Log the connection and rebuild tempban and jail timers for every guild.

        on_ready can fire again after a reconnect; timers that are already
        held are skipped, so restoring twice is harmless.
        """
        if self.bot.user:
            logger.info(f"Bot connected as {self.bot.user} (ID: {self.bot.user.id})")
        else:
            logger.warning("Bot partially connected, but user information not yet available.")

        logger.info("--==--==--==--==--==--==--==--==--==--==--==--==--==--==--==--==--")

        total = 0
        for guild in self.bot.guilds:
            try:
                total += await self.services.moderation.restore_reversals(guild.id)
            except Exception:
                logger.exception("Failed to restore pending reversals for guild %s", guild.id)
        logger.info("Restored %d pending reversal timers across %d guilds", total, len(self.bot.guilds))

    @commands.Cog.listener(name="on_member_remove")
    async def on_member_remove(self, member: discord.Member):
        """Remember the departing member's roles so they can be given back on return."""
        try:
            await self.services.roles.store_on_departure(
                member.id, member.guild.id, [role.id for role in member.roles], str(member)
            )
        except Exception:
            logger.exception("Failed to store persistent roles for %s in guild %s", member, member.guild.id)

    @commands.Cog.listener(name="on_member_join")
    async def on_member_join(self, member: discord.Member):
        try:
            result = await self.services.roles.restore_on_arrival(MemberDirectory(member.guild), member)
        except Exception:
            logger.exception("Failed to restore persistent roles for %s in guild %s", member, member.guild.id)
            return
        for warning in result.warnings:
            logger.warning("[PERSISTENT ROLES] %s: %s", member, warning)

    @commands.Cog.listener(name="on_application_command_error")
    async def on_application_command_error(self, application_context: discord.ApplicationContext, error: Exception):
        """Handle errors from application commands with logging and user feedback."""
        if isinstance(error, commands.CommandNotFound):
            return

        command_name = getattr(application_context.command, "name", "<unknown>")
        logger.error(f"Error in command '{command_name}': {error}", exc_info=True)

        error_message = "A :bug: showed up while running this command."
        try:
            await application_context.respond(error_message, ephemeral=True)
        except discord.InteractionResponded:
            await application_context.followup.send(error_message, ephemeral=True)


def setup(discord_bot_instance, services: Services):
    """Register the EventsListenerCog with the bot."""
    discord_bot_instance.add_cog(EventsListenerCog(discord_bot_instance, services))
