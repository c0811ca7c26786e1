"""
Moderation cog: slash commands for kicking, banning, jailing and warning.

Every command defers ephemerally, hands the request to the
:class:`ModerationService` and renders the returned OperationResult.
Business-rule failures come back as results and are shown to the invoker
as-is; unexpected exceptions propagate to the events listener's
``on_application_command_error`` handler.

Quick usage example
    from warden.bot.cogs import moderation_cmds
    moderation_cmds.setup(bot, services)
"""

import discord
from discord import Option
from discord.ext import commands

from warden.bot.service_container import Services
from warden.datatypes.moderation_datatypes import OperationResult
from warden.datatypes.target import target_from
from warden.util.format_utils import format_duration, humanize_timestamp, parse_duration
from warden.util.logger import get_logger

logger = get_logger("moderation_cog")

DELETE_MESSAGE_DAY_CHOICES = [0, 1, 2, 3, 4, 5, 6, 7]
DURATION_HINT = "Duration such as 30m, 2h, 1d or 1w."


def render_failure(result: OperationResult) -> str:
    return f"❌ {result.error}"


def render_warnings(result: OperationResult) -> str:
    if not result.warnings:
        return ""
    return "\n⚠️ " + "\n⚠️ ".join(result.warnings)


class ModerationActionCog(commands.Cog):
    """Cog containing moderation slash commands."""

    def __init__(self, discord_bot_instance, services: Services):
        self.discord_bot_instance = discord_bot_instance
        self.services = services
        logger.info("Moderation cog loaded")

    async def _reply(self, ctx: discord.ApplicationContext, result: OperationResult, success_message: str) -> None:
        if not result.success:
            await ctx.send_followup(render_failure(result))
            return
        await ctx.send_followup(success_message + render_warnings(result))

    @commands.slash_command(name="kick", description="Kick a member from the server.")
    async def kick(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.Member, "The member to kick.", required=True),  # type: ignore
        reason: Option(str, "Reason for the kick.", default="No reason provided"),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        result = await self.services.moderation.kick_user(ctx.author, target_from(user), reason)
        await self._reply(ctx, result, f"👢 Kicked **{user}**. Reason: {reason}")

    @commands.slash_command(name="ban", description="Ban a user from the server.")
    async def ban(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The user to ban.", required=True),  # type: ignore
        reason: Option(str, "Reason for the ban.", default="No reason provided"),  # type: ignore
        delete_message_days: Option(
            int, "Days of messages to delete.", choices=DELETE_MESSAGE_DAY_CHOICES, default=0
        ),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        result = await self.services.moderation.ban_user(ctx.author, target_from(user), reason, delete_message_days)
        await self._reply(ctx, result, f"🔨 Banned **{user}**. Reason: {reason}")

    @commands.slash_command(name="tempban", description="Ban a user for a limited time.")
    async def tempban(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The user to ban.", required=True),  # type: ignore
        duration: Option(str, DURATION_HINT, required=True),  # type: ignore
        reason: Option(str, "Reason for the ban.", default="No reason provided"),  # type: ignore
        delete_message_days: Option(
            int, "Days of messages to delete.", choices=DELETE_MESSAGE_DAY_CHOICES, default=0
        ),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        seconds = parse_duration(duration)
        if seconds is None:
            await ctx.send_followup(f"❌ Invalid duration `{duration}`. {DURATION_HINT}")
            return
        result = await self.services.moderation.tempban_user(
            ctx.author, target_from(user), seconds, reason, delete_message_days
        )
        await self._reply(
            ctx, result, f"⏳ Banned **{user}** for {format_duration(seconds)}. Reason: {reason}"
        )

    @commands.slash_command(name="unban", description="Lift a ban by user ID.")
    async def unban(
        self,
        ctx: discord.ApplicationContext,
        user_id: Option(str, "ID of the banned user.", required=True),  # type: ignore
        reason: Option(str, "Reason for the unban.", default="Unbanned by moderator"),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        if not user_id.strip().isdigit():
            await ctx.send_followup("❌ Please provide a numeric user ID.")
            return
        result = await self.services.moderation.unban_user(ctx.author, int(user_id), reason)
        await self._reply(ctx, result, f"🔓 Unbanned **{result.get('user_tag') or user_id}**.")

    @commands.slash_command(name="jail", description="Restrict a member to the jail channel.")
    async def jail(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.Member, "The member to jail.", required=True),  # type: ignore
        reason: Option(str, "Reason for the jail.", required=True),  # type: ignore
        duration: Option(str, DURATION_HINT, required=False, default=None),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        seconds = None
        if duration:
            seconds = parse_duration(duration)
            if seconds is None:
                await ctx.send_followup(f"❌ Invalid duration `{duration}`. {DURATION_HINT}")
                return
        result = await self.services.moderation.jail_user(ctx.author, target_from(user), reason, seconds)
        length = f" for {format_duration(seconds)}" if seconds else ""
        await self._reply(
            ctx,
            result,
            f"🔒 Jailed **{user}**{length}. {result.get('roles_backed_up', 0)} roles backed up.",
        )

    @commands.slash_command(name="unjail", description="Release a member from jail and restore their roles.")
    async def unjail(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.Member, "The member to release.", required=True),  # type: ignore
        reason: Option(str, "Reason for the release.", default="Released from jail"),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        result = await self.services.moderation.unjail_user(ctx.author, target_from(user), reason)
        await self._reply(
            ctx,
            result,
            f"🔓 Released **{user}**. {result.get('roles_restored', 0)} roles restored, "
            f"{result.get('roles_not_restored', 0)} not restored.",
        )

    @commands.slash_command(name="warn", description="Warn a user.")
    async def warn(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The user to warn.", required=True),  # type: ignore
        reason: Option(str, "Reason for the warning.", required=True),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        result = await self.services.moderation.warn_user(ctx.author, target_from(user), reason)
        await self._reply(
            ctx, result, f"⚠️ Warned **{user}**. They now have {result.get('warnings_after', 0)} warning(s)."
        )

    @commands.slash_command(name="note", description="Add a staff-only note to a user.")
    async def note(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The user to annotate.", required=True),  # type: ignore
        content: Option(str, "Note content.", required=True),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        result = await self.services.moderation.add_staff_note(ctx.author, target_from(user), content)
        await self._reply(ctx, result, f"📝 Note added for **{user}** ({result.get('notes_count', 0)} total).")

    @commands.slash_command(name="notes", description="Show staff notes for a user.")
    async def notes(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The user to look up.", required=True),  # type: ignore
        limit: Option(int, "How many notes to show.", default=5, min_value=1, max_value=25),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        result = await self.services.moderation.get_staff_notes(ctx.author, target_from(user), limit)
        if not result.success:
            await ctx.send_followup(render_failure(result))
            return
        if not result["notes"]:
            await ctx.send_followup(f"No staff notes for **{user}**.")
            return
        lines = [f"**Staff notes for {user}** ({result['note_count']} total)"]
        for note in result["notes"]:
            lines.append(f"• `{humanize_timestamp(note.timestamp)}` <@{note.author_id}>: {note.content}")
        await ctx.send_followup("\n".join(lines))

    @commands.slash_command(name="history", description="Show a user's moderation history.")
    async def history(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The user to look up.", required=True),  # type: ignore
        days: Option(int, "Only show the last N days.", required=False, default=None),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        if not await self.services.gate.has_moderator_role(ctx.author):
            await ctx.send_followup("❌ You need the moderator role to use this command.")
            return

        summary = await self.services.moderation.get_user_moderation_history(user.id, days)
        if not summary["exists"] or not summary["history"]:
            await ctx.send_followup(f"No moderation history for **{user}**.")
            return

        status = summary["current_status"]
        lines = [
            f"**Moderation history for {user}** ({summary['total_actions']} actions"
            f"{', currently jailed' if status['jailed'] else ''})"
        ]
        for action in summary["history"][:15]:
            lines.append(
                f"• `{humanize_timestamp(action.timestamp)}` **{action.kind.value}** by "
                f"{action.metadata.get('moderator_tag', action.moderator_id)}: {action.reason}"
            )
        await ctx.send_followup("\n".join(lines))


def setup(discord_bot_instance, services: Services):
    """Register the moderation cog with the bot."""
    discord_bot_instance.add_cog(ModerationActionCog(discord_bot_instance, services))
