import asyncio
import time

import pytest

from conftest import GUILD_ID, MEMBER_ID, MEMBER_ROLE_ID, MODERATOR_ID, OWNER_ID
from warden.datatypes.discord_datatypes import GuildID, UserID
from warden.datatypes.moderation_datatypes import ErrorType, ModerationKind
from warden.datatypes.target import AccountTarget, MemberTarget
from warden.scheduler.reversal_scheduler import ReversalKind

OUTSIDER_ID = 777


def member_target(world):
    return MemberTarget(world.member)


@pytest.mark.asyncio
async def test_kick_removes_member_and_records_action(services, world):
    result = await services.moderation.kick_user(world.moderator, member_target(world), "  Spamming  ")

    assert result.success
    assert result["reason"] == "Spamming"
    assert world.guild.kicked == [(MEMBER_ID, "mod: Spamming")]
    history = await services.ledger.history(MEMBER_ID, ModerationKind.KICK)
    assert [a.id for a in history] == [result["action_id"]]
    assert history[0].metadata["moderator_tag"] == "mod"


@pytest.mark.asyncio
async def test_kick_requires_member_target(services, world):
    result = await services.moderation.kick_user(world.moderator, AccountTarget(UserID(OUTSIDER_ID), "ghost"), "bye")
    assert result.error_type is ErrorType.NOT_A_MEMBER


@pytest.mark.asyncio
async def test_denied_kick_leaves_no_trace(services, world):
    result = await services.moderation.kick_user(world.member, MemberTarget(world.moderator), "revenge")

    assert result.error_type is ErrorType.PERMISSION_DENIED
    assert world.guild.kicked == []
    assert await services.user_store.get(MODERATOR_ID) is None


@pytest.mark.asyncio
async def test_kick_of_owner_is_a_hierarchy_error(services, world):
    result = await services.moderation.kick_user(world.moderator, MemberTarget(world.owner), "coup")
    assert result.error_type is ErrorType.HIERARCHY_ERROR
    assert await services.user_store.get(OWNER_ID) is None


@pytest.mark.asyncio
async def test_ban_by_id_for_account_not_in_guild(services, world):
    target = AccountTarget(UserID(OUTSIDER_ID), "ghost")
    result = await services.moderation.ban_user(world.moderator, target, "Raid", delete_message_days=12)

    assert result.success
    assert result["delete_message_days"] == 7
    assert world.guild.bans[OUTSIDER_ID].delete_message_seconds == 7 * 86400
    record = await services.user_store.get(OUTSIDER_ID)
    assert record.tag == "ghost"
    ban = record.get_moderation_history()[0]
    assert ban.kind is ModerationKind.BAN
    assert ban.metadata["permanent"] is True


@pytest.mark.asyncio
async def test_ban_of_banned_account_is_rejected(services, world):
    target = AccountTarget(UserID(OUTSIDER_ID), "ghost")
    assert (await services.moderation.ban_user(world.moderator, target, "Raid")).success

    again = await services.moderation.ban_user(world.moderator, target, "Raid again")

    assert again.error_type is ErrorType.ALREADY_BANNED
    assert len(await services.ledger.history(OUTSIDER_ID, ModerationKind.BAN)) == 1


@pytest.mark.asyncio
async def test_ban_rejects_invalid_reason_before_touching_guild(services, world):
    result = await services.moderation.ban_user(world.moderator, member_target(world), "x" * 501)
    assert result.error_type is ErrorType.INVALID_REASON
    assert world.guild.bans == {}


@pytest.mark.asyncio
@pytest.mark.parametrize("duration", [0, -1, 31 * 86400])
async def test_tempban_rejects_invalid_duration(services, world, duration):
    result = await services.moderation.tempban_user(world.moderator, member_target(world), duration, "Raid")
    assert result.error_type is ErrorType.INVALID_DURATION
    assert world.guild.bans == {}


@pytest.mark.asyncio
async def test_tempban_records_expiry_and_schedules_unban(services, world):
    before = time.time()
    result = await services.moderation.tempban_user(world.moderator, member_target(world), 3600, "Cool off")

    assert result.success
    assert result.action == "tempban"
    assert result["permanent"] is False
    assert result["auto_unban"] is True
    assert before + 3599 <= result["expires_at"] <= time.time() + 3600
    assert services.scheduler.is_scheduled(UserID(MEMBER_ID), GuildID(GUILD_ID), ReversalKind.TEMPBAN)

    ban = (await services.ledger.history(MEMBER_ID, ModerationKind.BAN))[0]
    assert ban.metadata["permanent"] is False
    assert ban.metadata["expires_at"] == result["expires_at"]
    assert ban.metadata["duration_seconds"] == 3600


@pytest.mark.asyncio
async def test_tempban_fires_exactly_once_after_duration(services, world):
    result = await services.moderation.tempban_user(world.moderator, member_target(world), 1, "Cool off")
    assert result.success

    assert await services.ledger.history(MEMBER_ID, ModerationKind.UNBAN) == []
    assert MEMBER_ID in world.guild.bans

    await asyncio.sleep(1.5)

    unbans = await services.ledger.history(MEMBER_ID, ModerationKind.UNBAN)
    assert len(unbans) == 1
    assert unbans[0].moderator_id == "system"
    assert unbans[0].reason == "Temporary ban expired"
    assert unbans[0].metadata["automatic"] is True
    assert unbans[0].metadata["platform_unbanned"] is True
    assert MEMBER_ID not in world.guild.bans
    assert not services.scheduler.is_scheduled(UserID(MEMBER_ID), GuildID(GUILD_ID), ReversalKind.TEMPBAN)

    await asyncio.sleep(0.2)
    assert len(await services.ledger.history(MEMBER_ID, ModerationKind.UNBAN)) == 1


@pytest.mark.asyncio
async def test_restore_after_restart_schedules_remaining_tempban(services, world):
    await services.moderation.tempban_user(world.moderator, member_target(world), 600, "Cool off")
    # Simulate a restart: in-memory timers are gone, the ledger is not
    await services.scheduler.shutdown()

    restored = await services.moderation.restore_reversals(GUILD_ID)

    assert restored == 1
    assert services.scheduler.is_scheduled(UserID(MEMBER_ID), GuildID(GUILD_ID), ReversalKind.TEMPBAN)
    assert await services.ledger.history(MEMBER_ID, ModerationKind.UNBAN) == []
    assert world.guild.unbanned == []


@pytest.mark.asyncio
async def test_restore_fires_tempban_that_expired_while_offline(services, world):
    result = await services.moderation.tempban_user(world.moderator, member_target(world), 600, "Cool off")
    await services.scheduler.shutdown()
    await services.ledger.mark_temporary_ban(MEMBER_ID, result["action_id"], int(time.time()) - 10, 600)

    assert await services.moderation.restore_reversals(GUILD_ID) == 1

    unbans = await services.ledger.history(MEMBER_ID, ModerationKind.UNBAN)
    assert len(unbans) == 1
    assert unbans[0].metadata["automatic"] is True
    assert await services.moderation.restore_reversals(GUILD_ID) == 0


@pytest.mark.asyncio
async def test_automatic_unban_records_when_ban_already_lifted(services, world):
    await services.moderation.tempban_user(world.moderator, member_target(world), 1, "Cool off")
    world.guild.bans.clear()

    await asyncio.sleep(1.5)

    unbans = await services.ledger.history(MEMBER_ID, ModerationKind.UNBAN)
    assert len(unbans) == 1
    assert unbans[0].metadata["platform_unbanned"] is False


@pytest.mark.asyncio
async def test_manual_unban_cancels_pending_timer(services, world):
    await services.moderation.tempban_user(world.moderator, member_target(world), 3600, "Cool off")

    result = await services.moderation.unban_user(world.moderator, str(MEMBER_ID), "Appeal accepted")

    assert result.success
    assert result["timer_cancelled"] is True
    assert result["user_tag"] == f"user{MEMBER_ID}"
    assert not services.scheduler.is_scheduled(UserID(MEMBER_ID), GuildID(GUILD_ID), ReversalKind.TEMPBAN)
    unban = (await services.ledger.history(MEMBER_ID, ModerationKind.UNBAN))[0]
    assert unban.metadata["automatic"] is False
    assert await services.ledger.pending_reversals(GUILD_ID) == []


@pytest.mark.asyncio
async def test_unban_of_account_that_is_not_banned(services, world):
    result = await services.moderation.unban_user(world.moderator, OUTSIDER_ID, "Appeal")
    assert result.error_type is ErrorType.NOT_BANNED


@pytest.mark.asyncio
async def test_jail_and_unjail_go_through_the_gate(services, world):
    denied = await services.moderation.jail_user(world.member, MemberTarget(world.moderator), "nope")
    assert denied.error_type is ErrorType.PERMISSION_DENIED

    jailed = await services.moderation.jail_user(world.moderator, member_target(world), "Spamming", 3600)
    assert jailed.success
    assert await services.ledger.is_jailed(MEMBER_ID)

    pending = await services.ledger.pending_reversals(GUILD_ID)
    assert [(p.user_id, p.kind) for p in pending] == [(UserID(MEMBER_ID), ModerationKind.JAIL)]

    released = await services.moderation.unjail_user(world.moderator, member_target(world), "Done")
    assert released.success
    assert not await services.ledger.is_jailed(MEMBER_ID)
    assert await services.ledger.pending_reversals(GUILD_ID) == []


@pytest.mark.asyncio
async def test_warning_during_jail_role_change_keeps_both_entries(services, world, monkeypatch):
    edit = world.member.edit

    async def slow_edit(*, roles, reason=None):
        await asyncio.sleep(0.01)
        await edit(roles=roles, reason=reason)

    monkeypatch.setattr(world.member, "edit", slow_edit)

    jailed, warned = await asyncio.gather(
        services.moderation.jail_user(world.moderator, member_target(world), "Spamming"),
        services.moderation.warn_user(world.moderator, member_target(world), "Rude"),
    )

    assert jailed.success and warned.success
    record = await services.user_store.get(MEMBER_ID)
    assert record.is_jailed()
    assert sorted(a.kind.value for a in record.moderation_history) == ["jail", "warn"]

    released = await services.moderation.unjail_user(world.moderator, member_target(world), "Done")
    assert released["roles_restored"] == 1
    assert world.member.role_ids == [MEMBER_ROLE_ID]


@pytest.mark.asyncio
async def test_jail_requires_member_target(services, world):
    result = await services.moderation.jail_user(world.moderator, AccountTarget(UserID(OUTSIDER_ID)), "Spamming")
    assert result.error_type is ErrorType.NOT_A_MEMBER


@pytest.mark.asyncio
async def test_warn_counts_warnings(services, world):
    first = await services.moderation.warn_user(world.moderator, member_target(world), "Rude")
    second = await services.moderation.warn_user(world.moderator, member_target(world), "Rude again")

    assert first["warnings_after"] == 1
    assert second["warnings_after"] == 2
    latest = (await services.ledger.history(MEMBER_ID, ModerationKind.WARN))[0]
    assert latest.metadata["warnings_before"] == 1


@pytest.mark.asyncio
async def test_warn_rejects_self_and_empty_reason(services, world):
    self_warn = await services.moderation.warn_user(world.moderator, MemberTarget(world.moderator), "Oops")
    assert self_warn.error_type is ErrorType.INVALID_TARGET
    assert self_warn.error == "You cannot issue a warning to yourself."

    empty = await services.moderation.warn_user(world.moderator, member_target(world), "  ")
    assert empty.error_type is ErrorType.INVALID_REASON
    assert await services.user_store.get(MEMBER_ID) is None


@pytest.mark.asyncio
async def test_staff_notes(services, world):
    target = member_target(world)
    added = await services.moderation.add_staff_note(world.moderator, target, "  Keep an eye on them  ")
    assert added.success
    assert added["note"].content == "Keep an eye on them"
    await asyncio.sleep(0.01)
    await services.moderation.add_staff_note(world.moderator, target, "Second note")

    listed = await services.moderation.get_staff_notes(world.moderator, target, limit=100)
    assert listed["limit"] == 25
    assert listed["note_count"] == 2
    assert listed["notes"][0].content == "Second note"

    invalid = await services.moderation.add_staff_note(world.moderator, target, "x" * 2001)
    assert invalid.error_type is ErrorType.INVALID_CONTENT

    denied = await services.moderation.get_staff_notes(world.member, target)
    assert denied.error_type is ErrorType.PERMISSION_DENIED


@pytest.mark.asyncio
async def test_moderation_history_summary(services, world):
    empty = await services.moderation.get_user_moderation_history(MEMBER_ID)
    assert empty["exists"] is False

    await services.moderation.warn_user(world.moderator, member_target(world), "Rude")
    await services.moderation.jail_user(world.moderator, member_target(world), "Spamming")

    summary = await services.moderation.get_user_moderation_history(MEMBER_ID, days=1)
    assert summary["exists"] is True
    assert summary["total_actions"] == 2
    assert summary["recent_actions"] == 2
    assert summary["statistics"]["jail"] == 1
    assert summary["current_status"]["jailed"] is True
    assert summary["history"][0].kind is ModerationKind.JAIL
