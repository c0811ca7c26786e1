from datetime import datetime, timedelta, timezone

import pytest

from warden.datatypes.discord_datatypes import GuildID, RoleID, UserID
from warden.datatypes.moderation_datatypes import ModerationKind
from warden.entities.user_record import UNKNOWN_TAG, UserRecord


def test_new_record_defaults():
    record = UserRecord(42)
    assert record.id == UserID(42)
    assert record.tag == UNKNOWN_TAG
    assert not record.is_jailed()
    assert not record.has_persistent_roles()
    assert record.moderation_history == []


def test_blank_tag_falls_back_to_unknown():
    assert UserRecord(1, "   ").tag == UNKNOWN_TAG


def test_add_moderation_action_trims_reason_and_generates_id():
    record = UserRecord(42)
    action = record.add_moderation_action(ModerationKind.KICK, 7, "  spamming  ", metadata={"guild_id": 5})
    assert action.reason == "spamming"
    assert action.moderator_id == "7"
    assert action.id.startswith("42-")
    assert action.guild_id == 5


def test_add_moderation_action_accepts_kind_string():
    record = UserRecord(42)
    assert record.add_moderation_action("BAN", 7, "raid").kind is ModerationKind.BAN


@pytest.mark.parametrize(
    "kind, moderator, reason",
    [
        ("explode", 7, "reason"),
        (ModerationKind.WARN, "", "reason"),
        (ModerationKind.WARN, 7, "   "),
        (ModerationKind.WARN, 7, "x" * 501),
    ],
)
def test_add_moderation_action_rejects_invalid_input(kind, moderator, reason):
    record = UserRecord(42)
    with pytest.raises(ValueError):
        record.add_moderation_action(kind, moderator, reason)
    assert record.moderation_history == []


def test_reason_of_exactly_500_characters_is_accepted():
    record = UserRecord(42)
    assert len(record.add_warning(7, "x" * 500).reason) == 500


def test_history_is_most_recent_first_and_filterable():
    record = UserRecord(42)
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    record.add_warning(7, "first", timestamp=base)
    record.add_moderation_action(ModerationKind.KICK, 7, "second", timestamp=base + timedelta(hours=1))
    record.add_warning(7, "third", timestamp=base + timedelta(hours=2))

    assert [a.reason for a in record.get_moderation_history()] == ["third", "second", "first"]
    assert [a.reason for a in record.get_warnings()] == ["third", "first"]
    assert [a.reason for a in record.get_moderation_history(limit=1)] == ["third"]
    assert [a.reason for a in record.moderation_history] == ["first", "second", "third"]


def test_moderation_stats_and_recent_count():
    record = UserRecord(42)
    record.add_warning(7, "recent")
    record.add_warning(7, "old", timestamp=datetime.now(timezone.utc) - timedelta(days=3))
    record.add_moderation_action(ModerationKind.KICK, 7, "kick")

    stats = record.get_moderation_stats()
    assert stats["warn"] == 2
    assert stats["kick"] == 1
    assert stats["total"] == 3
    assert record.get_recent_actions_count(24) == 2
    assert record.get_recent_actions_count(24, ModerationKind.WARN) == 1
    with pytest.raises(ValueError):
        record.get_recent_actions_count(0)


def test_mark_temporary_ban_amends_only_bans():
    record = UserRecord(42)
    ban = record.add_moderation_action(ModerationKind.BAN, 7, "raid", metadata={"permanent": True})
    warning = record.add_warning(7, "rude")

    amended = record.mark_temporary_ban(ban.id, 1_700_000_000, 3600)
    assert amended.metadata["permanent"] is False
    assert amended.metadata["expires_at"] == 1_700_000_000
    assert record.moderation_history[0].metadata["duration_seconds"] == 3600

    with pytest.raises(ValueError):
        record.mark_temporary_ban(warning.id, 1, 1)
    with pytest.raises(KeyError):
        record.mark_temporary_ban("missing", 1, 1)


def test_jail_backup_drives_jailed_state():
    record = UserRecord(42)
    record.store_original_roles([12, "13"])
    assert record.is_jailed()
    assert record.get_original_roles() == [RoleID(12), RoleID(13)]
    record.clear_original_roles()
    assert not record.is_jailed()


def test_jail_backup_is_scoped_to_its_guild():
    record = UserRecord(42)
    record.store_original_roles([12], guild_id=1000, jail_role_id=13)

    assert record.get_jail_guild_id() == GuildID(1000)
    assert record.get_jail_role_id() == RoleID(13)
    assert record.is_jailed_in(1000)
    assert not record.is_jailed_in(2000)

    restored = UserRecord.from_document(record.to_document())
    assert restored.is_jailed_in("1000")
    assert restored.get_jail_role_id() == RoleID(13)

    record.clear_original_roles()
    assert record.get_jail_guild_id() is None
    assert not record.is_jailed_in(1000)


def test_jail_guild_falls_back_to_open_jail_entry():
    document = UserRecord(42).to_document()
    document.pop("original_roles_guild_id")
    document.pop("jail_role_id")
    document["original_roles"] = ["12"]
    record = UserRecord.from_document(document)
    assert record.get_jail_guild_id() is None
    assert record.is_jailed_in(2000)

    record.add_moderation_action("jail", 7, "spam", metadata={"guild_id": 1000, "jail_role_id": 13})
    assert record.get_jail_guild_id() == GuildID(1000)
    assert record.get_jail_role_id() == RoleID(13)
    assert not record.is_jailed_in(2000)


def test_persistent_roles_are_a_set():
    record = UserRecord(42, persistent_roles=[1, 2, 2])
    assert record.get_persistent_roles() == [RoleID(1), RoleID(2)]
    assert record.add_persistent_roles([2, 3]) == 1
    assert not record.add_persistent_role(3)
    assert record.remove_persistent_role(1)
    assert not record.remove_persistent_role(1)
    assert record.has_persistent_role("3")
    record.clear_persistent_roles()
    assert not record.has_persistent_roles()


def test_staff_notes_validation_and_order():
    record = UserRecord(42)
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    record.add_staff_note(7, "older", timestamp=base)
    record.add_staff_note(7, "newer", timestamp=base + timedelta(minutes=5))
    assert [n.content for n in record.get_staff_notes()] == ["newer", "older"]

    with pytest.raises(ValueError):
        record.add_staff_note(7, "  ")
    with pytest.raises(ValueError):
        record.add_staff_note(7, "x" * 2001)


def test_document_round_trip_preserves_state():
    record = UserRecord(42, "someone")
    record.add_warning(7, "rude", metadata={"guild_id": 5})
    record.store_original_roles([12])
    record.add_persistent_roles([13])
    record.add_staff_note(7, "watch them")

    restored = UserRecord.from_document(record.to_document())
    assert restored.id == record.id
    assert restored.tag == "someone"
    assert restored.is_jailed()
    assert restored.get_persistent_roles() == [RoleID(13)]
    assert restored.get_warnings()[0].metadata == {"guild_id": 5}
    assert restored.get_staff_notes()[0].content == "watch them"


def test_from_document_requires_id():
    with pytest.raises(ValueError):
        UserRecord.from_document({"tag": "nobody"})


def test_display_info_summarises_record():
    record = UserRecord(42, "someone")
    action = record.add_warning(7, "rude")
    info = record.display_info()
    assert info["moderation_count"] == 1
    assert info["last_action"] == action
    assert info["is_jailed"] is False
