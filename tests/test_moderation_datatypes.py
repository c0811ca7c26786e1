from datetime import datetime, timezone

from warden.datatypes.moderation_datatypes import (
    ErrorType,
    ModerationAction,
    ModerationKind,
    OperationResult,
    StaffNote,
    parse_timestamp,
    reason_error,
)
from warden.datatypes.server_config import ServerConfig
from warden.datatypes.discord_datatypes import ChannelID, GuildID, RoleID


def test_reason_error_messages():
    assert reason_error("fine") is None
    assert reason_error("  ") == "Reason is required."
    assert reason_error(None) == "Reason is required."
    assert reason_error("x" * 501, "Jail reason") == "Jail reason cannot exceed 500 characters."


def test_parse_timestamp_accepts_iso_and_unix_seconds():
    assert parse_timestamp("2024-01-01T00:00:00") == datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert parse_timestamp(0) == datetime(1970, 1, 1, tzinfo=timezone.utc)
    assert parse_timestamp(None).tzinfo is not None


def test_moderation_action_document_uses_action_field():
    action = ModerationAction(
        id="1-2-3",
        kind=ModerationKind.TEMPBAN,
        moderator_id="7",
        reason="raid",
        timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
        metadata={"guild_id": "1000"},
    )
    document = action.to_document()
    assert document["action"] == "tempban"
    assert document["moderator"] == "7"
    assert ModerationAction.from_document(document) == action
    assert action.guild_id == 1000


def test_moderation_action_tolerates_missing_metadata():
    action = ModerationAction.from_document({"action": "warn", "reason": "rude"})
    assert action.metadata == {}
    assert action.guild_id is None
    assert action.moderator_id == "system"


def test_staff_note_document_round_trip():
    note = StaffNote("n1", "7", "watch", datetime(2024, 1, 1, tzinfo=timezone.utc))
    assert StaffNote.from_document(note.to_document()) == note


def test_operation_result_accessors():
    ok = OperationResult.ok("kick", warnings=["careful"], user_id="3")
    assert ok.success
    assert ok["user_id"] == "3"
    assert ok.get("missing", "default") == "default"
    assert ok.warnings == ["careful"]

    failed = OperationResult.fail("nope", ErrorType.NOT_JAILED, user_id="3")
    assert not failed.success
    assert failed.error_type is ErrorType.NOT_JAILED
    assert str(failed.error_type) == "not_jailed"


def test_server_config_reports_missing_jail_settings():
    config = ServerConfig(GuildID(1))
    assert config.missing_jail_settings() == ["jail role", "jail channel"]
    assert not config.jail_configured()

    config.jail_role_id = RoleID(2)
    config.jail_channel_id = ChannelID(3)
    assert config.jail_configured()
