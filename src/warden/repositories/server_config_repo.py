"""
Persistent storage for per-guild configuration.
"""

from __future__ import annotations

import aiosqlite

from warden.datatypes.discord_datatypes import ChannelID, GuildID, RoleID
from warden.datatypes.server_config import ServerConfig


def _opt(cls, value):
    return cls(value) if value is not None else None


class ServerConfigRepo:
    """Low-level CRUD for the ``server_config`` table."""

    @staticmethod
    async def upsert(conn: aiosqlite.Connection, config: ServerConfig) -> None:
        await conn.execute(
            """
            INSERT INTO server_config (guild_id, moderator_role_id, jail_role_id, jail_channel_id, updated_at)
            VALUES (?, ?, ?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(guild_id) DO UPDATE SET
                moderator_role_id = excluded.moderator_role_id,
                jail_role_id      = excluded.jail_role_id,
                jail_channel_id   = excluded.jail_channel_id,
                updated_at        = excluded.updated_at
            """,
            (
                config.guild_id.to_int(),
                config.moderator_role_id.to_int() if config.moderator_role_id else None,
                config.jail_role_id.to_int() if config.jail_role_id else None,
                config.jail_channel_id.to_int() if config.jail_channel_id else None,
            ),
        )

    @staticmethod
    async def get(conn: aiosqlite.Connection, guild_id: GuildID) -> ServerConfig | None:
        cursor = await conn.execute(
            "SELECT guild_id, moderator_role_id, jail_role_id, jail_channel_id "
            "FROM server_config WHERE guild_id = ? LIMIT 1",
            (guild_id.to_int(),),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return ServerConfig(
            guild_id=GuildID(row[0]),
            moderator_role_id=_opt(RoleID, row[1]),
            jail_role_id=_opt(RoleID, row[2]),
            jail_channel_id=_opt(ChannelID, row[3]),
        )
