"""
Per-guild moderation configuration with an in-memory cache.

Responsibilities:
- Load a guild's ServerConfig from the ``server_config`` table on first use
- Persist changes made through the setters before returning
"""

from __future__ import annotations

import asyncio
from typing import Dict

from warden.database.db_connection import ConnectionManager, db_connection
from warden.datatypes.discord_datatypes import ChannelID, GuildID, RoleID
from warden.datatypes.server_config import ServerConfig
from warden.repositories.server_config_repo import ServerConfigRepo
from warden.util.logger import get_logger

logger = get_logger("server_config_manager")


class ServerConfigManager:
    """Cached access to per-guild moderator role, jail role and jail channel."""

    def __init__(self, connection: ConnectionManager = db_connection):
        self._connection = connection
        self._cache: Dict[GuildID, ServerConfig] = {}
        self._lock = asyncio.Lock()

    async def get(self, guild_id: GuildID) -> ServerConfig:
        """Return the guild's configuration, loading defaults when none is stored."""
        guild_id = GuildID(guild_id)
        cached = self._cache.get(guild_id)
        if cached is not None:
            return cached

        async with self._connection.read() as conn:
            config = await ServerConfigRepo.get(conn, guild_id)
        if config is None:
            config = ServerConfig(guild_id=guild_id)
        self._cache[guild_id] = config
        return config

    async def get_moderator_role(self, guild_id: GuildID) -> RoleID | None:
        return (await self.get(guild_id)).moderator_role_id

    async def get_jail_role(self, guild_id: GuildID) -> RoleID | None:
        return (await self.get(guild_id)).jail_role_id

    async def get_jail_channel(self, guild_id: GuildID) -> ChannelID | None:
        return (await self.get(guild_id)).jail_channel_id

    async def set_moderator_role(self, guild_id: GuildID, role_id: RoleID | None) -> ServerConfig:
        return await self._update(guild_id, moderator_role_id=role_id)

    async def set_jail_role(self, guild_id: GuildID, role_id: RoleID | None) -> ServerConfig:
        return await self._update(guild_id, jail_role_id=role_id)

    async def set_jail_channel(self, guild_id: GuildID, channel_id: ChannelID | None) -> ServerConfig:
        return await self._update(guild_id, jail_channel_id=channel_id)

    async def _update(self, guild_id: GuildID, **changes) -> ServerConfig:
        async with self._lock:
            current = await self.get(guild_id)
            updated = ServerConfig(
                guild_id=current.guild_id,
                moderator_role_id=current.moderator_role_id,
                jail_role_id=current.jail_role_id,
                jail_channel_id=current.jail_channel_id,
            )
            for name, value in changes.items():
                setattr(updated, name, value)

            async with self._connection.transaction() as conn:
                await ServerConfigRepo.upsert(conn, updated)
            self._cache[updated.guild_id] = updated

        logger.info(
            "[SERVER CONFIG] Updated guild %s: %s",
            updated.guild_id,
            ", ".join(f"{k}={v}" for k, v in changes.items()),
        )
        return updated

    def invalidate(self, guild_id: GuildID | None = None) -> None:
        if guild_id is None:
            self._cache.clear()
        else:
            self._cache.pop(GuildID(guild_id), None)
