"""
Per-guild moderation configuration.

Database schema:
- server_config table with columns: guild_id, moderator_role_id,
  jail_role_id, jail_channel_id
"""
from dataclasses import dataclass
from typing import List

from warden.datatypes.discord_datatypes import ChannelID, GuildID, RoleID


@dataclass(slots=True)
class ServerConfig:
    """Persistent per-guild configuration values."""

    guild_id: GuildID
    moderator_role_id: RoleID | None = None
    jail_role_id: RoleID | None = None
    jail_channel_id: ChannelID | None = None

    def missing_jail_settings(self) -> List[str]:
        """Return the names of jail settings that are not configured yet."""
        missing = []
        if self.jail_role_id is None:
            missing.append("jail role")
        if self.jail_channel_id is None:
            missing.append("jail channel")
        return missing

    def jail_configured(self) -> bool:
        return not self.missing_jail_settings()
