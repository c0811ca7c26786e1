"""
Pytest configuration and fixtures for Warden tests.

The fakes below stand in for py-cord guild objects. They keep real state
(roles held, bans, members) so tests can assert on the outcome of an
operation instead of on mock call lists.
"""

import sys
from pathlib import Path
from types import SimpleNamespace

import pytest
import pytest_asyncio

# Add src directory to path so imports work
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

import discord  # noqa: E402

from warden.bot.service_container import build_services  # noqa: E402
from warden.database.database import Database  # noqa: E402
from warden.database.db_connection import ConnectionManager  # noqa: E402
from warden.datatypes.discord_datatypes import ChannelID, GuildID, RoleID  # noqa: E402

GUILD_ID = 1000
OWNER_ID = 1
MODERATOR_ID = 2
BOT_ID = 999
MEMBER_ID = 3

MODERATOR_ROLE_ID = 10
BOT_ROLE_ID = 11
MEMBER_ROLE_ID = 12
JAIL_ROLE_ID = 13
MANAGED_ROLE_ID = 14
HIGH_ROLE_ID = 15
JAIL_CHANNEL_ID = 500

ALL_PERMISSIONS = {
    "administrator": False,
    "manage_guild": False,
    "manage_roles": True,
    "kick_members": True,
    "ban_members": True,
}


def http_error(cls=discord.HTTPException, status=500, message="boom"):
    """Build a real py-cord HTTP exception without a live response."""
    return cls(SimpleNamespace(status=status, reason="Fake"), message)


class FakeRole:
    def __init__(self, role_id, name=None, position=1, managed=False):
        self.id = role_id
        self.name = name or f"role-{role_id}"
        self.position = position
        self.managed = managed

    @property
    def mention(self):
        return f"<@&{self.id}>"

    def __repr__(self):
        return f"FakeRole({self.id})"


class FakeUser:
    def __init__(self, user_id, name=None):
        self.id = user_id
        self.name = name or f"user{user_id}"

    def __str__(self):
        return self.name


class FakeMember:
    def __init__(self, member_id, guild, roles=(), name=None, permissions=None):
        self.id = member_id
        self.guild = guild
        self.name = name or f"user{member_id}"
        self.roles = [guild.default_role, *roles]
        self.guild_permissions = SimpleNamespace(**{**{k: False for k in ALL_PERMISSIONS}, **(permissions or {})})
        self.role_edits = []

    @property
    def top_role(self):
        return max(self.roles, key=lambda role: role.position)

    @property
    def role_ids(self):
        return [role.id for role in self.roles if role.id != self.guild.default_role.id]

    async def edit(self, *, roles, reason=None):
        self.role_edits.append((list(roles), reason))
        self.roles = [self.guild.default_role, *[r for r in roles if r.id != self.guild.default_role.id]]

    async def add_roles(self, *roles, reason=None):
        for role in roles:
            if role not in self.roles:
                self.roles.append(role)

    async def remove_roles(self, *roles, reason=None):
        self.roles = [r for r in self.roles if r not in roles]

    def __str__(self):
        return self.name


class FakeGuild:
    def __init__(self, guild_id=GUILD_ID, owner_id=OWNER_ID):
        self.id = guild_id
        self.owner_id = owner_id
        self.default_role = FakeRole(guild_id, "@everyone", position=0)
        self._roles = {guild_id: self.default_role}
        self._members = {}
        self.bans = {}
        self.kicked = []
        self.unbanned = []
        self.me = None

    def add_role(self, role):
        self._roles[role.id] = role
        return role

    def delete_role(self, role_id):
        self._roles.pop(role_id, None)

    def add_member(self, member):
        self._members[member.id] = member
        return member

    def remove_member(self, member_id):
        self._members.pop(member_id, None)

    def get_role(self, role_id):
        return self._roles.get(role_id)

    def get_member(self, member_id):
        return self._members.get(member_id)

    async def fetch_member(self, member_id):
        member = self._members.get(member_id)
        if member is None:
            raise http_error(discord.NotFound, 404, "Unknown Member")
        return member

    async def kick(self, member, reason=None):
        self.kicked.append((member.id, reason))
        self._members.pop(member.id, None)

    async def ban(self, user, reason=None, delete_message_seconds=0):
        self.bans[user.id] = SimpleNamespace(
            user=FakeUser(user.id),
            reason=reason,
            delete_message_seconds=delete_message_seconds,
        )
        self._members.pop(user.id, None)

    async def unban(self, user, reason=None):
        if user.id not in self.bans:
            raise http_error(discord.NotFound, 404, "Unknown Ban")
        del self.bans[user.id]
        self.unbanned.append((user.id, reason))

    async def fetch_ban(self, user):
        entry = self.bans.get(user.id)
        if entry is None:
            raise http_error(discord.NotFound, 404, "Unknown Ban")
        return entry


def build_guild():
    """A guild with an owner, a moderator, the bot and one regular member.

    Role positions: high 60, bot 50, moderator 20, member 5, jail 3.
    """
    guild = FakeGuild()
    roles = SimpleNamespace(
        moderator=guild.add_role(FakeRole(MODERATOR_ROLE_ID, "Moderator", position=20)),
        bot=guild.add_role(FakeRole(BOT_ROLE_ID, "Warden", position=50, managed=True)),
        member=guild.add_role(FakeRole(MEMBER_ROLE_ID, "Member", position=5)),
        jail=guild.add_role(FakeRole(JAIL_ROLE_ID, "Jailed", position=3)),
        managed=guild.add_role(FakeRole(MANAGED_ROLE_ID, "Booster", position=4, managed=True)),
        high=guild.add_role(FakeRole(HIGH_ROLE_ID, "Admin", position=60)),
    )
    owner = guild.add_member(FakeMember(OWNER_ID, guild, name="owner", permissions={"administrator": True}))
    moderator = guild.add_member(
        FakeMember(MODERATOR_ID, guild, [roles.moderator], name="mod", permissions=ALL_PERMISSIONS)
    )
    bot_member = guild.add_member(FakeMember(BOT_ID, guild, [roles.bot], name="warden", permissions=ALL_PERMISSIONS))
    member = guild.add_member(FakeMember(MEMBER_ID, guild, [roles.member, roles.managed], name="member"))
    guild.me = bot_member
    return SimpleNamespace(guild=guild, roles=roles, owner=owner, moderator=moderator, bot=bot_member, member=member)


@pytest.fixture
def world():
    return build_guild()


@pytest_asyncio.fixture
async def connection(tmp_path):
    """A fresh SQLite database with the schema applied."""
    manager = ConnectionManager()
    database = Database(tmp_path / "warden.db", connection=manager)
    assert await database.initialize()
    yield manager
    await database.shutdown()


@pytest.fixture
def test_config():
    return SimpleNamespace(
        permission_cache_ttl=300.0,
        permission_cache_max_entries=1000,
        max_jail_seconds=7 * 86400.0,
        max_tempban_seconds=30 * 86400.0,
        database_path=Path("unused.db"),
        default_reason="No reason provided",
    )


@pytest_asyncio.fixture
async def services(world, connection, test_config):
    """Fully wired services for the fake guild, with moderator role and jail configured."""
    bot = SimpleNamespace(get_guild=lambda guild_id: world.guild if guild_id == world.guild.id else None)
    built = build_services(bot, test_config, connection)
    guild_id = GuildID(GUILD_ID)
    await built.server_config.set_moderator_role(guild_id, RoleID(MODERATOR_ROLE_ID))
    await built.server_config.set_jail_role(guild_id, RoleID(JAIL_ROLE_ID))
    await built.server_config.set_jail_channel(guild_id, ChannelID(JAIL_CHANNEL_ID))
    yield built
    await built.shutdown()
