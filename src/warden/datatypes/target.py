"""
Targets of moderation operations.

A command can point at a live guild member or at a bare account (for
example an account that already left, when banning by ID). Operations that
need live role data accept only :class:`MemberTarget`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

import discord

from warden.datatypes.discord_datatypes import UserID


@dataclass(frozen=True, slots=True)
class MemberTarget:
    """A guild member with a full profile (roles, top role, guild)."""

    member: discord.Member

    @property
    def user_id(self) -> UserID:
        return UserID(self.member.id)

    @property
    def display_name(self) -> str:
        return str(self.member)


@dataclass(frozen=True, slots=True)
class AccountTarget:
    """An account known only by ID and display name."""

    user_id: UserID
    display_name: str = "Unknown User"


Target = Union[MemberTarget, AccountTarget]


def target_from(value: discord.Member | discord.User | discord.abc.Snowflake) -> Target:
    """Wrap a py-cord user object in the matching target variant."""
    if isinstance(value, discord.Member):
        return MemberTarget(value)
    return AccountTarget(UserID(value.id), str(value))
