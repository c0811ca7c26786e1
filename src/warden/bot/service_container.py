"""
Wiring of the moderation core for one bot instance.

All components are owned by a :class:`Services` object instead of living
as module-level singletons, so tests and the bot each get their own
scheduler and caches.
"""

from __future__ import annotations

from dataclasses import dataclass

import discord

from warden.configuration.app_configuration import AppConfig
from warden.configuration.server_config import ServerConfigManager
from warden.database.db_connection import ConnectionManager, db_connection
from warden.moderation.jail_manager import JailLifecycleManager
from warden.moderation.member_directory import directory_provider
from warden.moderation.moderation_ledger import ModerationLedger
from warden.moderation.permission_gate import PermissionGate
from warden.scheduler.reversal_scheduler import ReversalScheduler
from warden.services.moderation_service import ModerationService
from warden.services.role_service import PersistentRoleService
from warden.services.user_store import UserStore


@dataclass
class Services:
    server_config: ServerConfigManager
    user_store: UserStore
    ledger: ModerationLedger
    gate: PermissionGate
    scheduler: ReversalScheduler
    jail_manager: JailLifecycleManager
    moderation: ModerationService
    roles: PersistentRoleService

    async def shutdown(self) -> None:
        await self.scheduler.shutdown()


def build_services(
    bot: discord.Client,
    config: AppConfig,
    connection: ConnectionManager = db_connection,
) -> Services:
    directories = directory_provider(bot)
    server_config = ServerConfigManager(connection)
    user_store = UserStore(connection)
    ledger = ModerationLedger(user_store)
    gate = PermissionGate(
        server_config,
        cache_ttl=config.permission_cache_ttl,
        cache_max_entries=config.permission_cache_max_entries,
    )
    scheduler = ReversalScheduler(ledger)
    jail_manager = JailLifecycleManager(
        ledger, server_config, scheduler, directories, max_jail_seconds=config.max_jail_seconds
    )
    moderation = ModerationService(
        ledger, gate, jail_manager, scheduler, directories, max_tempban_seconds=config.max_tempban_seconds
    )
    return Services(
        server_config=server_config,
        user_store=user_store,
        ledger=ledger,
        gate=gate,
        scheduler=scheduler,
        jail_manager=jail_manager,
        moderation=moderation,
        roles=PersistentRoleService(user_store),
    )
