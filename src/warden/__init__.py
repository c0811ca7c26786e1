"""
Warden - community moderation bot core

Warden keeps a durable per-user moderation ledger for Discord guilds and
applies reversible punishments on top of it.

Core Components:

- **Permission Gate**: Decides whether an actor may perform an action on a
  target (platform permissions, moderator role, role hierarchy)
- **Moderation Ledger**: Append-only per-user history of every action
- **Jail Lifecycle**: Role backup and restore for jail/unjail
- **Reversal Scheduler**: Timers that lift temporary bans and jails, rebuilt
  from the ledger on startup
- **Persistent Roles**: Roles that survive a member leaving and rejoining

Usage:
    from warden.main import main
    main()
"""
