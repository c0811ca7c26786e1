from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from warden import main


class FakeBot:
    def __init__(self, *args, **kwargs) -> None:
        self.cogs = []
        self._closed = False
        self._close = AsyncMock()

    def is_closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        self._closed = True
        await self._close()

    def add_cog(self, cog) -> None:
        self.cogs.append(cog)


class FakeDatabase:
    def __init__(self, ok=True):
        self.ok = ok
        self.shutdown = AsyncMock()

    async def initialize(self) -> bool:
        return self.ok


@pytest.fixture
def patched_runtime(monkeypatch):
    database = FakeDatabase()
    monkeypatch.setattr(main, "load_environment", lambda: "token")
    monkeypatch.setattr(main, "Database", lambda path: database)
    bot, services = FakeBot(), SimpleNamespace(shutdown=AsyncMock())
    monkeypatch.setattr(main, "create_bot", lambda: (bot, services))
    shutdown_mock = AsyncMock()
    monkeypatch.setattr(main, "shutdown_runtime", shutdown_mock)
    return SimpleNamespace(database=database, bot=bot, services=services, shutdown=shutdown_mock)


@pytest.mark.asyncio
async def test_async_main_runs_bot_and_shuts_down(monkeypatch, patched_runtime):
    start_bot_mock = AsyncMock()
    monkeypatch.setattr(main, "start_bot", start_bot_mock)

    assert await main.async_main() == 0

    start_bot_mock.assert_awaited_once_with(patched_runtime.bot, "token")
    patched_runtime.shutdown.assert_awaited_once_with(
        patched_runtime.bot, patched_runtime.services, patched_runtime.database
    )


@pytest.mark.asyncio
async def test_async_main_reports_runtime_error(monkeypatch, patched_runtime):
    monkeypatch.setattr(main, "start_bot", AsyncMock(side_effect=RuntimeError("gateway")))

    assert await main.async_main() == 1
    patched_runtime.shutdown.assert_awaited_once()


@pytest.mark.asyncio
async def test_async_main_stops_when_database_fails(monkeypatch, patched_runtime):
    patched_runtime.database.ok = False
    start_bot_mock = AsyncMock()
    monkeypatch.setattr(main, "start_bot", start_bot_mock)

    assert await main.async_main() == 1
    start_bot_mock.assert_not_awaited()


@pytest.mark.asyncio
async def test_shutdown_runtime_continues_after_close_failure():
    bot = FakeBot()
    bot._close.side_effect = RuntimeError("socket")
    services = SimpleNamespace(shutdown=AsyncMock())
    database = FakeDatabase()

    await main.shutdown_runtime(bot, services, database)

    services.shutdown.assert_awaited_once()
    database.shutdown.assert_awaited_once()


@pytest.mark.asyncio
async def test_start_bot_swallows_cancellation():
    bot = SimpleNamespace(start=AsyncMock(side_effect=main.asyncio.CancelledError()))
    await main.start_bot(bot, "token")
    bot.start.assert_awaited_once_with("token")


def test_load_environment_requires_token(monkeypatch):
    monkeypatch.setattr(main, "load_dotenv", lambda dotenv_path=None: None)
    monkeypatch.delenv("DISCORD_BOT_TOKEN", raising=False)
    with pytest.raises(SystemExit):
        main.load_environment()

    monkeypatch.setenv("DISCORD_BOT_TOKEN", "abc")
    assert main.load_environment() == "abc"


def test_build_intents_enables_member_events():
    intents = main.build_intents()
    assert intents.members and intents.guilds


@pytest.mark.asyncio
async def test_load_cogs_registers_every_cog(services):
    bot = FakeBot()
    main.load_cogs(bot, services)
    assert [type(cog).__name__ for cog in bot.cogs] == [
        "EventsListenerCog",
        "ModerationActionCog",
        "PersistentRoleCog",
        "ServerSettingsCog",
    ]


def test_main_translates_system_exit(monkeypatch):
    monkeypatch.setattr(main, "async_main", lambda: None)
    monkeypatch.setattr(main, "asyncio", SimpleNamespace(run=MagicMock(side_effect=SystemExit(3))))
    assert main.main() == 3

    monkeypatch.setattr(main, "asyncio", SimpleNamespace(run=MagicMock(side_effect=KeyboardInterrupt())))
    assert main.main() == 0


def test_resolve_base_dir_prefers_env(monkeypatch, tmp_path):
    monkeypatch.setenv("WARDEN_HOME", str(tmp_path))
    assert main.resolve_base_dir() == tmp_path.resolve()
