"""
Database lifecycle coordination.

Opens the shared connection and applies the schema at startup, and closes
it at shutdown. Repositories and stores use ``db_connection`` directly.
"""

from __future__ import annotations

from pathlib import Path

from warden.database.db_connection import db_connection, ConnectionManager
from warden.database.db_schema import SchemaManager
from warden.util.logger import get_logger

logger = get_logger("database")


class Database:
    """
    Lifecycle:
        1. ``await initialize()`` at program startup
        2. Use repositories and stores
        3. ``await shutdown()`` at program end
    """

    def __init__(self, db_path: Path, connection: ConnectionManager = db_connection):
        self.db_path = Path(db_path)
        self._connection = connection
        self._initialized = False

    async def initialize(self) -> bool:
        """Open the connection and create the schema. Returns False on failure."""
        if self._initialized:
            logger.debug("[DATABASE] Already initialized, skipping")
            return True

        try:
            await self._connection.open(self.db_path)
            async with self._connection.transaction() as conn:
                await SchemaManager.initialize_schema(conn)
            self._initialized = True
            logger.info("[DATABASE] Database initialized at %s", self.db_path)
            return True
        except Exception as e:
            logger.error("[DATABASE] Database initialization failed: %s", e)
            await self._connection.close()
            return False

    async def shutdown(self) -> None:
        if not self._initialized:
            return
        await self._connection.close()
        self._initialized = False
        logger.info("[DATABASE] Database shutdown complete")
