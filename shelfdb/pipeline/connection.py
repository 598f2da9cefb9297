"""
Connection Manager - first step of every pipeline invocation.

Opens a handle to a named database at its current version, creating the
database at version 1 if it does not exist yet.
"""

from __future__ import annotations

import logging

from ..config import PipelineConfig
from ..engine.base import EngineConnection, StorageEngine
from ..errors import ConnectionError, ShelfDbError
from ..observability import DebugLog

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Opens database connections through the storage engine.

    The returned connection is owned by the caller, which must close it
    exactly once.
    """

    def __init__(self, engine: StorageEngine, config: PipelineConfig | None = None) -> None:
        self.engine = engine
        self.config = config or PipelineConfig()
        self._log = DebugLog(logger, self.config.debug, component="connection")

    async def open_connection(self, database_name: str) -> EngineConnection:
        """Open ``database_name`` at its latest version.

        Raises:
            ConnectionError: If the engine reports any failure
        """
        self._log.debug("Opening database", extra={"database": database_name})
        try:
            connection = await self.engine.open(database_name)
        except ShelfDbError:
            raise
        except Exception as e:
            self._log.error("Open failed", extra={"database": database_name, "error": str(e)})
            raise ConnectionError(
                f"Failed to open database '{database_name}': {e}",
                database=database_name,
                cause=e,
            ) from e

        self._log.debug(
            "Database opened",
            extra={"database": database_name, "version": connection.version},
        )
        return connection
