"""
Schema Upgrader - guarantees a collection exists before a transaction opens.

Creating a collection requires a version bump: the current connection is
released, the database is re-opened at ``version + 1`` and the collection is
created inside the engine's upgrade callback.

Invariants:
    - Ensuring an existing collection is a no-op (version unchanged)
    - The connection passed in is either returned unchanged or closed
    - Engine failures are surfaced, never swallowed

How to change safely:
    - Do not add retries here; retry policy belongs to callers
    - Keep the conflict re-check to a single presence check
"""

from __future__ import annotations

import logging

from ..config import PipelineConfig
from ..engine.base import (
    BlockedError,
    EngineConnection,
    StorageEngine,
    VersionConflictError,
)
from ..errors import ShelfDbError, UpgradeConflict, UpgradeError
from ..observability import DebugLog

logger = logging.getLogger(__name__)

KEY_PATH = "id"


class SchemaUpgrader:
    """Lazily creates collections through version-bump upgrades.

    Example:
        >>> upgrader = SchemaUpgrader(engine)
        >>> conn = await upgrader.ensure_collection(conn, "books")
        >>> conn.contains("books")
        True
    """

    def __init__(self, engine: StorageEngine, config: PipelineConfig | None = None) -> None:
        self.engine = engine
        self.config = config or PipelineConfig()
        self._log = DebugLog(logger, self.config.debug, component="upgrade")

    async def ensure_collection(
        self,
        connection: EngineConnection,
        collection_name: str,
    ) -> EngineConnection:
        """Return a connection on which ``collection_name`` exists.

        Args:
            connection: Open connection, owned by the caller
            collection_name: Collection to guarantee

        Returns:
            ``connection`` itself if the collection exists, otherwise a new
            connection at the bumped version (``connection`` is closed)

        Raises:
            UpgradeConflict: A concurrent upgrade moved the database and the
                collection is still missing
            UpgradeError: The engine rejected the version bump
        """
        log = self._log.bind(database=connection.name, collection=collection_name)

        if connection.contains(collection_name):
            log.debug("Collection already exists", extra={"version": connection.version})
            return connection

        database_name = connection.name
        old_version = connection.version
        new_version = old_version + 1
        log.debug("Creating collection", extra={"old_version": old_version, "new_version": new_version})
        connection.close()

        async def create(conn: EngineConnection, old: int, new: int) -> None:
            if not conn.contains(collection_name):
                await self.engine.create_collection(
                    conn, collection_name, key_path=KEY_PATH, auto_increment=True
                )

        try:
            upgraded = await self.engine.open(database_name, new_version, on_upgrade=create)
        except VersionConflictError as e:
            log.debug("Upgrade conflict", extra={"new_version": new_version})
            return await self._recheck(database_name, collection_name, old_version, new_version, e)
        except ShelfDbError:
            raise
        except Exception as e:
            reason = "blocked by open connections" if isinstance(e, BlockedError) else str(e)
            log.error("Upgrade failed", extra={"new_version": new_version, "error": str(e)})
            raise UpgradeError(
                f"Failed to upgrade '{database_name}' to version {new_version}: {reason}",
                database=database_name,
                old_version=old_version,
                new_version=new_version,
                cause=e,
            ) from e

        log.debug("Collection created", extra={"version": upgraded.version})
        return upgraded

    async def _recheck(
        self,
        database_name: str,
        collection_name: str,
        old_version: int,
        new_version: int,
        conflict: Exception,
    ) -> EngineConnection:
        try:
            connection = await self.engine.open(database_name)
        except Exception as e:
            raise UpgradeError(
                f"Failed to re-open '{database_name}' after upgrade conflict: {e}",
                database=database_name,
                old_version=old_version,
                new_version=new_version,
                cause=e,
            ) from e

        if connection.contains(collection_name):
            return connection

        connection.close()
        raise UpgradeConflict(
            f"Concurrent upgrade of '{database_name}' to version {new_version} "
            f"did not create collection '{collection_name}'",
            database=database_name,
            old_version=old_version,
            new_version=new_version,
            cause=conflict,
        ) from conflict
