"""
Pipeline runner - chains the four components for one invocation.

Connection Manager -> Schema Upgrader -> Transaction Broker -> Operation.
Each step starts only after its predecessor resolved, and every invocation
starts from scratch; nothing is cached between calls.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from ..config import PipelineConfig
from ..engine.base import StorageEngine, TransactionMode
from .broker import TransactionBroker, TransactionHandle
from .connection import ConnectionManager
from .upgrade import SchemaUpgrader

logger = logging.getLogger(__name__)


class Pipeline:
    """Open -> upgrade -> transaction sequence over one engine.

    Example:
        >>> pipeline = Pipeline(engine, PipelineConfig(debug=True))
        >>> async with pipeline.transaction("library", "books", TransactionMode.READ_WRITE) as handle:
        ...     key = await operations.put({"title": "Dune"}, handle)
    """

    def __init__(self, engine: StorageEngine, config: PipelineConfig | None = None) -> None:
        self.engine = engine
        self.config = config or PipelineConfig()
        self.connections = ConnectionManager(engine, self.config)
        self.upgrader = SchemaUpgrader(engine, self.config)
        self.broker = TransactionBroker(engine, self.config)

    @asynccontextmanager
    async def transaction(
        self,
        database_name: str,
        collection_name: str,
        mode: TransactionMode,
    ) -> AsyncIterator[TransactionHandle]:
        """Yield a transaction handle on ``collection_name``.

        The connection is released on every exit path: normal completion,
        a failure in any step, or cancellation.
        """
        connection = await self.connections.open_connection(database_name)
        try:
            connection = await self.upgrader.ensure_collection(connection, collection_name)
            handle = await self.broker.open_transaction(mode, connection, collection_name)
        except BaseException:
            connection.close()
            raise

        try:
            yield handle
        finally:
            handle.abandon()
