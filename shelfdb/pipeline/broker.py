"""
Transaction Broker - opens a transaction scoped to one collection.

The handle it returns carries everything the Operation Layer needs: the
bound collection accessor, the raw transaction and the owning connection.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from ..config import PipelineConfig
from ..engine.base import (
    CollectionAccessor,
    EngineConnection,
    EngineTransaction,
    StorageEngine,
    TransactionMode,
)
from ..errors import ShelfDbError, TransactionError
from ..observability import DebugLog

logger = logging.getLogger(__name__)


@dataclass
class TransactionHandle:
    """Transaction bound to one collection, plus the connection that owns it.

    Attributes:
        store: Collection accessor bound to the transaction
        transaction: Raw engine transaction
        connection: Connection to close when the operation finishes
        collection_name: Collection the transaction is scoped to
        mode: Access mode
    """

    store: CollectionAccessor
    transaction: EngineTransaction
    connection: EngineConnection
    collection_name: str
    mode: TransactionMode
    _released: bool = field(default=False, repr=False)

    @property
    def released(self) -> bool:
        return self._released

    async def release(self) -> None:
        """Wait for the transaction to complete, then close the connection.

        Safe to call more than once.
        """
        if self._released:
            return
        self._released = True
        try:
            if self.transaction.active:
                await self.transaction.commit()
        finally:
            self.connection.close()

    def abandon(self) -> None:
        """Abort the transaction and close the connection without suspending."""
        if self._released:
            return
        self._released = True
        try:
            self.transaction.abort()
        finally:
            self.connection.close()


class TransactionBroker:
    """Opens read-only or read-write transactions on upgraded connections."""

    def __init__(self, engine: StorageEngine, config: PipelineConfig | None = None) -> None:
        self.engine = engine
        self.config = config or PipelineConfig()
        self._log = DebugLog(logger, self.config.debug, component="broker")

    async def open_transaction(
        self,
        mode: TransactionMode,
        connection: EngineConnection,
        collection_name: str,
    ) -> TransactionHandle:
        """Open a transaction on ``collection_name``.

        The connection stays owned by the caller if this fails.

        Raises:
            TransactionError: Collection absent or connection closed
        """
        extra = {
            "database": connection.name,
            "collection": collection_name,
            "mode": mode.value,
        }
        self._log.debug("Opening transaction", extra=extra)
        try:
            transaction = await self.engine.begin_transaction(connection, collection_name, mode)
            store = transaction.collection(collection_name)
        except ShelfDbError:
            raise
        except Exception as e:
            self._log.error("Transaction failed", extra={**extra, "error": str(e)})
            raise TransactionError(
                f"Failed to open {mode.value} transaction on '{collection_name}': {e}",
                collection=collection_name,
                mode=mode.value,
                cause=e,
            ) from e

        return TransactionHandle(
            store=store,
            transaction=transaction,
            connection=connection,
            collection_name=collection_name,
            mode=mode,
        )
