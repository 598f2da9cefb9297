"""
shelfdb client - the caller-facing surface.

This module provides:
- ShelfDb: a named database over a storage engine
- Collection: put / get / get_all on one named collection

Example:
    >>> async with ShelfDb("library") as db:
    ...     books = db.collection("books")
    ...     keys = await books.put([{"title": "Dune"}, {"title": "Emma"}])
    ...     first = await books.get(keys[0])

Invariants:
    - Every call runs its own open -> upgrade -> transaction -> operation
      pipeline; no handle outlives the call that opened it
    - Invalid arguments are rejected before any connection is opened
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional, Sequence, TypeVar, Union

from .config import ShelfConfig
from .engine.base import Key, Query, StorageEngine, TransactionMode, create_engine
from .errors import InvalidArgument, OperationTimeout
from .pipeline import operations
from .pipeline.broker import TransactionHandle
from .pipeline.operations import GetAllOptions
from .pipeline.runner import Pipeline

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Collection:
    """CRUD access to one named collection.

    The collection is created on the first call that targets it.
    """

    def __init__(self, db: ShelfDb, name: str) -> None:
        self._db = db
        self.name = name

    async def put(self, data: Union[dict, Sequence[dict]]) -> Union[Key, List[Key]]:
        """Write a record (returns its key) or a list of records (returns the keys).

        Raises:
            InvalidArgument: ``data`` is not a mapping or a list of mappings
            BatchError: Some records of a list failed; the others are written
        """
        operations.validate_put_data(data)
        return await self._db._run(
            self.name,
            TransactionMode.READ_WRITE,
            lambda handle: operations.put(data, handle),
        )

    async def get(self, id: Union[Key, Sequence[Key]]) -> Any:
        """Read a record by key, or a list of records by a list of keys.

        Missing keys come back as None.

        Raises:
            InvalidArgument: ``id`` is not an integer key or a list of them
        """
        operations.validate_get_id(id)
        return await self._db._run(
            self.name,
            TransactionMode.READ_ONLY,
            lambda handle: operations.get(id, handle),
        )

    async def get_all(self, query: Query = None, count: Optional[int] = None) -> List[dict]:
        """Records in primary key order, optionally filtered and limited.

        Args:
            query: Key or KeyRange to match
            count: Maximum number of records
        """
        options = GetAllOptions(query=query, count=count)
        operations.validate_get_all_options(options)
        return await self._db._run(
            self.name,
            TransactionMode.READ_ONLY,
            lambda handle: operations.get_all(options, handle),
        )

    def __repr__(self) -> str:
        return f"Collection({self._db.name!r}, {self.name!r})"


class ShelfDb:
    """A named database.

    Without an explicit engine one is built from ``config`` (in-memory by
    default) and closed together with this object.

    Attributes:
        name: Database name
        config: Effective configuration
        engine: Storage engine in use
        pipeline: Pipeline shared by all collections of this database
    """

    def __init__(
        self,
        name: str,
        *,
        engine: StorageEngine | None = None,
        config: ShelfConfig | None = None,
    ) -> None:
        if not isinstance(name, str) or not name:
            raise InvalidArgument("Database name must be a non-empty string", argument="name", value=name)
        self.name = name
        self.config = config or ShelfConfig()
        self._owns_engine = engine is None
        self.engine = engine if engine is not None else create_engine(self.config)
        self.pipeline = Pipeline(self.engine, self.config.pipeline)

    def collection(self, name: str) -> Collection:
        """Access a collection by name."""
        if not isinstance(name, str) or not name:
            raise InvalidArgument("Collection name must be a non-empty string", argument="name", value=name)
        return Collection(self, name)

    async def _run(
        self,
        collection_name: str,
        mode: TransactionMode,
        operation: Callable[[TransactionHandle], Awaitable[T]],
    ) -> T:
        async def invoke() -> T:
            async with self.pipeline.transaction(self.name, collection_name, mode) as handle:
                return await operation(handle)

        timeout = self.config.pipeline.operation_timeout
        if timeout is None:
            return await invoke()
        try:
            return await asyncio.wait_for(invoke(), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise OperationTimeout(
                f"Operation on '{self.name}.{collection_name}' exceeded {self.config.pipeline.operation_timeout_ms}ms",
                timeout_ms=self.config.pipeline.operation_timeout_ms,
            ) from e

    async def version(self) -> int:
        """Current version of the database (opens it if absent)."""
        connection = await self.pipeline.connections.open_connection(self.name)
        try:
            return connection.version
        finally:
            connection.close()

    async def collection_names(self) -> List[str]:
        """Names of the collections that exist in the database."""
        connection = await self.pipeline.connections.open_connection(self.name)
        try:
            return sorted(connection.collection_names)
        finally:
            connection.close()

    async def delete(self) -> None:
        """Irreversibly delete the database.

        Raises:
            DeletionError: Other connections stayed open
        """
        await operations.delete_database(self.engine, self.name)
        logger.info(f"Database deleted: {self.name}")

    async def close(self) -> None:
        """Close the engine if this object created it."""
        if self._owns_engine:
            await self.engine.close()

    async def __aenter__(self) -> ShelfDb:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"ShelfDb({self.name!r}, engine={type(self.engine).__name__})"
