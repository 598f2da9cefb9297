"""
In-memory storage engine for testing.

This module provides a dict-backed engine for:
- Unit tests
- Integration tests
- Local development without touching the filesystem

Invariants:
    - All data is lost on process exit
    - Provides the same version and key-generation semantics as SqliteEngine
    - Stored values are deep copies; callers never share state with the store

How to change safely:
    - Keep behavior compatible with SqliteEngine
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .base import (
    BaseEngine,
    CollectionAccessor,
    EngineConnection,
    EngineTransaction,
    Key,
    Query,
    query_matches,
)

logger = logging.getLogger(__name__)


@dataclass
class InMemoryCollection:
    """In-memory collection storage."""

    key_path: str = "id"
    auto_increment: bool = True
    records: Dict[Key, Dict[str, Any]] = field(default_factory=dict)
    current_key: int = 0


@dataclass
class InMemoryDatabase:
    """In-memory database storage."""

    version: int = 0
    collections: Dict[str, InMemoryCollection] = field(default_factory=dict)


class InMemoryAccessor(CollectionAccessor):
    """Collection accessor over an InMemoryCollection."""

    def __init__(self, transaction: EngineTransaction, name: str, store: InMemoryCollection) -> None:
        super().__init__(transaction, name, store.key_path)
        self._store = store

    async def _do_put(self, key: Optional[Key], value: Dict[str, Any]) -> Key:
        await asyncio.sleep(0)
        if key is None:
            key = self._store.current_key + 1
        self._store.current_key = max(self._store.current_key, key)
        self._store.records[key] = copy.deepcopy(value)
        return key

    async def _do_get(self, key: Key) -> Optional[Dict[str, Any]]:
        await asyncio.sleep(0)
        value = self._store.records.get(key)
        if value is None:
            return None
        return self._with_key(key, copy.deepcopy(value))

    async def _do_get_all(self, query: Query, count: Optional[int]) -> List[Dict[str, Any]]:
        await asyncio.sleep(0)
        results = []
        for key in sorted(self._store.records):
            if count is not None and len(results) >= count:
                break
            if query_matches(query, key):
                results.append(self._with_key(key, copy.deepcopy(self._store.records[key])))
        return results


class InMemoryEngine(BaseEngine):
    """In-memory implementation of StorageEngine for testing.

    Thread safety:
        Uses asyncio locks for upgrades and deletions. Safe to use from
        multiple coroutines on one event loop.

    Example:
        >>> engine = InMemoryEngine()
        >>> conn = await engine.open("library")
        >>> conn.version
        1
    """

    def __init__(self, blocked_timeout: float = 5.0) -> None:
        super().__init__(blocked_timeout=blocked_timeout)
        self._databases: Dict[str, InMemoryDatabase] = {}
        # collections added by an upgrade that has not committed yet
        self._pending: Dict[int, List[str]] = {}

    async def _stored_version(self, name: str) -> Optional[int]:
        db = self._databases.get(name)
        return db.version if db is not None else None

    async def _connect(self, name: str) -> EngineConnection:
        db = self._databases[name]
        return EngineConnection(name, db.version, set(db.collections))

    async def _begin_upgrade(self, name: str, old: int, new: int) -> EngineConnection:
        db = self._databases.setdefault(name, InMemoryDatabase())
        connection = EngineConnection(name, old, set(db.collections))
        self._pending[id(connection)] = []
        return connection

    async def _commit_upgrade(self, connection: EngineConnection, new: int) -> None:
        self._databases[connection.name].version = new
        self._pending.pop(id(connection), None)

    async def _abort_upgrade(self, connection: EngineConnection, old: int) -> None:
        db = self._databases.get(connection.name)
        added = self._pending.pop(id(connection), [])
        if db is None:
            return
        if old == 0:
            del self._databases[connection.name]
            return
        for name in added:
            db.collections.pop(name, None)

    async def _create_collection(
        self,
        connection: EngineConnection,
        name: str,
        key_path: str,
        auto_increment: bool,
    ) -> None:
        db = self._databases[connection.name]
        db.collections[name] = InMemoryCollection(key_path=key_path, auto_increment=auto_increment)
        self._pending.setdefault(id(connection), []).append(name)

    def _accessor(self, transaction: EngineTransaction, name: str) -> CollectionAccessor:
        db = self._databases[transaction.connection.name]
        return InMemoryAccessor(transaction, name, db.collections[name])

    async def _drop(self, name: str) -> None:
        self._databases.pop(name, None)

    async def close(self) -> None:
        """Clear all data."""
        self._databases.clear()
        self._pending.clear()
        logger.debug("InMemoryEngine closed")

    # Testing helpers

    def database_names(self) -> List[str]:
        """Names of all existing databases (testing helper)."""
        return sorted(self._databases)

    def version_of(self, name: str) -> Optional[int]:
        """Stored version of a database (testing helper)."""
        db = self._databases.get(name)
        return db.version if db is not None else None

    def record_count(self, database: str, collection: str) -> int:
        """Number of records in a collection (testing helper)."""
        db = self._databases.get(database)
        if db is None or collection not in db.collections:
            return 0
        return len(db.collections[collection].records)
