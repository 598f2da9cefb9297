"""
Base protocol and types for the storage engine abstraction.

This module defines the StorageEngine protocol that the pipeline consumes,
the handle types every backend hands out (connection, transaction, collection
accessor), the native errors backends raise, and BaseEngine, which implements
version negotiation and connection tracking once for all backends.

Invariants:
    - A database is created on first open at version 1
    - A version bump runs the upgrade callback exactly once, under a
      per-database lock, after every other connection has closed
    - Collections can only be created inside an upgrade callback
    - connection.close() is idempotent
    - Each completed put/get is durable on its own (no rollback on abort)

How to change safely:
    - Protocol changes require updating all backends
    - Backends raise the native errors below; classification into
      ShelfDbError kinds happens in the pipeline, not here
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from abc import abstractmethod
from collections import defaultdict
from collections.abc import Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
    Set,
    Union,
    TYPE_CHECKING,
    runtime_checkable,
)

from ..errors import InvalidArgument

if TYPE_CHECKING:
    from ..config import ShelfConfig

logger = logging.getLogger(__name__)


class StorageEngineError(Exception):
    """Base exception for native engine failures."""

    pass


class BlockedError(StorageEngineError):
    """Other connections stayed open past the blocked timeout."""

    pass


class VersionError(StorageEngineError):
    """Requested version is lower than the stored version."""

    pass


class VersionConflictError(StorageEngineError):
    """An upgrade was requested but the database already reached that version."""

    pass


class UpgradeAbortedError(StorageEngineError):
    """The upgrade callback raised; the version bump was rolled back."""

    pass


class InvalidStateError(StorageEngineError):
    """Handle used outside the state it is valid in."""

    pass


class ClosedConnectionError(InvalidStateError):
    """Connection has already been closed."""

    pass


class InactiveTransactionError(InvalidStateError):
    """Transaction has already completed or aborted."""

    pass


class ReadOnlyError(StorageEngineError):
    """Write attempted in a read-only transaction."""

    pass


class UnknownCollectionError(StorageEngineError):
    """Collection does not exist in the database."""

    pass


class DataError(StorageEngineError):
    """Record or key cannot be stored."""

    pass


class TransactionMode(Enum):
    """Transaction access modes."""

    READ_ONLY = "readonly"
    READ_WRITE = "readwrite"


Key = int


@dataclass(frozen=True)
class KeyRange:
    """Primary key range predicate for get_all queries.

    Attributes:
        lower: Lower bound (None = unbounded)
        upper: Upper bound (None = unbounded)
        lower_open: Exclude the lower bound itself
        upper_open: Exclude the upper bound itself

    Example:
        >>> KeyRange.bound(2, 5, upper_open=True).includes(5)
        False
    """

    lower: Optional[Key] = None
    upper: Optional[Key] = None
    lower_open: bool = False
    upper_open: bool = False

    def __post_init__(self) -> None:
        for bound in (self.lower, self.upper):
            if bound is not None and not is_valid_key(bound):
                raise InvalidArgument(
                    f"Key range bounds must be integers, got {type(bound).__name__}",
                    argument="query",
                    value=bound,
                )

    @classmethod
    def only(cls, key: Key) -> KeyRange:
        return cls(lower=key, upper=key)

    @classmethod
    def lower_bound(cls, key: Key, open: bool = False) -> KeyRange:
        return cls(lower=key, lower_open=open)

    @classmethod
    def upper_bound(cls, key: Key, open: bool = False) -> KeyRange:
        return cls(upper=key, upper_open=open)

    @classmethod
    def bound(
        cls,
        lower: Key,
        upper: Key,
        lower_open: bool = False,
        upper_open: bool = False,
    ) -> KeyRange:
        """Range between two keys.

        Raises:
            InvalidArgument: If a bound is not an integer key, lower > upper,
                or lower == upper with an open end
        """
        if lower is None or upper is None:
            raise InvalidArgument("bound() needs both a lower and an upper key", argument="query")
        key_range = cls(lower=lower, upper=upper, lower_open=lower_open, upper_open=upper_open)
        if lower > upper or (lower == upper and (lower_open or upper_open)):
            raise InvalidArgument(f"Empty key range: {lower}..{upper}", argument="query")
        return key_range

    def includes(self, key: Key) -> bool:
        if self.lower is not None:
            if key < self.lower or (self.lower_open and key == self.lower):
                return False
        if self.upper is not None:
            if key > self.upper or (self.upper_open and key == self.upper):
                return False
        return True


Query = Union[Key, KeyRange, None]


def query_matches(query: Query, key: Key) -> bool:
    """Whether a primary key satisfies a get_all query."""
    if query is None:
        return True
    if isinstance(query, KeyRange):
        return query.includes(key)
    return key == query


def is_valid_key(key: Any) -> bool:
    # bool is an int subclass but never a valid key
    return isinstance(key, int) and not isinstance(key, bool)


class ConnectionTracker:
    """Per-database bookkeeping of open connections and upgrade locks.

    Upgrades and deletions take the database lock and then wait until no
    connection is open. Plain opens take the same lock, so they queue behind
    a pending upgrade instead of starving it.

    Entries for a database are dropped once it has no open connection and no
    coroutine holds or waits for its lock.
    """

    def __init__(self) -> None:
        self._open: Dict[str, int] = defaultdict(int)
        self._idle: Dict[str, asyncio.Event] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = defaultdict(int)

    def __contains__(self, name: str) -> bool:
        return name in self._open or name in self._locks or name in self._idle

    @asynccontextmanager
    async def hold(self, name: str) -> AsyncIterator[None]:
        """Hold the lock of ``name`` for the duration of the block."""
        self._users[name] += 1
        try:
            if name not in self._locks:
                self._locks[name] = asyncio.Lock()
            async with self._locks[name]:
                yield
        finally:
            self._users[name] -= 1
            self._prune(name)

    def _prune(self, name: str) -> None:
        if self._users.get(name, 0) > 0 or self._open.get(name, 0) > 0:
            return
        self._users.pop(name, None)
        self._open.pop(name, None)
        self._idle.pop(name, None)
        self._locks.pop(name, None)

    def _event(self, name: str) -> asyncio.Event:
        if name not in self._idle:
            event = asyncio.Event()
            if self._open[name] == 0:
                event.set()
            self._idle[name] = event
        return self._idle[name]

    def acquire(self, name: str) -> None:
        self._open[name] += 1
        self._event(name).clear()

    def release(self, name: str) -> None:
        self._open[name] -= 1
        if self._open[name] <= 0:
            self._open[name] = 0
            self._event(name).set()
            self._prune(name)

    def count(self, name: Optional[str] = None) -> int:
        if name is None:
            return sum(self._open.values())
        return self._open.get(name, 0)

    async def wait_idle(self, name: str, timeout: float) -> None:
        """Wait until no connection to ``name`` is open.

        Raises:
            BlockedError: If connections are still open after ``timeout``
        """
        if self.count(name) == 0:
            return
        try:
            await asyncio.wait_for(self._event(name).wait(), timeout=timeout)
        except asyncio.TimeoutError:
            raise BlockedError(
                f"Database '{name}' blocked by {self.count(name)} open connection(s)"
            )


class EngineConnection:
    """Live handle to a database at a specific version.

    Attributes:
        name: Database name
        version: Version the connection was opened at
        collection_names: Collections present at that version
        upgrading: True only while the upgrade callback runs
    """

    def __init__(
        self,
        name: str,
        version: int,
        collection_names: Set[str],
        on_close: Optional[Callable[[EngineConnection], None]] = None,
    ) -> None:
        self.name = name
        self.version = version
        self.collection_names = set(collection_names)
        self.upgrading = False
        self._closed = False
        self._on_close = on_close

    @property
    def closed(self) -> bool:
        return self._closed

    def contains(self, collection_name: str) -> bool:
        return collection_name in self.collection_names

    def close(self) -> None:
        """Release the handle. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        if self._on_close is not None:
            self._on_close(self)

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"EngineConnection({self.name!r}, version={self.version}, {state})"


class CollectionAccessor:
    """Collection bound to one transaction.

    Subclasses implement the _do_* methods; this class enforces transaction
    state, access mode and key rules.
    """

    def __init__(self, transaction: EngineTransaction, name: str, key_path: str) -> None:
        self.transaction = transaction
        self.name = name
        self.key_path = key_path

    def _check_active(self) -> None:
        if not self.transaction.active:
            raise InactiveTransactionError(f"Transaction on '{self.name}' is no longer active")
        if self.transaction.connection.closed:
            raise ClosedConnectionError(f"Connection to '{self.transaction.connection.name}' is closed")

    async def put(self, record: Mapping[str, Any]) -> Key:
        """Insert or overwrite a record; returns its primary key."""
        self._check_active()
        if self.transaction.mode is not TransactionMode.READ_WRITE:
            raise ReadOnlyError(f"Cannot write to '{self.name}' in a read-only transaction")
        if not isinstance(record, Mapping):
            raise DataError(f"Record must be a mapping, got {type(record).__name__}")
        key = record.get(self.key_path)
        if key is not None and not is_valid_key(key):
            raise DataError(f"Key '{self.key_path}' must be an integer, got {type(key).__name__}")
        value = {k: v for k, v in record.items() if k != self.key_path}
        return await self._do_put(key, value)

    async def get(self, key: Key) -> Optional[Dict[str, Any]]:
        """Record stored under ``key`` or None."""
        self._check_active()
        return await self._do_get(key)

    async def get_all(self, query: Query = None, count: Optional[int] = None) -> List[Dict[str, Any]]:
        """Records matching ``query`` in primary key order, at most ``count``."""
        self._check_active()
        return await self._do_get_all(query, count)

    def _with_key(self, key: Key, value: Dict[str, Any]) -> Dict[str, Any]:
        record = dict(value)
        record[self.key_path] = key
        return record

    @abstractmethod
    async def _do_put(self, key: Optional[Key], value: Dict[str, Any]) -> Key:
        ...

    @abstractmethod
    async def _do_get(self, key: Key) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def _do_get_all(self, query: Query, count: Optional[int]) -> List[Dict[str, Any]]:
        ...


class EngineTransaction:
    """Transaction scoped to one connection, one mode and one collection."""

    def __init__(
        self,
        connection: EngineConnection,
        collection_name: str,
        mode: TransactionMode,
        accessor_factory: Callable[[EngineTransaction, str], CollectionAccessor],
    ) -> None:
        self.connection = connection
        self.collection_name = collection_name
        self.mode = mode
        self._accessor_factory = accessor_factory
        self._state = "active"

    @property
    def active(self) -> bool:
        return self._state == "active"

    @property
    def state(self) -> str:
        return self._state

    def collection(self, name: str) -> CollectionAccessor:
        if name != self.collection_name:
            raise UnknownCollectionError(
                f"Collection '{name}' is not in the scope of this transaction"
            )
        return self._accessor_factory(self, name)

    async def commit(self) -> None:
        """Resolve once the transaction is complete."""
        if not self.active:
            raise InactiveTransactionError(f"Transaction already {self._state}")
        await asyncio.sleep(0)
        self._state = "committed"

    def abort(self) -> None:
        if self.active:
            self._state = "aborted"


UpgradeCallback = Callable[[EngineConnection, int, int], Union[None, Awaitable[None]]]


@runtime_checkable
class StorageEngine(Protocol):
    """Capability interface the pipeline consumes.

    Example:
        >>> engine = InMemoryEngine()
        >>> conn = await engine.open("library")
        >>> conn.version
        1
    """

    @abstractmethod
    async def open(
        self,
        name: str,
        version: Optional[int] = None,
        on_upgrade: Optional[UpgradeCallback] = None,
    ) -> EngineConnection:
        """Open a database, creating it at version 1 if absent.

        With ``version`` greater than the stored one the upgrade callback runs
        before the connection is returned.

        Raises:
            BlockedError: Upgrade waited too long for other connections
            VersionError: ``version`` is lower than the stored version
            VersionConflictError: ``on_upgrade`` given but the database
                already reached ``version``
            UpgradeAbortedError: The callback raised
        """
        ...

    @abstractmethod
    async def create_collection(
        self,
        connection: EngineConnection,
        name: str,
        key_path: str = "id",
        auto_increment: bool = True,
    ) -> None:
        """Create a collection. Only valid inside an upgrade callback."""
        ...

    @abstractmethod
    async def begin_transaction(
        self,
        connection: EngineConnection,
        collection_name: str,
        mode: TransactionMode,
    ) -> EngineTransaction:
        """Open a transaction on one collection."""
        ...

    @abstractmethod
    async def delete_database(self, name: str) -> None:
        """Remove a database and all of its collections."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release engine resources."""
        ...


class BaseEngine:
    """Version negotiation shared by all backends.

    Backends implement the storage hooks (_stored_version, _connect,
    _begin_upgrade, _commit_upgrade, _abort_upgrade, _create_collection,
    _accessor, _drop) and inherit the open/upgrade/delete protocol.
    """

    def __init__(self, blocked_timeout: float = 5.0) -> None:
        self.blocked_timeout = blocked_timeout
        self._tracker = ConnectionTracker()

    @property
    def open_connection_count(self) -> int:
        """Number of connections currently open across all databases."""
        return self._tracker.count()

    def _track(self, connection: EngineConnection) -> EngineConnection:
        self._tracker.acquire(connection.name)
        previous = connection._on_close

        def on_close(conn: EngineConnection) -> None:
            try:
                if previous is not None:
                    previous(conn)
            finally:
                self._tracker.release(conn.name)

        connection._on_close = on_close
        return connection

    async def open(
        self,
        name: str,
        version: Optional[int] = None,
        on_upgrade: Optional[UpgradeCallback] = None,
    ) -> EngineConnection:
        if version is not None and (isinstance(version, bool) or not isinstance(version, int) or version < 1):
            raise VersionError(f"Invalid version {version!r}")

        async with self._tracker.hold(name):
            stored = await self._stored_version(name)
            old = stored or 0

            if version is None:
                if stored:
                    return self._track(await self._connect(name))
                version = 1
            elif version < old:
                raise VersionError(f"Requested version {version} is lower than stored version {old}")
            elif version == old:
                if on_upgrade is not None:
                    raise VersionConflictError(
                        f"Database '{name}' is already at version {old}"
                    )
                return self._track(await self._connect(name))

            await self._tracker.wait_idle(name, self.blocked_timeout)
            return await self._upgrade(name, old, version, on_upgrade)

    async def _upgrade(
        self,
        name: str,
        old: int,
        new: int,
        on_upgrade: Optional[UpgradeCallback],
    ) -> EngineConnection:
        connection = await self._begin_upgrade(name, old, new)
        connection.upgrading = True
        try:
            if on_upgrade is not None:
                result = on_upgrade(connection, old, new)
                if inspect.isawaitable(result):
                    await result
            await self._commit_upgrade(connection, new)
        except BaseException as e:
            await self._abort_upgrade(connection, old)
            connection.close()
            if isinstance(e, Exception):
                raise UpgradeAbortedError(f"Upgrade of '{name}' to version {new} aborted: {e}") from e
            raise

        connection.upgrading = False
        connection.version = new
        logger.debug(
            "Database upgraded",
            extra={"database": name, "old_version": old, "new_version": new},
        )
        return self._track(connection)

    async def create_collection(
        self,
        connection: EngineConnection,
        name: str,
        key_path: str = "id",
        auto_increment: bool = True,
    ) -> None:
        if not connection.upgrading:
            raise InvalidStateError("Collections can only be created during an upgrade")
        if connection.contains(name):
            raise DataError(f"Collection '{name}' already exists")
        await self._create_collection(connection, name, key_path, auto_increment)
        connection.collection_names.add(name)

    async def begin_transaction(
        self,
        connection: EngineConnection,
        collection_name: str,
        mode: TransactionMode,
    ) -> EngineTransaction:
        if connection.closed:
            raise ClosedConnectionError(f"Connection to '{connection.name}' is closed")
        if connection.upgrading:
            raise InvalidStateError("Cannot begin a transaction during an upgrade")
        if not connection.contains(collection_name):
            raise UnknownCollectionError(
                f"Collection '{collection_name}' does not exist in '{connection.name}'"
            )
        await asyncio.sleep(0)
        return EngineTransaction(connection, collection_name, mode, self._accessor)

    async def delete_database(self, name: str) -> None:
        async with self._tracker.hold(name):
            await self._tracker.wait_idle(name, self.blocked_timeout)
            await self._drop(name)
        logger.debug("Database deleted", extra={"database": name})

    async def close(self) -> None:
        pass

    @abstractmethod
    async def _stored_version(self, name: str) -> Optional[int]:
        """Stored version, or None if the database does not exist."""
        ...

    @abstractmethod
    async def _connect(self, name: str) -> EngineConnection:
        ...

    @abstractmethod
    async def _begin_upgrade(self, name: str, old: int, new: int) -> EngineConnection:
        ...

    @abstractmethod
    async def _commit_upgrade(self, connection: EngineConnection, new: int) -> None:
        ...

    @abstractmethod
    async def _abort_upgrade(self, connection: EngineConnection, old: int) -> None:
        ...

    @abstractmethod
    async def _create_collection(
        self,
        connection: EngineConnection,
        name: str,
        key_path: str,
        auto_increment: bool,
    ) -> None:
        ...

    @abstractmethod
    def _accessor(self, transaction: EngineTransaction, name: str) -> CollectionAccessor:
        ...

    @abstractmethod
    async def _drop(self, name: str) -> None:
        ...


def create_engine(config: "ShelfConfig") -> BaseEngine:
    """Factory function to create a storage engine from configuration.

    Args:
        config: shelfdb configuration

    Returns:
        Appropriate StorageEngine implementation

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import EngineBackend
    from .memory import InMemoryEngine
    from .sqlite import SqliteEngine

    blocked_timeout = config.pipeline.blocked_timeout
    if config.engine == EngineBackend.MEMORY:
        return InMemoryEngine(blocked_timeout=blocked_timeout)
    elif config.engine == EngineBackend.SQLITE:
        return SqliteEngine(
            config.storage.data_dir,
            wal_mode=config.storage.wal_mode,
            busy_timeout_ms=config.storage.busy_timeout_ms,
            blocked_timeout=blocked_timeout,
        )
    else:
        raise ValueError(f"Unsupported engine backend: {config.engine}")
