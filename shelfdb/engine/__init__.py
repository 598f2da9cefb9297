"""
Storage engine abstraction for shelfdb.

This module provides a pluggable engine interface supporting:
- SQLite files (persistent use)
- In-memory (for testing)

The pipeline only talks to engines through the StorageEngine protocol.

Invariants:
    - Databases are versioned; schema changes happen only during a version bump
    - Upgrades and deletions wait for other connections to close
    - Completed writes are durable on their own

How to change safely:
    - New backends should subclass BaseEngine and implement its storage hooks
    - Keep key generation and version semantics identical across backends
"""

from .base import (
    BaseEngine,
    BlockedError,
    ClosedConnectionError,
    CollectionAccessor,
    DataError,
    EngineConnection,
    EngineTransaction,
    InactiveTransactionError,
    InvalidStateError,
    KeyRange,
    ReadOnlyError,
    StorageEngine,
    StorageEngineError,
    TransactionMode,
    UnknownCollectionError,
    UpgradeAbortedError,
    VersionConflictError,
    VersionError,
    create_engine,
)
from .memory import InMemoryEngine
from .sqlite import SqliteEngine

__all__ = [
    # Protocol and types
    "StorageEngine",
    "BaseEngine",
    "EngineConnection",
    "EngineTransaction",
    "CollectionAccessor",
    "TransactionMode",
    "KeyRange",
    # Native errors
    "StorageEngineError",
    "BlockedError",
    "VersionError",
    "VersionConflictError",
    "UpgradeAbortedError",
    "InvalidStateError",
    "ClosedConnectionError",
    "InactiveTransactionError",
    "ReadOnlyError",
    "UnknownCollectionError",
    "DataError",
    # Factory
    "create_engine",
    # Implementations
    "InMemoryEngine",
    "SqliteEngine",
]
