"""
shelfdb - asyncio pipeline over a versioned, per-collection key-value engine.

Every call runs the same sequence of handle acquisitions:

    open database -> ensure collection (version bump if missing)
        -> open transaction -> put / get / get_all -> release

Example:
    >>> from shelfdb import ShelfDb
    >>>
    >>> async with ShelfDb("library") as db:
    ...     books = db.collection("books")
    ...     keys = await books.put([{"title": "Dune"}, {"title": "Emma"}])
    ...     records = await books.get_all()
    >>> keys
    [1, 2]

Invariants:
    - Collections are created lazily, each creation bumps the database version
    - Connections are never shared or cached across calls
    - Batches are partial-commit: failed items do not undo successful ones

Version: 1.0.0
"""

__version__ = "1.0.0"

from .client import Collection, ShelfDb
from .config import (
    EngineBackend,
    ObservabilityConfig,
    PipelineConfig,
    ShelfConfig,
    StorageConfig,
)
from .engine import InMemoryEngine, KeyRange, SqliteEngine, TransactionMode
from .errors import (
    BatchError,
    ConnectionError,
    DeletionError,
    EngineError,
    InvalidArgument,
    OperationTimeout,
    ShelfDbError,
    TransactionError,
    UpgradeConflict,
    UpgradeError,
)

__all__ = [
    # Version
    "__version__",
    # Client
    "ShelfDb",
    "Collection",
    "KeyRange",
    "TransactionMode",
    # Engines
    "InMemoryEngine",
    "SqliteEngine",
    # Configuration
    "ShelfConfig",
    "EngineBackend",
    "StorageConfig",
    "PipelineConfig",
    "ObservabilityConfig",
    # Errors
    "ShelfDbError",
    "ConnectionError",
    "UpgradeError",
    "UpgradeConflict",
    "TransactionError",
    "InvalidArgument",
    "DeletionError",
    "EngineError",
    "BatchError",
    "OperationTimeout",
]
