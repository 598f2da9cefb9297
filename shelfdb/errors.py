"""
Error types for shelfdb.

This module defines all exception types raised by the pipeline:
- ShelfDbError: Base exception
- ConnectionError: Database could not be opened
- UpgradeError / UpgradeConflict: Schema version bump failed
- TransactionError: Transaction could not be opened
- InvalidArgument: Caller passed data the operation cannot accept
- DeletionError: Database could not be deleted
- EngineError: Unclassified storage engine failure
- BatchError: One or more items of a batch failed
- OperationTimeout: Caller-level deadline expired

Invariants:
    - All errors inherit from ShelfDbError
    - Callers branch on the class (or ``code``), never on message text
    - The native engine exception, when there is one, is kept in ``cause``
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class ShelfDbError(Exception):
    """Base exception for all shelfdb errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
        cause: Underlying engine exception, if any
    """

    default_code = "SHELFDB_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        self.cause = cause


class ConnectionError(ShelfDbError):
    """Failed to open a database.

    Raised when:
    - The engine cannot create or read the database
    - The open is blocked past the configured timeout
    """

    default_code = "CONNECTION_ERROR"

    def __init__(
        self,
        message: str,
        database: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message, details={"database": database}, cause=cause)
        self.database = database


class UpgradeError(ShelfDbError):
    """The engine rejected a version bump.

    Raised when:
    - Other connections stay open past the blocked timeout
    - The requested version is lower than the current one
    - The upgrade callback failed
    """

    default_code = "UPGRADE_ERROR"

    def __init__(
        self,
        message: str,
        database: Optional[str] = None,
        old_version: Optional[int] = None,
        new_version: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(
            message,
            details={
                "database": database,
                "old_version": old_version,
                "new_version": new_version,
            },
            cause=cause,
        )
        self.database = database
        self.old_version = old_version
        self.new_version = new_version


class UpgradeConflict(UpgradeError):
    """Another upgrade already moved the database past the requested version."""

    default_code = "UPGRADE_CONFLICT"


class TransactionError(ShelfDbError):
    """Transaction could not be opened.

    Raised when:
    - The collection does not exist on the connection
    - The connection is closed
    """

    default_code = "TRANSACTION_ERROR"

    def __init__(
        self,
        message: str,
        collection: Optional[str] = None,
        mode: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(
            message,
            details={"collection": collection, "mode": mode},
            cause=cause,
        )
        self.collection = collection
        self.mode = mode


class InvalidArgument(ShelfDbError):
    """Argument rejected before any handle is touched."""

    default_code = "INVALID_ARGUMENT"

    def __init__(
        self,
        message: str,
        argument: Optional[str] = None,
        value: Any = None,
    ) -> None:
        super().__init__(
            message,
            details={"argument": argument, "type": type(value).__name__},
        )
        self.argument = argument
        self.value = value


class DeletionError(ShelfDbError):
    """Database could not be deleted (open-connection conflict)."""

    default_code = "DELETION_ERROR"

    def __init__(
        self,
        message: str,
        database: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message, details={"database": database}, cause=cause)
        self.database = database


class EngineError(ShelfDbError):
    """Passthrough for engine failures that have no dedicated class."""

    default_code = "ENGINE_ERROR"


class BatchError(ShelfDbError):
    """One or more items of a batch put/get failed.

    Successful items are not rolled back.

    Attributes:
        results: One entry per input item, the value or the exception
        errors: Index of each failed item mapped to its exception
    """

    default_code = "BATCH_ERROR"

    def __init__(self, message: str, results: List[Any]) -> None:
        errors = {i: r for i, r in enumerate(results) if isinstance(r, BaseException)}
        super().__init__(
            message,
            details={"failed": sorted(errors), "total": len(results)},
        )
        self.results = results
        self.errors = errors

    @property
    def succeeded(self) -> List[Any]:
        """Results of the items that did not fail, in input order."""
        return [r for r in self.results if not isinstance(r, BaseException)]


class OperationTimeout(ShelfDbError):
    """Caller-level deadline expired before the operation finished."""

    default_code = "OPERATION_TIMEOUT"

    def __init__(self, message: str, timeout_ms: Optional[int] = None) -> None:
        super().__init__(message, details={"timeout_ms": timeout_ms})
        self.timeout_ms = timeout_ms
