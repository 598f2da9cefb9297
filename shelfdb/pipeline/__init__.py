"""
Pipeline module for shelfdb - handle acquisition and operations.

This module handles:
- Opening database connections (ConnectionManager)
- Creating collections through version bumps (SchemaUpgrader)
- Opening collection-scoped transactions (TransactionBroker)
- put / get / get_all / delete_database (operations)

Invariants:
    - Steps run strictly in order: connection, upgrade, transaction, operation
    - Every invocation opens its own connection and releases it exactly once
    - Engine failures surface as ShelfDbError subclasses; none are retried

How to change safely:
    - Never cache a connection or transaction across invocations
    - Keep release on every exit path, including cancellation
"""

from .broker import TransactionBroker, TransactionHandle
from .connection import ConnectionManager
from .operations import (
    GetAllOptions,
    delete_database,
    get,
    get_all,
    put,
    validate_get_all_options,
    validate_get_id,
    validate_put_data,
)
from .runner import Pipeline
from .upgrade import SchemaUpgrader

__all__ = [
    "ConnectionManager",
    "SchemaUpgrader",
    "TransactionBroker",
    "TransactionHandle",
    "Pipeline",
    "GetAllOptions",
    "put",
    "get",
    "get_all",
    "delete_database",
    "validate_put_data",
    "validate_get_id",
    "validate_get_all_options",
]
