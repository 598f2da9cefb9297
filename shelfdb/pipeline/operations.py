"""
Operation Layer - put, get, get_all and database deletion.

Every operation receives a TransactionHandle from the broker and releases it
once the operation's outcome is known, on success and on failure.

Batch policy (partial commit):
    - Each item of a put/get batch is an independent engine request
    - Items are issued concurrently in input order; the batch settles when
      every item has an outcome
    - If any item failed, BatchError is raised after release; items that
      succeeded stay written

Invariants:
    - Arguments are validated before any engine request is issued
    - The connection is released exactly once per call
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Union

from ..engine.base import (
    BlockedError,
    CollectionAccessor,
    InvalidStateError,
    Key,
    KeyRange,
    Query,
    StorageEngine,
    is_valid_key,
)
from ..errors import (
    BatchError,
    DeletionError,
    EngineError,
    InvalidArgument,
    ShelfDbError,
    TransactionError,
)
from .broker import TransactionHandle

logger = logging.getLogger(__name__)

Record = Mapping[str, Any]


@dataclass(frozen=True)
class GetAllOptions:
    """Options for get_all.

    Attributes:
        query: Primary key or KeyRange to match (None = every record)
        count: Maximum number of records (None = no limit)
    """

    query: Query = None
    count: Optional[int] = None


def _is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def validate_put_data(data: Any) -> None:
    """Reject put data that is neither a mapping nor a sequence.

    Items of a sequence are checked per item during the put itself.

    Raises:
        InvalidArgument: If ``data`` is a primitive, None or other object
    """
    if isinstance(data, Mapping) or _is_sequence(data):
        return
    raise InvalidArgument(
        f"put: data must be a mapping or a sequence of mappings, got {type(data).__name__}",
        argument="data",
        value=data,
    )


def validate_get_id(id: Any) -> None:
    """Reject get ids that are not integer keys or sequences of integer keys.

    bool is refused even though it is an int subclass.

    Raises:
        InvalidArgument: If ``id`` is not a key or a sequence of keys
    """
    if _is_sequence(id):
        for item in id:
            if not is_valid_key(item):
                raise InvalidArgument(
                    f"get: every id must be an integer key, got {type(item).__name__}",
                    argument="id",
                    value=item,
                )
        return
    if not is_valid_key(id):
        raise InvalidArgument(
            f"get: id must be an integer key or a sequence of keys, got {type(id).__name__}",
            argument="id",
            value=id,
        )


def validate_get_all_options(options: GetAllOptions) -> None:
    """Reject malformed get_all options.

    Raises:
        InvalidArgument: If count is not a positive integer or query is
            neither an integer key nor a KeyRange
    """
    count = options.count
    if count is not None and (isinstance(count, bool) or not isinstance(count, int) or count < 1):
        raise InvalidArgument(
            f"get_all: count must be a positive integer, got {count!r}",
            argument="count",
            value=count,
        )
    query = options.query
    if query is not None and not isinstance(query, KeyRange) and not is_valid_key(query):
        raise InvalidArgument(
            f"get_all: query must be a key or a KeyRange, got {type(query).__name__}",
            argument="query",
            value=query,
        )


def _classify(e: Exception, operation: str) -> ShelfDbError:
    if isinstance(e, InvalidStateError):
        return TransactionError(f"{operation}: {e}", cause=e)
    return EngineError(f"{operation}: {e}", cause=e)


async def _put_one(store: CollectionAccessor, item: Any) -> Key:
    if not isinstance(item, Mapping):
        raise InvalidArgument(
            f"put: batch item must be a mapping, got {type(item).__name__}",
            argument="data",
            value=item,
        )
    try:
        return await store.put(item)
    except ShelfDbError:
        raise
    except Exception as e:
        raise _classify(e, "put") from e


async def _get_one(store: CollectionAccessor, key: Key) -> Optional[dict]:
    try:
        return await store.get(key)
    except ShelfDbError:
        raise
    except Exception as e:
        raise _classify(e, "get") from e


async def _batch(
    operation: str,
    worker: Callable[[CollectionAccessor, Any], Awaitable[Any]],
    items: Sequence[Any],
    handle: TransactionHandle,
) -> List[Any]:
    # Fan out in input order, fan in once every item settled
    results = await asyncio.gather(
        *(worker(handle.store, item) for item in items),
        return_exceptions=True,
    )
    await handle.release()

    failed = [r for r in results if isinstance(r, BaseException)]
    if failed:
        logger.debug(
            f"{operation} batch partially failed",
            extra={"collection": handle.collection_name, "failed": len(failed), "total": len(results)},
        )
        raise BatchError(f"{operation}: {len(failed)} of {len(results)} items failed", list(results))
    return list(results)


async def put(data: Union[Record, Sequence[Record]], handle: TransactionHandle) -> Union[Key, List[Key]]:
    """Write one record or a batch of records.

    Args:
        data: A mapping, or a list/tuple of mappings
        handle: Read-write transaction handle; released before returning

    Returns:
        The record's key, or the list of keys in input order

    Raises:
        InvalidArgument: ``data`` is not a mapping or sequence
        BatchError: One or more batch items failed
        EngineError: The single write failed
    """
    try:
        validate_put_data(data)
        if isinstance(data, Mapping):
            key = await _put_one(handle.store, data)
            await handle.release()
            return key
        return await _batch("put", _put_one, data, handle)
    except BaseException:
        handle.abandon()
        raise


async def get(id: Union[Key, Sequence[Key]], handle: TransactionHandle) -> Union[Optional[dict], List[Optional[dict]]]:
    """Read one record or a batch of records by key.

    Missing keys resolve to None instead of failing.

    Raises:
        InvalidArgument: ``id`` is a mapping or None
        BatchError: One or more batch reads failed
        EngineError: The single read failed
    """
    try:
        validate_get_id(id)
        if _is_sequence(id):
            return await _batch("get", _get_one, id, handle)
        record = await _get_one(handle.store, id)
        await handle.release()
        return record
    except BaseException:
        handle.abandon()
        raise


async def get_all(options: GetAllOptions, handle: TransactionHandle) -> List[dict]:
    """Records matching ``options`` in ascending primary key order.

    Raises:
        InvalidArgument: Malformed options
        EngineError: The read failed
    """
    try:
        validate_get_all_options(options)
        try:
            records = await handle.store.get_all(options.query, options.count)
        except ShelfDbError:
            raise
        except Exception as e:
            raise _classify(e, "get_all") from e
        await handle.release()
        return records
    except BaseException:
        handle.abandon()
        raise


async def delete_database(engine: StorageEngine, database_name: str) -> None:
    """Irreversibly remove a database with all its collections and records.

    Raises:
        DeletionError: Other connections stayed open
        EngineError: Any other engine failure
    """
    try:
        await engine.delete_database(database_name)
    except ShelfDbError:
        raise
    except BlockedError as e:
        raise DeletionError(
            f"Cannot delete '{database_name}': {e}",
            database=database_name,
            cause=e,
        ) from e
    except Exception as e:
        raise EngineError(f"delete_database: {e}", cause=e) from e
