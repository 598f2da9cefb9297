"""
Command-line tool for shelfdb.

Runs single operations against a database:
- put: Write one JSON record or a JSON list of records
- get: Read records by key
- get-all: Read every record, optionally within a key range
- info: Show version and collections
- drop: Delete a database

Usage:
    shelfdb put library books '{"title": "Dune"}'
    shelfdb get library books 1 3
    shelfdb get-all library books --lower 2 --count 10
    shelfdb --engine sqlite --data-dir ./data info library

Invariants:
    - Output on stdout is JSON only; diagnostics go to stderr
    - Exit code 1 on any ShelfDbError
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import os
import sys
from typing import Any, List, Optional

from ..client import ShelfDb
from ..config import EngineBackend, ShelfConfig
from ..engine.base import KeyRange
from ..errors import BatchError, ShelfDbError
from ..observability import setup_logging

logger = logging.getLogger(__name__)


class ShelfCLI:
    """Executes CLI commands against one database.

    Example:
        >>> cli = ShelfCLI(config)
        >>> await cli.put("library", "books", '{"title": "Dune"}')
        '1'
    """

    def __init__(self, config: ShelfConfig) -> None:
        self.config = config

    def _db(self, database: str) -> ShelfDb:
        return ShelfDb(database, config=self.config)

    async def put(self, database: str, collection: str, data_json: str) -> str:
        data = json.loads(data_json)
        async with self._db(database) as db:
            keys = await db.collection(collection).put(data)
        return json.dumps(keys)

    async def get(self, database: str, collection: str, keys: List[int]) -> str:
        async with self._db(database) as db:
            if len(keys) == 1:
                result: Any = await db.collection(collection).get(keys[0])
            else:
                result = await db.collection(collection).get(keys)
        return json.dumps(result, indent=2, sort_keys=True)

    async def get_all(
        self,
        database: str,
        collection: str,
        lower: Optional[int] = None,
        upper: Optional[int] = None,
        count: Optional[int] = None,
    ) -> str:
        query = None
        if lower is not None and upper is not None:
            query = KeyRange.bound(lower, upper)
        elif lower is not None:
            query = KeyRange.lower_bound(lower)
        elif upper is not None:
            query = KeyRange.upper_bound(upper)

        async with self._db(database) as db:
            records = await db.collection(collection).get_all(query=query, count=count)
        return json.dumps(records, indent=2, sort_keys=True)

    async def info(self, database: str) -> str:
        async with self._db(database) as db:
            output = {
                "database": database,
                "version": await db.version(),
                "collections": await db.collection_names(),
            }
        return json.dumps(output, indent=2, sort_keys=True)

    async def drop(self, database: str) -> str:
        async with self._db(database) as db:
            await db.delete()
        return json.dumps({"deleted": database})


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="shelfdb", description="shelfdb command-line tool")
    parser.add_argument(
        "--engine",
        choices=[b.value for b in EngineBackend],
        help="Storage engine (default: SHELFDB_ENGINE, or sqlite)",
    )
    parser.add_argument("--data-dir", help="SQLite data directory (default: SHELFDB_DATA_DIR)")
    parser.add_argument("--debug", action="store_true", help="Log every pipeline step")
    subparsers = parser.add_subparsers(dest="command", required=True)

    put_parser = subparsers.add_parser("put", help="Write a JSON record or list of records")
    put_parser.add_argument("database")
    put_parser.add_argument("collection")
    put_parser.add_argument("data", help="JSON object or array of objects")

    get_parser = subparsers.add_parser("get", help="Read records by key")
    get_parser.add_argument("database")
    get_parser.add_argument("collection")
    get_parser.add_argument("keys", nargs="+", type=int)

    get_all_parser = subparsers.add_parser("get-all", help="Read records in key order")
    get_all_parser.add_argument("database")
    get_all_parser.add_argument("collection")
    get_all_parser.add_argument("--lower", type=int, help="Lowest key (inclusive)")
    get_all_parser.add_argument("--upper", type=int, help="Highest key (inclusive)")
    get_all_parser.add_argument("--count", type=int, help="Maximum number of records")

    info_parser = subparsers.add_parser("info", help="Show version and collections")
    info_parser.add_argument("database")

    drop_parser = subparsers.add_parser("drop", help="Delete a database")
    drop_parser.add_argument("database")

    return parser


def load_config(args: argparse.Namespace) -> ShelfConfig:
    """Environment configuration with command-line overrides applied.

    The CLI defaults to the SQLite engine; an in-memory database would not
    outlive the command.
    """
    config = ShelfConfig.from_env()
    engine = EngineBackend(args.engine or os.getenv("SHELFDB_ENGINE", EngineBackend.SQLITE.value).lower())

    storage = config.storage
    if args.data_dir:
        storage = dataclasses.replace(storage, data_dir=args.data_dir)
    pipeline = config.pipeline
    if args.debug:
        pipeline = dataclasses.replace(pipeline, debug=True)

    return ShelfConfig(
        engine=engine,
        storage=storage,
        pipeline=pipeline,
        observability=config.observability,
    )


async def run(args: argparse.Namespace, config: ShelfConfig) -> str:
    cli = ShelfCLI(config)
    if args.command == "put":
        return await cli.put(args.database, args.collection, args.data)
    elif args.command == "get":
        return await cli.get(args.database, args.collection, args.keys)
    elif args.command == "get-all":
        return await cli.get_all(
            args.database,
            args.collection,
            lower=args.lower,
            upper=args.upper,
            count=args.count,
        )
    elif args.command == "info":
        return await cli.info(args.database)
    elif args.command == "drop":
        return await cli.drop(args.database)
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args)
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    setup_logging(config.observability)
    if args.debug:
        logging.getLogger("shelfdb").setLevel(logging.DEBUG)
        config.log_config()

    try:
        output = asyncio.run(run(args, config))
    except json.JSONDecodeError as e:
        print(f"Invalid JSON: {e}", file=sys.stderr)
        return 1
    except BatchError as e:
        print(f"Error [{e.code}]: {e.message}", file=sys.stderr)
        for index, error in sorted(e.errors.items()):
            print(f"  - item {index}: {error}", file=sys.stderr)
        return 1
    except ShelfDbError as e:
        print(f"Error [{e.code}]: {e.message}", file=sys.stderr)
        return 1

    print(output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
