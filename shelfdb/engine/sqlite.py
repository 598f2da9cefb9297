"""
SQLite storage engine for shelfdb.

One SQLite file per database under the configured data directory:
- The database version is kept in ``PRAGMA user_version``
- Each collection is a table with an AUTOINCREMENT integer key
- Record fields other than the key are stored as JSON

Invariants:
    - A database file exists if and only if the database exists
    - Version bumps run inside one IMMEDIATE transaction, so a crashed or
      failed upgrade leaves the previous version intact
    - Generated keys never reuse a key that was ever written (AUTOINCREMENT)

Table schema:
    _collections:
        - name TEXT PRIMARY KEY
        - key_path TEXT
        - auto_increment INTEGER

    "collection:<name>":
        - key INTEGER PRIMARY KEY AUTOINCREMENT
        - value_json TEXT
"""

from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .base import (
    BaseEngine,
    CollectionAccessor,
    DataError,
    EngineConnection,
    EngineTransaction,
    Key,
    KeyRange,
    Query,
    VersionConflictError,
)

logger = logging.getLogger(__name__)

_SUFFIXES = ("", "-wal", "-shm", "-journal")


def _quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _table(collection: str) -> str:
    return _quote_ident(f"collection:{collection}")


class SqliteConnection(EngineConnection):
    """EngineConnection holding a raw sqlite3 connection."""

    def __init__(self, name: str, version: int, collection_names: set, raw: sqlite3.Connection) -> None:
        super().__init__(name, version, collection_names, on_close=self._close_raw)
        self.raw = raw
        self.key_paths: Dict[str, str] = {}

    @staticmethod
    def _close_raw(conn: EngineConnection) -> None:
        conn.raw.close()


class SqliteAccessor(CollectionAccessor):
    """Collection accessor over one SQLite table."""

    def __init__(self, transaction: EngineTransaction, name: str, key_path: str) -> None:
        super().__init__(transaction, name, key_path)
        self._raw: sqlite3.Connection = transaction.connection.raw
        self._table = _table(name)

    def _encode(self, value: Dict[str, Any]) -> str:
        try:
            encoded = json.dumps(value, allow_nan=False)
        except (TypeError, ValueError) as e:
            raise DataError(f"Record is not JSON serializable: {e}") from e
        # tuples and non-str mapping keys encode but decode as something else
        if json.loads(encoded) != value:
            raise DataError("Record does not survive JSON encoding unchanged")
        return encoded

    async def _do_put(self, key: Optional[Key], value: Dict[str, Any]) -> Key:
        value_json = self._encode(value)
        if key is None:
            cursor = self._raw.execute(
                f"INSERT INTO {self._table} (value_json) VALUES (?)",
                (value_json,),
            )
            return cursor.lastrowid
        self._raw.execute(
            f"INSERT OR REPLACE INTO {self._table} (key, value_json) VALUES (?, ?)",
            (key, value_json),
        )
        return key

    async def _do_get(self, key: Key) -> Optional[Dict[str, Any]]:
        cursor = self._raw.execute(
            f"SELECT key, value_json FROM {self._table} WHERE key = ?",
            (key,),
        )
        row = cursor.fetchone()
        if not row:
            return None
        return self._with_key(row["key"], json.loads(row["value_json"]))

    async def _do_get_all(self, query: Query, count: Optional[int]) -> List[Dict[str, Any]]:
        where, params = self._where(query)
        sql = f"SELECT key, value_json FROM {self._table}{where} ORDER BY key ASC"
        if count is not None:
            sql += " LIMIT ?"
            params.append(count)

        cursor = self._raw.execute(sql, params)
        return [
            self._with_key(row["key"], json.loads(row["value_json"]))
            for row in cursor.fetchall()
        ]

    @staticmethod
    def _where(query: Query) -> Tuple[str, List[Any]]:
        if query is None:
            return "", []
        if not isinstance(query, KeyRange):
            return " WHERE key = ?", [query]

        clauses = []
        params: List[Any] = []
        if query.lower is not None:
            clauses.append("key > ?" if query.lower_open else "key >= ?")
            params.append(query.lower)
        if query.upper is not None:
            clauses.append("key < ?" if query.upper_open else "key <= ?")
            params.append(query.upper)
        if not clauses:
            return "", []
        return " WHERE " + " AND ".join(clauses), params


class SqliteEngine(BaseEngine):
    """File-backed StorageEngine on SQLite.

    Thread safety:
        Each EngineConnection owns its own sqlite3 connection, created
        per open and closed on release. SQLite handles concurrent access
        via WAL mode.

    Example:
        >>> engine = SqliteEngine("/var/lib/shelfdb")
        >>> conn = await engine.open("library")
    """

    def __init__(
        self,
        data_dir: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        blocked_timeout: float = 5.0,
    ) -> None:
        """Initialize the engine.

        Args:
            data_dir: Directory for SQLite database files
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
            blocked_timeout: Seconds an upgrade waits for other connections
        """
        super().__init__(blocked_timeout=blocked_timeout)
        self.data_dir = Path(data_dir)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms

    def get_db_path(self, name: str) -> Path:
        """Database file path for a database name."""
        # Sanitize to prevent path traversal; hash keeps altered names distinct
        safe = "".join(c for c in name if c.isalnum() or c in "-_")
        if safe != name or not safe:
            digest = hashlib.sha1(name.encode("utf-8")).hexdigest()[:10]
            safe = f"{safe}-{digest}"
        return self.data_dir / f"{safe}.sqlite3"

    def _raw_connect(self, name: str) -> sqlite3.Connection:
        db_path = self.get_db_path(name)
        db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row
        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
        except sqlite3.Error:
            conn.close()
            raise
        return conn

    @staticmethod
    def _read_version(raw: sqlite3.Connection) -> int:
        return raw.execute("PRAGMA user_version").fetchone()[0]

    @staticmethod
    def _read_collections(raw: sqlite3.Connection) -> Dict[str, str]:
        exists = raw.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = '_collections'"
        ).fetchone()
        if not exists:
            return {}
        cursor = raw.execute("SELECT name, key_path FROM _collections")
        return {row["name"]: row["key_path"] for row in cursor.fetchall()}

    async def _stored_version(self, name: str) -> Optional[int]:
        if not self.get_db_path(name).exists():
            return None
        raw = self._raw_connect(name)
        try:
            return self._read_version(raw)
        finally:
            raw.close()

    async def _connect(self, name: str) -> EngineConnection:
        raw = self._raw_connect(name)
        try:
            version = self._read_version(raw)
            key_paths = self._read_collections(raw)
        except sqlite3.Error:
            raw.close()
            raise
        connection = SqliteConnection(name, version, set(key_paths), raw)
        connection.key_paths = key_paths
        return connection

    async def _begin_upgrade(self, name: str, old: int, new: int) -> EngineConnection:
        raw = self._raw_connect(name)
        try:
            raw.execute("BEGIN IMMEDIATE")
            stored = self._read_version(raw)
            if stored != old:
                raw.execute("ROLLBACK")
                raise VersionConflictError(
                    f"Database '{name}' moved from version {old} to {stored} during upgrade"
                )
            raw.execute(
                """
                CREATE TABLE IF NOT EXISTS _collections (
                    name TEXT PRIMARY KEY,
                    key_path TEXT NOT NULL,
                    auto_increment INTEGER NOT NULL
                )
                """
            )
            key_paths = self._read_collections(raw)
        except Exception:
            raw.close()
            raise

        connection = SqliteConnection(name, old, set(key_paths), raw)
        connection.key_paths = key_paths
        return connection

    async def _commit_upgrade(self, connection: EngineConnection, new: int) -> None:
        raw = connection.raw
        raw.execute(f"PRAGMA user_version = {int(new)}")
        raw.execute("COMMIT")

    async def _abort_upgrade(self, connection: EngineConnection, old: int) -> None:
        raw = connection.raw
        if raw.in_transaction:
            raw.execute("ROLLBACK")
        if old == 0:
            connection.close()
            self._remove_files(connection.name)

    async def _create_collection(
        self,
        connection: EngineConnection,
        name: str,
        key_path: str,
        auto_increment: bool,
    ) -> None:
        raw = connection.raw
        raw.execute(
            f"""
            CREATE TABLE {_table(name)} (
                key INTEGER PRIMARY KEY AUTOINCREMENT,
                value_json TEXT NOT NULL DEFAULT '{{}}'
            )
            """
        )
        raw.execute(
            "INSERT INTO _collections (name, key_path, auto_increment) VALUES (?, ?, ?)",
            (name, key_path, int(auto_increment)),
        )
        connection.key_paths[name] = key_path

    def _accessor(self, transaction: EngineTransaction, name: str) -> CollectionAccessor:
        key_path = transaction.connection.key_paths.get(name, "id")
        return SqliteAccessor(transaction, name, key_path)

    def _remove_files(self, name: str) -> None:
        db_path = self.get_db_path(name)
        for suffix in _SUFFIXES:
            path = db_path.with_name(db_path.name + suffix)
            if path.exists():
                path.unlink()

    async def _drop(self, name: str) -> None:
        self._remove_files(name)
        logger.info(f"Deleted database file: {self.get_db_path(name)}")
