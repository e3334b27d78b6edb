"""
Per-Partition State Store
=========================

Key-value persistence for endpoint statistics. Backends implement three
operations: get, put and list_by_prefix. Keys are namespaced by partition so
one backend can hold every partition.

Backends:
- MemoryStateStore: process-local dict, used for tests and ephemeral deployments
- SQLiteStateStore: single-table SQLite file, the default for the server
"""

import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from typing import Any, AsyncIterator, Dict, Optional, Tuple
from urllib.parse import quote

from ipranker.errors import StoreUnavailable

logger = logging.getLogger(__name__)

STAT_NAMESPACE = "stat"


def partition_prefix(partition: str) -> str:
    """Key prefix shared by every endpoint record of a partition"""
    return f"{STAT_NAMESPACE}/{quote(partition, safe='')}/"


def stat_key(partition: str, endpoint: str) -> str:
    return partition_prefix(partition) + endpoint


class StateStore:
    """Abstract key-value store with prefix listing"""

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def put(self, key: str, value: Dict[str, Any]) -> None:
        raise NotImplementedError

    def list_by_prefix(self, prefix: str) -> AsyncIterator[Tuple[str, Dict[str, Any]]]:
        """Lazily yield (key, value) pairs whose key starts with prefix, in key order"""
        raise NotImplementedError

    def close(self) -> None:
        """Release backend resources"""


class MemoryStateStore(StateStore):
    """In-process store. Values are copied on the way in and out."""

    def __init__(self):
        self._data: Dict[str, Dict[str, Any]] = {}

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        value = self._data.get(key)
        return dict(value) if value is not None else None

    async def put(self, key: str, value: Dict[str, Any]) -> None:
        self._data[key] = dict(value)

    async def list_by_prefix(self, prefix: str) -> AsyncIterator[Tuple[str, Dict[str, Any]]]:
        keys = sorted(k for k in self._data if k.startswith(prefix))
        for key in keys:
            value = self._data.get(key)
            # Record may have been replaced between snapshot and read; take the current one
            if value is not None:
                yield key, dict(value)

    def __len__(self) -> int:
        return len(self._data)


class SQLiteStateStore(StateStore):
    """
    SQLite-backed store.

    Each call opens a short-lived connection. list_by_prefix pages through
    the table with keyset pagination so no read transaction stays open while
    the caller is suspended.
    """

    def __init__(self, db_path: str, page_size: int = 500, timeout: float = 5.0):
        self.db_path = db_path
        self.page_size = page_size
        self.timeout = timeout
        self._init_database()

    def _init_database(self):
        """Initialize the SQLite database with schema"""
        directory = os.path.dirname(self.db_path)
        try:
            if directory:
                os.makedirs(directory, exist_ok=True)
            with self._connect() as conn:
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS kv (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL
                    )
                """)
        except (sqlite3.Error, OSError) as e:
            raise StoreUnavailable(f"Cannot initialize state store at {self.db_path}: {e}") from e
        logger.info(f"State store ready at {self.db_path}")

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            with self._connect() as conn:
                row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as e:
            raise StoreUnavailable(f"get {key!r} failed: {e}") from e
        return json.loads(row[0]) if row else None

    async def put(self, key: str, value: Dict[str, Any]) -> None:
        payload = json.dumps(value)
        try:
            with self._connect() as conn:
                conn.execute(
                    "INSERT OR REPLACE INTO kv (key, value) VALUES (?, ?)",
                    (key, payload)
                )
        except sqlite3.Error as e:
            raise StoreUnavailable(f"put {key!r} failed: {e}") from e

    async def list_by_prefix(self, prefix: str) -> AsyncIterator[Tuple[str, Dict[str, Any]]]:
        last_key = ""
        while True:
            try:
                with self._connect() as conn:
                    rows = conn.execute(
                        """
                        SELECT key, value FROM kv
                        WHERE substr(key, 1, ?) = ? AND key > ?
                        ORDER BY key
                        LIMIT ?
                        """,
                        (len(prefix), prefix, last_key, self.page_size)
                    ).fetchall()
            except sqlite3.Error as e:
                raise StoreUnavailable(f"list {prefix!r} failed: {e}") from e

            for key, value in rows:
                yield key, json.loads(value)

            if len(rows) < self.page_size:
                return
            last_key = rows[-1][0]


def create_state_store(backend: str, db_path: str) -> StateStore:
    """Build the configured store backend"""
    if backend == 'memory':
        logger.info("Using in-memory state store (statistics are not persisted)")
        return MemoryStateStore()
    if backend == 'sqlite':
        return SQLiteStateStore(db_path)
    raise ValueError(f"Unknown store backend: {backend}")
