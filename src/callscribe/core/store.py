"""
Keyed record stores.

The core depends only on ``KeyedStore``; ``InMemoryKeyedStore`` backs tests
and single-process deployments, ``SqliteKeyedStore`` keeps records across
restarts. Both serialize read-modify-write per key with an ``asyncio.Lock``
so updates to one key are linearizable while different keys never contend.
"""

import asyncio
import json
import os
import sqlite3
import threading
import weakref
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, Tuple, TypeVar

from ..logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class _KeyLocks:
    """Per-key asyncio locks; a lock lives only while someone holds a reference."""

    def __init__(self) -> None:
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def for_key(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock


class KeyedStore(ABC, Generic[T]):
    """Async key/value store with an atomic per-key update."""

    @abstractmethod
    async def get(self, key: str) -> Optional[T]:
        """Return the record for ``key`` or None."""

    @abstractmethod
    async def put(self, key: str, value: T) -> T:
        """Insert or overwrite the record for ``key``."""

    @abstractmethod
    async def put_if_absent(self, key: str, value: T) -> Tuple[T, bool]:
        """
        Store ``value`` only when ``key`` is unknown.

        Returns:
            (stored record, True if ``value`` was inserted)
        """

    @abstractmethod
    async def update(self, key: str, mutate: Callable[[T], T]) -> Optional[T]:
        """
        Atomically replace the record with ``mutate(record)``.

        ``mutate`` must be a pure function of the current record. Returns the
        new record, or None (without calling ``mutate``) when ``key`` is unknown.
        """

    @abstractmethod
    async def values(self) -> List[T]:
        """Snapshot of all records."""


class InMemoryKeyedStore(KeyedStore[T]):
    """Dictionary-backed store."""

    def __init__(self) -> None:
        self._records: Dict[str, T] = {}
        self._locks = _KeyLocks()

    async def get(self, key: str) -> Optional[T]:
        return self._records.get(key)

    async def put(self, key: str, value: T) -> T:
        async with self._locks.for_key(key):
            self._records[key] = value
            return value

    async def put_if_absent(self, key: str, value: T) -> Tuple[T, bool]:
        async with self._locks.for_key(key):
            existing = self._records.get(key)
            if existing is not None:
                return existing, False
            self._records[key] = value
            return value, True

    async def update(self, key: str, mutate: Callable[[T], T]) -> Optional[T]:
        async with self._locks.for_key(key):
            current = self._records.get(key)
            if current is None:
                return None
            updated = mutate(current)
            self._records[key] = updated
            return updated

    async def values(self) -> List[T]:
        return list(self._records.values())


class SqliteKeyedStore(KeyedStore[T]):
    """
    SQLite-backed store.

    Records are JSON documents in a shared ``records`` table partitioned by
    namespace. Blocking sqlite calls run in the default executor under a
    per-database thread lock. Per-key atomicity holds within one process.
    """

    _CREATE_TABLE_SQL = """
    CREATE TABLE IF NOT EXISTS records (
        namespace TEXT NOT NULL,
        key TEXT NOT NULL,
        payload TEXT NOT NULL,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
        PRIMARY KEY (namespace, key)
    )
    """

    _db_locks: Dict[str, threading.Lock] = {}
    _db_locks_guard = threading.Lock()

    def __init__(
        self,
        db_path: str,
        namespace: str,
        encode: Callable[[T], Dict[str, Any]],
        decode: Callable[[Dict[str, Any]], T],
    ):
        self._db_path = db_path
        self._namespace = namespace
        self._encode = encode
        self._decode = decode
        self._locks = _KeyLocks()
        with self._db_locks_guard:
            self._lock = self._db_locks.setdefault(os.path.abspath(db_path), threading.Lock())
        self._init_db()

    def _init_db(self) -> None:
        db_dir = os.path.dirname(self._db_path)
        if db_dir:
            Path(db_dir).mkdir(parents=True, exist_ok=True)
        with self._lock:
            conn = sqlite3.connect(self._db_path)
            try:
                conn.execute(self._CREATE_TABLE_SQL)
                conn.commit()
            finally:
                conn.close()
        logger.info("Record store initialized", db_path=self._db_path, namespace=self._namespace)

    def _get_connection(self) -> sqlite3.Connection:
        return sqlite3.connect(self._db_path)

    async def _run(self, fn: Callable[[], Any]) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn)

    def _read_sync(self, key: str) -> Optional[T]:
        with self._lock:
            conn = self._get_connection()
            try:
                row = conn.execute(
                    "SELECT payload FROM records WHERE namespace = ? AND key = ?",
                    (self._namespace, key),
                ).fetchone()
            finally:
                conn.close()
        if row is None:
            return None
        return self._decode(json.loads(row[0]))

    def _write_sync(self, key: str, value: T) -> None:
        payload = json.dumps(self._encode(value))
        with self._lock:
            conn = self._get_connection()
            try:
                conn.execute(
                    "INSERT OR REPLACE INTO records (namespace, key, payload, updated_at) "
                    "VALUES (?, ?, ?, CURRENT_TIMESTAMP)",
                    (self._namespace, key, payload),
                )
                conn.commit()
            finally:
                conn.close()

    async def get(self, key: str) -> Optional[T]:
        return await self._run(lambda: self._read_sync(key))

    async def put(self, key: str, value: T) -> T:
        async with self._locks.for_key(key):
            await self._run(lambda: self._write_sync(key, value))
            return value

    async def put_if_absent(self, key: str, value: T) -> Tuple[T, bool]:
        async with self._locks.for_key(key):
            existing = await self._run(lambda: self._read_sync(key))
            if existing is not None:
                return existing, False
            await self._run(lambda: self._write_sync(key, value))
            return value, True

    async def update(self, key: str, mutate: Callable[[T], T]) -> Optional[T]:
        async with self._locks.for_key(key):
            current = await self._run(lambda: self._read_sync(key))
            if current is None:
                return None
            updated = mutate(current)
            await self._run(lambda: self._write_sync(key, updated))
            return updated

    async def values(self) -> List[T]:
        def _list_sync():
            with self._lock:
                conn = self._get_connection()
                try:
                    rows = conn.execute(
                        "SELECT payload FROM records WHERE namespace = ? ORDER BY rowid",
                        (self._namespace,),
                    ).fetchall()
                finally:
                    conn.close()
            return [self._decode(json.loads(row[0])) for row in rows]

        return await self._run(_list_sync)


def build_store(
    store_config,
    namespace: str,
    encode: Callable[[T], Dict[str, Any]],
    decode: Callable[[Dict[str, Any]], T],
) -> KeyedStore[T]:
    """Create the store selected by ``store.backend`` for one record namespace."""
    if store_config is not None and store_config.backend == "sqlite":
        return SqliteKeyedStore(store_config.db_path, namespace, encode, decode)
    return InMemoryKeyedStore()
