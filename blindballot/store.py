"""
Registry State Store

A key-value store with linearizable reads and writes per key. Every
check-then-write in the protocol runs inside `transaction(keys)`, which holds
exclusive access to the named keys until it commits, and which supplies the
single timestamp that all logic in that transaction must use.

Two implementations:
  MemoryStore : striped key locks over a dict (tests, single process)
  SQLiteStore : one BEGIN IMMEDIATE transaction per operation (single node)

Values are JSON documents; readers always get a fresh copy.
"""

import json
import sqlite3
import threading
import zlib
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _dumps(value) -> str:
    return json.dumps(value, sort_keys=True)


class Transaction:
    """Scoped view over the keys a transaction declared; writes apply on commit."""

    def __init__(self, keys, timestamp: datetime, reader):
        self.keys = frozenset(keys)
        self.timestamp = timestamp
        self._reader = reader
        self._writes = {}

    def _check(self, key: str):
        if key not in self.keys:
            raise KeyError(f"key {key!r} was not declared by this transaction")

    def get(self, key: str):
        self._check(key)
        if key in self._writes:
            return json.loads(self._writes[key])
        raw = self._reader(key)
        return None if raw is None else json.loads(raw)

    def exists(self, key: str) -> bool:
        return self.get(key) is not None

    def put(self, key: str, value):
        self._check(key)
        self._writes[key] = _dumps(value)

    def put_if_absent(self, key: str, value) -> bool:
        if self.exists(key):
            return False
        self.put(key, value)
        return True

    @property
    def writes(self) -> dict:
        return dict(self._writes)


class Store(ABC):
    def __init__(self, clock=None):
        self.clock = clock or utc_now

    @abstractmethod
    def transaction(self, keys):
        """Context manager yielding a Transaction with exclusive access to keys."""

    @abstractmethod
    def scan(self, prefix: str) -> list:
        """Return [(key, value)] for keys starting with prefix, in key order."""

    def get(self, key: str):
        with self.transaction([key]) as txn:
            return txn.get(key)

    def exists(self, key: str) -> bool:
        return self.get(key) is not None

    def put_if_absent(self, key: str, value) -> bool:
        with self.transaction([key]) as txn:
            return txn.put_if_absent(key, value)


LOCK_STRIPES = 64


class MemoryStore(Store):
    def __init__(self, clock=None, stripes: int = LOCK_STRIPES):
        super().__init__(clock)
        self._data = {}
        self._guard = threading.Lock()
        self._stripes = tuple(threading.Lock() for _ in range(stripes))

    def _stripe_index(self, key: str) -> int:
        return zlib.crc32(key.encode()) % len(self._stripes)

    def _read(self, key: str):
        with self._guard:
            return self._data.get(key)

    @contextmanager
    def transaction(self, keys):
        # Each stripe is taken once, in ascending order
        ordered = sorted(set(keys))
        locks = [self._stripes[i] for i in sorted({self._stripe_index(k) for k in ordered})]
        for lock in locks:
            lock.acquire()
        try:
            txn = Transaction(ordered, self.clock(), self._read)
            yield txn
            with self._guard:
                self._data.update(txn.writes)
        finally:
            for lock in reversed(locks):
                lock.release()

    def scan(self, prefix: str) -> list:
        with self._guard:
            items = sorted((k, v) for k, v in self._data.items() if k.startswith(prefix))
        return [(k, json.loads(v)) for k, v in items]


class SQLiteStore(Store):
    def __init__(self, path, clock=None, timeout: float = 30.0):
        super().__init__(clock)
        self.path = Path(path)
        self.timeout = timeout
        self._local = threading.local()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._connection()
        conn.execute(
            """CREATE TABLE IF NOT EXISTS state (
                   key   TEXT PRIMARY KEY,
                   value TEXT NOT NULL
               )"""
        )

    def _connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            # Autocommit mode; transactions are opened explicitly below
            conn = sqlite3.connect(
                str(self.path), timeout=self.timeout, isolation_level=None, check_same_thread=False
            )
            conn.execute("PRAGMA journal_mode=WAL")
            self._local.conn = conn
        return conn

    def close(self):
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None

    @contextmanager
    def transaction(self, keys):
        conn = self._connection()

        def read(key):
            row = conn.execute("SELECT value FROM state WHERE key = ?", (key,)).fetchone()
            return None if row is None else row[0]

        conn.execute("BEGIN IMMEDIATE")
        try:
            txn = Transaction(keys, self.clock(), read)
            yield txn
            conn.executemany(
                """INSERT INTO state (key, value) VALUES (?, ?)
                   ON CONFLICT(key) DO UPDATE SET value=excluded.value""",
                list(txn.writes.items()),
            )
            conn.execute("COMMIT")
        except BaseException:
            conn.execute("ROLLBACK")
            raise

    def scan(self, prefix: str) -> list:
        conn = self._connection()
        # substr avoids LIKE wildcards inside ids
        rows = conn.execute(
            "SELECT key, value FROM state WHERE substr(key, 1, ?) = ? ORDER BY key",
            (len(prefix), prefix),
        ).fetchall()
        return [(k, json.loads(v)) for k, v in rows]


class ManualClock:
    """Clock that only moves when told to; for simulations and tests."""

    def __init__(self, start: datetime = None):
        self._now = start or utc_now()
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            return self._now

    def set(self, when: datetime):
        with self._lock:
            self._now = when

    def advance(self, delta):
        with self._lock:
            self._now = self._now + delta
