"""
Issuer Key Database

Uses SQLite to persist the Authority's RSA key pair. This is the only place
the private exponent is stored; it never enters the replicated registry state.
Keys are written once and never replaced: rotating a key would invalidate
every credential already issued under it.
"""

import sqlite3
import threading
from contextlib import contextmanager

from . import config

DB_PATH = config.KEY_DB_PATH

# Thread-local connection cache
_local = threading.local()


def get_connection() -> sqlite3.Connection:
    path = str(DB_PATH)
    conn = getattr(_local, "conn", None)
    if conn is None or getattr(_local, "path", None) != path:
        DB_PATH.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        _local.conn = conn
        _local.path = path
    return conn


def close_connection():
    conn = getattr(_local, "conn", None)
    if conn is not None:
        conn.close()
    _local.conn = None
    _local.path = None


@contextmanager
def get_db():
    conn = get_connection()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def init_db():
    """Create tables if they do not exist."""
    with get_db() as conn:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS issuer_keys (
                id          INTEGER PRIMARY KEY CHECK (id = 1),
                key_id      TEXT NOT NULL,
                private_key TEXT NOT NULL,
                created_at  TEXT NOT NULL DEFAULT (datetime('now'))
            );
        """)


# ---------------------------------------------------------------------------
# Issuer key operations
# ---------------------------------------------------------------------------

def store_issuer_keys(key_id: str, private_key_pem: str) -> bool:
    """
    Persist the issuer key pair if none is stored yet.

    Returns False when a key already exists; the stored key is left untouched.
    """
    with get_db() as conn:
        cur = conn.execute(
            """INSERT INTO issuer_keys (id, key_id, private_key)
               VALUES (1, ?, ?)
               ON CONFLICT(id) DO NOTHING""",
            (key_id, private_key_pem),
        )
        return cur.rowcount == 1


def get_issuer_keys():
    """Return the stored key row as a dict, or None."""
    with get_db() as conn:
        row = conn.execute(
            "SELECT key_id, private_key, created_at FROM issuer_keys WHERE id=1"
        ).fetchone()
        if row is None:
            return None
        return {
            "key_id": row["key_id"],
            "private_key": row["private_key"],
            "created_at": row["created_at"],
        }
