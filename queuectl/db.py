import sqlite3
from typing import Optional

from .config import DEFAULT_CONFIG, db_path
from .errors import StoreError

# Writers wait this long for the database lock before giving up.
BUSY_TIMEOUT_SECONDS = 30.0

# UPDATE ... RETURNING, used by the claim, needs SQLite 3.35.
MIN_SQLITE_VERSION = (3, 35, 0)

SCHEMA = """
CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    command TEXT NOT NULL,
    state TEXT NOT NULL DEFAULT 'pending',
    attempts INTEGER NOT NULL DEFAULT 0,
    max_retries INTEGER NOT NULL DEFAULT 3,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    run_at TEXT NOT NULL,
    error TEXT,
    worker_id TEXT
);

CREATE INDEX IF NOT EXISTS idx_jobs_state_run_at ON jobs(state, run_at);
CREATE TABLE IF NOT EXISTS config (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


def connect_db(path: Optional[str] = None) -> sqlite3.Connection:
    target = path or db_path()
    if sqlite3.sqlite_version_info < MIN_SQLITE_VERSION:
        raise StoreError(
            f"SQLite {sqlite3.sqlite_version} is too old; queuectl needs 3.35 or newer"
        )
    try:
        conn = sqlite3.connect(target, timeout=BUSY_TIMEOUT_SECONDS)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
    except sqlite3.Error as e:
        raise StoreError(f"Cannot open database {target}: {e}") from e
    return conn


def init_db(path: Optional[str] = None) -> None:
    conn = connect_db(path)
    try:
        with conn:
            for stmt in SCHEMA.strip().split(";"):
                s = stmt.strip()
                if s:
                    conn.execute(s + ";")
            # seed defaults
            for k, v in DEFAULT_CONFIG.items():
                conn.execute(
                    "INSERT OR IGNORE INTO config(key, value) VALUES(?,?)", (k, v)
                )
    except sqlite3.Error as e:
        raise StoreError(f"Cannot initialize database: {e}") from e
    finally:
        conn.close()
