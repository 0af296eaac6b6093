"""
SQLite bootstrap and connection helpers
=======================================

- Path comes from ``rag.SQL_DB_PATH`` unless given explicitly.
- WAL + pragmatic PRAGMAs for decent concurrent read perf.
"""

from __future__ import annotations
from offline_rag.config import rag
import pathlib
import sqlite3
from typing import Optional


def db_path() -> str:
    return rag.SQL_DB_PATH


def connect(path: Optional[str] = None) -> sqlite3.Connection:
    target = path or db_path()
    if target != ":memory:":
        pathlib.Path(target).parent.mkdir(parents=True, exist_ok=True)

    # Autocommit; we use explicit `with conn:` blocks in worker threads.
    conn = sqlite3.connect(
        target,
        isolation_level=None,
        check_same_thread=False,
        detect_types=sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES,
    )

    # Pragmas: order matters a bit; set WAL first, then tuning.
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA foreign_keys=ON;")
    conn.execute("PRAGMA temp_store=MEMORY;")
    conn.execute("PRAGMA cache_size=-65536;")    # ~64 MiB page cache
    # Reduce SQLITE_BUSY errors under contention
    conn.execute("PRAGMA busy_timeout=3000;")    # 3s

    # dict-like rows
    conn.row_factory = sqlite3.Row

    return conn


def migrate(conn: sqlite3.Connection) -> None:
    """
    Execute schema.sql (idempotent). schema.sql uses IF NOT EXISTS for
    tables and indexes.
    """
    schema_file = pathlib.Path(__file__).with_name("schema.sql")
    sql = schema_file.read_text(encoding="utf-8")
    with conn:  # single transaction for the whole migration
        conn.executescript(sql)
    upgrade(conn)


# Columns missing from stores created by earlier releases
_ADDED_COLUMNS = {
    "category": "TEXT NOT NULL DEFAULT ''",
    "seq": "INTEGER NOT NULL DEFAULT 0",
}

_BACKFILL_SEQ = """
    UPDATE fragments SET seq = (
      SELECT n FROM (
        SELECT rowid AS r,
               ROW_NUMBER() OVER (ORDER BY created_at, chunk_index, rowid) AS n
        FROM fragments
      ) WHERE r = fragments.rowid
    )
"""


def upgrade(conn: sqlite3.Connection) -> None:
    """
    Add columns introduced after the first release (idempotent).

    ``seq`` of pre-existing rows is backfilled from their old
    ``(created_at, chunk_index)`` order.
    """
    have = {row[1] for row in conn.execute("PRAGMA table_info(fragments)")}
    with conn:
        for name, decl in _ADDED_COLUMNS.items():
            if name not in have:
                conn.execute(f"ALTER TABLE fragments ADD COLUMN {name} {decl}")
        if "seq" not in have:
            conn.execute(_BACKFILL_SEQ)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS ix_fragments_collection_seq "
            "ON fragments(collection_name, seq)"
        )


def open_store(path: Optional[str] = None) -> sqlite3.Connection:
    """Connect and migrate in one step."""
    conn = connect(path)
    migrate(conn)
    return conn


def wal_checkpoint_truncate(conn: sqlite3.Connection) -> None:
    """Run a WAL checkpoint + truncate to keep WAL from growing unbounded."""
    conn.execute("PRAGMA wal_checkpoint(TRUNCATE);")
