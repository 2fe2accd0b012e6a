from __future__ import annotations

import re
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Sequence
from urllib.parse import urlparse

from vcare_access.schema import get_schema_sql


def _debug(msg: str) -> None:
    print(f"[db] {msg}")


def detect_dialect(dsn: str) -> str:
    """Return 'postgres' or 'sqlite'."""
    s = (dsn or "").strip()
    if not s:
        return "sqlite"
    try:
        scheme = urlparse(s).scheme.lower()
    except Exception:
        scheme = ""
    if scheme in ("postgres", "postgresql"):
        return "postgres"
    return "sqlite"


# Quoted literals are kept as-is; only bare '?' placeholders are rewritten.
_LITERAL_OR_QMARK = re.compile(r"('(?:[^']|'')*'|\"(?:[^\"]|\"\")*\"|\?)")


def _qmark_to_pct(sql: str) -> str:
    """Convert SQLite qmark placeholders (?) to psycopg2 placeholders (%s)."""
    return _LITERAL_OR_QMARK.sub(lambda m: "%s" if m.group(0) == "?" else m.group(0), sql)


class PGConnection:
    """Makes a psycopg2 connection answer the subset of the sqlite3 API the store uses.

    Constraint violations are re-raised as `sqlite3.IntegrityError` so callers handle
    one exception type for both engines.
    """

    dialect = "postgres"

    def __init__(self, conn: Any, integrity_error: type):
        self._conn = conn
        self._integrity_error = integrity_error

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> Any:
        cur = self._conn.cursor()
        try:
            cur.execute(_qmark_to_pct(sql), tuple(params or ()))
        except self._integrity_error as e:
            raise sqlite3.IntegrityError(str(e)) from e
        return cur

    def executescript(self, ddl: str) -> None:
        # Naive split is fine for our schema (no ';' inside literals).
        for stmt in [s.strip() for s in ddl.split(";") if s.strip()]:
            self.execute(stmt)

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    def close(self) -> None:
        self._conn.close()


@contextmanager
def connect(db_dsn: str) -> Iterator[Any]:
    """Open a transaction-scoped connection to SQLite or Postgres.

    Commits when the block exits cleanly, rolls back on any exception.
    Rows behave like dicts in both engines (sqlite3.Row / RealDictCursor).
    """
    dsn = (db_dsn or "").strip()

    if detect_dialect(dsn) == "postgres":
        try:
            import psycopg2
            import psycopg2.extras
        except Exception as e:
            raise RuntimeError(
                "Postgres selected but psycopg2 is not installed. "
                "Install the 'postgres' extra and try again."
            ) from e

        conn: Any = PGConnection(
            psycopg2.connect(dsn, cursor_factory=psycopg2.extras.RealDictCursor),
            integrity_error=psycopg2.IntegrityError,
        )
    else:
        if dsn.lower().startswith("sqlite:///"):
            dsn = dsn[len("sqlite:///") :]
        if dsn != ":memory:":
            Path(dsn).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(dsn, timeout=30, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA busy_timeout=5000;")
        conn.execute("PRAGMA foreign_keys = ON;")

    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db(db_dsn: str) -> None:
    """Create all tables and run lightweight migrations."""
    dialect = detect_dialect(db_dsn)
    _debug(f"Initializing DB ({dialect}) at {db_dsn}")
    with connect(db_dsn) as conn:
        conn.executescript(get_schema_sql(dialect))
        _migrate(conn, dialect=dialect)


def _has_column(conn: Any, table: str, col: str, *, dialect: str) -> bool:
    if dialect == "postgres":
        r = conn.execute(
            """
            SELECT 1
            FROM information_schema.columns
            WHERE table_schema='public' AND table_name=? AND column_name=?
            LIMIT 1
            """,
            (table, col),
        ).fetchone()
        return r is not None

    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return any(r["name"] == col for r in rows)


def _migrate(conn: Any, *, dialect: str) -> None:
    """Forward-only migrations for stores created before the economics columns existed."""
    for col, ddl in (
        ("share_balance", "TEXT NOT NULL DEFAULT '0'"),
        ("last_login_at", "TEXT"),
    ):
        if not _has_column(conn, "users", col, dialect=dialect):
            _debug(f"Adding users.{col}")
            conn.execute(f"ALTER TABLE users ADD COLUMN {col} {ddl}")
