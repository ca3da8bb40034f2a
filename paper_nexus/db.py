from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, List, Optional, Sequence
from urllib.parse import urlparse

from paper_nexus.errors import AppError, ConflictError, DatabaseError, DatabaseUnavailableError
from paper_nexus.schema import get_schema_sql

logger = logging.getLogger(__name__)


def _detect_dialect(dsn: str) -> str:
    """Return 'postgres' or 'sqlite'."""
    s = (dsn or "").strip()
    if not s:
        return "sqlite"
    scheme = urlparse(s).scheme.lower()
    if scheme in ("postgres", "postgresql"):
        return "postgres"
    return "sqlite"


def _qmark_to_pct(sql: str) -> str:
    """Convert SQLite qmark placeholders (?) to psycopg2 placeholders (%s).

    '?' inside single/double-quoted literals is left alone. Not a full SQL parser,
    but sufficient for the statements in this codebase.
    """
    out: List[str] = []
    quote: str | None = None
    for ch in sql:
        if quote is not None:
            out.append(ch)
            if ch == quote:
                quote = None
            continue
        if ch in ("'", '"'):
            quote = ch
            out.append(ch)
        elif ch == "?":
            out.append("%s")
        else:
            out.append(ch)
    return "".join(out)


class PGCursor:
    def __init__(self, cur: Any):
        self._cur = cur

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> "PGCursor":
        self._cur.execute(_qmark_to_pct(sql), tuple(params or ()))
        return self

    def fetchone(self) -> Any:
        return self._cur.fetchone()

    def fetchall(self) -> Any:
        return self._cur.fetchall()

    @property
    def rowcount(self) -> int:
        return int(self._cur.rowcount or 0)


class PGConnection:
    """A tiny adapter that makes psycopg2 connections look like sqlite3 connections."""

    dialect = "postgres"

    def __init__(self, conn: Any):
        self._conn = conn

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> PGCursor:
        return PGCursor(self._conn.cursor()).execute(sql, params)

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    def close(self) -> None:
        self._conn.close()


def _translate_db_error(exc: BaseException, driver: Any) -> Optional[AppError]:
    """Map a DB-API driver exception onto the application taxonomy.

    `driver` is the DB-API module (sqlite3 or psycopg2); both expose the standard
    IntegrityError / OperationalError / Error hierarchy.
    """
    if isinstance(exc, driver.IntegrityError):
        msg = str(exc).lower()
        if "email" in msg:
            return ConflictError("Email already in use", code="email_in_use")
        if "username" in msg:
            return ConflictError("Username already taken", code="username_taken")
        return ConflictError()
    if isinstance(exc, driver.OperationalError):
        return DatabaseUnavailableError()
    if isinstance(exc, driver.Error):
        return DatabaseError()
    return None


@contextmanager
def _transaction(conn: Any, driver: Any) -> Iterator[Any]:
    try:
        yield conn
        conn.commit()
    except AppError:
        conn.rollback()
        raise
    except Exception as exc:
        conn.rollback()
        translated = _translate_db_error(exc, driver)
        if translated is None:
            raise
        if not isinstance(translated, ConflictError):
            logger.error("database error: %s", exc, exc_info=True)
        raise translated from exc
    finally:
        conn.close()


@contextmanager
def connect(db_dsn: str) -> Iterator[Any]:
    """Open a connection and run the block in one transaction.

    - SQLite: uses WAL + NORMAL sync.
    - Postgres: uses psycopg2 (RealDictCursor) so rows behave like dicts.

    Commits on success, rolls back on any exception. Driver exceptions leave this
    context already translated into `paper_nexus.errors` types.
    """
    dsn = (db_dsn or "").strip()
    dialect = _detect_dialect(dsn)

    if dialect == "postgres":
        import psycopg2
        import psycopg2.extras

        try:
            # RealDictCursor makes fetchone()/fetchall() rows act like dicts.
            raw = psycopg2.connect(dsn, cursor_factory=psycopg2.extras.RealDictCursor)
        except psycopg2.Error as exc:
            logger.error("postgres connect failed: %s", exc)
            raise DatabaseUnavailableError() from exc
        with _transaction(PGConnection(raw), psycopg2) as conn:
            yield conn
        return

    # Support sqlite:///path style
    if dsn.lower().startswith("sqlite:///"):
        dsn = dsn[len("sqlite:///") :]

    Path(dsn).parent.mkdir(parents=True, exist_ok=True)
    try:
        conn = sqlite3.connect(dsn, timeout=30, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.execute("PRAGMA busy_timeout=5000;")  # 5s
        conn.execute("PRAGMA foreign_keys = ON;")
    except sqlite3.Error as exc:
        logger.error("sqlite connect failed: %s", exc)
        raise DatabaseUnavailableError() from exc

    with _transaction(conn, sqlite3) as c:
        yield c


def execute_returning(conn: Any, sql: str, params: Sequence[Any] | None = None) -> Optional[Any]:
    """Run an INSERT/UPDATE ... RETURNING and return its single row, or None.

    The cursor is drained so SQLite finishes the statement before the next one runs.
    """
    rows = conn.execute(sql, params or ()).fetchall()
    return rows[0] if rows else None


def init_db(db_dsn: str) -> None:
    """Create all tables and run lightweight migrations."""
    dialect = _detect_dialect(db_dsn)
    logger.info("Initializing DB (%s)", dialect)
    with connect(db_dsn) as conn:
        schema_sql = get_schema_sql(dialect)
        if dialect == "postgres":
            # Ensure only one process runs schema DDL at a time.
            conn.execute("SELECT pg_advisory_lock(2147483647);")
            try:
                _exec_schema(conn, schema_sql, dialect=dialect)
            finally:
                conn.execute("SELECT pg_advisory_unlock(2147483647);")
        else:
            _exec_schema(conn, schema_sql, dialect=dialect)

        _migrate(conn, dialect=dialect)


def _exec_schema(conn: Any, ddl: str, *, dialect: str) -> None:
    if dialect == "postgres":
        # Naive split is OK for our schema (no ';' inside statements or comments).
        statements = [s.strip() for s in ddl.split(";") if s.strip()]
        for stmt in statements:
            conn.execute(stmt)
        return

    conn.executescript(ddl)


def _has_column(conn: Any, table: str, col: str, *, dialect: str) -> bool:
    if dialect == "postgres":
        r = conn.execute(
            """
            SELECT 1
            FROM information_schema.columns
            WHERE table_schema='public'
              AND table_name=?
              AND column_name=?
            LIMIT 1
            """,
            (table, col),
        ).fetchone()
        return r is not None

    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return any(r["name"] == col for r in rows)


def _migrate(conn: Any, *, dialect: str) -> None:
    """Lightweight forward-only migrations for existing DBs."""
    # users: lockout / login bookkeeping added after the first release
    user_cols_to_add = [
        ("failed_login_attempts", "INTEGER NOT NULL DEFAULT 0"),
        ("lockout_until", "TEXT"),
        ("login_count", "INTEGER NOT NULL DEFAULT 0"),
        ("disabled", "INTEGER NOT NULL DEFAULT 0"),
    ]
    for col, ctype in user_cols_to_add:
        if not _has_column(conn, "users", col, dialect=dialect):
            conn.execute(f"ALTER TABLE users ADD COLUMN {col} {ctype}")

    # posts: last reply timestamp
    if not _has_column(conn, "posts", "last_reply_at", dialect=dialect):
        conn.execute("ALTER TABLE posts ADD COLUMN last_reply_at TEXT")


def upsert_app_config(conn: Any, key: str, value: str) -> None:
    """Upsert a simple key/value config entry."""
    conn.execute(
        """
        INSERT INTO app_config (key, value) VALUES (?, ?)
        ON CONFLICT(key) DO UPDATE SET value=excluded.value
        """,
        (key, value),
    )
