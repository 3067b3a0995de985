"""SQLite management utilities."""

from __future__ import annotations

import sqlite3
import threading
import weakref
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator, Sequence

DEFAULT_PRAGMAS = (
    "PRAGMA journal_mode=WAL;",
    "PRAGMA synchronous=NORMAL;",
    "PRAGMA foreign_keys=ON;",
    "PRAGMA temp_store=MEMORY;",
)

DEFAULT_TIMEOUT = 30.0


class _ThreadConnection:
    """Thread-local owner of a connection; the connection closes when this is collected."""

    __slots__ = ("conn", "__weakref__")

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn


def _release(lock: threading.RLock, connections: set[sqlite3.Connection], conn: sqlite3.Connection) -> None:
    with lock:
        connections.discard(conn)
    conn.close()


class SQLiteDatabase:
    """Thin wrapper around sqlite3 handing out one connection per thread.

    A thread's connection is closed once the thread exits and its locals are
    dropped, so worker pools that recycle threads do not accumulate handles.

    Connections run in autocommit mode; writes go through ``transaction()``,
    which opens ``BEGIN IMMEDIATE`` so concurrent writers queue on the
    database lock instead of failing halfway through.
    """

    def __init__(self, db_path: Path, read_only: bool = False, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.db_path = db_path.expanduser()
        self.read_only = read_only
        self.timeout = timeout
        self._local = threading.local()
        self._lock = threading.RLock()
        self._connections: set[sqlite3.Connection] = set()
        self._closed = False

    def connect(self) -> sqlite3.Connection:
        holder: _ThreadConnection | None = getattr(self._local, "holder", None)
        if holder is not None:
            return holder.conn
        if self._closed:
            raise sqlite3.ProgrammingError("Database has been closed")
        if self.read_only:
            uri = f"file:{self.db_path}?mode=ro"
            conn = sqlite3.connect(
                uri,
                uri=True,
                timeout=self.timeout,
                isolation_level=None,
                check_same_thread=False,
            )
        else:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                self.db_path,
                timeout=self.timeout,
                isolation_level=None,
                check_same_thread=False,
            )
        conn.row_factory = sqlite3.Row
        for pragma in DEFAULT_PRAGMAS:
            conn.execute(pragma)
        holder = _ThreadConnection(conn)
        with self._lock:
            self._connections.add(conn)
        weakref.finalize(holder, _release, self._lock, self._connections, conn)
        self._local.holder = holder
        return conn

    @property
    def open_connections(self) -> int:
        with self._lock:
            return len(self._connections)

    def close(self) -> None:
        with self._lock:
            self._closed = True
            connections = list(self._connections)
            self._connections.clear()
        for conn in connections:
            conn.close()
        self._local = threading.local()

    def __enter__(self) -> "SQLiteDatabase":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def executescript(self, script: str) -> None:
        conn = self.connect()
        conn.executescript(script)

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> sqlite3.Cursor:
        conn = self.connect()
        return conn.execute(sql, params or [])

    def executemany(self, sql: str, seq_of_params: Iterable[Sequence[Any]]) -> sqlite3.Cursor:
        conn = self.connect()
        return conn.executemany(sql, seq_of_params)

    def query(self, sql: str, params: Sequence[Any] | None = None) -> list[sqlite3.Row]:
        cursor = self.execute(sql, params)
        return cursor.fetchall()

    def query_one(self, sql: str, params: Sequence[Any] | None = None) -> sqlite3.Row | None:
        cursor = self.execute(sql, params)
        try:
            return cursor.fetchone()
        finally:
            cursor.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        conn = self.connect()
        cursor = conn.cursor()
        cursor.execute("BEGIN IMMEDIATE")
        try:
            yield cursor
            cursor.execute("COMMIT")
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            cursor.close()

    def ensure_schema(self, schema_sql: str | None = None) -> None:
        if schema_sql is None:
            schema_path = Path(__file__).with_name("schema.sql")
            schema_sql = schema_path.read_text(encoding="utf-8")
        self.executescript(schema_sql)


__all__ = ["SQLiteDatabase"]
