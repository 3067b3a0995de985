"""Persistent archive metadata: container fingerprints and entry locations."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator

from archive_serve.core.errors import ContainerUnreadable
from archive_serve.db.sqlite import SQLiteDatabase
from archive_serve.models.entities import ContainerRecord, EntryRecord
from archive_serve.utils.time import now_ms

_CONTAINER_COLUMNS = "id, path, size, modified_at, indexed_at, entry_count"
_ENTRY_COLUMNS = (
    "container_id, name, offset, compressed_size, uncompressed_size, encoding, method, crc32"
)
_ENTRY_COLUMNS_QUALIFIED = ", ".join(f"e.{column.strip()}" for column in _ENTRY_COLUMNS.split(","))


class StoreTransaction:
    """Mutating operations bound to one open write transaction.

    Nothing done through this object is visible to other connections until the
    enclosing ``MetadataStore.transaction()`` block exits cleanly.
    """

    def __init__(self, cursor: sqlite3.Cursor) -> None:
        self._cursor = cursor

    def lookup_container(self, path: str) -> ContainerRecord | None:
        row = self._cursor.execute(
            f"SELECT {_CONTAINER_COLUMNS} FROM containers WHERE path = ?",
            [path],
        ).fetchone()
        return _row_to_container(row) if row else None

    def replace_container(self, path: str, size: int, modified_at: int) -> int:
        # entries go with the old row through ON DELETE CASCADE
        self._cursor.execute("DELETE FROM containers WHERE path = ?", [path])
        self._cursor.execute(
            """
            INSERT INTO containers (path, size, modified_at, indexed_at, entry_count)
            VALUES (?, ?, ?, ?, 0)
            """,
            [path, size, modified_at, now_ms()],
        )
        return int(self._cursor.lastrowid)

    def insert_entries(self, container_id: int, entries: Iterable[EntryRecord]) -> int:
        rows = [
            (
                container_id,
                entry.name,
                entry.offset,
                entry.compressed_size,
                entry.uncompressed_size,
                entry.encoding,
                entry.method,
                entry.crc32,
            )
            for entry in entries
        ]
        self._cursor.executemany(
            f"INSERT INTO entries ({_ENTRY_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            rows,
        )
        self._cursor.execute(
            "UPDATE containers SET entry_count = entry_count + ? WHERE id = ?",
            [len(rows), container_id],
        )
        return len(rows)

    def forget_container(self, path: str) -> bool:
        self._cursor.execute("DELETE FROM containers WHERE path = ?", [path])
        return self._cursor.rowcount > 0

    def purge(self) -> int:
        self._cursor.execute("DELETE FROM containers")
        return self._cursor.rowcount


class MetadataStore:
    """Durable ``path -> container`` and ``(container, name) -> entry`` tables."""

    def __init__(self, database: SQLiteDatabase) -> None:
        self.db = database

    @classmethod
    def open(cls, db_path: Path) -> "MetadataStore":
        database = SQLiteDatabase(db_path)
        database.ensure_schema()
        return cls(database)

    def close(self) -> None:
        self.db.close()

    @contextmanager
    def transaction(self) -> Iterator[StoreTransaction]:
        """Run a replace-and-insert sequence as one all-or-nothing unit."""
        try:
            with self.db.transaction() as cursor:
                yield StoreTransaction(cursor)
        except sqlite3.Error as exc:
            raise ContainerUnreadable(f"Metadata store write failed: {exc}") from exc

    def lookup_container(self, path: str) -> ContainerRecord | None:
        row = self.db.query_one(
            f"SELECT {_CONTAINER_COLUMNS} FROM containers WHERE path = ?",
            [path],
        )
        return _row_to_container(row) if row else None

    def lookup_entry(self, container_id: int, name: str) -> EntryRecord | None:
        row = self.db.query_one(
            f"SELECT {_ENTRY_COLUMNS} FROM entries WHERE container_id = ? AND name = ?",
            [container_id, name],
        )
        return _row_to_entry(row) if row else None

    def lookup_entry_at(self, path: str, name: str) -> EntryRecord | None:
        """Resolve ``name`` in whichever generation of ``path`` is current.

        One statement, so the container row and the entry row come from the
        same snapshot even while another connection replaces the generation.
        """
        row = self.db.query_one(
            f"""
            SELECT {_ENTRY_COLUMNS_QUALIFIED}
            FROM entries e JOIN containers c ON c.id = e.container_id
            WHERE c.path = ? AND e.name = ?
            """,
            [path, name],
        )
        return _row_to_entry(row) if row else None

    def list_containers(self) -> list[ContainerRecord]:
        rows = self.db.query(f"SELECT {_CONTAINER_COLUMNS} FROM containers ORDER BY path")
        return [_row_to_container(row) for row in rows]

    def list_entries(self, container_id: int) -> list[EntryRecord]:
        rows = self.db.query(
            f"SELECT {_ENTRY_COLUMNS} FROM entries WHERE container_id = ? ORDER BY name",
            [container_id],
        )
        return [_row_to_entry(row) for row in rows]

    def count_entries(self, container_id: int) -> int:
        row = self.db.query_one(
            "SELECT COUNT(*) AS count FROM entries WHERE container_id = ?",
            [container_id],
        )
        return int(row["count"]) if row else 0

    def forget_container(self, path: str) -> bool:
        with self.transaction() as txn:
            return txn.forget_container(path)

    def purge(self) -> int:
        with self.transaction() as txn:
            return txn.purge()


def _row_to_container(row: sqlite3.Row) -> ContainerRecord:
    return ContainerRecord(
        id=row["id"],
        path=row["path"],
        size=row["size"],
        modified_at=row["modified_at"],
        indexed_at=row["indexed_at"],
        entry_count=row["entry_count"],
    )


def _row_to_entry(row: sqlite3.Row) -> EntryRecord:
    return EntryRecord(
        container_id=row["container_id"],
        name=row["name"],
        offset=row["offset"],
        compressed_size=row["compressed_size"],
        uncompressed_size=row["uncompressed_size"],
        encoding=row["encoding"],
        method=row["method"],
        crc32=row["crc32"],
    )


__all__ = ["MetadataStore", "StoreTransaction"]
