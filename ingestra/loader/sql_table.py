"""
Relational destinations for sql_table targets.

A TableWriter owns one warehouse (a SQLite file or a BigQuery dataset).
Table and column names reaching a writer have already passed the identifier
allow-list; all values are bound parameters.
"""

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Optional, Protocol, Sequence, Union, runtime_checkable

from ingestra.loader.identifiers import validate_identifier
from ingestra.loader.type_inference import ColumnType

logger = logging.getLogger(__name__)


RowErrors = list[tuple[int, str]]


@runtime_checkable
class TableWriter(Protocol):
    """Write boundary for sql_table targets."""

    def ensure_table(
        self,
        table: str,
        columns: dict[str, ColumnType],
        key_column: Optional[str] = None,
    ) -> dict[str, ColumnType]:
        """
        Create the table if absent and make sure every column exists.

        Returns:
            The destination's declared type for each requested column, which
            may differ from the inferred one when the table already existed
        """
        ...

    def truncate(self, table: str) -> None:
        ...

    def write_rows(
        self,
        table: str,
        columns: Sequence[str],
        rows: Sequence[Sequence[Any]],
        key_column: Optional[str] = None,
    ) -> RowErrors:
        """
        Insert (or upsert on key_column) a batch.

        Returns:
            (position in rows, message) for rows the destination rejected
            individually. Raises when the batch as a whole fails.
        """
        ...

    def lock_for(self, table: str) -> threading.Lock:
        """Lock serialising replace-mode loads of one table."""
        ...


class DestinationLocks:
    """Lazily created per-table locks."""

    def __init__(self):
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def get(self, table: str) -> threading.Lock:
        with self._guard:
            if table not in self._locks:
                self._locks[table] = threading.Lock()
            return self._locks[table]


SQLITE_DECLARED_TYPES = {
    ColumnType.INTEGER: "INTEGER",
    ColumnType.DECIMAL: "DECIMAL(15,2)",
    ColumnType.DATE: "DATE",
    ColumnType.BOOLEAN: "BOOLEAN",
    ColumnType.UUID: "UUID",
    ColumnType.TEXT: "TEXT",
}


def quote(name: str) -> str:
    """Quote an allow-listed identifier so reserved words are usable."""
    return f'"{validate_identifier(name)}"'


def column_type_from_declared(declared: str) -> ColumnType:
    """Map a declared SQL column type back to a ColumnType."""
    upper = (declared or "").upper()
    if upper.startswith(("INT", "BIGINT", "SMALLINT")):
        return ColumnType.INTEGER
    if upper.startswith(("DECIMAL", "NUMERIC", "REAL", "FLOAT", "DOUBLE")):
        return ColumnType.DECIMAL
    if upper.startswith("DATE"):
        return ColumnType.DATE
    if upper.startswith("BOOL"):
        return ColumnType.BOOLEAN
    if upper.startswith("UUID"):
        return ColumnType.UUID
    return ColumnType.TEXT


class SqliteTableWriter:
    """
    TableWriter over a SQLite warehouse file.

    Tables get an `_id` rowid key and an `_imported_at` timestamp alongside
    the data columns. Each write_rows call is one transaction.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = str(path)
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.path, check_same_thread=False)
        self._conn_lock = threading.RLock()
        self._locks = DestinationLocks()

    def close(self) -> None:
        self._conn.close()

    def lock_for(self, table: str) -> threading.Lock:
        return self._locks.get(table)

    def table_exists(self, table: str) -> bool:
        with self._conn_lock:
            row = self._conn.execute(
                "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (table,)
            ).fetchone()
        return row is not None

    def table_columns(self, table: str) -> dict[str, ColumnType]:
        validate_identifier(table)
        with self._conn_lock:
            info = self._conn.execute(f"PRAGMA table_info({quote(table)})").fetchall()
        # (cid, name, type, notnull, default, pk)
        return {
            row[1]: column_type_from_declared(row[2])
            for row in info
            if row[1] not in ("_id", "_imported_at")
        }

    def ensure_table(self, table, columns, key_column=None):
        validate_identifier(table)
        for name in columns:
            validate_identifier(name)

        with self._conn_lock:
            if not self.table_exists(table):
                column_defs = [
                    f"{quote(name)} {SQLITE_DECLARED_TYPES[ctype]}" for name, ctype in columns.items()
                ]
                definition = ", ".join(
                    ["_id INTEGER PRIMARY KEY AUTOINCREMENT"]
                    + column_defs
                    + ["_imported_at TEXT DEFAULT CURRENT_TIMESTAMP"]
                )
                self._conn.execute(f"CREATE TABLE IF NOT EXISTS {quote(table)} ({definition})")
                logger.info(f"Created table {table} with {len(columns)} columns")
            else:
                existing = self.table_columns(table)
                for name, ctype in columns.items():
                    if name not in existing:
                        self._conn.execute(
                            f"ALTER TABLE {quote(table)} ADD COLUMN {quote(name)} {SQLITE_DECLARED_TYPES[ctype]}"
                        )
                        logger.info(f"Added column {name} to {table}")

            if key_column:
                validate_identifier(key_column)
                self._conn.execute(
                    f"CREATE UNIQUE INDEX IF NOT EXISTS ux_{table}_{key_column} "
                    f"ON {quote(table)} ({quote(key_column)})"
                )
            self._conn.commit()
            declared = self.table_columns(table)

        return {name: declared.get(name, ctype) for name, ctype in columns.items()}

    def truncate(self, table):
        validate_identifier(table)
        with self._conn_lock:
            self._conn.execute(f"DELETE FROM {quote(table)}")
            self._conn.commit()

    def write_rows(self, table, columns, rows, key_column=None):
        validate_identifier(table)
        for name in columns:
            validate_identifier(name)

        column_list = ", ".join(quote(c) for c in columns)
        placeholders = ", ".join("?" for _ in columns)
        statement = f"INSERT INTO {quote(table)} ({column_list}) VALUES ({placeholders})"
        if key_column:
            updates = ", ".join(f"{quote(c)} = excluded.{quote(c)}" for c in columns if c != key_column)
            if updates:
                statement += f" ON CONFLICT ({quote(key_column)}) DO UPDATE SET {updates}"
            else:
                statement += f" ON CONFLICT ({quote(key_column)}) DO NOTHING"

        with self._conn_lock:
            try:
                self._conn.executemany(statement, [tuple(r) for r in rows])
                self._conn.commit()
            except sqlite3.Error:
                self._conn.rollback()
                raise
        return []

    def count_rows(self, table: str) -> int:
        validate_identifier(table)
        with self._conn_lock:
            return self._conn.execute(f"SELECT COUNT(*) FROM {quote(table)}").fetchone()[0]

    def fetch_rows(self, table: str) -> list[dict[str, Any]]:
        validate_identifier(table)
        with self._conn_lock:
            cursor = self._conn.execute(f"SELECT * FROM {quote(table)} ORDER BY _id")
            names = [d[0] for d in cursor.description]
            return [dict(zip(names, row)) for row in cursor.fetchall()]
