"""
Entry Store — SQLite persistence for concepts, patterns, commands and errors.

Each category lives in its own table; a single ``search_index`` table holds
per-field term counts for every record.  A record and its index rows are
always written in the same transaction, so an index entry can never outlive
(or lag behind) its record.

Connections are opened per operation in WAL mode, which lets any number of
readers run concurrently.  Writers are serialized by an in-process lock.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import fields
from typing import Iterable, Optional

from .errors import MalformedRecordError, StoreIOError
from .models import Category, Record, field_text
from .text import contains_phrase, term_counts

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Schema and migrations
# ---------------------------------------------------------------------------

_SCHEMA_V1 = """
CREATE TABLE IF NOT EXISTS concepts (
    seq              INTEGER PRIMARY KEY AUTOINCREMENT,
    id               TEXT    UNIQUE NOT NULL,
    topic            TEXT    NOT NULL,
    title            TEXT    NOT NULL,
    explanation      TEXT    NOT NULL,
    code_examples    TEXT    NOT NULL DEFAULT '[]',
    common_mistakes  TEXT    NOT NULL DEFAULT '[]',
    related_concepts TEXT    NOT NULL DEFAULT '[]',
    tags             TEXT    NOT NULL DEFAULT '[]'
);

CREATE TABLE IF NOT EXISTS patterns (
    seq          INTEGER PRIMARY KEY AUTOINCREMENT,
    id           TEXT    UNIQUE NOT NULL,
    name         TEXT    NOT NULL,
    description  TEXT    NOT NULL,
    template     TEXT    NOT NULL DEFAULT '',
    when_to_use  TEXT    NOT NULL DEFAULT '',
    examples     TEXT    NOT NULL DEFAULT '[]'
);

CREATE TABLE IF NOT EXISTS commands (
    seq          INTEGER PRIMARY KEY AUTOINCREMENT,
    key          TEXT    UNIQUE NOT NULL,
    tool         TEXT    NOT NULL,
    command      TEXT    NOT NULL,
    description  TEXT    NOT NULL,
    flags        TEXT    NOT NULL DEFAULT '[]',
    examples     TEXT    NOT NULL DEFAULT '[]'
);

CREATE TABLE IF NOT EXISTS errors (
    seq            INTEGER PRIMARY KEY AUTOINCREMENT,
    code           TEXT    UNIQUE NOT NULL,
    title          TEXT    NOT NULL,
    explanation    TEXT    NOT NULL,
    example_code   TEXT    NOT NULL DEFAULT '',
    fix            TEXT    NOT NULL DEFAULT '',
    related_errors TEXT    NOT NULL DEFAULT '[]'
);

CREATE TABLE IF NOT EXISTS search_index (
    category   TEXT    NOT NULL,
    entry_key  TEXT    NOT NULL,
    field      TEXT    NOT NULL,
    term       TEXT    NOT NULL,
    hits       INTEGER NOT NULL,
    PRIMARY KEY (category, entry_key, field, term)
);

CREATE INDEX IF NOT EXISTS idx_search_term  ON search_index(category, term);
CREATE INDEX IF NOT EXISTS idx_commands_tool ON commands(tool);
CREATE INDEX IF NOT EXISTS idx_concepts_topic ON concepts(topic);
"""

# (version, script) pairs, applied in order to databases below that version.
_MIGRATIONS: list[tuple[int, str]] = [
    (1, _SCHEMA_V1),
    (2, "ALTER TABLE patterns ADD COLUMN when_not_to_use TEXT NOT NULL DEFAULT '';"),
]

SCHEMA_VERSION = _MIGRATIONS[-1][0]

_KEY_COLUMNS = {
    Category.CONCEPT: "id",
    Category.PATTERN: "id",
    Category.COMMAND: "key",
    Category.ERROR: "code",
}


class EntryStore:
    """
    SQLite-backed store for the four knowledge categories.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file.  Created (with its parent
        directory) if absent.

    Raises
    ------
    StoreIOError
        If the database cannot be created or migrated.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = os.path.abspath(os.path.expanduser(db_path))
        self._write_lock = threading.Lock()
        try:
            os.makedirs(os.path.dirname(self._db_path), exist_ok=True)
        except OSError as exc:
            raise StoreIOError(
                f"Cannot create store directory for {self._db_path}: {exc}",
                self._db_path,
            ) from exc
        self._init_db()

    @property
    def db_path(self) -> str:
        return self._db_path

    @staticmethod
    def exists(db_path: str) -> bool:
        """True if a store file is already present at *db_path*."""
        return os.path.isfile(os.path.abspath(os.path.expanduser(db_path)))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _connect(self):
        """Yield a connection in WAL mode; commit on success, roll back on error."""
        try:
            conn = sqlite3.connect(self._db_path, timeout=10)
        except sqlite3.Error as exc:
            raise StoreIOError(
                f"Cannot open knowledge store at {self._db_path}: {exc}",
                self._db_path,
            ) from exc
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.row_factory = sqlite3.Row
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise StoreIOError(
                f"Knowledge store error at {self._db_path}: {exc}",
                self._db_path,
            ) from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Apply every migration newer than the file's ``user_version``."""
        with self._write_lock, self._connect() as conn:
            current = conn.execute("PRAGMA user_version").fetchone()[0]
            for version, script in _MIGRATIONS:
                if version <= current:
                    continue
                logger.debug("Migrating %s to schema v%d", self._db_path, version)
                conn.executescript(script)
                conn.execute(f"PRAGMA user_version = {version}")
                current = version

    @staticmethod
    def _validate(category: Category, record: Record) -> None:
        if not isinstance(record, category.record_type):
            raise MalformedRecordError(
                f"Expected {category.record_type.__name__} for category "
                f"'{category.value}', got {type(record).__name__}"
            )
        for name in category.required_fields:
            value = getattr(record, name, None)
            if not isinstance(value, str) or not value.strip():
                raise MalformedRecordError(
                    f"{category.value} record is missing required field '{name}'"
                )

    @staticmethod
    def _encode(category: Category, record: Record) -> dict:
        """Flatten a record into column values (lists become JSON)."""
        values = {}
        for name, value in record.to_dict().items():
            values[name] = json.dumps(value) if isinstance(value, list) else value
        if category is Category.COMMAND:
            values["key"] = record.key
        return values

    @staticmethod
    def _decode(category: Category, row: sqlite3.Row) -> Record:
        data = {}
        for f in fields(category.record_type):
            value = row[f.name]
            if isinstance(value, str) and f.type.startswith("list"):
                value = json.loads(value)
            data[f.name] = value
        return category.record_type.from_dict(data)

    @staticmethod
    def _index_rows(category: Category, record: Record) -> list[tuple]:
        rows = []
        key = record.key
        for name in category.indexed_fields:
            for term, hits in sorted(term_counts(field_text(record, name)).items()):
                rows.append((category.value, key, name, term, hits))
        # Records with no indexable words keep one placeholder row; the empty
        # term never matches a query
        if not rows:
            rows.append((category.value, key, "", "", 0))
        return rows

    def _write(self, conn: sqlite3.Connection, category: Category, record: Record) -> None:
        values = self._encode(category, record)
        key_col = _KEY_COLUMNS[category]
        cols = list(values)
        updates = ", ".join(f"{c} = excluded.{c}" for c in cols if c != key_col)
        conn.execute(
            f"INSERT INTO {category.table} ({', '.join(cols)}) "
            f"VALUES ({', '.join('?' for _ in cols)}) "
            f"ON CONFLICT({key_col}) DO UPDATE SET {updates}",
            [values[c] for c in cols],
        )
        conn.execute(
            "DELETE FROM search_index WHERE category = ? AND entry_key = ?",
            (category.value, record.key),
        )
        conn.executemany(
            "INSERT INTO search_index (category, entry_key, field, term, hits) "
            "VALUES (?, ?, ?, ?, ?)",
            self._index_rows(category, record),
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(self, category: Category, record: Record) -> None:
        """
        Insert *record* or overwrite the record with the same identity key.

        An overwrite keeps the original insertion position, so ranking
        tie-breaks are unaffected by re-ingestion.

        Raises
        ------
        MalformedRecordError
            If required fields are missing or the record type is wrong.
        StoreIOError
            On any persistence failure.
        """
        self._validate(category, record)
        with self._write_lock, self._connect() as conn:
            self._write(conn, category, record)

    def upsert_many(self, category: Category, records: Iterable[Record]) -> int:
        """
        Upsert several records in a single transaction.

        All records are validated before anything is written.  Returns the
        number of records written.
        """
        records = list(records)
        for record in records:
            self._validate(category, record)
        if not records:
            return 0
        with self._write_lock, self._connect() as conn:
            for record in records:
                self._write(conn, category, record)
        return len(records)

    def clear(self) -> None:
        """Remove every record and index row (full re-ingestion only)."""
        with self._write_lock, self._connect() as conn:
            for category in Category:
                conn.execute(f"DELETE FROM {category.table}")
            conn.execute("DELETE FROM search_index")
        logger.info("Cleared knowledge store %s", self._db_path)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, category: Category, key: str) -> Optional[Record]:
        """Exact lookup by identity key; ``None`` when absent."""
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT * FROM {category.table} WHERE {_KEY_COLUMNS[category]} = ?",
                (key,),
            ).fetchone()
        return self._decode(category, row) if row else None

    def search(
        self,
        category: Category,
        terms: list[str],
        limit: int,
        tool: Optional[str] = None,
    ) -> list[Record]:
        """
        Ranked AND-of-terms search within one category.

        Ordering: number of distinct query terms matched (descending), then
        whether the terms appear as a phrase in the title/name field, then
        insertion order.  Under AND semantics the first key is constant, so
        title phrase and insertion order decide in practice.  An empty term list returns ``[]``.

        Parameters
        ----------
        category:
            Category to search.
        terms:
            Normalized search terms (see :func:`~knowledge_agent.kb.text.tokenize`).
        limit:
            Maximum number of records returned.
        tool:
            Command category only: restrict to one tool (case-insensitive).
        """
        terms = list(dict.fromkeys(t.lower() for t in terms if t))
        if not terms or limit <= 0:
            return []

        placeholders = ", ".join("?" for _ in terms)
        sql = (
            f"SELECT t.*, s.matched FROM ("
            f"  SELECT entry_key, COUNT(DISTINCT term) AS matched FROM search_index"
            f"  WHERE category = ? AND term IN ({placeholders})"
            f"  GROUP BY entry_key HAVING COUNT(DISTINCT term) = ?"
            f") AS s JOIN {category.table} AS t"
            f" ON t.{_KEY_COLUMNS[category]} = s.entry_key"
        )
        params: list = [category.value, *terms, len(terms)]
        if tool is not None and category is Category.COMMAND:
            sql += " WHERE lower(t.tool) = lower(?)"
            params.append(tool)

        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()

        title_col = category.title_field
        ranked = sorted(
            rows,
            key=lambda r: (
                -r["matched"],
                not contains_phrase(r[title_col], terms),
                r["seq"],
            ),
        )
        return [self._decode(category, r) for r in ranked[:limit]]

    def all(self, category: Category) -> list[Record]:
        """Every record of *category* in insertion order."""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM {category.table} ORDER BY seq"
            ).fetchall()
        return [self._decode(category, r) for r in rows]

    def filter(self, category: Category, column: str, value: str) -> list[Record]:
        """Records whose *column* equals *value*, in insertion order."""
        known = {f.name for f in fields(category.record_type)}
        if column not in known:
            raise ValueError(f"Unknown column '{column}' for {category.value}")
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM {category.table} WHERE lower({column}) = lower(?) "
                f"ORDER BY seq",
                (value,),
            ).fetchall()
        return [self._decode(category, r) for r in rows]

    def count(self, category: Category) -> int:
        """Number of records in *category*."""
        with self._connect() as conn:
            row = conn.execute(f"SELECT COUNT(*) FROM {category.table}").fetchone()
        return row[0] if row else 0

    def counts(self) -> dict[Category, int]:
        """Record counts for every category."""
        return {category: self.count(category) for category in Category}

    def index_size(self, category: Optional[Category] = None) -> int:
        """Number of index rows, optionally for one category."""
        with self._connect() as conn:
            if category is None:
                row = conn.execute("SELECT COUNT(*) FROM search_index").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) FROM search_index WHERE category = ?",
                    (category.value,),
                ).fetchone()
        return row[0] if row else 0

    def schema_version(self) -> int:
        with self._connect() as conn:
            return conn.execute("PRAGMA user_version").fetchone()[0]
