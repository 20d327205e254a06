"""
Database wrapper for the library catalog.

This module provides direct access to the catalog SQLite database. All SQL
used by duplicate detection, the ignore list and the merge engine lives here;
table and column names always come from the entity registry in schema.py.
"""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Set

from .errors import ValidationError
from .schema import (
    BOOK_IDENTIFIER_TYPES,
    DUPLICATE_ENTITY_TYPES,
    MERGEABLE_ENTITY_TYPES,
    SCHEMA,
    EntityKind,
    ForeignKey,
    Junction,
    get_kind,
)

logger = logging.getLogger(__name__)

# First linked author of a book, falling back to the legacy scalar author_id
_BOOK_AUTHOR_SQL = """
    COALESCE(
        (SELECT a.name FROM book_authors ba
         JOIN authors a ON a.id = ba.author_id
         WHERE ba.book_id = e.id
         ORDER BY ba.is_primary DESC, ba.display_order, ba.id
         LIMIT 1),
        (SELECT a.name FROM authors a WHERE a.id = e.author_id)
    )
"""


def _placeholders(count: int) -> str:
    return ', '.join('?' * count)


def _escape_like(text: str) -> str:
    return text.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')


class CatalogDB:
    """
    Interface to a catalog database.

    Writes outside of ``transaction()`` are committed immediately; the merge
    engine wraps its work in ``transaction()`` so that every step commits or
    rolls back together.

    Example usage:
        with CatalogDB('/path/to/catalog.db') as db:
            with db.transaction():
                db.bulk_update_foreign_key('books', 'author_id', [9], 5)
    """

    def __init__(self, db_path: str, read_only: bool = False,
                 create: bool = False, timeout: float = 15.0):
        """
        Open a catalog database.

        Args:
            db_path: Path to the SQLite database file
            read_only: Open the database in read-only mode
            create: Create the file and schema if missing
            timeout: Seconds to wait for a lock held by another connection
        """
        self.db_path = Path(db_path)

        if not create and not self.db_path.exists():
            raise FileNotFoundError(f"Catalog database not found at {self.db_path}")
        if create and read_only:
            raise ValueError("Cannot create a database in read-only mode")

        self.read_only = read_only
        self.timeout = timeout
        self._conn: Optional[sqlite3.Connection] = None
        self._in_transaction = False
        self._connect()

        if create:
            self.create_schema()

    @classmethod
    def create(cls, db_path: str) -> 'CatalogDB':
        """Open ``db_path`` for writing, creating the file and schema if needed."""
        return cls(db_path, create=True)

    def _connect(self):
        if self.read_only:
            self._conn = sqlite3.connect(f"file:{self.db_path}?mode=ro", uri=True,
                                         timeout=self.timeout, isolation_level=None)
        else:
            self._conn = sqlite3.connect(str(self.db_path), timeout=self.timeout,
                                         isolation_level=None)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")

    def close(self):
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def create_schema(self) -> None:
        self._conn.executescript(SCHEMA)

    def execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        return self._conn.execute(sql, params)

    @contextmanager
    def transaction(self) -> Iterator['CatalogDB']:
        """
        Run the enclosed block as one IMMEDIATE transaction.

        The write lock is taken up front so two merges never interleave. Any
        exception rolls the whole block back and is re-raised. Nested calls
        join the outer transaction.
        """
        if self._in_transaction:
            yield self
            return

        self._conn.execute("BEGIN IMMEDIATE")
        self._in_transaction = True
        try:
            yield self
            self._conn.execute("COMMIT")
        except BaseException:
            if self._conn.in_transaction:
                self._conn.execute("ROLLBACK")
                logger.debug("Transaction rolled back")
            raise
        finally:
            self._in_transaction = False

    # ----------------------------------------------------------------
    # Entity lookups
    # ----------------------------------------------------------------

    def _select_entities(self, kind: EntityKind) -> str:
        if kind.name == 'book':
            return (f"SELECT e.id, e.title AS name, e.isbn13, {_BOOK_AUTHOR_SQL} AS author "
                    f"FROM books e")
        return f"SELECT e.id, e.{kind.name_column} AS name FROM {kind.table} e"

    def count(self, entity_type: str) -> int:
        kind = get_kind(entity_type)
        return self._conn.execute(f"SELECT COUNT(*) FROM {kind.table}").fetchone()[0]

    def all_entities(self, entity_type: str) -> List[Dict[str, Any]]:
        """Return every entity of a type as dicts with ``id`` and ``name`` (books add ``author``, ``isbn13``)."""
        kind = get_kind(entity_type)
        cursor = self._conn.execute(self._select_entities(kind) + " ORDER BY e.id")
        return [dict(row) for row in cursor.fetchall()]

    def get_entity(self, entity_type: str, entity_id: int) -> Optional[Dict[str, Any]]:
        kind = get_kind(entity_type)
        row = self._conn.execute(
            self._select_entities(kind) + " WHERE e.id = ?", (entity_id,)
        ).fetchone()
        return dict(row) if row else None

    def get_row(self, entity_type: str, entity_id: int) -> Optional[Dict[str, Any]]:
        """Return the full table row of an entity."""
        kind = get_kind(entity_type)
        row = self._conn.execute(
            f"SELECT * FROM {kind.table} WHERE id = ?", (entity_id,)
        ).fetchone()
        return dict(row) if row else None

    def existing_ids(self, entity_type: str, entity_ids: Iterable[int]) -> Set[int]:
        kind = get_kind(entity_type)
        ids = list(entity_ids)
        if not ids:
            return set()
        cursor = self._conn.execute(
            f"SELECT id FROM {kind.table} WHERE id IN ({_placeholders(len(ids))})", ids
        )
        return {row[0] for row in cursor.fetchall()}

    # ----------------------------------------------------------------
    # Candidate search
    # ----------------------------------------------------------------

    def find_by_name_terms(self, entity_type: str, terms: Sequence[str],
                           limit: int = 100,
                           exclude_id: Optional[int] = None) -> List[Dict[str, Any]]:
        """Entities whose name contains any of ``terms`` (case-insensitive)."""
        if not terms:
            return []
        kind = get_kind(entity_type)
        clauses = ' OR '.join(f"e.{kind.name_column} LIKE ? ESCAPE '\\'" for _ in terms)
        params: List[Any] = [f"%{_escape_like(t)}%" for t in terms]
        sql = self._select_entities(kind) + f" WHERE ({clauses})"
        if exclude_id is not None:
            sql += " AND e.id != ?"
            params.append(exclude_id)
        sql += " ORDER BY e.id LIMIT ?"
        params.append(limit)
        return [dict(row) for row in self._conn.execute(sql, params).fetchall()]

    def find_by_name_prefix(self, entity_type: str, prefix: str,
                            limit: int = 50,
                            exclude_id: Optional[int] = None) -> List[Dict[str, Any]]:
        """Entities whose name starts with ``prefix`` (case-insensitive)."""
        kind = get_kind(entity_type)
        params: List[Any] = [f"{_escape_like(prefix)}%"]
        sql = self._select_entities(kind) + f" WHERE e.{kind.name_column} LIKE ? ESCAPE '\\'"
        if exclude_id is not None:
            sql += " AND e.id != ?"
            params.append(exclude_id)
        sql += " ORDER BY e.id LIMIT ?"
        params.append(limit)
        return [dict(row) for row in self._conn.execute(sql, params).fetchall()]

    def find_by_identifier(self, code: str, identifier_type: str = 'isbn13',
                           exclude_id: Optional[int] = None) -> Optional[Dict[str, Any]]:
        """Return the first book whose identifier equals ``code`` (hyphens and spaces ignored)."""
        if identifier_type not in BOOK_IDENTIFIER_TYPES:
            raise ValidationError(
                f"Unknown identifier type: {identifier_type!r} "
                f"(expected one of: {', '.join(BOOK_IDENTIFIER_TYPES)})"
            )
        kind = get_kind('book')
        column = f"REPLACE(REPLACE(e.{identifier_type}, '-', ''), ' ', '')"
        params: List[Any] = [code]
        sql = self._select_entities(kind) + f" WHERE {column} = ?"
        if exclude_id is not None:
            sql += " AND e.id != ?"
            params.append(exclude_id)
        sql += " ORDER BY e.id LIMIT 1"
        row = self._conn.execute(sql, params).fetchone()
        return dict(row) if row else None

    # ----------------------------------------------------------------
    # Write helpers used by the merge engine
    # ----------------------------------------------------------------

    def bulk_update_foreign_key(self, table: str, column: str,
                                from_ids: Sequence[int], to_id: int) -> int:
        """Point every ``table.column`` in ``from_ids`` at ``to_id``; returns rows changed."""
        if not from_ids:
            return 0
        cursor = self._conn.execute(
            f"UPDATE {table} SET {column} = ? WHERE {column} IN ({_placeholders(len(from_ids))})",
            [to_id, *from_ids],
        )
        return cursor.rowcount

    def rewrite_foreign_key(self, fk: ForeignKey, from_ids: Sequence[int], to_id: int) -> int:
        return self.bulk_update_foreign_key(fk.table, fk.column, from_ids, to_id)

    def junction_links(self, junction: Junction,
                       entity_ids: Sequence[int]) -> List[sqlite3.Row]:
        """Rows of ``junction`` owned by ``entity_ids`` as (row_id, owner, other)."""
        if not entity_ids:
            return []
        cursor = self._conn.execute(f"""
            SELECT rowid AS row_id, {junction.own_column} AS owner, {junction.other_column} AS other
            FROM {junction.table}
            WHERE {junction.own_column} IN ({_placeholders(len(entity_ids))})
            ORDER BY {junction.own_column}, rowid
        """, list(entity_ids))
        return cursor.fetchall()

    def linked_ids(self, junction: Junction, entity_id: int) -> Set[int]:
        cursor = self._conn.execute(
            f"SELECT {junction.other_column} FROM {junction.table} WHERE {junction.own_column} = ?",
            (entity_id,),
        )
        return {row[0] for row in cursor.fetchall()}

    def repoint_junction_row(self, junction: Junction, rowid: int, to_id: int) -> None:
        self._conn.execute(
            f"UPDATE {junction.table} SET {junction.own_column} = ? WHERE rowid = ?",
            (to_id, rowid),
        )

    def delete_junction_row(self, junction: Junction, rowid: int) -> None:
        self._conn.execute(f"DELETE FROM {junction.table} WHERE rowid = ?", (rowid,))

    def delete_junction_rows(self, junction: Junction, entity_ids: Sequence[int]) -> int:
        if not entity_ids:
            return 0
        cursor = self._conn.execute(
            f"DELETE FROM {junction.table} "
            f"WHERE {junction.own_column} IN ({_placeholders(len(entity_ids))})",
            list(entity_ids),
        )
        return cursor.rowcount

    def delete_entities(self, entity_type: str, entity_ids: Sequence[int]) -> int:
        kind = get_kind(entity_type)
        if not entity_ids:
            return 0
        cursor = self._conn.execute(
            f"DELETE FROM {kind.table} WHERE id IN ({_placeholders(len(entity_ids))})",
            list(entity_ids),
        )
        return cursor.rowcount

    def update_columns(self, entity_type: str, entity_id: int, values: Dict[str, Any]) -> None:
        if not values:
            return
        kind = get_kind(entity_type)
        assignments = ', '.join(f"{column} = ?" for column in values)
        self._conn.execute(
            f"UPDATE {kind.table} SET {assignments} WHERE id = ?",
            [*values.values(), entity_id],
        )

    # ----------------------------------------------------------------
    # Ignored duplicate pairs
    # ----------------------------------------------------------------

    def ignored_pair_exists(self, entity_type: str, entity_id1: int, entity_id2: int) -> bool:
        row = self._conn.execute("""
            SELECT 1 FROM ignored_duplicates
            WHERE entity_type = ? AND entity_id1 = ? AND entity_id2 = ?
            LIMIT 1
        """, (entity_type, entity_id1, entity_id2)).fetchone()
        return row is not None

    def insert_ignored_pair(self, entity_type: str, entity_id1: int, entity_id2: int,
                            created_at: str, created_by: Optional[int] = None) -> None:
        """Insert a canonical pair; raises sqlite3.IntegrityError if it already exists."""
        self._conn.execute("""
            INSERT INTO ignored_duplicates
                (entity_type, entity_id1, entity_id2, created_at, created_by)
            VALUES (?, ?, ?, ?, ?)
        """, (entity_type, entity_id1, entity_id2, created_at, created_by))

    def delete_ignored_pair(self, entity_type: str, entity_id1: int, entity_id2: int) -> int:
        cursor = self._conn.execute("""
            DELETE FROM ignored_duplicates
            WHERE entity_type = ? AND entity_id1 = ? AND entity_id2 = ?
        """, (entity_type, entity_id1, entity_id2))
        return cursor.rowcount

    def ignored_pairs(self, entity_type: str,
                      entity_ids: Optional[Sequence[int]] = None) -> List[Dict[str, Any]]:
        """Ignored pair rows of a type, optionally only those mentioning ``entity_ids``."""
        sql = """
            SELECT id, entity_type, entity_id1, entity_id2, created_at, created_by
            FROM ignored_duplicates WHERE entity_type = ?
        """
        params: List[Any] = [entity_type]
        if entity_ids is not None:
            if not entity_ids:
                return []
            marks = _placeholders(len(entity_ids))
            sql += f" AND (entity_id1 IN ({marks}) OR entity_id2 IN ({marks}))"
            params.extend(entity_ids)
            params.extend(entity_ids)
        sql += " ORDER BY entity_id1, entity_id2"
        return [dict(row) for row in self._conn.execute(sql, params).fetchall()]

    def update_ignored_pair(self, row_id: int, entity_id1: int, entity_id2: int) -> None:
        self._conn.execute(
            "UPDATE ignored_duplicates SET entity_id1 = ?, entity_id2 = ? WHERE id = ?",
            (entity_id1, entity_id2, row_id),
        )

    def delete_ignored_row(self, row_id: int) -> None:
        self._conn.execute("DELETE FROM ignored_duplicates WHERE id = ?", (row_id,))

    def count_ignored(self, entity_type: str) -> int:
        return self._conn.execute(
            "SELECT COUNT(*) FROM ignored_duplicates WHERE entity_type = ?", (entity_type,)
        ).fetchone()[0]

    # ----------------------------------------------------------------
    # Library info
    # ----------------------------------------------------------------

    def get_info(self) -> Dict[str, Any]:
        """Summary counts for every entity type and the ignore list."""
        return {
            'database': str(self.db_path.absolute()),
            'counts': {t: self.count(t) for t in MERGEABLE_ENTITY_TYPES},
            'ignored_pairs': {t: self.count_ignored(t) for t in DUPLICATE_ENTITY_TYPES},
        }
