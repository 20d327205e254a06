"""
Catalog schema and the registry of entity types.

An EntityKind describes where an entity type lives, which column is its display
name, which scalar foreign keys point at it and which junction tables link it
to other entities. The merge engine and the candidate queries are driven
entirely by this registry.
"""

from typing import Dict, Iterable, NamedTuple, Optional, Tuple

from .errors import InvalidEntityType


SCHEMA = """
CREATE TABLE IF NOT EXISTS authors (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    bio TEXT,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS genres (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    description TEXT
);

CREATE TABLE IF NOT EXISTS formats (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS narrators (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS tags (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS series (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    description TEXT,
    num_books INTEGER,
    genre_id INTEGER REFERENCES genres(id),
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS books (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    isbn10 TEXT,
    isbn13 TEXT,
    asin TEXT,
    goodreads_id TEXT,
    publisher TEXT,
    publish_year INTEGER,
    author_id INTEGER REFERENCES authors(id),
    series_id INTEGER REFERENCES series(id),
    genre_id INTEGER REFERENCES genres(id),
    format_id INTEGER REFERENCES formats(id),
    narrator_id INTEGER REFERENCES narrators(id),
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS book_authors (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    book_id INTEGER NOT NULL REFERENCES books(id) ON DELETE CASCADE,
    author_id INTEGER NOT NULL REFERENCES authors(id) ON DELETE CASCADE,
    role TEXT DEFAULT 'Author',
    is_primary INTEGER DEFAULT 0,
    display_order INTEGER DEFAULT 0,
    UNIQUE (book_id, author_id)
);

CREATE TABLE IF NOT EXISTS book_series (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    book_id INTEGER NOT NULL REFERENCES books(id) ON DELETE CASCADE,
    series_id INTEGER NOT NULL REFERENCES series(id) ON DELETE CASCADE,
    book_num REAL,
    book_num_end INTEGER,
    is_primary INTEGER DEFAULT 0,
    display_order INTEGER DEFAULT 0,
    UNIQUE (book_id, series_id)
);

CREATE TABLE IF NOT EXISTS book_tags (
    book_id INTEGER NOT NULL REFERENCES books(id) ON DELETE CASCADE,
    tag_id INTEGER NOT NULL REFERENCES tags(id) ON DELETE CASCADE,
    PRIMARY KEY (book_id, tag_id)
);

CREATE TABLE IF NOT EXISTS series_tags (
    series_id INTEGER NOT NULL REFERENCES series(id) ON DELETE CASCADE,
    tag_id INTEGER NOT NULL REFERENCES tags(id) ON DELETE CASCADE,
    PRIMARY KEY (series_id, tag_id)
);

CREATE TABLE IF NOT EXISTS ignored_duplicates (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    entity_type TEXT NOT NULL,
    entity_id1 INTEGER NOT NULL,
    entity_id2 INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    created_by INTEGER,
    UNIQUE (entity_type, entity_id1, entity_id2),
    CHECK (entity_id1 < entity_id2)
);

CREATE INDEX IF NOT EXISTS idx_books_title ON books(title);
CREATE INDEX IF NOT EXISTS idx_books_isbn13 ON books(isbn13);
CREATE INDEX IF NOT EXISTS idx_authors_name ON authors(name);
CREATE INDEX IF NOT EXISTS idx_series_title ON series(title);
CREATE INDEX IF NOT EXISTS idx_book_authors_author ON book_authors(author_id);
CREATE INDEX IF NOT EXISTS idx_book_series_series ON book_series(series_id);
"""


class ForeignKey(NamedTuple):
    """A scalar column in ``table`` holding an id of the entity."""
    table: str
    column: str


class Junction(NamedTuple):
    """A link table: ``own_column`` points at the entity, ``other_column`` at its partner."""
    table: str
    own_column: str
    other_column: str


class EntityKind(NamedTuple):
    name: str
    table: str
    name_column: str
    foreign_keys: Tuple[ForeignKey, ...] = ()
    junctions: Tuple[Junction, ...] = ()
    # Columns a merge copies onto the primary when the primary has none
    fill_columns: Tuple[str, ...] = ()


BOOK_IDENTIFIER_TYPES = ('isbn13', 'isbn10', 'asin', 'goodreads_id')

ENTITY_KINDS: Dict[str, EntityKind] = {
    'book': EntityKind(
        name='book',
        table='books',
        name_column='title',
        junctions=(
            Junction('book_authors', 'book_id', 'author_id'),
            Junction('book_series', 'book_id', 'series_id'),
            Junction('book_tags', 'book_id', 'tag_id'),
        ),
        fill_columns=BOOK_IDENTIFIER_TYPES + (
            'publisher', 'publish_year', 'author_id', 'series_id',
            'genre_id', 'format_id', 'narrator_id',
        ),
    ),
    'author': EntityKind(
        name='author',
        table='authors',
        name_column='name',
        foreign_keys=(ForeignKey('books', 'author_id'),),
        junctions=(Junction('book_authors', 'author_id', 'book_id'),),
    ),
    'series': EntityKind(
        name='series',
        table='series',
        name_column='title',
        foreign_keys=(ForeignKey('books', 'series_id'),),
        junctions=(
            Junction('book_series', 'series_id', 'book_id'),
            Junction('series_tags', 'series_id', 'tag_id'),
        ),
    ),
    'genre': EntityKind(
        name='genre',
        table='genres',
        name_column='name',
        foreign_keys=(ForeignKey('books', 'genre_id'), ForeignKey('series', 'genre_id')),
    ),
    'tag': EntityKind(
        name='tag',
        table='tags',
        name_column='name',
        junctions=(
            Junction('book_tags', 'tag_id', 'book_id'),
            Junction('series_tags', 'tag_id', 'series_id'),
        ),
    ),
    'narrator': EntityKind(
        name='narrator',
        table='narrators',
        name_column='name',
        foreign_keys=(ForeignKey('books', 'narrator_id'),),
    ),
    'format': EntityKind(
        name='format',
        table='formats',
        name_column='name',
        foreign_keys=(ForeignKey('books', 'format_id'),),
    ),
}

# Entity types that take part in duplicate detection and the ignore list
DUPLICATE_ENTITY_TYPES = ('book', 'author', 'series')
MERGEABLE_ENTITY_TYPES = tuple(ENTITY_KINDS)

_ALIASES = {
    'books': 'book',
    'authors': 'author',
    'genres': 'genre',
    'tags': 'tag',
    'narrators': 'narrator',
    'formats': 'format',
}


def resolve_entity_type(entity_type, allowed: Optional[Iterable[str]] = None) -> str:
    """
    Return the canonical entity type name for ``entity_type``.

    Plural forms ("authors") are accepted. Raises InvalidEntityType when the
    value is not a string or names a type outside ``allowed`` (default: every
    registered type).
    """
    allowed = tuple(allowed) if allowed is not None else MERGEABLE_ENTITY_TYPES
    if not isinstance(entity_type, str):
        raise InvalidEntityType(entity_type, allowed)
    key = entity_type.strip().lower()
    key = _ALIASES.get(key, key)
    if key not in allowed:
        raise InvalidEntityType(entity_type, allowed)
    return key


def get_kind(entity_type, allowed: Optional[Iterable[str]] = None) -> EntityKind:
    return ENTITY_KINDS[resolve_entity_type(entity_type, allowed)]
