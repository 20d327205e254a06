import sqlite3

import pytest

from catalog_cli.core.errors import (
    EntityNotFound,
    InvalidEntityType,
    MergeError,
    SameEntityError,
    ValidationError,
)
from catalog_cli.duplicates.ignored import IgnoreList
from catalog_cli.duplicates.merge import MergeEngine


@pytest.fixture
def engine(db):
    return MergeEngine(db)


@pytest.fixture
def authors(catalog):
    catalog.author("John Smith", id=5)
    catalog.author("Smith, John", id=9)
    catalog.book("Edge World", id=42, author_id=9)
    catalog.link_author(42, 9)
    return catalog


def snapshot(catalog):
    return {
        table: catalog.rows(f"SELECT * FROM {table} ORDER BY 1, 2")
        for table in ('authors', 'books', 'book_authors', 'ignored_duplicates')
    }


def test_merge_author(engine, authors):
    result = engine.merge('author', 5, [9])

    assert result.success
    assert result.merged_count == 1
    assert result.name == "John Smith"
    assert authors.rows("SELECT book_id, author_id FROM book_authors") == [(42, 5)]
    assert authors.rows("SELECT author_id FROM books WHERE id = 42") == [(5,)]
    assert authors.rows("SELECT id FROM authors") == [(5,)]


def test_merge_result_to_dict(engine, authors):
    assert engine.merge('authors', 5, [9]).to_dict() == {
        'success': True, 'merged_count': 1, 'name': "John Smith",
    }


def test_junction_rows_not_duplicated(engine, catalog):
    catalog.author("John Smith", id=5)
    catalog.author("J. Smith", id=9)
    catalog.book("Edge World", id=1)
    catalog.book("Edge World 2", id=2)
    catalog.link_author(1, 5, role='Author', is_primary=1)
    catalog.link_author(1, 9, role='Narrator')
    catalog.link_author(2, 9, role='Editor', display_order=3)

    engine.merge('author', 5, [9])

    assert catalog.rows(
        "SELECT book_id, author_id, role, is_primary, display_order "
        "FROM book_authors ORDER BY book_id"
    ) == [(1, 5, 'Author', 1, 0), (2, 5, 'Editor', 0, 3)]


def test_merge_several(engine, catalog):
    for author_id in (5, 9, 14):
        catalog.author(f"Author {author_id}", id=author_id)
        catalog.book(f"Book {author_id}", id=author_id, author_id=author_id)
        catalog.link_author(author_id, author_id)

    result = engine.merge('author', 5, [9, 14, 9])

    assert result.merged_count == 2
    assert catalog.rows("SELECT DISTINCT author_id FROM book_authors") == [(5,)]
    assert catalog.rows("SELECT DISTINCT author_id FROM books") == [(5,)]


def test_failure_leaves_everything_unchanged(engine, authors, db):
    IgnoreList(db).ignore('author', 5, 9)
    db.execute("""
        CREATE TRIGGER fail_author_delete BEFORE DELETE ON authors
        BEGIN
            SELECT RAISE(ABORT, 'forced failure');
        END
    """)
    before = snapshot(authors)

    with pytest.raises(MergeError) as exc_info:
        engine.merge('author', 5, [9])

    assert exc_info.value.reason == 'merge_failed'
    assert isinstance(exc_info.value.__cause__, sqlite3.Error)
    assert snapshot(authors) == before
    assert not db._conn.in_transaction


def test_primary_not_found(engine, authors):
    before = snapshot(authors)
    with pytest.raises(EntityNotFound) as exc_info:
        engine.merge('author', 999, [9])
    assert exc_info.value.reason == 'not_found'
    assert "999" in str(exc_info.value)
    assert snapshot(authors) == before


def test_merge_id_not_found(engine, authors):
    before = snapshot(authors)
    with pytest.raises(EntityNotFound):
        engine.merge('author', 5, [9, 77])
    assert snapshot(authors) == before


def test_primary_in_merge_ids(engine, authors):
    with pytest.raises(SameEntityError) as exc_info:
        engine.merge('author', 5, [5, 9])
    assert exc_info.value.reason == 'same_id'
    assert authors.rows("SELECT id FROM authors ORDER BY id") == [(5,), (9,)]


@pytest.mark.parametrize('merge_ids', [[], None, "9", [9.0]])
def test_bad_merge_ids(engine, authors, merge_ids):
    with pytest.raises(ValidationError):
        engine.merge('author', 5, merge_ids)


def test_invalid_type(engine, authors):
    with pytest.raises(InvalidEntityType) as exc_info:
        engine.merge('publisher', 5, [9])
    assert exc_info.value.reason == 'invalid_type'


def test_merge_series_folds_tags(engine, catalog):
    catalog.series("The Expanse", id=1)
    catalog.series("Expanse", id=2)
    catalog.tag("scifi", id=10)
    catalog.tag("space", id=11)
    catalog.tag_series(1, 10)
    catalog.tag_series(2, 10)
    catalog.tag_series(2, 11)
    catalog.book("Abaddon's Gate", id=100, series_id=2)
    catalog.link_series(100, 2, book_num=3)

    result = engine.merge('series', 1, [2])

    assert result.name == "The Expanse"
    assert catalog.rows("SELECT series_id, tag_id FROM series_tags ORDER BY tag_id") == [(1, 10), (1, 11)]
    assert catalog.rows("SELECT book_id, series_id, book_num FROM book_series") == [(100, 1, 3.0)]
    assert catalog.rows("SELECT series_id FROM books WHERE id = 100") == [(1,)]


def test_junction_rows_keep_their_own_ids(engine, catalog):
    catalog.series("Expanse", id=1)
    catalog.series("The Expanse", id=2)
    catalog.book("Leviathan Wakes", id=10)
    catalog.book("Caliban's War", id=11)
    catalog.link_series(10, 1, id=70, book_num=1)
    catalog.link_series(10, 2, id=71, book_num=9)
    catalog.link_series(11, 2, id=72, book_num=2)

    engine.merge('series', 1, [2])

    assert catalog.rows(
        "SELECT id, book_id, series_id, book_num FROM book_series ORDER BY id"
    ) == [(70, 10, 1, 1.0), (72, 11, 1, 2.0)]


def test_merge_genre_rewrites_books_and_series(engine, catalog):
    catalog.genre("Science Fiction", id=1)
    catalog.genre("Sci-Fi", id=2)
    catalog.book("Dune", id=1, genre_id=2)
    catalog.series("Dune Chronicles", id=1, genre_id=2)

    engine.merge('genre', 1, [2])

    assert catalog.rows("SELECT genre_id FROM books") == [(1,)]
    assert catalog.rows("SELECT genre_id FROM series") == [(1,)]
    assert catalog.rows("SELECT id FROM genres") == [(1,)]


def test_merge_tags(engine, catalog):
    catalog.tag("scifi", id=10)
    catalog.tag("sci-fi", id=11)
    catalog.book("Dune", id=1)
    catalog.book("Hyperion", id=2)
    catalog.tag_book(1, 10)
    catalog.tag_book(1, 11)
    catalog.tag_book(2, 11)

    engine.merge('tag', 10, [11])

    assert catalog.rows("SELECT book_id, tag_id FROM book_tags ORDER BY book_id") == [(1, 10), (2, 10)]


def test_merge_books_fills_missing_fields(engine, catalog):
    catalog.author("John Smith", id=5)
    catalog.tag("scifi", id=10)
    catalog.book("Edge World", id=1, publisher="Own Press")
    catalog.book("Edge World", id=2, isbn13="9780000000001", publisher="Acme", publish_year=2001)
    catalog.link_author(1, 5, is_primary=1)
    catalog.link_author(2, 5)
    catalog.tag_book(2, 10)

    engine.merge('book', 1, [2])

    assert catalog.rows("SELECT id, isbn13, publisher, publish_year FROM books") == [
        (1, "9780000000001", "Own Press", 2001),
    ]
    assert catalog.rows("SELECT book_id, author_id, is_primary FROM book_authors") == [(1, 5, 1)]
    assert catalog.rows("SELECT book_id, tag_id FROM book_tags") == [(1, 10)]


def test_ignored_pairs_rewritten(engine, catalog, db):
    for author_id in (3, 5, 9, 12):
        catalog.author(f"Author {author_id}", id=author_id)
    ignore_list = IgnoreList(db)
    ignore_list.ignore('author', 3, 9)
    ignore_list.ignore('author', 5, 9)
    ignore_list.ignore('author', 9, 12)
    ignore_list.ignore('author', 5, 12)

    engine.merge('author', 5, [9])

    pairs = [(r['entity_id1'], r['entity_id2']) for r in ignore_list.list_pairs('author')]
    assert pairs == [(3, 5), (5, 12)]


def test_narrator_and_format(engine, catalog):
    catalog.insert('narrators', id=1, name="Jane Roe")
    catalog.insert('narrators', id=2, name="Jane  Roe")
    catalog.insert('formats', id=1, name="Audiobook")
    catalog.insert('formats', id=2, name="audio book")
    catalog.book("Edge World", id=1, narrator_id=2, format_id=2)

    engine.merge('narrator', 1, [2])
    engine.merge('formats', 1, [2])

    assert catalog.rows("SELECT narrator_id, format_id FROM books") == [(1, 1)]
