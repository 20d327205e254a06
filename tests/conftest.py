import pytest

from catalog_cli.core.database import CatalogDB


class Catalog:
    """Inserts test rows into a catalog database."""

    def __init__(self, db):
        self.db = db

    def insert(self, table, **values):
        columns = ', '.join(values)
        marks = ', '.join('?' * len(values))
        cursor = self.db.execute(
            f"INSERT INTO {table} ({columns}) VALUES ({marks})", list(values.values())
        )
        return cursor.lastrowid

    def author(self, name, id=None):
        return self.insert('authors', **self._with_id(id, name=name))

    def series(self, title, id=None, **columns):
        return self.insert('series', **self._with_id(id, title=title, **columns))

    def book(self, title, id=None, **columns):
        return self.insert('books', **self._with_id(id, title=title, **columns))

    def genre(self, name, id=None):
        return self.insert('genres', **self._with_id(id, name=name))

    def tag(self, name, id=None):
        return self.insert('tags', **self._with_id(id, name=name))

    def link_author(self, book_id, author_id, **payload):
        return self.insert('book_authors', book_id=book_id, author_id=author_id, **payload)

    def link_series(self, book_id, series_id, **payload):
        return self.insert('book_series', book_id=book_id, series_id=series_id, **payload)

    def tag_book(self, book_id, tag_id):
        return self.insert('book_tags', book_id=book_id, tag_id=tag_id)

    def tag_series(self, series_id, tag_id):
        return self.insert('series_tags', series_id=series_id, tag_id=tag_id)

    def rows(self, sql, params=()):
        return [tuple(row) for row in self.db.execute(sql, params).fetchall()]

    @staticmethod
    def _with_id(entity_id, **values):
        if entity_id is not None:
            values['id'] = entity_id
        return values


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / 'catalog.db'


@pytest.fixture
def db(db_path):
    catalog_db = CatalogDB.create(str(db_path))
    yield catalog_db
    catalog_db.close()


@pytest.fixture
def catalog(db):
    return Catalog(db)
