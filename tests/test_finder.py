import pytest

from catalog_cli.core.errors import EntityNotFound, ValidationError
from catalog_cli.duplicates.finder import DuplicateFinder, find_duplicates
from catalog_cli.duplicates.ignored import IgnoreList
from catalog_cli.duplicates.matching import (
    MATCH_EXACT_ID,
    MATCH_EXACT_NAME,
    MATCH_FUZZY,
    MatchSettings,
)


@pytest.fixture
def finder(db):
    return DuplicateFinder(db)


@pytest.fixture
def edge_world(catalog):
    catalog.author("John Smith", id=5)
    catalog.book("Edge World", id=1)
    catalog.book("Edge World: Book One", id=2)
    catalog.book("Cooking Basics", id=3)
    catalog.book("Edge World", id=4, isbn13="9780000000001")
    catalog.link_author(4, 5)
    return catalog


class TestFindMatches:

    def test_isbn_exact_match_short_circuits(self, finder, edge_world):
        matches = finder.find_matches('book', title="Edge World", identifier="978-0000000001")
        assert len(matches) == 1
        assert matches[0].entity_id == 4
        assert matches[0].score == 100
        assert matches[0].match_type == MATCH_EXACT_ID
        assert matches[0].author == "John Smith"

    def test_unknown_isbn_falls_back_to_title(self, finder, edge_world):
        matches = finder.find_matches('book', title="Edge World", identifier="9789999999999")
        assert MATCH_EXACT_ID not in {m.match_type for m in matches}
        assert [m.entity_id for m in matches][:2] == [1, 4]

    def test_identifier_only_for_books(self, finder, edge_world):
        with pytest.raises(ValidationError):
            finder.find_matches('author', identifier="9780000000001")

    def test_title_matches(self, finder, edge_world):
        matches = finder.find_matches('book', title="Edge World")
        assert [(m.entity_id, m.score, m.match_type) for m in matches] == [
            (1, 100, MATCH_EXACT_NAME),
            (4, 100, MATCH_EXACT_NAME),
            (2, 85, MATCH_FUZZY),
        ]

    def test_author_blended_into_score(self, finder, catalog):
        catalog.author("John Smith", id=5)
        catalog.author("Zzzz", id=6)
        catalog.book("Edge World", id=1)
        catalog.book("Edge World", id=2)
        catalog.link_author(1, 6)
        catalog.link_author(2, 5)

        matches = finder.find_matches('book', title="Edge World", author="Smith, John")
        assert [(m.entity_id, m.score) for m in matches] == [(2, 100), (1, 60)]

    def test_entity_excludes_itself_and_ignored(self, finder, edge_world, db):
        IgnoreList(db).ignore('book', 1, 4)
        matches = finder.find_matches('book', entity_id=1)
        assert [(m.entity_id, m.score) for m in matches] == [(2, 85)]

    def test_entity_uses_own_isbn(self, finder, edge_world, catalog):
        catalog.book("Edge World (Reprint)", id=7, isbn13="978-0-00-000000-1")
        matches = finder.find_matches('book', entity_id=7)
        assert [(m.entity_id, m.match_type) for m in matches] == [(4, MATCH_EXACT_ID)]

    def test_ignored_isbn_match_skipped(self, finder, edge_world, catalog, db):
        catalog.book("Edge World (Reprint)", id=7, isbn13="9780000000001")
        IgnoreList(db).ignore('book', 4, 7)
        matches = finder.find_matches('book', entity_id=7)
        assert 4 not in [m.entity_id for m in matches]

    def test_unknown_entity(self, finder, edge_world):
        with pytest.raises(EntityNotFound):
            finder.find_matches('book', entity_id=999)

    def test_nothing_to_match(self, finder, edge_world):
        with pytest.raises(ValidationError):
            finder.find_matches('book')

    def test_prefix_fallback(self, finder, catalog):
        catalog.book("It", id=1)
        catalog.book("It Follows", id=2)
        matches = finder.find_matches('book', title="It")
        assert [(m.entity_id, m.score) for m in matches] == [(1, 100), (2, 80)]

    def test_authors(self, finder, catalog):
        catalog.author("John Smith", id=1)
        catalog.author("Smith, John", id=2)
        catalog.author("Jane Austen", id=3)
        matches = finder.find_matches('author', title="John Smith")
        assert [(m.entity_id, m.match_type) for m in matches] == [
            (1, MATCH_EXACT_NAME), (2, MATCH_EXACT_NAME),
        ]

    def test_settings(self, db, edge_world):
        finder = DuplicateFinder(db, settings=MatchSettings(min_score=0.9, max_matches=1))
        matches = finder.find_matches('book', title="Edge World")
        assert [m.entity_id for m in matches] == [1]


class TestScan:

    def test_exact_author_groups(self, finder, catalog):
        catalog.author("John Smith", id=1)
        catalog.author("Smith, John", id=2)
        catalog.author("Jane Austen", id=3)

        result = finder.scan('author', fuzzy=False)

        assert result.entities_scanned == 3
        assert [g.entity_ids for g in result.groups] == [[1, 2]]
        assert result.groups[0].match_type == MATCH_EXACT_NAME

    def test_isbn_groups(self, finder, catalog):
        catalog.book("Edge World", id=1, isbn13="9780000000001")
        catalog.book("Edge Wrld (Reprint)", id=2, isbn13="978-0000000001")

        result = finder.scan('book', fuzzy=False)

        assert len(result.groups) == 1
        group = result.groups[0]
        assert group.entity_ids == [1, 2]
        assert (group.match_type, group.score) == (MATCH_EXACT_ID, 100)

    def test_fuzzy_groups(self, finder, edge_world):
        result = finder.scan('book')
        assert [g.entity_ids for g in result.groups] == [[1, 2, 4]]
        assert result.groups[0].match_type == MATCH_EXACT_NAME

    def test_ignored_pair_never_grouped(self, finder, catalog, db):
        catalog.author("John Smith", id=1)
        catalog.author("Smith, John", id=2)
        catalog.author("john smith", id=3)
        IgnoreList(db).ignore('author', 1, 3)

        result = finder.scan('author', fuzzy=False)

        assert result.ignored_skipped == 1
        assert [g.entity_ids for g in result.groups] == [[1, 2], [2, 3]]
        for group in result.groups:
            assert not {1, 3} <= set(group.entity_ids)

    def test_pairs_in_result_dict(self, finder, catalog, db):
        catalog.author("John Smith", id=1)
        catalog.author("Smith, John", id=2)
        catalog.author("john smith", id=3)
        IgnoreList(db).ignore('author', 1, 3)

        data = finder.scan('author', fuzzy=False).to_dict()

        assert data['pairs'] == [
            {'entity_id1': 1, 'entity_id2': 2, 'score': 100, 'match_type': MATCH_EXACT_NAME},
            {'entity_id1': 2, 'entity_id2': 3, 'score': 100, 'match_type': MATCH_EXACT_NAME},
        ]

    def test_ignored_candidate_does_not_take_a_ranking_slot(self, db, catalog):
        catalog.author("John Smith", id=1)
        catalog.author("John Smith", id=2)
        catalog.author("Jon Smith", id=3)
        catalog.author("Jon Smith", id=4)
        IgnoreList(db).ignore('author', 1, 2)
        finder = DuplicateFinder(db, settings=MatchSettings(max_matches=1))

        result = finder.scan('author')

        found = {(p.entity_id1, p.entity_id2) for p in result.pairs}
        assert (1, 3) in found
        assert (1, 2) not in found
        assert result.ignored_skipped == 1

    def test_ignored_pair_removes_group(self, finder, catalog, db):
        catalog.series("The Expanse", id=1)
        catalog.series("Expanse Series", id=2)
        IgnoreList(db).ignore('series', 1, 2)

        assert finder.scan('series').groups == []

    def test_sort_by_size(self, finder, catalog):
        catalog.author("Ann Adams", id=1)
        catalog.author("Adams, Ann", id=2)
        catalog.author("Zed Brown", id=3)
        catalog.author("Brown, Zed", id=4)
        catalog.author("zed brown", id=5)

        by_name = finder.scan('author', fuzzy=False)
        by_size = finder.scan('author', fuzzy=False, sort_by_title=False)

        assert [g.entity_ids for g in by_name.groups] == [[1, 2], [3, 4, 5]]
        assert [g.entity_ids for g in by_size.groups] == [[3, 4, 5], [1, 2]]
        assert [g.group_id for g in by_size.groups] == [1, 2]

    def test_progress_callback(self, db, edge_world):
        calls = []
        finder = DuplicateFinder(db, progress_callback=lambda m, c, t: calls.append((m, c, t)))
        finder.scan('book')
        assert calls[0] == ("Analyzing 4 book entities", 0, 4)
        assert calls[-1][1:] == (4, 4)

    def test_summary(self, finder, catalog):
        catalog.author("Ann Brown", id=3)
        catalog.author("Brown, Ann", id=4)
        catalog.author("ann brown", id=5)
        catalog.author("Zed Adams", id=1)
        catalog.author("Adams, Zed", id=2)

        summary = finder.get_summary(finder.scan('author', fuzzy=False))

        assert summary['total_groups'] == 2
        assert summary['total_entities'] == 5
        assert summary['duplicates_to_remove'] == 3
        assert summary['largest_group'] == 3
        assert summary['avg_group_size'] == 2.5

    def test_empty_summary(self, finder, catalog):
        assert finder.get_summary(finder.scan('book'))['total_groups'] == 0

    def test_find_duplicates(self, db_path, edge_world):
        result = find_duplicates(str(db_path), "book")
        assert [g.entity_ids for g in result.groups] == [[1, 2, 4]]
