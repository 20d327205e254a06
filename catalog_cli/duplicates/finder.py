"""
Duplicate finder - finds matching books, authors and series in a catalog.

This module provides:
- DuplicateFinder.find_matches: ranked duplicates of one query (a title and
  author, an identifier, or an existing entity)
- DuplicateFinder.scan: catalog-wide scan that joins matching pairs into
  duplicate groups, keeping ignored pairs apart

License: GPL v3
Original Copyright: 2011, Grant Drake
"""

import logging
import time
from collections import defaultdict
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from ..core.errors import EntityNotFound, ValidationError
from ..core.schema import DUPLICATE_ENTITY_TYPES, resolve_entity_type
from .ignored import ExemptionsMap, IgnoreList, canonical_pair
from .matching import (
    DEFAULT_SETTINGS,
    MATCH_EXACT_ID,
    MATCH_EXACT_NAME,
    MATCH_FUZZY,
    Match,
    MatchSettings,
    exact_id_match,
    get_key_fn,
    normalize,
    normalize_author_name,
    normalize_isbn,
    normalize_series_title,
    rank_candidates,
    scan_query,
    search_prefix,
    search_terms,
)

__license__ = 'GPL v3'
__copyright__ = '2011, Grant Drake'

logger = logging.getLogger(__name__)

_MATCH_TYPE_RANK = {MATCH_FUZZY: 0, MATCH_EXACT_NAME: 1, MATCH_EXACT_ID: 2}

_NORMALIZERS = {
    'book': normalize,
    'author': normalize_author_name,
    'series': normalize_series_title,
}


class DuplicatePair:
    """Two entities found to match during a scan (smaller id first)."""

    def __init__(self, entity_id1: int, entity_id2: int, score: int, match_type: str):
        self.entity_id1 = entity_id1
        self.entity_id2 = entity_id2
        self.score = score
        self.match_type = match_type

    def __repr__(self):
        return f"DuplicatePair({self.entity_id1}, {self.entity_id2}, score={self.score}, type={self.match_type})"

    def outranks(self, other: 'DuplicatePair') -> bool:
        return ((_MATCH_TYPE_RANK[self.match_type], self.score) >
                (_MATCH_TYPE_RANK[other.match_type], other.score))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'entity_id1': self.entity_id1,
            'entity_id2': self.entity_id2,
            'score': self.score,
            'match_type': self.match_type,
        }


class DuplicateGroup:
    """Represents a group of duplicate entities."""

    def __init__(self, group_id: int, entity_ids: List[int], match_type: str = MATCH_FUZZY,
                 score: int = 0, entities: Optional[List[Dict[str, Any]]] = None):
        self.group_id = group_id
        self.entity_ids = entity_ids
        self.match_type = match_type
        self.score = score
        self.entities = entities or []

    def __repr__(self):
        return f"DuplicateGroup({self.group_id}, entities={self.entity_ids}, type={self.match_type})"

    def __len__(self):
        return len(self.entity_ids)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'group_id': self.group_id,
            'match_type': self.match_type,
            'score': self.score,
            'entity_ids': self.entity_ids,
            'entities': self.entities,
        }


class ScanResult:
    """Duplicate groups found by a catalog-wide scan."""

    def __init__(self, entity_type: str, groups: List[DuplicateGroup],
                 pairs: List[DuplicatePair], entities_scanned: int,
                 ignored_skipped: int = 0, elapsed: float = 0.0):
        self.entity_type = entity_type
        self.groups = groups
        self.pairs = pairs
        self.entities_scanned = entities_scanned
        self.ignored_skipped = ignored_skipped
        self.elapsed = elapsed

    def __repr__(self):
        return f"ScanResult({self.entity_type}, groups={len(self.groups)}, pairs={len(self.pairs)})"

    def __len__(self):
        return len(self.groups)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'entity_type': self.entity_type,
            'entities_scanned': self.entities_scanned,
            'ignored_skipped': self.ignored_skipped,
            'groups': [g.to_dict() for g in self.groups],
            'pairs': [p.to_dict() for p in self.pairs],
        }


class DuplicateFinder:
    """
    Duplicate finder for catalog databases.

    Example usage:
        from catalog_cli.core.database import CatalogDB
        from catalog_cli.duplicates.finder import DuplicateFinder

        with CatalogDB('/path/to/catalog.db', read_only=True) as db:
            finder = DuplicateFinder(db)
            for match in finder.find_matches('book', title='Edge World'):
                print(f"{match.entity_id}: {match.name} ({match.score})")

            result = finder.scan('author')
            for group in result.groups:
                print(f"Group {group.group_id}: {group.entity_ids}")
    """

    def __init__(self, db,
                 ignore_list: Optional[IgnoreList] = None,
                 settings: Optional[MatchSettings] = None,
                 progress_callback: Optional[Callable[[str, int, int], None]] = None):
        """
        Initialize the duplicate finder.

        Args:
            db: CatalogDB instance
            ignore_list: Ignored pairs to filter out (default: read from db)
            settings: Match thresholds and limits (default: DEFAULT_SETTINGS)
            progress_callback: Optional callback(message, current, total) for progress
        """
        self.db = db
        self.ignore_list = ignore_list or IgnoreList(db)
        self.settings = settings or DEFAULT_SETTINGS
        self.progress_callback = progress_callback

    def _progress(self, message: str, current: int = 0, total: int = 0) -> None:
        """Report progress if callback is set."""
        if self.progress_callback:
            self.progress_callback(message, current, total)

    def _candidates(self, entity_type: str, title: Optional[str],
                    exclude_id: Optional[int] = None) -> List[Dict[str, Any]]:
        """Narrow the entity pool to those sharing a word (or failing that, a prefix) with title."""
        terms = search_terms(title, self.settings)
        if terms:
            return self.db.find_by_name_terms(
                entity_type, terms, limit=self.settings.term_candidate_limit,
                exclude_id=exclude_id
            )
        prefix = search_prefix(title, self.settings)
        if not prefix:
            return []
        return self.db.find_by_name_prefix(
            entity_type, prefix, limit=self.settings.prefix_candidate_limit,
            exclude_id=exclude_id
        )

    def find_matches(self, entity_type,
                     title: Optional[str] = None,
                     author: Optional[str] = None,
                     identifier: Optional[str] = None,
                     identifier_type: str = 'isbn13',
                     entity_id: Optional[int] = None) -> List[Match]:
        """
        Find likely duplicates of a single query.

        Args:
            entity_type: 'book', 'author' or 'series'
            title: Title (or name) to match
            author: Author of the queried book, blended into book scores
            identifier: Book identifier (ISBN-13 by default); an exact hit is
                        returned alone with score 100
            identifier_type: Column the identifier is looked up in
            entity_id: Existing entity to match; it is never matched with
                       itself or with entities it has been ignored against.
                       Its title, author and ISBN-13 are used when none
                       are given.

        Returns:
            List of Match, best first
        """
        entity_type = resolve_entity_type(entity_type, DUPLICATE_ENTITY_TYPES)

        ignored_ids: Set[int] = set()
        if entity_id is not None:
            entity = self.db.get_entity(entity_type, entity_id)
            if entity is None:
                raise EntityNotFound(entity_type, [entity_id])
            if title is None:
                title = entity['name']
            if entity_type == 'book':
                if author is None:
                    author = entity.get('author')
                if identifier is None and identifier_type == 'isbn13':
                    identifier = entity.get('isbn13')
            ignored_ids = {b for a, b in self.ignore_list.all_pairs(entity_type) if a == entity_id}

        if identifier:
            if entity_type != 'book':
                raise ValidationError("Identifier lookup is only supported for books")
            code = normalize_isbn(identifier)
            hit = self.db.find_by_identifier(code, identifier_type, exclude_id=entity_id)
            if hit and hit['id'] not in ignored_ids:
                logger.debug(f"Identifier {identifier_type}={code} matched book {hit['id']}")
                return [exact_id_match(hit)]

        if not title:
            if identifier:
                return []
            raise ValidationError("Nothing to match: give a title, an identifier or an entity id")

        candidates = [
            c for c in self._candidates(entity_type, title, exclude_id=entity_id)
            if c['id'] not in ignored_ids
        ]
        matches = rank_candidates(title, candidates, author, self.settings,
                                  _NORMALIZERS[entity_type])
        logger.debug(f"{len(matches)} of {len(candidates)} {entity_type} candidates matched {title!r}")
        return matches

    def scan(self, entity_type, fuzzy: bool = True, sort_by_title: bool = True) -> ScanResult:
        """
        Find duplicate groups across every entity of a type.

        Args:
            entity_type: 'book', 'author' or 'series'
            fuzzy: Also rank candidates for each entity, not only exact
                   normalized-name (and, for books, ISBN-13) matches
            sort_by_title: Sort groups by name (True) or by group size (False)

        Returns:
            ScanResult whose groups never contain an ignored pair
        """
        start = time.time()
        entity_type = resolve_entity_type(entity_type, DUPLICATE_ENTITY_TYPES)
        entities = self.db.all_entities(entity_type)
        by_id = {e['id']: e for e in entities}
        ignored = self.ignore_list.all_pairs(entity_type)

        logger.debug(f"Analyzing {len(entities)} {entity_type} entities for duplicates")
        self._progress(f"Analyzing {len(entities)} {entity_type} entities", 0, len(entities))

        pairs: Dict[Tuple[int, int], DuplicatePair] = {}
        skipped: Set[Tuple[int, int]] = set()

        def add_pair(id1: int, id2: int, score: int, match_type: str) -> None:
            if id1 == id2:
                return
            key = canonical_pair(id1, id2)
            if key in ignored:
                skipped.add(key)
                return
            pair = DuplicatePair(key[0], key[1], score, match_type)
            current = pairs.get(key)
            if current is None or pair.outranks(current):
                pairs[key] = pair

        for bucket in self._find_exact_candidates(entity_type, entities).values():
            ids = sorted(bucket)
            for i, id1 in enumerate(ids):
                for id2 in ids[i + 1:]:
                    add_pair(id1, id2, 100, MATCH_EXACT_NAME)

        if entity_type == 'book':
            for bucket in self._find_identifier_candidates(entities).values():
                ids = sorted(bucket)
                for i, id1 in enumerate(ids):
                    for id2 in ids[i + 1:]:
                        add_pair(id1, id2, 100, MATCH_EXACT_ID)

        if fuzzy:
            normalizer = _NORMALIZERS[entity_type]
            for i, entity in enumerate(entities):
                if i % 100 == 0:
                    self._progress(f"Matching {entity_type} entities", i, len(entities))
                title, author = scan_query(entity_type, entity)
                if not title:
                    continue
                candidates = []
                for candidate in self._candidates(entity_type, title, exclude_id=entity['id']):
                    if (entity['id'], candidate['id']) in ignored:
                        skipped.add(canonical_pair(entity['id'], candidate['id']))
                    else:
                        candidates.append(candidate)
                for match in rank_candidates(title, candidates, author, self.settings, normalizer):
                    add_pair(entity['id'], match.entity_id, match.score, match.match_type)

        groups = self._convert_to_groups(
            pairs, by_id, self.ignore_list.exemptions(entity_type), sort_by_title
        )

        elapsed = time.time() - start
        self._progress(f"Found {len(groups)} duplicate groups", len(entities), len(entities))
        logger.debug(f"Found {len(groups)} {entity_type} duplicate groups "
                     f"({len(skipped)} ignored pairs skipped) in {elapsed:.2f}s")

        return ScanResult(
            entity_type=entity_type,
            groups=groups,
            pairs=sorted(pairs.values(), key=lambda p: (p.entity_id1, p.entity_id2)),
            entities_scanned=len(entities),
            ignored_skipped=len(skipped),
            elapsed=elapsed,
        )

    def _find_exact_candidates(self, entity_type: str,
                               entities: List[Dict[str, Any]]) -> Dict[str, Set[int]]:
        """Bucket entities by their normalized grouping key."""
        candidates_map = defaultdict(set)
        key_fn = get_key_fn(entity_type)
        for entity in entities:
            key = key_fn(entity)
            if key:
                candidates_map[key].add(entity['id'])
        self._shrink_candidates_map(candidates_map)
        return candidates_map

    def _find_identifier_candidates(self, entities: List[Dict[str, Any]]) -> Dict[str, Set[int]]:
        """Find books with matching ISBN-13."""
        candidates_map = defaultdict(set)
        for entity in entities:
            isbn = normalize_isbn(entity.get('isbn13'))
            if isbn:
                candidates_map[isbn].add(entity['id'])
        self._shrink_candidates_map(candidates_map)
        return candidates_map

    def _shrink_candidates_map(self, candidates_map: Dict) -> None:
        """Remove all groups with less than 2 members."""
        keys_to_remove = [k for k, v in candidates_map.items() if len(v) < 2]
        for key in keys_to_remove:
            del candidates_map[key]

    def _join_pairs(self, pairs: Iterable[Tuple[int, int]]) -> List[Set[int]]:
        """Join pairs sharing an entity into connected groups."""
        neighbours = defaultdict(set)
        for id1, id2 in pairs:
            neighbours[id1].add(id2)
            neighbours[id2].add(id1)

        groups = []
        seen: Set[int] = set()
        for start in sorted(neighbours):
            if start in seen:
                continue
            group = set()
            stack = [start]
            while stack:
                current = stack.pop()
                if current in group:
                    continue
                group.add(current)
                stack.extend(neighbours[current] - group)
            seen |= group
            groups.append(group)
        return groups

    def _clean_dup_groups(self, candidates_map: Dict) -> List[Set]:
        """
        Convert dict of sets to list, removing subsets.

        If set A is a subset of set B, only keep B.
        """
        res = [set(d) for d in candidates_map.values()]
        res.sort(key=lambda x: len(x))

        candidates_list = []
        for i, a in enumerate(res):
            for b in res[i+1:]:
                if a.issubset(b):
                    break
            else:
                candidates_list.append(a)

        return candidates_list

    def _partition_using_exemptions(self,
                                    data_items: List,
                                    exemptions: ExemptionsMap) -> List[List]:
        """
        Partition a group based on exemptions.

        If items A and B are in the exemptions, they should not be
        in the same group. This splits the group accordingly.
        """
        data_items = sorted(data_items)
        results: List[Set] = [set(data_items)]
        partitioning_ids: List[Any] = [None]

        for one_dup in data_items:
            if one_dup in exemptions:
                ndm_entry = exemptions.merge_sets(one_dup)
                for i, res in enumerate(results):
                    if one_dup in res:
                        if one_dup == partitioning_ids[i]:
                            results[i] = (res - ndm_entry) | {one_dup}
                            continue

                        results[i] = (res - ndm_entry) | {one_dup}
                        for nd in ndm_entry:
                            if nd > one_dup and nd in res:
                                results.append((res - ndm_entry - {one_dup}) | {nd})
                                partitioning_ids.append(nd)

        sr = [sorted(list(r)) for r in results if len(r) > 1]
        sr.sort()
        return sr

    def _convert_to_groups(self,
                           pairs: Dict[Tuple[int, int], DuplicatePair],
                           by_id: Dict[int, Dict[str, Any]],
                           exemptions: ExemptionsMap,
                           sort_by_title: bool) -> List[DuplicateGroup]:
        """
        Join pairs into groups and split groups holding an ignored pair.

        After splitting, members left without a matching pair inside their
        part are dropped, so every group is connected by matched pairs.
        """
        neighbours = defaultdict(set)
        for id1, id2 in pairs:
            neighbours[id1].add(id2)
            neighbours[id2].add(id1)

        candidates_map = {}
        for component in self._join_pairs(pairs):
            for partition in self._partition_using_exemptions(list(component), exemptions):
                members = set(partition)
                inner = [(a, b) for a in members for b in neighbours[a] if a < b and b in members]
                for group in self._join_pairs(inner):
                    candidates_map[frozenset(group)] = group

        candidates_list = self._clean_dup_groups(candidates_map)

        def first_name(ids: Set[int]) -> str:
            return normalize(by_id[min(ids)].get('name'))

        if sort_by_title:
            candidates_list.sort(key=lambda ids: (first_name(ids), min(ids)))
        else:
            candidates_list.sort(key=lambda ids: (-len(ids), first_name(ids), min(ids)))

        groups = []
        for group_id, ids in enumerate(candidates_list, start=1):
            ids = sorted(ids)
            inner = [pairs[(a, b)] for a in ids for b in ids if (a, b) in pairs]
            best = inner[0]
            for pair in inner[1:]:
                if pair.outranks(best):
                    best = pair
            groups.append(DuplicateGroup(
                group_id=group_id,
                entity_ids=ids,
                match_type=best.match_type,
                score=best.score,
                entities=[by_id[i] for i in ids],
            ))

        return groups

    def get_summary(self, result) -> Dict[str, Any]:
        """
        Get summary statistics about duplicate groups.

        Args:
            result: ScanResult from scan(), or a list of DuplicateGroup

        Returns:
            Dict with summary stats
        """
        groups = result.groups if isinstance(result, ScanResult) else list(result)
        ignored_skipped = result.ignored_skipped if isinstance(result, ScanResult) else 0

        if not groups:
            return {
                'total_groups': 0,
                'total_entities': 0,
                'duplicates_to_remove': 0,
                'largest_group': 0,
                'avg_group_size': 0.0,
                'ignored_skipped': ignored_skipped,
            }

        sizes = [len(g) for g in groups]
        total_entities = sum(sizes)

        return {
            'total_groups': len(groups),
            'total_entities': total_entities,
            'duplicates_to_remove': total_entities - len(groups),  # Keep 1 from each group
            'largest_group': max(sizes),
            'avg_group_size': total_entities / len(groups),
            'ignored_skipped': ignored_skipped,
        }


# Convenience function for simple usage
def find_duplicates(db_path: str, entity_type: str = 'book', **kwargs) -> ScanResult:
    """
    Scan a catalog for duplicates.

    Convenience function that handles the database connection.

    Args:
        db_path: Path to the catalog database
        entity_type: 'book', 'author' or 'series'
        **kwargs: Additional arguments passed to DuplicateFinder.scan()

    Returns:
        ScanResult
    """
    # Import here to avoid circular dependency
    from ..core.database import CatalogDB

    with CatalogDB(db_path, read_only=True) as db:
        return DuplicateFinder(db).scan(entity_type, **kwargs)
