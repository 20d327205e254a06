"""
Pairs of entities a user has marked as "not duplicates".

Pairs are stored once, with the smaller id first, so a lookup in either order
hits the same row. Scan and match results are filtered through this list
before they are returned.
"""

import logging
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, List, Optional, Set, Tuple

from ..core.errors import SameEntityError, ValidationError
from ..core.schema import DUPLICATE_ENTITY_TYPES, resolve_entity_type

logger = logging.getLogger(__name__)


def canonical_pair(id1: int, id2: int) -> Tuple[int, int]:
    """Return the pair with the smaller id first."""
    return (id1, id2) if id1 < id2 else (id2, id1)


def _check_ids(id1, id2) -> Tuple[int, int]:
    for value in (id1, id2):
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(f"Entity ids must be integers, got {value!r}")
    if id1 == id2:
        raise SameEntityError(id1, "Cannot ignore a pair with the same ID")
    return canonical_pair(id1, id2)


class ExemptionsMap:
    """
    Entities that must not be grouped together as duplicates.

    Maps an entity id to the set of ids it has been marked distinct from.
    """

    def __init__(self, exemptions: Optional[Dict[int, Set[int]]] = None):
        self._exemptions = exemptions or {}

    def __contains__(self, entity_id: int) -> bool:
        return entity_id in self._exemptions

    def merge_sets(self, entity_id: int) -> Set[int]:
        """Get set of all entities that should not be grouped with entity_id."""
        return self._exemptions.get(entity_id, set())

    def add_exemption(self, id1: int, id2: int) -> None:
        self._exemptions.setdefault(id1, set()).add(id2)
        self._exemptions.setdefault(id2, set()).add(id1)

    def is_exempt(self, id1: int, id2: int) -> bool:
        return id2 in self._exemptions.get(id1, ())


class IgnoreList:
    """
    Persistent list of ignored duplicate pairs for books, authors and series.

    Example usage:
        with CatalogDB('/path/to/catalog.db') as db:
            ignored = IgnoreList(db)
            ignored.ignore('author', 9, 5, actor_id=1)
            assert ignored.is_ignored('author', 5, 9)
    """

    def __init__(self, db):
        self.db = db

    def _entity_type(self, entity_type) -> str:
        return resolve_entity_type(entity_type, DUPLICATE_ENTITY_TYPES)

    def is_ignored(self, entity_type, id1: int, id2: int) -> bool:
        entity_type = self._entity_type(entity_type)
        first, second = _check_ids(id1, id2)
        return self.db.ignored_pair_exists(entity_type, first, second)

    def ignore(self, entity_type, id1: int, id2: int,
               actor_id: Optional[int] = None) -> bool:
        """
        Mark a pair as not duplicates.

        Ignoring an already ignored pair succeeds without adding a row.
        """
        entity_type = self._entity_type(entity_type)
        first, second = _check_ids(id1, id2)
        created_at = datetime.now(timezone.utc).isoformat()
        try:
            self.db.insert_ignored_pair(entity_type, first, second, created_at, actor_id)
        except sqlite3.IntegrityError:
            logger.debug(f"Pair already ignored: {entity_type} {first}-{second}")
            return True
        logger.debug(f"Ignored {entity_type} pair {first}-{second} (by {actor_id})")
        return True

    def unignore(self, entity_type, id1: int, id2: int) -> bool:
        """Remove a pair from the list so it can show up as a duplicate again."""
        entity_type = self._entity_type(entity_type)
        first, second = _check_ids(id1, id2)
        removed = self.db.delete_ignored_pair(entity_type, first, second)
        logger.debug(f"Unignored {entity_type} pair {first}-{second} (removed={removed})")
        return True

    def all_pairs(self, entity_type) -> FrozenSet[Tuple[int, int]]:
        """Every ignored pair of a type, in both orders."""
        entity_type = self._entity_type(entity_type)
        pairs = set()
        for row in self.db.ignored_pairs(entity_type):
            pairs.add((row['entity_id1'], row['entity_id2']))
            pairs.add((row['entity_id2'], row['entity_id1']))
        return frozenset(pairs)

    def list_pairs(self, entity_type) -> List[Dict[str, Any]]:
        return self.db.ignored_pairs(self._entity_type(entity_type))

    def count(self, entity_type) -> int:
        return self.db.count_ignored(self._entity_type(entity_type))

    def exemptions(self, entity_type) -> ExemptionsMap:
        exemptions = ExemptionsMap()
        for row in self.db.ignored_pairs(self._entity_type(entity_type)):
            exemptions.add_exemption(row['entity_id1'], row['entity_id2'])
        return exemptions
