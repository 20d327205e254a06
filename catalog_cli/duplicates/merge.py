"""
Merge duplicate catalog entities into a chosen primary.

A merge re-points every scalar foreign key and junction row from the merged
entities to the primary, drops junction rows the primary already has, rewrites
ignored pairs and finally deletes the merged entities. All of it runs in one
transaction: either the whole merge is visible or none of it is.

License: GPL v3
"""

import logging
import sqlite3
from typing import Any, Dict, Iterable, List, Sequence

from ..core.errors import EntityNotFound, MergeError, SameEntityError, ValidationError
from ..core.schema import DUPLICATE_ENTITY_TYPES, EntityKind, get_kind
from .ignored import canonical_pair

__license__ = 'GPL v3'

logger = logging.getLogger(__name__)


class MergeResult:
    """Outcome of a successful merge."""

    def __init__(self, success: bool, merged_count: int, name: str):
        self.success = success
        self.merged_count = merged_count
        self.name = name

    def __repr__(self):
        return f"MergeResult(success={self.success}, merged={self.merged_count}, name={self.name!r})"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'merged_count': self.merged_count,
            'name': self.name,
        }


def _is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _check_id(value, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{label} must be an integer, got {value!r}")
    return value


class MergeEngine:
    """
    Merges entities of one type into a primary entity.

    Example usage:
        with CatalogDB('/path/to/catalog.db') as db:
            result = MergeEngine(db).merge('author', 5, [9])
            print(f"Merged {result.merged_count} into {result.name}")
    """

    def __init__(self, db):
        self.db = db

    def merge(self, entity_type, primary_id: int, merge_ids: Iterable[int]) -> MergeResult:
        """
        Merge ``merge_ids`` into ``primary_id``.

        Args:
            entity_type: book, author, series, genre, tag, narrator or format
            primary_id: Entity that survives the merge
            merge_ids: Entities folded into the primary and then deleted

        Returns:
            MergeResult with the primary's display name

        Raises:
            InvalidEntityType, ValidationError, SameEntityError: bad input,
                nothing touched
            EntityNotFound: the primary or a merge id does not exist
            MergeError: a storage error; the transaction was rolled back
        """
        kind = get_kind(entity_type)
        primary_id = _check_id(primary_id, "Primary id")
        losers = self._check_merge_ids(primary_id, merge_ids)

        logger.info(f"Merging {kind.name} {losers} into {primary_id}")
        try:
            with self.db.transaction():
                primary = self.db.get_row(kind.name, primary_id)
                if primary is None:
                    raise EntityNotFound(kind.name, [primary_id], role='primary')
                missing = set(losers) - self.db.existing_ids(kind.name, losers)
                if missing:
                    raise EntityNotFound(kind.name, missing)

                loser_rows = [self.db.get_row(kind.name, i) for i in losers]

                self._rewrite_foreign_keys(kind, primary_id, losers)
                self._rewrite_junctions(kind, primary_id, losers)

                for junction in kind.junctions:
                    self.db.delete_junction_rows(junction, losers)
                deleted = self.db.delete_entities(kind.name, losers)

                if kind.name in DUPLICATE_ENTITY_TYPES:
                    self._rewrite_ignored_pairs(kind.name, primary_id, losers)
                if kind.fill_columns:
                    self._fill_missing_columns(kind, primary, loser_rows)

                name = self.db.get_entity(kind.name, primary_id)['name']
        except sqlite3.Error as e:
            logger.error(f"Merge of {kind.name} {losers} into {primary_id} failed: {e}")
            raise MergeError(f"Merge failed: {e}") from e

        logger.info(f"Merged {deleted} {kind.name} entities into {primary_id} ({name})")
        return MergeResult(success=True, merged_count=deleted, name=name)

    def _check_merge_ids(self, primary_id: int, merge_ids: Iterable[int]) -> List[int]:
        if merge_ids is None or isinstance(merge_ids, (str, bytes)):
            raise ValidationError("merge_ids must be a list of entity ids")
        losers = []
        for value in merge_ids:
            value = _check_id(value, "Merge id")
            if value == primary_id:
                raise SameEntityError(primary_id, "Cannot merge an entity into itself")
            if value not in losers:
                losers.append(value)
        if not losers:
            raise ValidationError("No entities to merge")
        return losers

    def _rewrite_foreign_keys(self, kind: EntityKind, primary_id: int,
                              losers: Sequence[int]) -> None:
        for fk in kind.foreign_keys:
            changed = self.db.rewrite_foreign_key(fk, losers, primary_id)
            logger.debug(f"{fk.table}.{fk.column}: {changed} rows re-pointed")

    def _rewrite_junctions(self, kind: EntityKind, primary_id: int,
                           losers: Sequence[int]) -> None:
        """
        Move junction rows from the losers to the primary.

        A row is dropped when the primary is already linked to the same
        partner; its payload (role, book number, ordering) is lost and the
        primary's row is kept as is.
        """
        for junction in kind.junctions:
            linked = self.db.linked_ids(junction, primary_id)
            moved = dropped = 0
            for row in self.db.junction_links(junction, losers):
                if row['other'] in linked:
                    self.db.delete_junction_row(junction, row['row_id'])
                    dropped += 1
                else:
                    self.db.repoint_junction_row(junction, row['row_id'], primary_id)
                    linked.add(row['other'])
                    moved += 1
            logger.debug(f"{junction.table}: {moved} rows moved, {dropped} duplicates dropped")

    def _rewrite_ignored_pairs(self, entity_type: str, primary_id: int,
                               losers: Sequence[int]) -> None:
        affected = self.db.ignored_pairs(entity_type, losers)
        if not affected:
            return
        affected_ids = {row['id'] for row in affected}
        existing = {
            (row['entity_id1'], row['entity_id2'])
            for row in self.db.ignored_pairs(entity_type)
            if row['id'] not in affected_ids
        }
        loser_set = set(losers)

        for row in affected:
            id1 = primary_id if row['entity_id1'] in loser_set else row['entity_id1']
            id2 = primary_id if row['entity_id2'] in loser_set else row['entity_id2']
            pair = canonical_pair(id1, id2)
            if id1 == id2 or pair in existing:
                self.db.delete_ignored_row(row['id'])
            else:
                self.db.update_ignored_pair(row['id'], *pair)
                existing.add(pair)

    def _fill_missing_columns(self, kind: EntityKind, primary: Dict[str, Any],
                              loser_rows: List[Dict[str, Any]]) -> None:
        values = {}
        for column in kind.fill_columns:
            if not _is_blank(primary.get(column)):
                continue
            for row in loser_rows:
                if not _is_blank(row.get(column)):
                    values[column] = row[column]
                    break
        if values:
            logger.debug(f"Filling {sorted(values)} on {kind.name} {primary['id']}")
            self.db.update_columns(kind.name, primary['id'], values)
