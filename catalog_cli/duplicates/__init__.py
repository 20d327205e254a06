"""
Duplicate detection, ignore list and merge for catalog entities.
"""

from .matching import (
    # Normalization
    normalize,
    normalize_author_name,
    normalize_series_title,
    normalize_isbn,

    # Scoring and ranking
    similarity,
    search_terms,
    rank_candidates,
    Match,
    MatchSettings,
)

from .ignored import IgnoreList
from .merge import MergeEngine, MergeResult
from .finder import DuplicateFinder, DuplicateGroup, ScanResult

__all__ = [
    'DuplicateFinder',
    'DuplicateGroup',
    'ScanResult',
    'IgnoreList',
    'MergeEngine',
    'MergeResult',
    'Match',
    'MatchSettings',
    'normalize',
    'normalize_author_name',
    'normalize_series_title',
    'normalize_isbn',
    'similarity',
    'search_terms',
    'rank_candidates',
]
