"""
Duplicate detection matching algorithms.

This module provides pure Python implementations of:
- String normalization for titles, author names and series titles
- Normalized edit-distance similarity
- Candidate search term extraction
- Match ranking: title similarity with subtitle/prefix/containment boosts,
  blended with author similarity
- Grouping keys used by the catalog-wide scan

License: GPL v3
Original Copyright: 2011, Grant Drake
"""

import math
import re
import unicodedata
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from rapidfuzz.distance import Levenshtein

__license__ = 'GPL v3'
__copyright__ = '2011, Grant Drake'


# Match types
MATCH_EXACT_ID = 'exact_id'
MATCH_EXACT_NAME = 'exact_name'
MATCH_FUZZY = 'fuzzy'

# A shorter title followed by one of these is the base title of a longer one
SUBTITLE_SEPARATORS = (':', ' -', ',')

# Words to ignore in author names when building scan keys
ignore_author_words = ['von', 'van', 'jr', 'sr', 'i', 'ii', 'iii', 'second', 'third',
                       'md', 'phd']
IGNORE_AUTHOR_WORDS_MAP = dict((k, True) for k in ignore_author_words)

LEADING_ARTICLE_PAT = re.compile(r'^(a|the|an)\s+')
TRAILING_SERIES_PAT = re.compile(r'\s+series$')

_APOSTROPHE_PAT = re.compile(r"['`‘’]")
_NON_WORD_PAT = re.compile(r'[\W_]+')
_WHITESPACE_PAT = re.compile(r'\s+')
_TERM_STRIP_PAT = re.compile(r'\W+')


@dataclass
class MatchSettings:
    """
    Thresholds and limits for candidate search and ranking.

    The defaults are the values the library has always matched with; changing
    them changes which matches are reported.
    """
    min_score: float = 0.6
    title_weight: float = 0.6
    author_weight: float = 0.4
    subtitle_boost: float = 0.85
    prefix_boost: float = 0.80
    containment_boost: float = 0.75
    min_contained_length: int = 5
    max_matches: int = 10
    max_search_terms: int = 3
    min_term_length: int = 3
    term_candidate_limit: int = 100
    prefix_length: int = 10
    prefix_candidate_limit: int = 50


DEFAULT_SETTINGS = MatchSettings()


class Match:
    """A candidate entity that scored above the match threshold."""

    def __init__(self, entity_id: int, name: str, score: int, match_type: str,
                 author: Optional[str] = None, isbn13: Optional[str] = None):
        self.entity_id = entity_id
        self.name = name
        self.score = score
        self.match_type = match_type
        self.author = author
        self.isbn13 = isbn13

    def __repr__(self):
        return f"Match({self.entity_id}, {self.name!r}, score={self.score}, type={self.match_type})"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.entity_id,
            'name': self.name,
            'author': self.author,
            'isbn13': self.isbn13,
            'score': self.score,
            'match_type': self.match_type,
        }


# ----------------------------------------------------------------
#           Normalization
# ----------------------------------------------------------------

def decode_unicode(text: str) -> str:
    """
    Convert accented characters to their ASCII base characters.

    Uses NFD decomposition and drops the combining marks.

    Examples:
        "Miéville" -> "Mieville"
        "naïve" -> "naive"
        "Brontë" -> "Bronte"
    """
    if not text:
        return text

    normalized = unicodedata.normalize('NFD', text)
    return ''.join(char for char in normalized if unicodedata.category(char) != 'Mn')


def normalize(text: Optional[str]) -> str:
    """
    Normalize text for comparison.

    Lowercases, strips diacritics, drops apostrophes, turns every other run of
    punctuation or whitespace into a single space and trims. Idempotent.
    """
    if not text:
        return ''
    text = decode_unicode(text.lower())
    text = _APOSTROPHE_PAT.sub('', text)
    text = _NON_WORD_PAT.sub(' ', text)
    return text.strip()


def normalize_spacing(text: Optional[str]) -> str:
    """Lowercase, strip diacritics and collapse whitespace, keeping punctuation."""
    if not text:
        return ''
    text = decode_unicode(text.lower())
    return _WHITESPACE_PAT.sub(' ', text).strip()


def _join_initials(tokens: List[str]) -> List[str]:
    # "j r r tolkien" -> "jrr tolkien"
    result: List[str] = []
    run = ''
    for token in tokens:
        if len(token) == 1:
            run += token
            continue
        if run:
            result.append(run)
            run = ''
        result.append(token)
    if run:
        result.append(run)
    return result


def normalize_author_name(name: Optional[str]) -> str:
    """
    Normalize an author name for comparison.

    A name containing a comma is taken to be in "Last, First" form and is
    reordered, so "Smith, John" and "John Smith" normalize identically. Runs of
    initials are joined so "J. R. R. Tolkien" and "JRR Tolkien" agree.
    """
    if not name:
        return ''
    parts = [p.strip() for p in name.split(',') if p.strip()]
    if len(parts) >= 2:
        name = ' '.join([parts[1], parts[0]] + parts[2:])
    tokens = normalize(name).split()
    return ' '.join(_join_initials(tokens))


def normalize_series_title(title: Optional[str]) -> str:
    """Normalize a series title, dropping a leading "the" and a trailing "series"."""
    text = normalize(title)
    text = LEADING_ARTICLE_PAT.sub('', text)
    text = TRAILING_SERIES_PAT.sub('', text)
    return text.strip()


def normalize_isbn(isbn: Optional[str]) -> str:
    """Remove hyphens and spaces from an ISBN."""
    if not isbn:
        return ''
    return re.sub(r'[\s-]', '', isbn)


# ----------------------------------------------------------------
#           Similarity
# ----------------------------------------------------------------

def similarity(a: Optional[str], b: Optional[str]) -> float:
    """
    Normalized edit-distance similarity in [0, 1].

    1 - levenshtein(a, b) / max(len(a), len(b)); identical strings score 1.0
    and a string compared with an empty one scores 0.0.
    """
    a = a or ''
    b = b or ''
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    return Levenshtein.normalized_similarity(a, b)


def to_percent(score: float) -> int:
    """Round a [0, 1] score half-up to an integer percentage."""
    return int(math.floor(score * 100 + 0.5))


# ----------------------------------------------------------------
#           Candidate search terms
# ----------------------------------------------------------------

def search_terms(title: Optional[str],
                 settings: MatchSettings = DEFAULT_SETTINGS) -> List[str]:
    """
    Take a title and return the significant words to search candidates with.

    Punctuation is stripped from each word; words shorter than
    ``settings.min_term_length`` are skipped; at most
    ``settings.max_search_terms`` are returned.
    """
    terms: List[str] = []
    for word in (title or '').split():
        word = _TERM_STRIP_PAT.sub('', word)
        if len(word) >= settings.min_term_length:
            terms.append(word)
            if len(terms) >= settings.max_search_terms:
                break
    return terms


def search_prefix(title: Optional[str],
                  settings: MatchSettings = DEFAULT_SETTINGS) -> str:
    """Prefix used when a title has no usable search terms."""
    return (title or '').strip()[:settings.prefix_length]


# ----------------------------------------------------------------
#           Ranking
# ----------------------------------------------------------------

def _is_subtitled(base: str, full: str) -> bool:
    return any(full.startswith(base + sep) for sep in SUBTITLE_SEPARATORS)


def apply_title_boosts(query_title: Optional[str], candidate_title: Optional[str],
                       title_sim: float,
                       settings: MatchSettings = DEFAULT_SETTINGS) -> float:
    """
    Raise a title similarity when one title is a variant of the other.

    Handles "Title" vs "Title: Subtitle" where plain edit distance is low.
    Comparisons run on the lowercased, whitespace-collapsed titles with their
    punctuation intact.
    """
    query = normalize_spacing(query_title)
    candidate = normalize_spacing(candidate_title)
    if not query or not candidate:
        return title_sim

    if _is_subtitled(candidate, query) or _is_subtitled(query, candidate):
        return max(title_sim, settings.subtitle_boost)
    if candidate.startswith(query):
        return max(title_sim, settings.prefix_boost)
    if candidate in query and len(candidate) >= settings.min_contained_length:
        return max(title_sim, settings.containment_boost)
    return title_sim


def score_candidate(title: Optional[str], candidate_title: Optional[str],
                    author: Optional[str] = None,
                    candidate_author: Optional[str] = None,
                    settings: MatchSettings = DEFAULT_SETTINGS,
                    normalizer: Callable[[Optional[str]], str] = normalize) -> Tuple[float, float]:
    """
    Score one candidate against a query.

    ``normalizer`` prepares both titles for the edit-distance comparison;
    author entities are compared with normalize_author_name. A title that
    normalizes to nothing (only punctuation, say) matches nothing.

    Returns:
        Tuple of (title similarity after boosts, combined score)
    """
    query = normalizer(title)
    other = normalizer(candidate_title)
    if not query or not other:
        return 0.0, 0.0
    title_sim = similarity(query, other)
    title_sim = apply_title_boosts(title, candidate_title, title_sim, settings)

    query_author = normalize_author_name(author)
    other_author = normalize_author_name(candidate_author)
    if query_author and other_author:
        author_sim = similarity(query_author, other_author)
        return title_sim, settings.title_weight * title_sim + settings.author_weight * author_sim
    return title_sim, title_sim


def rank_candidates(title: Optional[str], candidates: Iterable[Dict[str, Any]],
                    author: Optional[str] = None,
                    settings: Optional[MatchSettings] = None,
                    normalizer: Callable[[Optional[str]], str] = normalize) -> List[Match]:
    """
    Score candidates against a title (and optional author).

    Args:
        title: Query title or name
        candidates: Dicts with ``id``, ``name`` and optionally ``author``/``isbn13``
        author: Query author, blended in when the candidate has one too
        settings: Thresholds (default: DEFAULT_SETTINGS)
        normalizer: Name normalization used for the similarity comparison

    Returns:
        Matches scoring at least ``settings.min_score``, best first, ties in
        candidate order, at most ``settings.max_matches``
    """
    settings = settings or DEFAULT_SETTINGS
    matches: List[Match] = []

    for candidate in candidates:
        title_sim, combined = score_candidate(
            title, candidate.get('name'), author, candidate.get('author'),
            settings, normalizer
        )
        if combined < settings.min_score:
            continue
        match_type = MATCH_EXACT_NAME if title_sim == 1.0 else MATCH_FUZZY
        matches.append(Match(
            entity_id=candidate['id'],
            name=candidate.get('name'),
            score=to_percent(combined),
            match_type=match_type,
            author=candidate.get('author'),
            isbn13=candidate.get('isbn13'),
        ))

    matches.sort(key=lambda m: m.score, reverse=True)
    return matches[:settings.max_matches]


def exact_id_match(entity: Dict[str, Any]) -> Match:
    """The single result returned when an identifier matched exactly."""
    return Match(
        entity_id=entity['id'],
        name=entity.get('name'),
        score=100,
        match_type=MATCH_EXACT_ID,
        author=entity.get('author'),
        isbn13=entity.get('isbn13'),
    )


# ----------------------------------------------------------------
#           Scan grouping keys
#
#  Entities sharing a key are exact-name duplicates of each other.
# ----------------------------------------------------------------

def title_key(title: Optional[str]) -> str:
    """Normalized title without a leading article."""
    return LEADING_ARTICLE_PAT.sub('', normalize(title)).strip()


def author_key(name: Optional[str]) -> str:
    """Normalized author name without suffixes and particles (jr, phd, von...)."""
    tokens = normalize_author_name(name).split()
    return ' '.join(t for t in tokens if t not in IGNORE_AUTHOR_WORDS_MAP)


def book_key(entity: Dict[str, Any]) -> str:
    key = title_key(entity.get('name'))
    if not key:
        return ''
    return key + '|' + author_key(entity.get('author'))


def author_entity_key(entity: Dict[str, Any]) -> str:
    return author_key(entity.get('name'))


def series_entity_key(entity: Dict[str, Any]) -> str:
    return normalize_series_title(entity.get('name'))


def get_key_fn(entity_type: str) -> Callable[[Dict[str, Any]], str]:
    """
    Return the grouping key function for an entity type.

    Args:
        entity_type: One of 'book', 'author', 'series'
    """
    algorithms = {
        'book': book_key,
        'author': author_entity_key,
        'series': series_entity_key,
    }
    return algorithms[entity_type]


def scan_query(entity_type: str, entity: Dict[str, Any]) -> Tuple[str, Optional[str]]:
    """The (title, author) query an entity is matched with during a scan."""
    if entity_type == 'book':
        return entity.get('name'), entity.get('author')
    return entity.get('name'), None
