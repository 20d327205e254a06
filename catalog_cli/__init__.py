"""
Catalog CLI - duplicate detection and merge tools for a book catalog

This package finds duplicate books, authors and series in a catalog database,
keeps a list of pairs marked "not duplicates" and merges duplicates into a
primary entity without leaving dangling references.

Supported operations:
- Fuzzy duplicate matching (normalized edit distance with title heuristics)
- Catalog-wide duplicate scans
- Ignore list of dismissed pairs
- Transactional merges of books, authors, series, genres, tags, narrators
  and formats

License: GPL v3
"""

__version__ = '0.1.0'
__license__ = 'GPL v3'
