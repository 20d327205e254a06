"""
Core utilities for CLI operations - database access, errors, progress reporting, output formatting.
"""

from .database import CatalogDB
from .errors import CatalogError
from .progress import ProgressReporter
from .output import OutputFormatter

__all__ = ['CatalogDB', 'CatalogError', 'ProgressReporter', 'OutputFormatter']
