"""Bookmark tree data model.

This package holds the persistent Root -> Category -> Bundle -> Bookmark tree
and the pure operations over it. Every mutation returns a new Root and reuses
untouched subtrees by reference, so callers can compare siblings by identity.
"""

from .models import (
    Metadata,
    Bookmark,
    Bundle,
    Category,
    Root,
    BookmarkInput,
    BookmarkUpdate,
    BookmarkFilter,
    BookmarkSearchResult,
    BookmarkStats,
    SCHEMA_VERSION,
)
from .query import search, stats

__all__ = [
    'Metadata',
    'Bookmark',
    'Bundle',
    'Category',
    'Root',
    'BookmarkInput',
    'BookmarkUpdate',
    'BookmarkFilter',
    'BookmarkSearchResult',
    'BookmarkStats',
    'SCHEMA_VERSION',
    'search',
    'stats',
]
