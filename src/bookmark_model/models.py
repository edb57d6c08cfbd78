"""Data models for the bookmark tree.

This module defines the entities of the bookmark tree and the argument/result
types used by the tree operations. All entities are frozen dataclasses with
tuple collections so that a Root can be shared between threads and compared
structurally; mutations go through src.bookmark_model.tree_operations and
always produce new objects.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Tuple

# Version of the persisted tree layout (offline mirror and JSON export)
SCHEMA_VERSION = 1


def new_bookmark_id() -> str:
    """Generate a fresh UUIDv4 bookmark id."""
    return str(uuid.uuid4())


def normalize_tags(tags: Optional[Iterable[str]]) -> Tuple[str, ...]:
    """Trim tags, drop empty ones and remove exact duplicates (order kept)."""
    if not tags:
        return ()
    seen = []
    for tag in tags:
        cleaned = str(tag).strip()
        if cleaned and cleaned not in seen:
            seen.append(cleaned)
    return tuple(seen)


def _require_dict(data: Any, label: str) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise ValueError(f"{label} must be a dictionary, got {type(data).__name__}")
    return data


def _list_field(data: Dict[str, Any], key: str) -> list:
    value = data.get(key) or []
    if not isinstance(value, list):
        raise ValueError(f"Field '{key}' must be a list, got {type(value).__name__}")
    return value


@dataclass(frozen=True)
class Metadata:
    """Bookkeeping attached to a tree entity.

    Attributes:
        last_modified: ISO 8601 timestamp of the last content change
        last_synced: ISO 8601 timestamp of the last successful sync (optional)
        is_deleted: Tombstone flag; tombstoned entities stay in the tree but
            are skipped by the encoder, search and stats
        created_at: ISO 8601 creation timestamp (optional)
        version: Counter incremented on every stamp (optional)

    Example:
        >>> meta = Metadata(last_modified="2024-01-15T10:30:00.000Z")
        >>> meta.is_deleted
        False
    """
    last_modified: str
    last_synced: Optional[str] = None
    is_deleted: bool = False
    created_at: Optional[str] = None
    version: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'lastModified': self.last_modified}
        if self.last_synced is not None:
            data['lastSynced'] = self.last_synced
        if self.is_deleted:
            data['isDeleted'] = True
        if self.created_at is not None:
            data['createdAt'] = self.created_at
        if self.version is not None:
            data['version'] = self.version
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional['Metadata']:
        if not data:
            return None
        _require_dict(data, 'Metadata')
        return cls(
            last_modified=str(data.get('lastModified', '')),
            last_synced=data.get('lastSynced'),
            is_deleted=bool(data.get('isDeleted', False)),
            created_at=data.get('createdAt'),
            version=data.get('version'),
        )


@dataclass(frozen=True)
class Bookmark:
    """A single bookmarked URL.

    Attributes:
        id: UUIDv4 string, unique within the Root
        title: Display title (the markdown link text)
        url: Target URL
        tags: Free-text tags in insertion order (duplicates removed)
        notes: Free-form notes, kept verbatim
        metadata: Optional bookkeeping (timestamps, tombstone flag)

    Example:
        >>> bookmark = Bookmark(
        ...     id=new_bookmark_id(),
        ...     title="React",
        ...     url="https://react.dev",
        ...     tags=("react", "docs"),
        ... )
    """
    id: str
    title: str
    url: str
    tags: Tuple[str, ...] = ()
    notes: Optional[str] = None
    metadata: Optional[Metadata] = None

    @property
    def is_deleted(self) -> bool:
        return bool(self.metadata and self.metadata.is_deleted)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'id': self.id,
            'title': self.title,
            'url': self.url,
        }
        if self.tags:
            data['tags'] = list(self.tags)
        if self.notes:
            data['notes'] = self.notes
        if self.metadata is not None:
            data['metadata'] = self.metadata.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Bookmark':
        _require_dict(data, 'Bookmark')
        return cls(
            id=str(data.get('id') or new_bookmark_id()),
            title=str(data.get('title', '')),
            url=str(data.get('url', '')),
            tags=normalize_tags(_list_field(data, 'tags')),
            notes=data.get('notes') or None,
            metadata=Metadata.from_dict(data.get('metadata')),
        )


@dataclass(frozen=True)
class Bundle:
    """A named, ordered group of bookmarks inside a category.

    Attributes:
        name: Bundle name, unique among the bundles of its category
        bookmarks: Ordered bookmarks
        metadata: Optional bookkeeping
    """
    name: str
    bookmarks: Tuple[Bookmark, ...] = ()
    metadata: Optional[Metadata] = None

    @property
    def is_deleted(self) -> bool:
        return bool(self.metadata and self.metadata.is_deleted)

    def find_bookmark(self, bookmark_id: str) -> Optional[Bookmark]:
        for bookmark in self.bookmarks:
            if bookmark.id == bookmark_id:
                return bookmark
        return None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'name': self.name,
            'bookmarks': [b.to_dict() for b in self.bookmarks],
        }
        if self.metadata is not None:
            data['metadata'] = self.metadata.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Bundle':
        _require_dict(data, 'Bundle')
        return cls(
            name=str(data.get('name', '')),
            bookmarks=tuple(Bookmark.from_dict(b) for b in _list_field(data, 'bookmarks')),
            metadata=Metadata.from_dict(data.get('metadata')),
        )


@dataclass(frozen=True)
class Category:
    """A named, ordered group of bundles at the top of the tree.

    Attributes:
        name: Category name (may carry an emoji prefix), unique among categories
        bundles: Ordered bundles
        metadata: Optional bookkeeping
    """
    name: str
    bundles: Tuple[Bundle, ...] = ()
    metadata: Optional[Metadata] = None

    @property
    def is_deleted(self) -> bool:
        return bool(self.metadata and self.metadata.is_deleted)

    def find_bundle(self, name: str) -> Optional[Bundle]:
        for bundle in self.bundles:
            if bundle.name == name:
                return bundle
        return None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'name': self.name,
            'bundles': [b.to_dict() for b in self.bundles],
        }
        if self.metadata is not None:
            data['metadata'] = self.metadata.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Category':
        _require_dict(data, 'Category')
        return cls(
            name=str(data.get('name', '')),
            bundles=tuple(Bundle.from_dict(b) for b in _list_field(data, 'bundles')),
            metadata=Metadata.from_dict(data.get('metadata')),
        )


@dataclass(frozen=True)
class Root:
    """The whole bookmark collection of one user.

    A Root is never mutated in place. Every operation in
    src.bookmark_model.tree_operations returns a new Root whose untouched
    categories, bundles and bookmarks are the very same objects as before.

    Attributes:
        version: Schema version of the tree layout
        categories: Ordered categories
        metadata: Optional bookkeeping; lastModified is propagated up to here
            on every content change

    Example:
        >>> root = Root()
        >>> root.categories
        ()
    """
    version: int = SCHEMA_VERSION
    categories: Tuple[Category, ...] = ()
    metadata: Optional[Metadata] = None

    def find_category(self, name: str) -> Optional[Category]:
        for category in self.categories:
            if category.name == name:
                return category
        return None

    def find_bundle(self, category_name: str, bundle_name: str) -> Optional[Bundle]:
        category = self.find_category(category_name)
        if category is None:
            return None
        return category.find_bundle(bundle_name)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'version': self.version,
            'categories': [c.to_dict() for c in self.categories],
        }
        if self.metadata is not None:
            data['metadata'] = self.metadata.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Root':
        """Rebuild a Root from its dictionary form.

        Args:
            data: Dictionary produced by Root.to_dict() (camelCase metadata keys)

        Returns:
            Root with tuples in place of lists

        Raises:
            ValueError: If an entity is not a dictionary or a collection is not a list
        """
        _require_dict(data, 'Tree')
        return cls(
            version=int(data.get('version', SCHEMA_VERSION)),
            categories=tuple(Category.from_dict(c) for c in _list_field(data, 'categories')),
            metadata=Metadata.from_dict(data.get('metadata')),
        )


@dataclass(frozen=True)
class BookmarkInput:
    """Fields for a bookmark that is about to be added.

    Example:
        >>> BookmarkInput(title="React", url="https://react.dev", tags=("react",))
    """
    title: str
    url: str
    tags: Tuple[str, ...] = ()
    notes: Optional[str] = None


@dataclass(frozen=True)
class BookmarkUpdate:
    """Partial bookmark update; None leaves the field unchanged."""
    title: Optional[str] = None
    url: Optional[str] = None
    tags: Optional[Tuple[str, ...]] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class BookmarkFilter:
    """Search criteria for src.bookmark_model.query.search.

    Attributes:
        category_name: Exact category name to restrict to
        bundle_name: Exact bundle name to restrict to
        search_term: Case-insensitive substring matched against title, url,
            notes and tags
        tags: Every filter tag must partially match (case-insensitively) one
            of the bookmark's tags
    """
    category_name: Optional[str] = None
    bundle_name: Optional[str] = None
    search_term: Optional[str] = None
    tags: Tuple[str, ...] = ()


@dataclass(frozen=True)
class BookmarkSearchResult:
    """A bookmark found by search, with the names of its owners."""
    bookmark: Bookmark
    category_name: str
    bundle_name: str


@dataclass(frozen=True)
class BookmarkStats:
    """Counts over the live (non-tombstoned) part of a tree.

    Attributes:
        categories_count: Number of categories
        bundles_count: Number of bundles
        bookmarks_count: Number of bookmarks
        tags_count: Number of distinct tags, compared case-insensitively
    """
    categories_count: int = 0
    bundles_count: int = 0
    bookmarks_count: int = 0
    tags_count: int = 0
    tags: Tuple[str, ...] = field(default=(), compare=False)
