"""Read-only queries over the bookmark tree: search and stats."""

from typing import List, Optional

from .models import (
    Bookmark,
    BookmarkFilter,
    BookmarkSearchResult,
    BookmarkStats,
    Root,
)


def bookmark_matches(bookmark: Bookmark, bookmark_filter: BookmarkFilter) -> bool:
    """Check a bookmark against the tag and search-term parts of a filter.

    Every filter tag has to partially match (case-insensitively) at least one
    of the bookmark's tags. The search term is a case-insensitive substring
    match against title, url, notes and tags.
    """
    if bookmark_filter.tags:
        if not bookmark.tags:
            return False
        lowered = [tag.lower() for tag in bookmark.tags]
        for wanted in bookmark_filter.tags:
            needle = wanted.lower()
            if not any(needle in tag for tag in lowered):
                return False

    if bookmark_filter.search_term:
        term = bookmark_filter.search_term.lower()
        haystacks = [bookmark.title, bookmark.url, bookmark.notes or '', *bookmark.tags]
        if not any(term in text.lower() for text in haystacks):
            return False

    return True


def search(root: Root, bookmark_filter: Optional[BookmarkFilter] = None) -> List[BookmarkSearchResult]:
    """Find bookmarks matching a filter, in tree order.

    Tombstoned categories, bundles and bookmarks are never returned.

    Args:
        root: Tree to search
        bookmark_filter: Criteria; None returns every live bookmark

    Returns:
        List of results carrying the owning category and bundle names

    Example:
        >>> results = search(root, BookmarkFilter(search_term="react"))
        >>> [(r.category_name, r.bundle_name, r.bookmark.title) for r in results]
        [('📚 Development', 'Frontend', 'React')]
    """
    bookmark_filter = bookmark_filter or BookmarkFilter()
    results: List[BookmarkSearchResult] = []

    for category in root.categories:
        if category.is_deleted:
            continue
        if bookmark_filter.category_name is not None and category.name != bookmark_filter.category_name:
            continue
        for bundle in category.bundles:
            if bundle.is_deleted:
                continue
            if bookmark_filter.bundle_name is not None and bundle.name != bookmark_filter.bundle_name:
                continue
            for bookmark in bundle.bookmarks:
                if bookmark.is_deleted:
                    continue
                if bookmark_matches(bookmark, bookmark_filter):
                    results.append(BookmarkSearchResult(
                        bookmark=bookmark,
                        category_name=category.name,
                        bundle_name=bundle.name,
                    ))

    return results


def stats(root: Root) -> BookmarkStats:
    """Count live categories, bundles, bookmarks and distinct tags.

    Tags are deduplicated case-insensitively, so 'React', 'react' and
    'REACT' count once.
    """
    categories_count = 0
    bundles_count = 0
    bookmarks_count = 0
    tags = set()

    for category in root.categories:
        if category.is_deleted:
            continue
        categories_count += 1
        for bundle in category.bundles:
            if bundle.is_deleted:
                continue
            bundles_count += 1
            for bookmark in bundle.bookmarks:
                if bookmark.is_deleted:
                    continue
                bookmarks_count += 1
                tags.update(tag.lower() for tag in bookmark.tags)

    return BookmarkStats(
        categories_count=categories_count,
        bundles_count=bundles_count,
        bookmarks_count=bookmarks_count,
        tags_count=len(tags),
        tags=tuple(sorted(tags)),
    )
