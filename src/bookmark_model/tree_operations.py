"""Pure mutation operations over the bookmark tree.

Every function takes a Root and returns a new Root. Operations are total:
when the target category, bundle or bookmark does not exist, or when the
mutation would create a duplicate sibling name, the result is a new Root
object with the same content. Untouched subtrees are reused by reference.

On every content change a single timestamp is stamped on the mutated entity
and propagated through each ancestor up to the Root. Removals in this module
splice entities out of their containing sequence; soft deletion lives in
src.bookmark_model.tombstones.
"""

import logging
from dataclasses import replace
from typing import Iterable, List, Optional, Tuple

from .metadata import current_timestamp, stamp
from .models import (
    Bookmark,
    BookmarkInput,
    BookmarkUpdate,
    Bundle,
    Category,
    Root,
    new_bookmark_id,
    normalize_tags,
)

logger = logging.getLogger(__name__)


def _unchanged(root: Root) -> Root:
    return replace(root)


def _category_index(root: Root, name: str) -> int:
    for index, category in enumerate(root.categories):
        if category.name == name:
            return index
    return -1


def _bundle_index(category: Category, name: str) -> int:
    for index, bundle in enumerate(category.bundles):
        if bundle.name == name:
            return index
    return -1


def _bookmark_index(bundle: Bundle, bookmark_id: str) -> int:
    for index, bookmark in enumerate(bundle.bookmarks):
        if bookmark.id == bookmark_id:
            return index
    return -1


def _splice(items: Tuple, index: int, *replacement) -> Tuple:
    return items[:index] + tuple(replacement) + items[index + 1:]


def _set_category(root: Root, index: int, category: Category, timestamp: str) -> Root:
    """Replace one category (already stamped) and stamp the root."""
    return stamp(replace(root, categories=_splice(root.categories, index, category)), timestamp)


def _set_bundle(
    root: Root,
    category_index: int,
    bundle_index: int,
    bundle: Bundle,
    timestamp: str,
) -> Root:
    """Replace one bundle (already stamped) and stamp category and root."""
    category = root.categories[category_index]
    category = stamp(
        replace(category, bundles=_splice(category.bundles, bundle_index, bundle)),
        timestamp,
    )
    return _set_category(root, category_index, category, timestamp)


def _locate_bundle(root: Root, category_name: str, bundle_name: str) -> Tuple[int, int]:
    category_index = _category_index(root, category_name)
    if category_index < 0:
        return -1, -1
    return category_index, _bundle_index(root.categories[category_index], bundle_name)


def create_bookmark(
    bookmark_input: BookmarkInput,
    timestamp: Optional[str] = None,
    bookmark_id: Optional[str] = None,
) -> Bookmark:
    """Build a new Bookmark from input fields with a fresh id.

    Args:
        bookmark_input: Title, url, tags and notes of the new bookmark
        timestamp: Stamp to use (defaults to now)
        bookmark_id: Explicit id, mainly for tests (defaults to a new UUIDv4)

    Returns:
        Stamped Bookmark
    """
    ts = timestamp or current_timestamp()
    bookmark = Bookmark(
        id=bookmark_id or new_bookmark_id(),
        title=bookmark_input.title,
        url=bookmark_input.url,
        tags=normalize_tags(bookmark_input.tags),
        notes=bookmark_input.notes or None,
    )
    return stamp(bookmark, ts)


# Categories


def add_category(root: Root, name: str, timestamp: Optional[str] = None) -> Root:
    """Append an empty category; duplicate names leave the tree unchanged."""
    if _category_index(root, name) >= 0:
        logger.debug(f"Category '{name}' already exists, tree unchanged")
        return _unchanged(root)
    ts = timestamp or current_timestamp()
    category = stamp(Category(name=name), ts)
    return stamp(replace(root, categories=root.categories + (category,)), ts)


def remove_category(root: Root, name: str, timestamp: Optional[str] = None) -> Root:
    """Splice a category (and everything under it) out of the tree."""
    index = _category_index(root, name)
    if index < 0:
        return _unchanged(root)
    ts = timestamp or current_timestamp()
    return stamp(replace(root, categories=_splice(root.categories, index)), ts)


def rename_category(
    root: Root,
    old_name: str,
    new_name: str,
    timestamp: Optional[str] = None,
) -> Root:
    """Rename a category in place, keeping its position and bundles."""
    index = _category_index(root, old_name)
    if index < 0 or old_name == new_name or _category_index(root, new_name) >= 0:
        return _unchanged(root)
    ts = timestamp or current_timestamp()
    category = stamp(replace(root.categories[index], name=new_name), ts)
    return _set_category(root, index, category, ts)


# Bundles


def add_bundle(
    root: Root,
    category_name: str,
    bundle_name: str,
    timestamp: Optional[str] = None,
) -> Root:
    """Append an empty bundle to a category."""
    category_index = _category_index(root, category_name)
    if category_index < 0:
        return _unchanged(root)
    category = root.categories[category_index]
    if _bundle_index(category, bundle_name) >= 0:
        logger.debug(
            f"Bundle '{bundle_name}' already exists in category '{category_name}', tree unchanged"
        )
        return _unchanged(root)
    ts = timestamp or current_timestamp()
    bundle = stamp(Bundle(name=bundle_name), ts)
    category = stamp(replace(category, bundles=category.bundles + (bundle,)), ts)
    return _set_category(root, category_index, category, ts)


def remove_bundle(
    root: Root,
    category_name: str,
    bundle_name: str,
    timestamp: Optional[str] = None,
) -> Root:
    """Splice a bundle (and its bookmarks) out of its category."""
    category_index, bundle_index = _locate_bundle(root, category_name, bundle_name)
    if bundle_index < 0:
        return _unchanged(root)
    ts = timestamp or current_timestamp()
    category = root.categories[category_index]
    category = stamp(replace(category, bundles=_splice(category.bundles, bundle_index)), ts)
    return _set_category(root, category_index, category, ts)


def rename_bundle(
    root: Root,
    category_name: str,
    old_name: str,
    new_name: str,
    timestamp: Optional[str] = None,
) -> Root:
    category_index, bundle_index = _locate_bundle(root, category_name, old_name)
    if bundle_index < 0 or old_name == new_name:
        return _unchanged(root)
    category = root.categories[category_index]
    if _bundle_index(category, new_name) >= 0:
        return _unchanged(root)
    ts = timestamp or current_timestamp()
    bundle = stamp(replace(category.bundles[bundle_index], name=new_name), ts)
    return _set_bundle(root, category_index, bundle_index, bundle, ts)


def move_bundle(
    root: Root,
    from_category: str,
    to_category: str,
    bundle_name: str,
    timestamp: Optional[str] = None,
) -> Root:
    """Move a bundle to the end of another category.

    Moving within the same category, moving a missing bundle, or moving onto
    a category that already holds a bundle with that name leaves the tree
    unchanged.
    """
    if from_category == to_category:
        return _unchanged(root)
    source_index, bundle_index = _locate_bundle(root, from_category, bundle_name)
    target_index = _category_index(root, to_category)
    if bundle_index < 0 or target_index < 0:
        return _unchanged(root)
    target = root.categories[target_index]
    if _bundle_index(target, bundle_name) >= 0:
        return _unchanged(root)

    ts = timestamp or current_timestamp()
    source = root.categories[source_index]
    bundle = stamp(source.bundles[bundle_index], ts)
    source = stamp(replace(source, bundles=_splice(source.bundles, bundle_index)), ts)
    target = stamp(replace(target, bundles=target.bundles + (bundle,)), ts)

    categories = list(root.categories)
    categories[source_index] = source
    categories[target_index] = target
    return stamp(replace(root, categories=tuple(categories)), ts)


# Bookmarks


def add_bookmark(
    root: Root,
    category_name: str,
    bundle_name: str,
    bookmark_input: BookmarkInput,
    timestamp: Optional[str] = None,
    bookmark_id: Optional[str] = None,
) -> Root:
    """Append a new bookmark to a bundle."""
    return add_bookmarks(
        root,
        category_name,
        bundle_name,
        [bookmark_input],
        timestamp=timestamp,
        bookmark_ids=[bookmark_id] if bookmark_id else None,
    )


def add_bookmarks(
    root: Root,
    category_name: str,
    bundle_name: str,
    bookmark_inputs: Iterable[BookmarkInput],
    timestamp: Optional[str] = None,
    bookmark_ids: Optional[List[str]] = None,
) -> Root:
    """Append several bookmarks to a bundle under a single timestamp.

    Args:
        root: Current tree
        category_name: Owning category
        bundle_name: Target bundle
        bookmark_inputs: Bookmarks to add, in order
        timestamp: Stamp to use (defaults to now)
        bookmark_ids: Optional explicit ids, positionally matched to inputs

    Returns:
        New Root; unchanged content when the bundle is missing or no inputs
        were given
    """
    inputs = list(bookmark_inputs)
    category_index, bundle_index = _locate_bundle(root, category_name, bundle_name)
    if bundle_index < 0 or not inputs:
        return _unchanged(root)
    ts = timestamp or current_timestamp()
    ids = list(bookmark_ids or [])
    new_bookmarks = tuple(
        create_bookmark(item, ts, ids[i] if i < len(ids) else None)
        for i, item in enumerate(inputs)
    )
    bundle = root.categories[category_index].bundles[bundle_index]
    bundle = stamp(replace(bundle, bookmarks=bundle.bookmarks + new_bookmarks), ts)
    return _set_bundle(root, category_index, bundle_index, bundle, ts)


def update_bookmark(
    root: Root,
    category_name: str,
    bundle_name: str,
    bookmark_id: str,
    update: BookmarkUpdate,
    timestamp: Optional[str] = None,
) -> Root:
    """Apply the non-None fields of update to one bookmark."""
    category_index, bundle_index = _locate_bundle(root, category_name, bundle_name)
    if bundle_index < 0:
        return _unchanged(root)
    bundle = root.categories[category_index].bundles[bundle_index]
    bookmark_index = _bookmark_index(bundle, bookmark_id)
    if bookmark_index < 0:
        return _unchanged(root)

    bookmark = bundle.bookmarks[bookmark_index]
    changes = {}
    if update.title is not None:
        changes['title'] = update.title
    if update.url is not None:
        changes['url'] = update.url
    if update.tags is not None:
        changes['tags'] = normalize_tags(update.tags)
    if update.notes is not None:
        changes['notes'] = update.notes or None

    ts = timestamp or current_timestamp()
    bookmark = stamp(replace(bookmark, **changes), ts)
    bundle = stamp(replace(bundle, bookmarks=_splice(bundle.bookmarks, bookmark_index, bookmark)), ts)
    return _set_bundle(root, category_index, bundle_index, bundle, ts)


def remove_bookmark(
    root: Root,
    category_name: str,
    bundle_name: str,
    bookmark_id: str,
    timestamp: Optional[str] = None,
) -> Root:
    """Splice one bookmark out of its bundle."""
    category_index, bundle_index = _locate_bundle(root, category_name, bundle_name)
    if bundle_index < 0:
        return _unchanged(root)
    bundle = root.categories[category_index].bundles[bundle_index]
    bookmark_index = _bookmark_index(bundle, bookmark_id)
    if bookmark_index < 0:
        return _unchanged(root)
    ts = timestamp or current_timestamp()
    bundle = stamp(replace(bundle, bookmarks=_splice(bundle.bookmarks, bookmark_index)), ts)
    return _set_bundle(root, category_index, bundle_index, bundle, ts)


def move_bookmark(
    root: Root,
    from_category: str,
    from_bundle: str,
    to_category: str,
    to_bundle: str,
    bookmark_id: str,
    timestamp: Optional[str] = None,
) -> Root:
    """Move a bookmark to the end of another bundle.

    The bookmark keeps its id. Moving to the same bundle, or from/to a
    missing location, leaves the tree unchanged.
    """
    if (from_category, from_bundle) == (to_category, to_bundle):
        return _unchanged(root)
    source_cat, source_bundle = _locate_bundle(root, from_category, from_bundle)
    target_cat, target_bundle = _locate_bundle(root, to_category, to_bundle)
    if source_bundle < 0 or target_bundle < 0:
        return _unchanged(root)
    source = root.categories[source_cat].bundles[source_bundle]
    bookmark_index = _bookmark_index(source, bookmark_id)
    if bookmark_index < 0:
        return _unchanged(root)

    ts = timestamp or current_timestamp()
    bookmark = stamp(source.bookmarks[bookmark_index], ts)
    root = _set_bundle(
        root,
        source_cat,
        source_bundle,
        stamp(replace(source, bookmarks=_splice(source.bookmarks, bookmark_index)), ts),
        ts,
    )
    target = root.categories[target_cat].bundles[target_bundle]
    return _set_bundle(
        root,
        target_cat,
        target_bundle,
        stamp(replace(target, bookmarks=target.bookmarks + (bookmark,)), ts),
        ts,
    )
