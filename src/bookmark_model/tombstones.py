"""Soft deletion (tombstones) for the bookmark tree.

Tombstoning flags an entity with ``is_deleted`` instead of splicing it out,
and cascades the flag to every descendant. Tombstoned entities stay in the
in-memory tree but are omitted by the markdown encoder, search and stats.
``purge_tombstones`` physically removes them.

Hard removal lives in src.bookmark_model.tree_operations. Callers pick
one mechanism explicitly.
"""

from dataclasses import replace
from typing import Optional

from .metadata import current_timestamp, mark_deleted, stamp
from .models import Bundle, Category, Root


def _tombstone_bundle_tree(bundle: Bundle, timestamp: str) -> Bundle:
    bookmarks = tuple(mark_deleted(b, timestamp) for b in bundle.bookmarks)
    return mark_deleted(replace(bundle, bookmarks=bookmarks), timestamp)


def _tombstone_category_tree(category: Category, timestamp: str) -> Category:
    bundles = tuple(_tombstone_bundle_tree(b, timestamp) for b in category.bundles)
    return mark_deleted(replace(category, bundles=bundles), timestamp)


def tombstone_category(root: Root, name: str, timestamp: Optional[str] = None) -> Root:
    """Flag a category and all its bundles and bookmarks as deleted."""
    for index, category in enumerate(root.categories):
        if category.name == name:
            ts = timestamp or current_timestamp()
            categories = (
                root.categories[:index]
                + (_tombstone_category_tree(category, ts),)
                + root.categories[index + 1:]
            )
            return stamp(replace(root, categories=categories), ts)
    return replace(root)


def tombstone_bundle(
    root: Root,
    category_name: str,
    bundle_name: str,
    timestamp: Optional[str] = None,
) -> Root:
    """Flag a bundle and its bookmarks as deleted."""
    for c_index, category in enumerate(root.categories):
        if category.name != category_name:
            continue
        for b_index, bundle in enumerate(category.bundles):
            if bundle.name != bundle_name:
                continue
            ts = timestamp or current_timestamp()
            bundles = (
                category.bundles[:b_index]
                + (_tombstone_bundle_tree(bundle, ts),)
                + category.bundles[b_index + 1:]
            )
            categories = (
                root.categories[:c_index]
                + (stamp(replace(category, bundles=bundles), ts),)
                + root.categories[c_index + 1:]
            )
            return stamp(replace(root, categories=categories), ts)
    return replace(root)


def tombstone_bookmark(
    root: Root,
    category_name: str,
    bundle_name: str,
    bookmark_id: str,
    timestamp: Optional[str] = None,
) -> Root:
    """Flag a single bookmark as deleted."""
    category = root.find_category(category_name)
    bundle = category.find_bundle(bundle_name) if category else None
    if bundle is None or bundle.find_bookmark(bookmark_id) is None:
        return replace(root)

    ts = timestamp or current_timestamp()
    bookmarks = tuple(
        mark_deleted(b, ts) if b.id == bookmark_id else b for b in bundle.bookmarks
    )
    new_bundle = stamp(replace(bundle, bookmarks=bookmarks), ts)
    new_category = stamp(
        replace(category, bundles=tuple(new_bundle if b is bundle else b for b in category.bundles)),
        ts,
    )
    categories = tuple(new_category if c is category else c for c in root.categories)
    return stamp(replace(root, categories=categories), ts)


def has_tombstones(root: Root) -> bool:
    for category in root.categories:
        if category.is_deleted:
            return True
        for bundle in category.bundles:
            if bundle.is_deleted or any(b.is_deleted for b in bundle.bookmarks):
                return True
    return False


def purge_tombstones(root: Root, timestamp: Optional[str] = None) -> Root:
    """Physically remove every tombstoned entity.

    Subtrees without tombstones are reused by reference. When nothing is
    tombstoned the content is unchanged and no stamp is applied.
    """
    if not has_tombstones(root):
        return replace(root)

    ts = timestamp or current_timestamp()
    categories = []
    for category in root.categories:
        if category.is_deleted:
            continue
        bundles = []
        category_changed = False
        for bundle in category.bundles:
            if bundle.is_deleted:
                category_changed = True
                continue
            live = tuple(b for b in bundle.bookmarks if not b.is_deleted)
            if len(live) != len(bundle.bookmarks):
                bundle = stamp(replace(bundle, bookmarks=live), ts)
                category_changed = True
            bundles.append(bundle)
        if category_changed:
            category = stamp(replace(category, bundles=tuple(bundles)), ts)
        categories.append(category)
    return stamp(replace(root, categories=tuple(categories)), ts)
