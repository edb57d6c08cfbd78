"""Markdown converter for the bookmark tree.

This module provides bidirectional conversion between the in-memory bookmark
tree and the markdown document stored remotely. The markdown layout is:

    # 📚 Development

    ## Frontend

    - [React](https://react.dev)
      - tags: react, docs
      - notes: Official docs

Level-1 headings are categories, level-2 headings are bundles, top-level
``- [title](url)`` list items are bookmarks, and indented ``- tags:`` /
``- notes:`` items attach to the bookmark above them. Decoding is lenient:
malformed input never raises, structure that cannot be placed is dropped.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

from src.bookmark_model.models import (
    Bookmark,
    Bundle,
    Category,
    Root,
    new_bookmark_id,
    normalize_tags,
)

logger = logging.getLogger(__name__)

# Document written for a tree without live categories
EMPTY_DOCUMENT = (
    "# 📚 BookMarkDown\n"
    "\n"
    "Your bookmark collection is empty. Start adding bookmarks!"
)

# Indent for the second and later lines of multi-line notes
NOTES_CONTINUATION_INDENT = '    '

_HEADING_PATTERN = re.compile(r'^(#{1,6})(?:\s+(.*?))?\s*$')
_BOOKMARK_PATTERN = re.compile(r'^-\s+\[(.*)\]\((.*)\)\s*$')
_TAGS_PATTERN = re.compile(r'^\s+-\s+tags:(.*)$')
_NOTES_PATTERN = re.compile(r'^\s+-\s+notes:\s?(.*)$')


@dataclass
class _BookmarkDraft:
    title: str
    url: str
    tags: List[str] = field(default_factory=list)
    notes_lines: Optional[List[str]] = None

    def build(self) -> Bookmark:
        notes = '\n'.join(self.notes_lines) if self.notes_lines is not None else None
        return Bookmark(
            id=new_bookmark_id(),
            title=self.title or self.url,
            url=self.url,
            tags=normalize_tags(self.tags),
            notes=notes or None,
        )


@dataclass
class _BundleDraft:
    name: str
    bookmarks: List[_BookmarkDraft] = field(default_factory=list)


@dataclass
class _CategoryDraft:
    name: str
    bundles: List[_BundleDraft] = field(default_factory=list)


class MarkdownConverter:
    """Converts between the bookmark tree and its markdown document.

    Encoding is deterministic: the same tree always yields the same text.
    Decoding assigns fresh bookmark ids, so ``markdown_to_tree(tree_to_markdown(t))``
    is content-equal to ``t`` (names, titles, urls, tag sets, notes) rather
    than identical.

    Example:
        >>> converter = MarkdownConverter()
        >>> text = converter.tree_to_markdown(root)
        >>> restored = converter.markdown_to_tree(text)
    """

    def tree_to_markdown(self, root: Root) -> str:
        """Encode a tree as markdown.

        Tombstoned categories, bundles and bookmarks are skipped. Titles are
        written as-is; brackets inside titles are not escaped.

        Args:
            root: Tree to encode

        Returns:
            Markdown text without a trailing newline
        """
        lines: List[str] = []

        for category in root.categories:
            if category.is_deleted:
                continue
            lines.append(f"# {category.name}")
            lines.append('')
            for bundle in category.bundles:
                if bundle.is_deleted:
                    continue
                lines.append(f"## {bundle.name}")
                lines.append('')
                for bookmark in bundle.bookmarks:
                    if bookmark.is_deleted:
                        continue
                    lines.extend(self._bookmark_lines(bookmark))
                    lines.append('')
                lines.append('')

        while lines and lines[-1] == '':
            lines.pop()

        if not lines:
            return EMPTY_DOCUMENT
        return '\n'.join(lines)

    def markdown_to_tree(self, markdown: str) -> Root:
        """Decode markdown into a tree, best effort.

        Never raises on malformed input. A bundle heading before any category
        and a bookmark before any bundle are dropped with a warning; empty
        headings become empty-string names.

        Args:
            markdown: Document text

        Returns:
            Root without metadata; every bookmark gets a fresh UUIDv4 id
        """
        if not markdown or markdown.strip() == EMPTY_DOCUMENT:
            return Root()

        categories: List[_CategoryDraft] = []
        current_bundle: Optional[_BundleDraft] = None
        current_bookmark: Optional[_BookmarkDraft] = None
        in_notes = False

        for raw_line in self._strip_front_matter(self._split_lines(markdown)):
            # Notes lines are kept verbatim, trailing '\r' included
            if in_notes and current_bookmark is not None and raw_line.startswith(NOTES_CONTINUATION_INDENT):
                current_bookmark.notes_lines.append(raw_line[len(NOTES_CONTINUATION_INDENT):])
                continue
            in_notes = False

            line = raw_line.rstrip('\r')
            stripped = line.strip()

            if not stripped:
                continue

            heading = _HEADING_PATTERN.match(stripped)
            if heading:
                level = len(heading.group(1))
                name = heading.group(2) or ''
                if level == 1:
                    categories.append(_CategoryDraft(name=name))
                    current_bundle = None
                    current_bookmark = None
                elif level == 2:
                    current_bookmark = None
                    if not categories:
                        logger.warning(f"Dropping bundle '{name}' found before any category")
                        current_bundle = None
                        continue
                    current_bundle = _BundleDraft(name=name)
                    categories[-1].bundles.append(current_bundle)
                continue

            if not line[0].isspace():
                link = _BOOKMARK_PATTERN.match(stripped)
                if link:
                    if current_bundle is None:
                        logger.warning(f"Dropping bookmark '{link.group(2)}' found outside a bundle")
                        current_bookmark = None
                        continue
                    current_bookmark = _BookmarkDraft(title=link.group(1).strip(), url=link.group(2).strip())
                    current_bundle.bookmarks.append(current_bookmark)
                continue

            if current_bookmark is None:
                continue

            tags = _TAGS_PATTERN.match(line)
            if tags:
                current_bookmark.tags.extend(part.strip() for part in tags.group(1).split(','))
                continue

            notes = _NOTES_PATTERN.match(raw_line)
            if notes:
                current_bookmark.notes_lines = [notes.group(1)]
                in_notes = True

        logger.debug(f"Decoded {len(categories)} categories from markdown")
        return Root(categories=tuple(
            Category(
                name=category.name,
                bundles=tuple(
                    Bundle(name=bundle.name, bookmarks=tuple(b.build() for b in bundle.bookmarks))
                    for bundle in category.bundles
                ),
            )
            for category in categories
        ))

    def _bookmark_lines(self, bookmark: Bookmark) -> List[str]:
        lines = [f"- [{bookmark.title}]({bookmark.url})"]
        if bookmark.tags:
            lines.append(f"  - tags: {', '.join(bookmark.tags)}")
        if bookmark.notes:
            first, *rest = bookmark.notes.split('\n')
            lines.append(f"  - notes: {first}")
            lines.extend(f"{NOTES_CONTINUATION_INDENT}{extra}" for extra in rest)
        return lines

    @staticmethod
    def _split_lines(markdown: str) -> List[str]:
        """Split on '\\n' only, so '\\r', U+2028 or form feeds inside notes survive.

        A document whose every line ends in '\\r\\n' (edited on Windows) is
        normalized to '\\n' first.
        """
        if markdown.count('\r\n') == markdown.count('\n'):
            markdown = markdown.replace('\r\n', '\n')
        return markdown.split('\n')

    def _strip_front_matter(self, lines: List[str]) -> List[str]:
        """Drop a leading YAML front matter block delimited by '---' lines."""
        index = 0
        while index < len(lines) and not lines[index].strip():
            index += 1
        if index >= len(lines) or lines[index].strip() != '---':
            return lines
        for end in range(index + 1, len(lines)):
            if lines[end].strip() == '---':
                return lines[end + 1:]
        # Unterminated front matter: keep the document as-is
        return lines
