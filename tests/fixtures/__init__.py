"""Test fixtures for bookmark sync tests.

This module provides test fixtures for:
- Sample bookmark trees
- Sample markdown documents for codec tests
"""

from .sample_trees import (
    FIXED_TIMESTAMP,
    LATER_TIMESTAMP,
    make_bookmark,
    make_sample_tree,
    make_stamped_tree,
)
from .sample_markdown import (
    SAMPLE_MARKDOWN_SIMPLE,
    SAMPLE_MARKDOWN_WITH_FRONT_MATTER,
    SAMPLE_MARKDOWN_MALFORMED,
    SAMPLE_MARKDOWN_MULTILINE_NOTES,
)

__all__ = [
    "FIXED_TIMESTAMP",
    "LATER_TIMESTAMP",
    "make_bookmark",
    "make_sample_tree",
    "make_stamped_tree",
    "SAMPLE_MARKDOWN_SIMPLE",
    "SAMPLE_MARKDOWN_WITH_FRONT_MATTER",
    "SAMPLE_MARKDOWN_MALFORMED",
    "SAMPLE_MARKDOWN_MULTILINE_NOTES",
]
