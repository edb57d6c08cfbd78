"""Content conversion module for bookmark tree ↔ markdown conversion.

This module provides the MarkdownConverter, the codec between the in-memory
bookmark tree and the markdown document that is stored remotely.
"""

from .markdown_converter import MarkdownConverter, EMPTY_DOCUMENT

__all__ = ['MarkdownConverter', 'EMPTY_DOCUMENT']
