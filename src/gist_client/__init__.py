"""Gist client library for the bookmark document.

This package provides Python abstractions over the GitHub Gist REST API:
a thin HTTP wrapper with error translation, the Repository interface with
its gist-backed and in-memory implementations, and startup retry logic.
"""

from .errors import (
    SyncError,
    GistError,
    ValidationFailureError,
    AuthenticationFailedError,
    DocumentNotFoundError,
    ConcurrentModificationError,
    TransientError,
    RepositoryNotInitializedError,
)
from .repository import Repository, RepositoryConfig, GistRepository
from .memory_repository import InMemoryGistHost, InMemoryRepository

__all__ = [
    "SyncError",
    "GistError",
    "ValidationFailureError",
    "AuthenticationFailedError",
    "DocumentNotFoundError",
    "ConcurrentModificationError",
    "TransientError",
    "RepositoryNotInitializedError",
    "Repository",
    "RepositoryConfig",
    "GistRepository",
    "InMemoryGistHost",
    "InMemoryRepository",
]
