"""Typed exception hierarchy for remote document errors.

This module defines all custom exceptions used by the gist client library.
All exceptions inherit from GistError (itself a SyncError) for easy catching
and include descriptive messages with context to help with debugging.
"""

from typing import Optional


class SyncError(Exception):
    """Base exception for all bookmarkdown-sync errors.

    Use this to catch any application-level error from the sync tool.
    """
    pass


class GistError(SyncError):
    """Base exception for all remote document errors."""
    pass


class ValidationFailureError(GistError):
    """Raised when configuration or arguments are invalid.

    Never retried; surfaced to the user as-is.
    """

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class AuthenticationFailedError(GistError):
    """Raised when the host rejects the access token (401/403)."""

    def __init__(self, endpoint: str, status_code: Optional[int] = None):
        if status_code:
            message = f"Authentication failed ({status_code}) for {endpoint}"
        else:
            message = f"Authentication failed for {endpoint}"
        super().__init__(message)
        self.endpoint = endpoint
        self.status_code = status_code


class DocumentNotFoundError(GistError):
    """Raised when the hosted document (or its bookmark file) does not exist."""

    def __init__(self, document_id: str, filename: Optional[str] = None):
        if filename:
            message = f"File '{filename}' not found in gist {document_id}"
        else:
            message = f"Gist {document_id} not found"
        super().__init__(message)
        self.document_id = document_id
        self.filename = filename


class ConcurrentModificationError(GistError):
    """Raised when another writer changed the document underneath us.

    Either the host refused the write (409/412) or the revision history shows
    that the revision we wrote does not descend from the revision we knew.
    """

    def __init__(
        self,
        document_id: str,
        expected_parent: Optional[str] = None,
        actual_parent: Optional[str] = None,
        message: Optional[str] = None,
    ):
        if message is None:
            message = (
                f"Gist {document_id} was modified concurrently "
                f"(expected parent revision {expected_parent}, found {actual_parent})"
            )
        super().__init__(message)
        self.document_id = document_id
        self.expected_parent = expected_parent
        self.actual_parent = actual_parent


class TransientError(GistError):
    """Raised for transport, parse and unexpected server failures."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RepositoryNotInitializedError(GistError):
    """Raised when a repository operation runs before binding to a document."""

    def __init__(self, operation: str):
        super().__init__(f"Repository is not bound to a gist (operation: {operation})")
        self.operation = operation
