"""In-memory gist host and repository.

InMemoryGistHost simulates the parts of the gist service the repository
relies on: documents addressed by id, a fresh ETag on every change, and an
ordered revision history. Like the real host, a PATCH is accepted blindly;
races are only visible through the history. Several InMemoryRepository
instances sharing one host behave like several browser tabs or devices.

Used by the test suite.
"""

import threading
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .errors import (
    ConcurrentModificationError,
    DocumentNotFoundError,
    RepositoryNotInitializedError,
    ValidationFailureError,
)
from .repository import DEFAULT_DESCRIPTION, DEFAULT_FILENAME


def _new_etag() -> str:
    return f'W/"{uuid.uuid4().hex}"'


@dataclass
class HostedGist:
    """One document stored by the in-memory host."""
    id: str
    description: str
    public: bool
    files: Dict[str, str]
    etag: str
    history: List[str] = field(default_factory=list)  # newest first

    @property
    def revision(self) -> str:
        return self.history[0]


class InMemoryGistHost:
    """Thread-safe stand-in for the gist service.

    Example:
        >>> host = InMemoryGistHost()
        >>> tab_a = InMemoryRepository(host)
        >>> tab_b = InMemoryRepository(host)
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._gists: Dict[str, HostedGist] = {}
        self._failures: Dict[str, List[Exception]] = {}

    def fail_next(self, operation: str, exception: Exception) -> None:
        """Make the next call of a repository operation raise exception."""
        with self._lock:
            self._failures.setdefault(operation, []).append(exception)

    def take_failure(self, operation: str) -> Optional[Exception]:
        with self._lock:
            pending = self._failures.get(operation)
            if pending:
                return pending.pop(0)
        return None

    def create(self, files: Dict[str, str], description: str, public: bool) -> HostedGist:
        with self._lock:
            gist = HostedGist(
                id=uuid.uuid4().hex[:20],
                description=description,
                public=public,
                files=dict(files),
                etag=_new_etag(),
                history=[uuid.uuid4().hex],
            )
            self._gists[gist.id] = gist
            return self._snapshot(gist)

    def get(self, gist_id: str) -> HostedGist:
        with self._lock:
            return self._snapshot(self._find(gist_id))

    def patch(
        self,
        gist_id: str,
        files: Dict[str, str],
        description: Optional[str] = None,
    ) -> HostedGist:
        """Apply a write; a new revision is recorded only if file content changed."""
        with self._lock:
            gist = self._find(gist_id)
            merged = {**gist.files, **files}
            if merged != gist.files:
                gist.files = merged
                gist.history.insert(0, uuid.uuid4().hex)
                gist.etag = _new_etag()
            if description is not None and description != gist.description:
                gist.description = description
                gist.etag = _new_etag()
            return self._snapshot(gist)

    def commits(self, gist_id: str) -> List[str]:
        with self._lock:
            return list(self._find(gist_id).history)

    def list_gists(self) -> List[HostedGist]:
        with self._lock:
            return [self._snapshot(g) for g in self._gists.values()]

    def write_externally(self, gist_id: str, filename: str, content: str) -> HostedGist:
        """Simulate another client writing the document."""
        return self.patch(gist_id, {filename: content})

    def delete(self, gist_id: str) -> None:
        with self._lock:
            self._gists.pop(gist_id, None)

    def _find(self, gist_id: str) -> HostedGist:
        gist = self._gists.get(gist_id)
        if gist is None:
            raise DocumentNotFoundError(gist_id)
        return gist

    @staticmethod
    def _snapshot(gist: HostedGist) -> HostedGist:
        return HostedGist(
            id=gist.id,
            description=gist.description,
            public=gist.public,
            files=dict(gist.files),
            etag=gist.etag,
            history=list(gist.history),
        )


class InMemoryRepository:
    """Repository implementation over an InMemoryGistHost.

    Mirrors GistRepository semantics, including the revision-history check
    on update. Every public call is recorded in ``calls`` so tests can assert
    which operations ran.
    """

    def __init__(
        self,
        host: InMemoryGistHost,
        filename: str = DEFAULT_FILENAME,
        document_id: Optional[str] = None,
        description: str = DEFAULT_DESCRIPTION,
        is_public: bool = False,
    ):
        if not filename or not filename.strip():
            raise ValidationFailureError("Filename is required", 'filename')
        self._host = host
        self._filename = filename
        self._configured_id = document_id
        self._description = description
        self._is_public = is_public
        self._document_id: Optional[str] = None
        self._etag: Optional[str] = None
        self._revision: Optional[str] = None
        self._remote_etag: Optional[str] = None
        self.calls: List[str] = []

    @property
    def document_id(self) -> Optional[str]:
        return self._document_id

    @property
    def version_tag(self) -> Optional[str]:
        return self._etag

    @property
    def revision(self) -> Optional[str]:
        return self._revision

    @property
    def remote_version_tag(self) -> Optional[str]:
        return self._remote_etag

    @property
    def is_bound(self) -> bool:
        return self._document_id is not None and self._etag is not None

    def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        failure = self._host.take_failure(operation)
        if failure is not None:
            raise failure

    def _require_bound(self, operation: str) -> str:
        if not self.is_bound:
            raise RepositoryNotInitializedError(operation)
        return self._document_id  # type: ignore[return-value]

    def _adopt(self, gist: HostedGist) -> None:
        self._document_id = gist.id
        self._etag = gist.etag
        self._remote_etag = gist.etag
        self._revision = gist.revision

    def initialize(self, initial_content: str) -> Tuple[str, str]:
        self._enter('initialize')
        if self._configured_id:
            return self.bind(self._configured_id)
        found = self.find_by_filename()
        if found:
            return self.bind(found)
        return self.create(initial_content)

    def create(
        self,
        content: str,
        description: Optional[str] = None,
        is_public: Optional[bool] = None,
    ) -> Tuple[str, str]:
        self._enter('create')
        gist = self._host.create(
            {self._filename: content},
            description if description is not None else self._description,
            is_public if is_public is not None else self._is_public,
        )
        self._adopt(gist)
        return gist.id, gist.etag

    def bind(self, document_id: str) -> Tuple[str, str]:
        self._enter('bind')
        if not document_id:
            raise ValidationFailureError("Gist id is required", 'document_id')
        gist = self._host.get(document_id)
        self._adopt(gist)
        return gist.id, gist.etag

    def find_by_filename(self) -> Optional[str]:
        self._enter('find_by_filename')
        for gist in self._host.list_gists():
            if self._filename in gist.files:
                return gist.id
        return None

    def read(self) -> Tuple[str, str]:
        self._enter('read')
        document_id = self._require_bound('read')
        gist = self._host.get(document_id)
        if self._filename not in gist.files:
            raise DocumentNotFoundError(document_id, self._filename)
        self._adopt(gist)
        return gist.files[self._filename], gist.etag

    def update(self, content: str, description: Optional[str] = None) -> str:
        self._enter('update')
        document_id = self._require_bound('update')
        previous_revision = self._revision
        gist = self._host.patch(document_id, {self._filename: content}, description)

        if gist.revision != previous_revision:
            history = self._host.commits(document_id)
            index = history.index(gist.revision) if gist.revision in history else -1
            parent = history[index + 1] if 0 <= index < len(history) - 1 else None
            if parent != previous_revision:
                raise ConcurrentModificationError(
                    document_id,
                    expected_parent=previous_revision,
                    actual_parent=parent,
                )

        self._etag = gist.etag
        self._remote_etag = gist.etag
        self._revision = gist.revision
        return gist.etag

    def has_remote_changes(self) -> bool:
        self._enter('has_remote_changes')
        document_id = self._require_bound('has_remote_changes')
        gist = self._host.get(document_id)
        self._remote_etag = gist.etag
        if gist.etag == self._etag:
            return False
        if gist.revision == self._revision:
            self._etag = gist.etag
            return False
        return True
