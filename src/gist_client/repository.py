"""Remote repository bound to one hosted gist.

This module defines the Repository interface the sync layer talks to and its
production implementation over the gist API. A repository binds to exactly
one gist, identified either by a configured id or by finding the gist that
contains the configured filename.

Concurrency is optimistic. The ETag of the last response is the version tag
used for cheap change polling (If-None-Match). Writes are additionally
verified against the gist revision history: after a PATCH the repository
checks that the new revision's parent is the revision it knew before the
write, and reports ConcurrentModificationError otherwise, even though the
PATCH itself succeeded.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Tuple, runtime_checkable

from .api_wrapper import DEFAULT_API_BASE_URL, MAX_PAGE_SIZE, GistAPI, GistResponse
from .errors import (
    ConcurrentModificationError,
    DocumentNotFoundError,
    RepositoryNotInitializedError,
    TransientError,
    ValidationFailureError,
)

logger = logging.getLogger(__name__)

DEFAULT_FILENAME = 'bookmarks.md'
DEFAULT_DESCRIPTION = 'BookMarkDown - Bookmark Collection'
# Stop paging through the gist list after this many pages
MAX_LIST_PAGES = 30


@runtime_checkable
class Repository(Protocol):
    """Interface of a remote bookmark document store."""

    @property
    def document_id(self) -> Optional[str]: ...

    @property
    def version_tag(self) -> Optional[str]: ...

    @property
    def is_bound(self) -> bool: ...

    def initialize(self, initial_content: str) -> Tuple[str, str]: ...

    def create(
        self,
        content: str,
        description: Optional[str] = None,
        is_public: Optional[bool] = None,
    ) -> Tuple[str, str]: ...

    def bind(self, document_id: str) -> Tuple[str, str]: ...

    def find_by_filename(self) -> Optional[str]: ...

    def read(self) -> Tuple[str, str]: ...

    def update(self, content: str, description: Optional[str] = None) -> str: ...

    def has_remote_changes(self) -> bool: ...


@dataclass(frozen=True)
class RepositoryConfig:
    """Settings for binding a repository to a gist.

    Attributes:
        access_token: GitHub token with the 'gist' scope (required)
        filename: Name of the markdown file inside the gist (required)
        document_id: Gist id to bind to; None means look up by filename
        description: Description used when creating a gist
        is_public: Visibility used when creating a gist
        per_page: Page size for the gist list (clamped to 1..100)
        api_base_url: API root
        timeout: Per-request timeout in seconds

    Example:
        >>> config = RepositoryConfig(access_token="ghp_...", filename="bookmarks.md")
        >>> config.validate()
    """
    access_token: str
    filename: str = DEFAULT_FILENAME
    document_id: Optional[str] = None
    description: str = DEFAULT_DESCRIPTION
    is_public: bool = False
    per_page: int = MAX_PAGE_SIZE
    api_base_url: str = DEFAULT_API_BASE_URL
    timeout: float = 30

    def validate(self) -> None:
        """Check required fields without touching the network.

        Raises:
            ValidationFailureError: If the token or filename is missing
        """
        if not self.access_token or not self.access_token.strip():
            raise ValidationFailureError("Access token is required", 'access_token')
        if not self.filename or not self.filename.strip():
            raise ValidationFailureError("Filename is required", 'filename')

    @property
    def page_size(self) -> int:
        return max(1, min(self.per_page, MAX_PAGE_SIZE))


def current_revision(gist: Any) -> Optional[str]:
    """Extract history[0].version (the current revision id) from gist JSON."""
    if not isinstance(gist, dict):
        return None
    history = gist.get('history') or []
    if not history or not isinstance(history[0], dict):
        return None
    return history[0].get('version')


class GistRepository:
    """Repository implementation backed by the GitHub gist API.

    State kept per instance:
        document_id: Id of the bound gist
        version_tag: ETag of the last response we consumed
        revision: history[0].version we last wrote or read
        remote_version_tag: ETag seen by the last has_remote_changes() poll

    Example:
        >>> repo = GistRepository(RepositoryConfig(access_token=token))
        >>> repo.initialize(initial_content=markdown)
        ('aa5a315d61ae9438b18d', 'W/"4c7d..."')
        >>> content, tag = repo.read()
        >>> new_tag = repo.update(content + "\\n- [x](https://x.test)")
    """

    def __init__(self, config: RepositoryConfig, api: Optional[GistAPI] = None):
        """Validate configuration and set up the API wrapper.

        Args:
            config: Repository settings
            api: Optional API wrapper (tests inject a mock)

        Raises:
            ValidationFailureError: If the token or filename is missing
        """
        config.validate()
        self._config = config
        self._api = api or GistAPI(
            access_token=config.access_token,
            base_url=config.api_base_url,
            timeout=config.timeout,
        )
        self._document_id: Optional[str] = None
        self._etag: Optional[str] = None
        self._revision: Optional[str] = None
        self._remote_etag: Optional[str] = None

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
    def filename(self) -> str:
        return self._config.filename

    @property
    def is_bound(self) -> bool:
        return self._document_id is not None and self._etag is not None

    def _require_bound(self, operation: str) -> str:
        if not self.is_bound:
            raise RepositoryNotInitializedError(operation)
        return self._document_id  # type: ignore[return-value]

    def _adopt(self, document_id: str, response: GistResponse) -> None:
        self._document_id = document_id
        self._etag = response.etag
        self._remote_etag = response.etag
        self._revision = current_revision(response.data)

    def initialize(self, initial_content: str) -> Tuple[str, str]:
        """Bind to the configured gist, an existing gist holding our file, or a new one.

        Args:
            initial_content: Content for a newly created gist

        Returns:
            Tuple of (document_id, version_tag)
        """
        if self._config.document_id:
            logger.info(f"Binding to configured gist {self._config.document_id}")
            return self.bind(self._config.document_id)

        found = self.find_by_filename()
        if found:
            logger.info(f"Found existing gist {found} containing {self._config.filename}")
            return self.bind(found)

        logger.info(f"No gist contains {self._config.filename}, creating one")
        return self.create(initial_content)

    def create(
        self,
        content: str,
        description: Optional[str] = None,
        is_public: Optional[bool] = None,
    ) -> Tuple[str, str]:
        """Create a gist with our file and bind to it.

        Raises:
            TransientError: If the host returned no id or no ETag
        """
        response = self._api.create_gist(
            filename=self._config.filename,
            content=content,
            description=description if description is not None else self._config.description,
            public=is_public if is_public is not None else self._config.is_public,
        )
        data = response.data if isinstance(response.data, dict) else {}
        document_id = data.get('id')
        if not document_id:
            raise TransientError("Gist creation returned no id")
        if not response.etag:
            raise TransientError(f"Gist {document_id} was created but no ETag was returned")

        self._adopt(document_id, response)
        logger.info(f"Created gist {document_id}")
        return document_id, response.etag

    def bind(self, document_id: str) -> Tuple[str, str]:
        """Bind to an existing gist.

        Raises:
            ValidationFailureError: If document_id is empty
            DocumentNotFoundError: If the gist does not exist
            TransientError: If the host returned no ETag
        """
        if not document_id or not document_id.strip():
            raise ValidationFailureError("Gist id is required", 'document_id')

        response = self._api.get_gist(document_id)
        if not response.etag:
            raise TransientError(f"No ETag returned for gist {document_id}")

        self._adopt(document_id, response)
        logger.debug(f"Bound to gist {document_id} at revision {self._revision}")
        return document_id, response.etag

    def find_by_filename(self) -> Optional[str]:
        """Page through the user's gists looking for one that holds our file.

        Returns:
            Gist id, or None when no gist contains the configured filename
        """
        per_page = self._config.page_size
        for page in range(1, MAX_LIST_PAGES + 1):
            gists = self._api.list_gists(per_page=per_page, page=page)
            for gist in gists:
                files = gist.get('files') or {}
                if self._config.filename in files:
                    return gist.get('id')
            if len(gists) < per_page:
                return None
        logger.warning(f"Stopped looking for {self._config.filename} after {MAX_LIST_PAGES} pages")
        return None

    def read(self) -> Tuple[str, str]:
        """Fetch the current content of our file.

        Returns:
            Tuple of (content, version_tag)

        Raises:
            RepositoryNotInitializedError: If not bound
            DocumentNotFoundError: If the gist or the file is gone
        """
        document_id = self._require_bound('read')
        response = self._api.get_gist(document_id)
        files: Dict[str, Any] = (response.data or {}).get('files') or {}
        file_info = files.get(self._config.filename)
        if not file_info:
            raise DocumentNotFoundError(document_id, self._config.filename)

        if file_info.get('truncated') and file_info.get('raw_url'):
            logger.debug(f"{self._config.filename} is truncated, fetching raw content")
            content = self._api.fetch_raw(file_info['raw_url'])
        else:
            content = file_info.get('content') or ''

        if response.etag:
            self._adopt(document_id, response)
        return content, self._etag  # type: ignore[return-value]

    def update(self, content: str, description: Optional[str] = None) -> str:
        """Write new content and verify no other writer slipped in between.

        The revision known before the write is captured first. After the
        PATCH, the revision history must show that revision as the parent of
        the one just written.

        Args:
            content: New file content
            description: Optional new gist description

        Returns:
            New version tag

        Raises:
            RepositoryNotInitializedError: If not bound or no revision is known
            ConcurrentModificationError: If the history check fails
        """
        document_id = self._require_bound('update')
        previous_revision = self._revision
        if previous_revision is None:
            raise RepositoryNotInitializedError('update')

        response = self._api.update_gist(
            document_id,
            filename=self._config.filename,
            content=content,
            description=description,
        )
        if not response.etag:
            raise TransientError(f"No ETag returned after updating gist {document_id}")

        new_revision = current_revision(response.data)
        if new_revision is None:
            raise ConcurrentModificationError(
                document_id,
                expected_parent=previous_revision,
                message=f"Update of gist {document_id} returned no revision to verify",
            )

        if new_revision == previous_revision:
            # Host kept the revision: the content was already identical
            logger.debug(f"Update of gist {document_id} produced no new revision")
        else:
            self._verify_parent(document_id, new_revision, previous_revision)

        self._etag = response.etag
        self._remote_etag = response.etag
        self._revision = new_revision
        logger.info(f"Updated gist {document_id} to revision {new_revision}")
        return response.etag

    def _verify_parent(self, document_id: str, new_revision: str, previous_revision: str) -> None:
        commits = self._api.list_commits(document_id)
        versions = [commit.get('version') for commit in commits]

        if new_revision not in versions:
            logger.warning(f"Revision {new_revision} missing from history of gist {document_id}")
            raise ConcurrentModificationError(
                document_id,
                expected_parent=previous_revision,
                message=f"Revision {new_revision} of gist {document_id} could not be verified",
            )

        index = versions.index(new_revision)
        parent = versions[index + 1] if index + 1 < len(versions) else None
        if parent != previous_revision:
            logger.warning(
                f"Gist {document_id} revision {new_revision} has parent {parent}, "
                f"expected {previous_revision}"
            )
            raise ConcurrentModificationError(
                document_id,
                expected_parent=previous_revision,
                actual_parent=parent,
            )

    def has_remote_changes(self) -> bool:
        """Poll the gist with If-None-Match against the last observed ETag.

        A 304 means unchanged. A new ETag whose revision equals the known
        revision (e.g. a description edit, or ETag drift after our own
        write) is adopted and reported as unchanged. Content is not decoded.

        Raises:
            RepositoryNotInitializedError: If not bound
        """
        document_id = self._require_bound('has_remote_changes')
        response = self._api.get_gist(document_id, if_none_match=self._etag)

        if response.not_modified:
            self._remote_etag = self._etag
            return False

        self._remote_etag = response.etag
        revision = current_revision(response.data)
        if revision is not None and revision == self._revision:
            logger.debug(f"Gist {document_id} ETag moved without a new revision")
            if response.etag:
                self._etag = response.etag
            return False

        logger.info(f"Gist {document_id} changed remotely (revision {revision})")
        return True
