"""Unit tests for gist_client.memory_repository module."""

import pytest

from src.gist_client.errors import (
    ConcurrentModificationError,
    DocumentNotFoundError,
    RepositoryNotInitializedError,
    TransientError,
    ValidationFailureError,
)
from src.gist_client.memory_repository import InMemoryGistHost, InMemoryRepository
from src.gist_client.repository import Repository


@pytest.fixture
def host():
    return InMemoryGistHost()


class TestInMemoryGistHost:
    """Test cases for the host simulation."""

    def test_patch_with_same_content_keeps_revision(self, host):
        """Identical content does not create a revision or a new ETag."""
        gist = host.create({'bookmarks.md': '# A'}, 'desc', False)

        patched = host.patch(gist.id, {'bookmarks.md': '# A'})

        assert patched.history == gist.history
        assert patched.etag == gist.etag

    def test_description_change_moves_etag_only(self, host):
        """A metadata edit changes the ETag but not the revision."""
        gist = host.create({'bookmarks.md': '# A'}, 'desc', False)

        patched = host.patch(gist.id, {}, description='new')

        assert patched.revision == gist.revision
        assert patched.etag != gist.etag

    def test_snapshots_are_detached(self, host):
        """Mutating a returned snapshot does not touch the host."""
        gist = host.create({'bookmarks.md': '# A'}, 'desc', False)

        gist.files['bookmarks.md'] = 'changed'

        assert host.get(gist.id).files['bookmarks.md'] == '# A'

    def test_deleted_gist_is_not_found(self, host):
        gist = host.create({'bookmarks.md': '# A'}, 'desc', False)

        host.delete(gist.id)

        with pytest.raises(DocumentNotFoundError):
            host.get(gist.id)


class TestInMemoryRepository:
    """Test cases for InMemoryRepository."""

    def test_satisfies_protocol(self, host):
        assert isinstance(InMemoryRepository(host), Repository)

    def test_empty_filename_is_rejected(self, host):
        with pytest.raises(ValidationFailureError):
            InMemoryRepository(host, filename='')

    def test_initialize_creates_then_finds(self, host):
        """The first repository creates the gist; the second finds it by filename."""
        # Arrange
        first = InMemoryRepository(host)
        second = InMemoryRepository(host)

        # Act
        created_id, _ = first.initialize('# Empty')
        found_id, _ = second.initialize('# Ignored')

        # Assert
        assert created_id == found_id
        assert second.read()[0] == '# Empty'
        assert 'create' in first.calls
        assert 'create' not in second.calls

    def test_initialize_binds_configured_id(self, host):
        gist = host.create({'bookmarks.md': '# A'}, 'desc', False)
        repo = InMemoryRepository(host, document_id=gist.id)

        repo.initialize('# Ignored')

        assert repo.calls == ['initialize', 'bind']
        assert repo.document_id == gist.id

    def test_operations_before_bind_raise(self, host):
        repo = InMemoryRepository(host)

        with pytest.raises(RepositoryNotInitializedError):
            repo.read()
        with pytest.raises(RepositoryNotInitializedError):
            repo.update('# A')

    def test_interleaved_writer_is_detected_on_update(self, host):
        """Two repositories on one gist: the stale writer gets a conflict."""
        # Arrange
        tab_a = InMemoryRepository(host)
        gist_id, _ = tab_a.initialize('# Start')
        tab_b = InMemoryRepository(host, document_id=gist_id)
        tab_b.initialize('')

        # Act
        tab_b.update('# From B')

        # Assert
        with pytest.raises(ConcurrentModificationError):
            tab_a.update('# From A')

    def test_sequential_writers_do_not_conflict(self, host):
        """A repository that read the latest revision may write."""
        tab_a = InMemoryRepository(host)
        gist_id, _ = tab_a.initialize('# Start')
        tab_b = InMemoryRepository(host, document_id=gist_id)
        tab_b.initialize('')
        tab_b.update('# From B')

        tab_a.read()
        tab_a.update('# From A')

        assert tab_b.read()[0] == '# From A'

    def test_has_remote_changes_tracks_external_writes(self, host):
        """External content writes are reported; our own writes are not."""
        repo = InMemoryRepository(host)
        gist_id, _ = repo.initialize('# Start')
        assert repo.has_remote_changes() is False

        repo.update('# Mine')
        assert repo.has_remote_changes() is False

        host.write_externally(gist_id, 'bookmarks.md', '# Theirs')
        assert repo.has_remote_changes() is True

    def test_metadata_only_change_is_not_reported(self, host):
        repo = InMemoryRepository(host)
        gist_id, _ = repo.initialize('# Start')

        host.patch(gist_id, {}, description='renamed')

        assert repo.has_remote_changes() is False
        assert repo.version_tag == host.get(gist_id).etag

    def test_fail_next_raises_once(self, host):
        """An injected failure applies to the next call of that operation only."""
        repo = InMemoryRepository(host)
        repo.initialize('# Start')
        host.fail_next('read', TransientError('down'))

        with pytest.raises(TransientError):
            repo.read()
        assert repo.read()[0] == '# Start'
        assert repo.calls.count('read') == 2
