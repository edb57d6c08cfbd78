"""Unit tests for sync.orchestrator module."""

import json
from unittest.mock import Mock

import pytest

from src.bookmark_model.models import BookmarkFilter, BookmarkInput, BookmarkUpdate
from src.content_converter.markdown_converter import MarkdownConverter
from src.gist_client.errors import (
    AuthenticationFailedError,
    ConcurrentModificationError,
    TransientError,
    ValidationFailureError,
)
from src.gist_client.memory_repository import InMemoryGistHost, InMemoryRepository
from src.sync.config import SyncSettings
from src.sync.models import SyncStatus
from src.sync.offline_mirror import MirrorState, OfflineMirror
from src.sync.orchestrator import (
    ALREADY_RESOLVED_MESSAGE,
    AUTH_FAILED_MESSAGE,
    REMOTE_CHANGED_MESSAGE,
    SyncOrchestrator,
)
from tests.fixtures.sample_markdown import SAMPLE_MARKDOWN_SIMPLE
from tests.fixtures.sample_trees import make_stamped_tree
from tests.helpers import FakeDetector, ManualScheduler


REMOTE_MARKDOWN = "# Remote\n\n## Links\n\n- [Example](https://example.com)"


def category_names(tree):
    return [c.name for c in tree.categories]


class Harness:
    """Orchestrator wired to an in-memory host and a manual clock."""

    def __init__(self, settings=None, mirror=None, detector_factory=None):
        self.host = InMemoryGistHost()
        self.repositories = []
        self.scheduler = ManualScheduler()
        self.sleeps = []
        self.on_logout = Mock()
        self.orchestrator = SyncOrchestrator(
            repository_factory=self.factory,
            settings=settings or SyncSettings(),
            scheduler=self.scheduler,
            mirror=mirror,
            on_logout=self.on_logout,
            sleep=self.sleeps.append,
            detector_factory=detector_factory,
        )

    def factory(self, document_id):
        repository = InMemoryRepository(self.host, document_id=document_id)
        self.repositories.append(repository)
        return repository

    @property
    def repository(self):
        return self.orchestrator.repository

    def remote_content(self):
        gist = self.host.get(self.orchestrator.document_id)
        return gist.files['bookmarks.md']

    def write_remote(self, content=REMOTE_MARKDOWN):
        self.host.write_externally(self.orchestrator.document_id, 'bookmarks.md', content)


@pytest.fixture
def harness():
    return Harness()


@pytest.fixture
def started(harness):
    """Harness whose orchestrator is bound, without the polling detector."""
    result = harness.orchestrator.start(start_detector=False)
    assert result.status is SyncStatus.PULLED
    return harness


class TestLocalOnly:
    """Without a repository factory nothing is synced."""

    def test_start_and_sync_report_local_only(self):
        orchestrator = SyncOrchestrator(scheduler=ManualScheduler())

        assert orchestrator.is_local_only is True
        assert orchestrator.start().status is SyncStatus.LOCAL_ONLY
        assert orchestrator.sync_with_remote().status is SyncStatus.LOCAL_ONLY
        assert orchestrator.load_from_remote().status is SyncStatus.LOCAL_ONLY
        assert orchestrator.save_to_remote().status is SyncStatus.LOCAL_ONLY

    def test_mutations_work_without_remote(self):
        scheduler = ManualScheduler()
        orchestrator = SyncOrchestrator(scheduler=scheduler)

        orchestrator.add_category("Reading")

        assert category_names(orchestrator.tree) == ["Reading"]
        assert orchestrator.dirty is True
        assert scheduler.pending == []


class TestStart:
    """Test cases for start and the initial load."""

    def test_creates_gist_when_none_exists(self, harness):
        """The first start creates a gist holding the empty placeholder."""
        result = harness.orchestrator.start(start_detector=False)

        assert result.status is SyncStatus.PULLED
        assert harness.orchestrator.document_id is not None
        assert harness.remote_content() == MarkdownConverter().tree_to_markdown(harness.orchestrator.tree)
        assert harness.orchestrator.last_sync_at is not None
        assert harness.orchestrator.dirty is False

    def test_loads_existing_gist(self, harness):
        """An existing gist holding our file is found and pulled."""
        harness.host.create({'bookmarks.md': SAMPLE_MARKDOWN_SIMPLE}, 'desc', False)

        harness.orchestrator.start(start_detector=False)

        assert category_names(harness.orchestrator.tree) == ["📚 Development", "🎵 Music"]

    def test_starts_detector_by_default(self, harness):
        harness.orchestrator.start()

        assert harness.orchestrator.detector.is_running() is True

    def test_retries_transient_failures_with_backoff(self, harness):
        """Startup failures are retried after 1s and 2s."""
        # Arrange
        harness.host.fail_next('initialize', TransientError("down"))
        harness.host.fail_next('initialize', AuthenticationFailedError("x", status_code=401))

        # Act
        result = harness.orchestrator.start(start_detector=False)

        # Assert
        assert result.status is SyncStatus.PULLED
        assert harness.sleeps == [1.0, 2.0]
        harness.on_logout.assert_not_called()

    def test_gives_up_after_three_retries(self, harness):
        for _ in range(4):
            harness.host.fail_next('initialize', TransientError("down"))

        result = harness.orchestrator.start(start_detector=False)

        assert result.status is SyncStatus.FAILED
        assert isinstance(result.error, TransientError)
        assert harness.sleeps == [1.0, 2.0, 4.0]
        assert harness.orchestrator.error == "down"

    def test_forbidden_aborts_without_retry(self, harness):
        """A 403 at startup is final and logs the user out."""
        harness.host.fail_next('initialize', AuthenticationFailedError("x", status_code=403))

        result = harness.orchestrator.start()

        assert result.status is SyncStatus.FAILED
        assert result.message == AUTH_FAILED_MESSAGE
        assert harness.sleeps == []
        assert harness.orchestrator.repository is None
        assert harness.orchestrator.detector is None
        harness.on_logout.assert_called_once()

    def make_dirty_mirror(self, tmp_path, remote_content=REMOTE_MARKDOWN):
        mirror = OfflineMirror(str(tmp_path / "mirror.yaml"))
        harness = Harness(mirror=mirror)
        gist = harness.host.create({'bookmarks.md': remote_content}, 'desc', False)
        mirror.save(MirrorState(tree=make_stamped_tree(), document_id=gist.id, dirty=True))
        return harness, mirror

    def test_dirty_mirror_becomes_conflict(self, tmp_path):
        """Unsynced mirror edits are held against the remote, not pushed over it."""
        # Arrange
        harness, mirror = self.make_dirty_mirror(tmp_path)

        # Act
        result = harness.orchestrator.start(start_detector=False)

        # Assert
        assert result.status is SyncStatus.CONFLICT
        assert harness.orchestrator.unresolved_conflict is True
        assert harness.orchestrator.pending_resolution is not None
        assert harness.orchestrator.error == REMOTE_CHANGED_MESSAGE
        assert harness.remote_content() == REMOTE_MARKDOWN
        assert 'update' not in harness.repository.calls
        assert category_names(harness.orchestrator.tree) == ["📚 Development", "🎵 Music"]
        assert harness.orchestrator.dirty is True
        assert mirror.load().dirty is True

    def test_sync_keeps_dirty_mirror_conflict(self, tmp_path):
        """A plain sync does not push while the mirror conflict is undecided."""
        harness, _ = self.make_dirty_mirror(tmp_path)
        harness.orchestrator.start(start_detector=False)
        resolutions = []

        result = harness.orchestrator.sync_with_remote(conflict_handler=resolutions.append)

        assert result.status is SyncStatus.CONFLICT
        assert len(resolutions) == 1
        assert harness.remote_content() == REMOTE_MARKDOWN
        assert 'update' not in harness.repository.calls

    def test_dirty_mirror_conflict_resolved_by_save_local(self, tmp_path):
        harness, mirror = self.make_dirty_mirror(tmp_path)
        harness.orchestrator.start(start_detector=False)

        result = harness.orchestrator.pending_resolution.save_local()

        assert result.status is SyncStatus.PUSHED
        assert harness.remote_content() == MarkdownConverter().tree_to_markdown(make_stamped_tree())
        assert harness.orchestrator.unresolved_conflict is False
        assert mirror.load().dirty is False

    def test_dirty_mirror_conflict_resolved_by_load_remote(self, tmp_path):
        harness, _ = self.make_dirty_mirror(tmp_path)
        harness.orchestrator.start(start_detector=False)

        result = harness.orchestrator.pending_resolution.load_remote()

        assert result.status is SyncStatus.PULLED
        assert category_names(harness.orchestrator.tree) == ["Remote"]
        assert harness.orchestrator.dirty is False

    def test_dirty_mirror_matching_remote_is_up_to_date(self, tmp_path):
        """Mirror edits that already reached the remote need no decision."""
        content = MarkdownConverter().tree_to_markdown(make_stamped_tree())
        harness, mirror = self.make_dirty_mirror(tmp_path, remote_content=content)

        result = harness.orchestrator.start(start_detector=False)

        assert result.status is SyncStatus.UP_TO_DATE
        assert harness.orchestrator.unresolved_conflict is False
        assert harness.orchestrator.dirty is False
        assert mirror.load().dirty is False
        assert 'update' not in harness.repository.calls

    def test_missing_configured_gist_falls_back_to_lookup(self):
        """A stale document id is replaced by lookup or creation."""
        harness = Harness(settings=SyncSettings(document_id='deadbeef'))

        result = harness.orchestrator.start(start_detector=False)

        assert result.status is SyncStatus.PULLED
        assert harness.orchestrator.document_id != 'deadbeef'


class TestMutations:
    """Test cases for validated tree mutations."""

    def test_duplicate_category_rejected(self, harness):
        harness.orchestrator.add_category("A")

        with pytest.raises(ValidationFailureError, match="Category 'A' already exists"):
            harness.orchestrator.add_category("A")

    def test_empty_name_rejected_without_marking_dirty(self, harness):
        with pytest.raises(ValidationFailureError, match="Category name cannot be empty"):
            harness.orchestrator.add_category("  ")

        assert harness.orchestrator.dirty is False

    def test_missing_parent_rejected(self, harness):
        harness.orchestrator.add_category("A")

        with pytest.raises(ValidationFailureError, match="Bundle 'B' not found in category 'A'"):
            harness.orchestrator.add_bookmark("A", "B", BookmarkInput(title="t", url="https://t.example"))
        with pytest.raises(ValidationFailureError, match="Category 'Z' not found"):
            harness.orchestrator.remove_category("Z")

    def test_empty_url_rejected(self, harness):
        harness.orchestrator.add_category("A")
        harness.orchestrator.add_bundle("A", "B")

        with pytest.raises(ValidationFailureError, match="Bookmark URL cannot be empty"):
            harness.orchestrator.add_bookmark("A", "B", BookmarkInput(title="t", url=" "))

    def test_title_defaults_to_url(self, harness):
        harness.orchestrator.add_category("A")
        harness.orchestrator.add_bundle("A", "B")

        tree = harness.orchestrator.add_bookmark("A", "B", BookmarkInput(title="", url=" https://t.example "))

        bookmark = tree.find_bundle("A", "B").bookmarks[0]
        assert bookmark.title == "https://t.example"
        assert bookmark.url == "https://t.example"

    def test_update_and_move_bookmark(self, harness):
        orchestrator = harness.orchestrator
        orchestrator.import_data(SAMPLE_MARKDOWN_SIMPLE)
        react = orchestrator.search(BookmarkFilter(search_term="react"))[0].bookmark

        orchestrator.update_bookmark("📚 Development", "Frontend", react.id, BookmarkUpdate(title="React.dev"))
        tree = orchestrator.move_bookmark("📚 Development", "Frontend", "🎵 Music", "Streaming", react.id)

        moved = tree.find_bundle("🎵 Music", "Streaming").find_bookmark(react.id)
        assert moved.title == "React.dev"

    def test_tombstone_and_purge(self, harness):
        """Tombstoned bookmarks vanish from search and export; purge drops them."""
        orchestrator = harness.orchestrator
        orchestrator.import_data(SAMPLE_MARKDOWN_SIMPLE)

        orchestrator.tombstone_category("🎵 Music")

        assert "Bandcamp" not in orchestrator.export_data()
        assert orchestrator.stats().categories_count == 1
        orchestrator.purge_tombstones()
        assert category_names(orchestrator.tree) == ["📚 Development"]

    def test_purge_without_tombstones_keeps_clean_state(self, started):
        started.orchestrator.purge_tombstones()

        assert started.orchestrator.dirty is False

    def test_mutation_writes_mirror(self, tmp_path):
        mirror = OfflineMirror(str(tmp_path / "mirror.yaml"))
        harness = Harness(mirror=mirror)

        harness.orchestrator.add_category("Offline")

        state = mirror.load()
        assert state.dirty is True
        assert category_names(state.tree) == ["Offline"]

    def test_reset_empties_tree(self, harness):
        harness.orchestrator.import_data(SAMPLE_MARKDOWN_SIMPLE)

        harness.orchestrator.reset()

        assert harness.orchestrator.tree.categories == ()


class TestImportExport:
    """Test cases for import_data, export_data, search and stats."""

    def test_markdown_import_and_stats(self, harness):
        harness.orchestrator.import_data(SAMPLE_MARKDOWN_SIMPLE, 'markdown')

        stats = harness.orchestrator.stats()
        assert (stats.categories_count, stats.bundles_count, stats.bookmarks_count) == (2, 3, 4)
        assert harness.orchestrator.dirty is True

    def test_json_export_then_import(self, harness):
        harness.orchestrator.import_data(SAMPLE_MARKDOWN_SIMPLE)
        exported = harness.orchestrator.export_data('json')

        other = SyncOrchestrator(scheduler=ManualScheduler())
        other.import_data(exported, 'json')

        assert [c["name"] for c in json.loads(exported)["categories"]] == category_names(other.tree)
        assert category_names(other.tree) == ["📚 Development", "🎵 Music"]
        assert [r.bookmark.id for r in other.search()] == [r.bookmark.id for r in harness.orchestrator.search()]

    def test_search_by_tag(self, harness):
        harness.orchestrator.import_data(SAMPLE_MARKDOWN_SIMPLE)

        results = harness.orchestrator.search(BookmarkFilter(tags=("python",)))

        assert [(r.category_name, r.bundle_name, r.bookmark.title) for r in results] == [
            ("📚 Development", "Backend", "FastAPI"),
        ]

    @pytest.mark.parametrize("call", [
        lambda o: o.import_data("{not json", 'json'),
        lambda o: o.import_data("x", 'yaml'),
        lambda o: o.export_data('xml'),
    ])
    def test_bad_formats_rejected(self, harness, call):
        with pytest.raises(ValidationFailureError):
            call(harness.orchestrator)

    @pytest.mark.parametrize("data", [
        '{"categories": ["oops"]}',
        '{"categories": [{"name": "A"}, {"name": "A"}]}',
        '{"categories": [{"name": "A", "bundles": [{"name": "B"}, {"name": "B"}]}]}',
        json.dumps({"categories": [{"name": "A", "bundles": [
            {"name": "B", "bookmarks": [{"id": "1", "url": "https://a.example"}]},
            {"name": "C", "bookmarks": [{"id": "1", "url": "https://b.example"}]},
        ]}]}),
    ])
    def test_malformed_or_duplicate_json_rejected(self, harness, data):
        """Malformed entities and duplicate names or ids leave the tree untouched."""
        with pytest.raises(ValidationFailureError):
            harness.orchestrator.import_data(data, 'json')

        assert harness.orchestrator.tree.categories == ()
        assert harness.orchestrator.dirty is False

    def test_duplicate_markdown_categories_rejected(self, harness):
        with pytest.raises(ValidationFailureError, match="Duplicate category names"):
            harness.orchestrator.import_data("# A\n\n# A", 'markdown')

    @pytest.mark.parametrize("tag", ["c, c++", "two\nlines"])
    def test_tags_with_separators_rejected(self, harness, tag):
        """A tag containing a comma or line break would not survive the markdown form."""
        harness.orchestrator.add_category("Dev")
        harness.orchestrator.add_bundle("Dev", "Web")

        with pytest.raises(ValidationFailureError, match="cannot contain commas"):
            harness.orchestrator.add_bookmark("Dev", "Web", BookmarkInput(
                title="x", url="https://x.example", tags=(tag,),
            ))

    def test_update_with_comma_tag_rejected(self, harness):
        harness.orchestrator.import_data(SAMPLE_MARKDOWN_SIMPLE)
        result = harness.orchestrator.search()[0]

        with pytest.raises(ValidationFailureError):
            harness.orchestrator.update_bookmark(
                result.category_name, result.bundle_name, result.bookmark.id,
                BookmarkUpdate(tags=("c, c++",)),
            )

        assert "c, c++" not in harness.orchestrator.search()[0].bookmark.tags


class TestSyncWithRemote:
    """Test cases for pull / push / no-op decisions."""

    def test_up_to_date(self, started):
        result = started.orchestrator.sync_with_remote()

        assert result.status is SyncStatus.UP_TO_DATE
        assert 'update' not in started.repository.calls

    def test_pulls_when_only_remote_changed(self, started):
        started.write_remote()

        result = started.orchestrator.sync_with_remote()

        assert result.status is SyncStatus.PULLED
        assert category_names(started.orchestrator.tree) == ["Remote"]
        assert started.orchestrator.dirty is False

    def test_pushes_when_only_local_changed(self, started):
        started.orchestrator.add_category("Local")

        result = started.orchestrator.sync_with_remote()

        assert result.status is SyncStatus.PUSHED
        assert started.remote_content() == "# Local"
        assert started.orchestrator.dirty is False
        assert started.orchestrator.error is None

    def test_conflict_calls_handler_once_and_changes_nothing(self, started):
        """Both sides changed: the handler runs once, tree and remote untouched."""
        # Arrange
        started.orchestrator.add_category("Local")
        started.write_remote()
        local_tree = started.orchestrator.tree
        calls = []

        def handler(resolution):
            calls.append((resolution, started.orchestrator.is_syncing))

        # Act
        result = started.orchestrator.sync_with_remote(conflict_handler=handler)

        # Assert
        assert result.status is SyncStatus.CONFLICT
        assert result.message == REMOTE_CHANGED_MESSAGE
        assert len(calls) == 1
        assert calls[0][1] is False
        assert started.orchestrator.tree is local_tree
        assert started.remote_content() == REMOTE_MARKDOWN
        assert started.orchestrator.unresolved_conflict is True
        assert started.orchestrator.pending_resolution is calls[0][0]

    def test_conflict_without_handler_sets_error(self, started):
        started.orchestrator.add_category("Local")
        started.write_remote()

        started.orchestrator.sync_with_remote()

        assert started.orchestrator.error == REMOTE_CHANGED_MESSAGE

    def test_load_remote_resolves_conflict_once(self, started):
        """load_remote pulls; a second use of the same resolution fails."""
        started.orchestrator.add_category("Local")
        started.write_remote()
        resolutions = []
        started.orchestrator.sync_with_remote(conflict_handler=resolutions.append)

        first = resolutions[0].load_remote()
        second = resolutions[0].save_local()

        assert first.status is SyncStatus.PULLED
        assert category_names(started.orchestrator.tree) == ["Remote"]
        assert started.orchestrator.unresolved_conflict is False
        assert started.orchestrator.pending_resolution is None
        assert second.status is SyncStatus.FAILED
        assert second.message == ALREADY_RESOLVED_MESSAGE
        assert started.remote_content() == REMOTE_MARKDOWN

    def test_save_local_overwrites_remote(self, started):
        started.orchestrator.add_category("Local")
        started.write_remote()
        resolutions = []
        started.orchestrator.sync_with_remote(conflict_handler=resolutions.append)

        result = resolutions[0].save_local()

        assert result.status is SyncStatus.PUSHED
        assert started.remote_content() == "# Local"
        assert started.orchestrator.unresolved_conflict is False
        assert started.orchestrator.error is None

    def test_handler_exception_is_recorded(self, started):
        started.orchestrator.add_category("Local")
        started.write_remote()

        result = started.orchestrator.sync_with_remote(
            conflict_handler=Mock(side_effect=RuntimeError("dialog crashed"))
        )

        assert result.status is SyncStatus.CONFLICT
        assert "dialog crashed" in started.orchestrator.error

    def test_edits_during_pull_become_conflict(self, started, monkeypatch):
        """A local edit racing with a pull is not overwritten."""
        started.write_remote()
        repository = started.repository
        original_read = repository.read

        def read_with_edit():
            started.orchestrator.add_category("Mid-pull")
            return original_read()

        monkeypatch.setattr(repository, 'read', read_with_edit)

        result = started.orchestrator.sync_with_remote()

        assert result.status is SyncStatus.CONFLICT
        assert "Mid-pull" in category_names(started.orchestrator.tree)
        assert "Remote" not in category_names(started.orchestrator.tree)

    def test_concurrent_sync_fails_fast(self, started, monkeypatch):
        """A sync requested while one holds the lock fails immediately."""
        repository = started.repository
        original = repository.has_remote_changes
        inner = []

        def reentrant():
            inner.append(started.orchestrator.sync_with_remote())
            inner.append(started.orchestrator.handle_remote_change())
            return original()

        monkeypatch.setattr(repository, 'has_remote_changes', reentrant)

        outer = started.orchestrator.sync_with_remote()

        assert outer.status is SyncStatus.UP_TO_DATE
        assert inner[0].status is SyncStatus.FAILED
        assert inner[0].message == "Sync already in progress"
        assert inner[1] is False

    def test_force_pull_and_push(self, started):
        started.orchestrator.add_category("Local")
        started.write_remote()

        assert started.orchestrator.save_to_remote().status is SyncStatus.PUSHED
        assert started.remote_content() == "# Local"

        started.write_remote()
        assert started.orchestrator.load_from_remote().status is SyncStatus.PULLED
        assert category_names(started.orchestrator.tree) == ["Remote"]


class TestRebind:
    """Test cases for the re-bind-and-retry-once path."""

    def test_concurrent_modification_rebinds_and_retries(self, started):
        # Arrange
        started.orchestrator.add_category("Local")
        started.host.fail_next('update', ConcurrentModificationError(started.orchestrator.document_id))
        document_id = started.orchestrator.document_id

        # Act
        result = started.orchestrator.sync_with_remote()

        # Assert
        assert result.status is SyncStatus.PUSHED
        assert len(started.repositories) == 2
        assert started.repositories[1].calls[:2] == ['initialize', 'bind']
        assert started.orchestrator.document_id == document_id
        assert started.remote_content() == "# Local"

    def test_persistent_concurrent_modification_is_conflict(self, started):
        started.orchestrator.add_category("Local")
        for _ in range(2):
            started.host.fail_next('update', ConcurrentModificationError(started.orchestrator.document_id))

        result = started.orchestrator.sync_with_remote()

        assert result.status is SyncStatus.CONFLICT
        assert started.orchestrator.unresolved_conflict is True

    def test_deleted_gist_is_recreated(self, started):
        """A missing document is looked up again or recreated with the local tree."""
        started.orchestrator.add_category("Local")
        old_id = started.orchestrator.document_id
        started.host.delete(old_id)

        result = started.orchestrator.sync_with_remote()

        assert result.status is SyncStatus.PUSHED
        assert started.orchestrator.document_id != old_id
        assert started.remote_content() == "# Local"

    def test_transient_failure_is_reported(self, started):
        started.host.fail_next('has_remote_changes', TransientError("down"))

        result = started.orchestrator.sync_with_remote()

        assert result.status is SyncStatus.FAILED
        assert isinstance(result.error, TransientError)
        assert started.orchestrator.error == "down"
        assert started.orchestrator.sync_with_remote().status is SyncStatus.UP_TO_DATE
        assert started.orchestrator.error is None


class TestAuthFailure:
    """Authentication failures short-circuit and log the user out."""

    def test_auth_failure_logs_out(self, started):
        # Arrange
        started.host.fail_next('has_remote_changes', AuthenticationFailedError("x", status_code=401))

        # Act
        result = started.orchestrator.sync_with_remote()

        # Assert
        assert result.status is SyncStatus.FAILED
        assert result.message == AUTH_FAILED_MESSAGE
        assert isinstance(result.error, AuthenticationFailedError)
        assert started.orchestrator.error == AUTH_FAILED_MESSAGE
        assert started.orchestrator.repository is None
        started.on_logout.assert_called_once()

    def test_auth_failure_during_polling_logs_out(self, harness):
        """The detector hands a rejected token to the logout path and stops."""
        harness.orchestrator.start()
        harness.host.fail_next('has_remote_changes', AuthenticationFailedError("x", status_code=401))

        harness.scheduler.advance(SyncSettings().poll_interval_seconds)

        harness.on_logout.assert_called_once()
        assert harness.orchestrator.error == AUTH_FAILED_MESSAGE
        assert harness.orchestrator.repository is None
        assert harness.scheduler.pending == []

    def test_no_auto_sync_after_logout(self, started):
        started.host.fail_next('has_remote_changes', AuthenticationFailedError("x", status_code=401))
        started.orchestrator.sync_with_remote()

        started.orchestrator.add_category("Later")

        assert started.scheduler.pending == []

    def test_syncs_after_logout_do_not_rebind(self, started):
        """After logout the old token is never used again."""
        # Arrange
        started.host.fail_next('has_remote_changes', AuthenticationFailedError("x", status_code=401))
        started.orchestrator.sync_with_remote()
        repositories_built = len(started.repositories)
        started.orchestrator.add_category("Offline")

        # Act
        results = [
            started.orchestrator.sync_with_remote(),
            started.orchestrator.load_from_remote(),
            started.orchestrator.save_to_remote(),
        ]

        # Assert
        assert [r.status for r in results] == [SyncStatus.FAILED] * 3
        assert all(r.message == AUTH_FAILED_MESSAGE for r in results)
        assert all(isinstance(r.error, AuthenticationFailedError) for r in results)
        assert len(started.repositories) == repositories_built
        assert "Offline" not in started.remote_content()
        assert started.orchestrator.logged_out is True
        started.on_logout.assert_called_once()

    def test_log_in_enables_sync_again(self, started):
        """A new repository factory re-binds on the next sync."""
        started.host.fail_next('has_remote_changes', AuthenticationFailedError("x", status_code=401))
        started.orchestrator.sync_with_remote()
        started.orchestrator.add_category("Offline")

        started.orchestrator.log_in(started.factory)
        result = started.orchestrator.sync_with_remote()

        assert result.status is SyncStatus.PUSHED
        assert "# Offline" in started.remote_content()
        assert started.orchestrator.logged_out is False
        assert started.orchestrator.error is None


class TestDetectorInjection:
    """An injected detector factory replaces the polling detector."""

    @pytest.fixture
    def detectors(self):
        return []

    @pytest.fixture
    def injected(self, detectors):
        def detector_factory(repository, **hooks):
            detector = FakeDetector(repository, **hooks)
            detectors.append(detector)
            return detector

        harness = Harness(detector_factory=detector_factory)
        harness.orchestrator.start()
        return harness

    def test_injected_detector_drives_sync(self, injected, detectors):
        # Arrange
        injected.write_remote()

        # Act
        consumed = detectors[0].report_change()

        # Assert
        assert consumed is True
        assert detectors[0].repository is injected.repository
        assert injected.orchestrator.detector is detectors[0]
        assert category_names(injected.orchestrator.tree) == ["Remote"]
        assert injected.scheduler.pending == []

    def test_close_stops_injected_detector(self, injected, detectors):
        injected.orchestrator.close()

        assert detectors[0].start_count == 1
        assert detectors[0].is_running() is False

    def test_skips_while_conflict_unresolved(self, injected, detectors):
        injected.orchestrator.conflict_state.unresolved_conflict = True
        injected.write_remote()

        assert detectors[0].check_now() is False
        assert category_names(injected.orchestrator.tree) == []


class TestAutoSync:
    """Test cases for debounced auto-sync and detector-driven sync."""

    def test_burst_of_edits_pushes_once(self, started):
        """Edits inside the debounce window produce one push."""
        # Arrange
        orchestrator = started.orchestrator

        # Act
        orchestrator.add_category("A")
        started.scheduler.advance(0.5)
        orchestrator.add_category("B")
        orchestrator.add_category("C")
        started.scheduler.advance(1.0)

        # Assert
        assert started.repository.calls.count('update') == 1
        assert started.remote_content() == "# A\n\n# B\n\n# C"
        assert orchestrator.dirty is False

    def test_auto_sync_disabled(self, started):
        started.orchestrator.set_auto_sync(False)

        started.orchestrator.add_category("A")
        started.scheduler.advance(5.0)

        assert 'update' not in started.repository.calls
        assert started.orchestrator.dirty is True

    def test_no_remote_calls_while_conflict_unresolved(self, started):
        """Auto-sync and detector callbacks skip while a conflict is open."""
        # Arrange
        orchestrator = started.orchestrator
        orchestrator.add_category("Local")
        started.write_remote()
        orchestrator.sync_with_remote()
        assert orchestrator.unresolved_conflict is True
        calls_before = list(started.repository.calls)

        # Act
        orchestrator.add_category("More")
        started.scheduler.advance(10.0)
        handled = orchestrator.handle_remote_change()

        # Assert
        assert handled is False
        assert started.repository.calls == calls_before

    def test_dialog_open_blocks_background_sync(self, started):
        started.orchestrator.conflict_state.dialog_open = True

        started.orchestrator.add_category("A")
        started.scheduler.advance(1.0)

        assert 'update' not in started.repository.calls

    def test_detector_pulls_remote_change(self, harness):
        """A polled remote change is pulled without user action."""
        harness.orchestrator.start()
        harness.write_remote()

        harness.scheduler.advance(SyncSettings().poll_interval_seconds)

        assert category_names(harness.orchestrator.tree) == ["Remote"]

    def test_close_discards_in_flight_result(self, started, monkeypatch):
        """Results arriving after close() are not applied."""
        started.write_remote()
        repository = started.repository
        original_read = repository.read

        def read_then_close():
            started.orchestrator.close()
            return original_read()

        monkeypatch.setattr(repository, 'read', read_then_close)

        result = started.orchestrator.sync_with_remote()

        assert result.status is SyncStatus.SKIPPED
        assert "Remote" not in category_names(started.orchestrator.tree)

    def test_close_cancels_pending_auto_sync(self, started):
        started.orchestrator.add_category("A")

        started.orchestrator.close()
        started.scheduler.advance(5.0)

        assert 'update' not in started.repository.calls
