"""Sync orchestrator for the bookmark tree.

SyncOrchestrator owns the in-memory tree and the sync state around it (dirty
flag, last sync time, exclusive sync lock, conflict flag, error message) and
is the component a UI talks to. It:

1. Applies tree mutations, marks the tree dirty, writes the offline mirror
   and schedules a debounced auto-sync
2. Decides pull vs push vs conflict vs no-op on every sync
3. Re-binds the repository once on concurrent modification, missing
   document or missing binding, then retries the failed call once
4. Retries the very first load with exponential backoff
5. Short-circuits every path on authentication failure, logging the user out

All sync-class work (explicit sync, debounced auto-sync, detector-driven
sync, conflict resolution) shares one non-blocking lock: explicit calls fail
fast when it is held, background triggers silently skip. Sync entry points
never raise; they return a SyncResult and fill the error slot.
"""

import json
import logging
import threading
from dataclasses import dataclass, replace
from typing import Callable, List, Optional, Sequence, TypeVar

from src.bookmark_model import query, tombstones, tree_operations
from src.bookmark_model.metadata import current_timestamp, mark_synced, stamp
from src.bookmark_model.models import (
    BookmarkFilter,
    BookmarkInput,
    BookmarkSearchResult,
    BookmarkStats,
    BookmarkUpdate,
    Root,
)
from src.content_converter.markdown_converter import MarkdownConverter
from src.gist_client.errors import (
    AuthenticationFailedError,
    ConcurrentModificationError,
    DocumentNotFoundError,
    RepositoryNotInitializedError,
    SyncError,
    ValidationFailureError,
)
from src.gist_client.repository import Repository
from src.gist_client.retry_logic import BackoffState, is_startup_retryable, retry_with_backoff

from .change_detector import ChangeDetector, RemoteChangeDetector
from .config import SyncSettings
from .conflict_state import ConflictState
from .errors import SyncInProgressError
from .models import SyncResult, SyncStatus
from .offline_mirror import MirrorState, OfflineMirror
from .scheduling import BackgroundJobScheduler, Debouncer, Scheduler

logger = logging.getLogger(__name__)

T = TypeVar('T')

AUTH_FAILED_MESSAGE = "Authentication expired. Please log in again."
REMOTE_CHANGED_MESSAGE = "Remote has changes. Please save or discard your local changes first."
ALREADY_RESOLVED_MESSAGE = "This conflict has already been resolved"

EXPORT_FORMATS = ('markdown', 'json')

# Builds a repository, optionally pre-pointed at a known gist id
RepositoryFactory = Callable[[Optional[str]], Repository]

# Builds the change detector for a bound repository; called as
# factory(repository, on_change=..., should_skip=..., on_auth_failure=...)
DetectorFactory = Callable[..., ChangeDetector]


@dataclass(frozen=True)
class ConflictResolution:
    """Resumption actions offered while a conflict is active.

    Attributes:
        load_remote: Discard the local tree and pull the remote document
        save_local: Push the local tree over the remote document

    Only the first successful action counts; later calls on the same
    resolution return a FAILED result.
    """
    load_remote: Callable[[], SyncResult]
    save_local: Callable[[], SyncResult]


ConflictHandler = Callable[[ConflictResolution], None]


class SyncOrchestrator:
    """Owns the bookmark tree and keeps it in sync with the remote document.

    Without a repository factory (no access token) the orchestrator is a
    local-only tree editor: mutations work, sync calls return LOCAL_ONLY.

    Example:
        >>> orchestrator = SyncOrchestrator(
        ...     repository_factory=lambda doc_id: GistRepository(
        ...         RepositoryConfig(access_token=token, document_id=doc_id)
        ...     ),
        ...     mirror=OfflineMirror(OfflineMirror.default_path()),
        ...     on_logout=authenticator.logout,
        ... )
        >>> orchestrator.start()
        >>> orchestrator.add_category("📚 Development")
        >>> result = orchestrator.sync_with_remote(conflict_handler=show_dialog)
    """

    def __init__(
        self,
        repository_factory: Optional[RepositoryFactory] = None,
        settings: Optional[SyncSettings] = None,
        conflict_state: Optional[ConflictState] = None,
        scheduler: Optional[Scheduler] = None,
        mirror: Optional[OfflineMirror] = None,
        on_logout: Optional[Callable[[], None]] = None,
        converter: Optional[MarkdownConverter] = None,
        sleep: Optional[Callable[[float], None]] = None,
        detector_factory: Optional[DetectorFactory] = None,
    ):
        """Initialize the orchestrator with an empty tree.

        Args:
            repository_factory: Builds repositories; None means local-only
            settings: Sync settings (defaults when omitted)
            conflict_state: Shared conflict/dialog flags
            scheduler: Job source for debounce and polling
            mirror: Offline mirror written after every mutation
            on_logout: Called when the host rejects the token
            converter: Markdown codec
            sleep: Sleep used by the startup backoff (defaults to time.sleep)
            detector_factory: Builds the remote change detector
                (default: RemoteChangeDetector polling on ``scheduler``)
        """
        self._repository_factory = repository_factory
        self._settings = settings or SyncSettings()
        self._conflict_state = conflict_state or ConflictState()
        self._owned_scheduler: Optional[BackgroundJobScheduler] = None
        if scheduler is None:
            scheduler = self._owned_scheduler = BackgroundJobScheduler()
        self._scheduler = scheduler
        self._detector_factory = detector_factory or self._build_detector
        self._mirror = mirror
        self._on_logout = on_logout
        self._converter = converter or MarkdownConverter()
        self._sleep = sleep

        self._state_lock = threading.RLock()
        self._sync_lock = threading.Lock()

        self._tree = stamp(Root(), current_timestamp())
        self._dirty = False
        self._edit_count = 0
        self._last_sync_at: Optional[str] = None
        self._error: Optional[str] = None
        self._document_id: Optional[str] = self._settings.document_id
        self._pending_resolution: Optional[ConflictResolution] = None
        self._closed = False
        self._auth_failure: Optional[AuthenticationFailedError] = None

        self._repository: Optional[Repository] = None
        self._detector: Optional[ChangeDetector] = None
        self._debouncer = Debouncer(self._scheduler, self._settings.debounce_seconds, self._run_auto_sync)

    # State exposed to the UI

    @property
    def tree(self) -> Root:
        with self._state_lock:
            return self._tree

    @property
    def dirty(self) -> bool:
        with self._state_lock:
            return self._dirty

    @property
    def last_sync_at(self) -> Optional[str]:
        with self._state_lock:
            return self._last_sync_at

    @property
    def is_syncing(self) -> bool:
        return self._sync_lock.locked()

    @property
    def unresolved_conflict(self) -> bool:
        return self._conflict_state.unresolved_conflict

    @property
    def conflict_state(self) -> ConflictState:
        return self._conflict_state

    @property
    def error(self) -> Optional[str]:
        with self._state_lock:
            return self._error

    @property
    def document_id(self) -> Optional[str]:
        with self._state_lock:
            return self._document_id

    @property
    def pending_resolution(self) -> Optional[ConflictResolution]:
        """The load_remote/save_local actions, only while a conflict is active."""
        with self._state_lock:
            if not self._conflict_state.unresolved_conflict:
                return None
            return self._pending_resolution

    @property
    def is_local_only(self) -> bool:
        return self._repository_factory is None

    @property
    def logged_out(self) -> bool:
        """True after the host rejected the token, until log_in() is called."""
        with self._state_lock:
            return self._auth_failure is not None

    @property
    def repository(self) -> Optional[Repository]:
        return self._repository

    @property
    def detector(self) -> Optional[ChangeDetector]:
        return self._detector

    @property
    def auto_sync_enabled(self) -> bool:
        return self._settings.auto_sync

    def set_auto_sync(self, enabled: bool) -> None:
        self._settings = replace(self._settings, auto_sync=enabled)
        if not enabled:
            self._debouncer.cancel()

    def clear_error(self) -> None:
        with self._state_lock:
            self._error = None

    def log_in(self, repository_factory: RepositoryFactory) -> None:
        """Supply a repository factory with a fresh token after a logout.

        Remote operations are disabled from the moment the host rejects the
        token until this is called; the next sync binds again.
        """
        with self._state_lock:
            self._repository_factory = repository_factory
            self._auth_failure = None
            self._error = None
        logger.info("Access token replaced, remote sync enabled")

    # Lifecycle

    def start(self, start_detector: bool = True) -> SyncResult:
        """Restore the offline mirror, bind the repository and load remote content.

        The first load retries up to 3 times (1s, 2s, 4s) on transient
        failures and 401 responses. A dirty mirror is never pushed: unless the
        remote document already matches it, the local tree is kept and a
        conflict is raised so the user picks load_remote or save_local.

        Args:
            start_detector: Whether to start polling for remote changes

        Returns:
            SyncResult of the initial load
        """
        restored = self._restore_mirror()

        if self._repository_factory is None:
            logger.info("No access token configured, running local-only")
            return SyncResult(SyncStatus.LOCAL_ONLY)
        disabled = self._remote_disabled()
        if disabled is not None:
            return disabled

        if not self._sync_lock.acquire(blocking=False):
            return self._in_progress()
        try:
            result = self._guarded(lambda: retry_with_backoff(
                self._initial_load,
                restored.dirty,
                should_retry=is_startup_retryable,
                backoff=BackoffState(),
                sleep=self._sleep,
            ))
        finally:
            self._sync_lock.release()

        if start_detector and self._repository is not None and not self._closed:
            self.start_detector()
        return result

    def start_detector(self) -> None:
        """Start polling for remote changes (no-op without a repository)."""
        with self._state_lock:
            if self._repository is None or self._closed:
                return
            if self._detector is None:
                self._detector = self._detector_factory(
                    self._repository,
                    on_change=self.handle_remote_change,
                    should_skip=self._conflict_state.is_blocking,
                    on_auth_failure=self._on_detector_auth_failure,
                )
            detector = self._detector
        detector.start()

    def stop_detector(self) -> None:
        with self._state_lock:
            detector = self._detector
        if detector is not None:
            detector.stop()

    def close(self) -> None:
        """Cancel pending timers; results of in-flight calls are discarded."""
        with self._state_lock:
            self._closed = True
        self._debouncer.cancel()
        self.stop_detector()
        if self._owned_scheduler is not None:
            self._owned_scheduler.shutdown()
        logger.debug("Orchestrator closed")

    # Tree mutations

    def add_category(self, name: str) -> Root:
        name = self._require_name(name, 'Category name')

        def operation(tree: Root) -> Root:
            if tree.find_category(name) is not None:
                raise ValidationFailureError(f"Category '{name}' already exists")
            return tree_operations.add_category(tree, name)
        return self._mutate(operation)

    def remove_category(self, name: str) -> Root:
        """Remove a category and everything under it (hard delete)."""
        def operation(tree: Root) -> Root:
            self._require_category(tree, name)
            return tree_operations.remove_category(tree, name)
        return self._mutate(operation)

    def rename_category(self, old_name: str, new_name: str) -> Root:
        new_name = self._require_name(new_name, 'Category name')

        def operation(tree: Root) -> Root:
            self._require_category(tree, old_name)
            if old_name != new_name and tree.find_category(new_name) is not None:
                raise ValidationFailureError(f"Category '{new_name}' already exists")
            return tree_operations.rename_category(tree, old_name, new_name)
        return self._mutate(operation)

    def add_bundle(self, category_name: str, bundle_name: str) -> Root:
        bundle_name = self._require_name(bundle_name, 'Bundle name')

        def operation(tree: Root) -> Root:
            category = self._require_category(tree, category_name)
            if category.find_bundle(bundle_name) is not None:
                raise ValidationFailureError(
                    f"Bundle '{bundle_name}' already exists in category '{category_name}'"
                )
            return tree_operations.add_bundle(tree, category_name, bundle_name)
        return self._mutate(operation)

    def remove_bundle(self, category_name: str, bundle_name: str) -> Root:
        """Remove a bundle and its bookmarks (hard delete)."""
        def operation(tree: Root) -> Root:
            self._require_bundle(tree, category_name, bundle_name)
            return tree_operations.remove_bundle(tree, category_name, bundle_name)
        return self._mutate(operation)

    def rename_bundle(self, category_name: str, old_name: str, new_name: str) -> Root:
        new_name = self._require_name(new_name, 'Bundle name')

        def operation(tree: Root) -> Root:
            category = self._require_category(tree, category_name)
            self._require_bundle(tree, category_name, old_name)
            if old_name != new_name and category.find_bundle(new_name) is not None:
                raise ValidationFailureError(
                    f"Bundle '{new_name}' already exists in category '{category_name}'"
                )
            return tree_operations.rename_bundle(tree, category_name, old_name, new_name)
        return self._mutate(operation)

    def move_bundle(self, from_category: str, to_category: str, bundle_name: str) -> Root:
        def operation(tree: Root) -> Root:
            self._require_bundle(tree, from_category, bundle_name)
            target = self._require_category(tree, to_category)
            if from_category != to_category and target.find_bundle(bundle_name) is not None:
                raise ValidationFailureError(
                    f"Bundle '{bundle_name}' already exists in category '{to_category}'"
                )
            return tree_operations.move_bundle(tree, from_category, to_category, bundle_name)
        return self._mutate(operation)

    def add_bookmark(self, category_name: str, bundle_name: str, bookmark_input: BookmarkInput) -> Root:
        return self.add_bookmarks(category_name, bundle_name, [bookmark_input])

    def add_bookmarks(
        self,
        category_name: str,
        bundle_name: str,
        bookmark_inputs: Sequence[BookmarkInput],
    ) -> Root:
        """Append bookmarks to a bundle in one mutation (one auto-sync)."""
        inputs = [self._validate_input(item) for item in bookmark_inputs]

        def operation(tree: Root) -> Root:
            self._require_bundle(tree, category_name, bundle_name)
            return tree_operations.add_bookmarks(tree, category_name, bundle_name, inputs)
        return self._mutate(operation)

    def update_bookmark(
        self,
        category_name: str,
        bundle_name: str,
        bookmark_id: str,
        update: BookmarkUpdate,
    ) -> Root:
        if update.url is not None and not update.url.strip():
            raise ValidationFailureError("Bookmark URL cannot be empty", 'url')
        self._validate_tags(update.tags)

        def operation(tree: Root) -> Root:
            self._require_bookmark(tree, category_name, bundle_name, bookmark_id)
            return tree_operations.update_bookmark(tree, category_name, bundle_name, bookmark_id, update)
        return self._mutate(operation)

    def remove_bookmark(self, category_name: str, bundle_name: str, bookmark_id: str) -> Root:
        """Remove a bookmark (hard delete)."""
        def operation(tree: Root) -> Root:
            self._require_bookmark(tree, category_name, bundle_name, bookmark_id)
            return tree_operations.remove_bookmark(tree, category_name, bundle_name, bookmark_id)
        return self._mutate(operation)

    def move_bookmark(
        self,
        from_category: str,
        from_bundle: str,
        to_category: str,
        to_bundle: str,
        bookmark_id: str,
    ) -> Root:
        def operation(tree: Root) -> Root:
            self._require_bookmark(tree, from_category, from_bundle, bookmark_id)
            self._require_bundle(tree, to_category, to_bundle)
            return tree_operations.move_bookmark(
                tree, from_category, from_bundle, to_category, to_bundle, bookmark_id
            )
        return self._mutate(operation)

    def tombstone_category(self, name: str) -> Root:
        """Soft-delete a category; it disappears from the remote document."""
        def operation(tree: Root) -> Root:
            self._require_category(tree, name)
            return tombstones.tombstone_category(tree, name)
        return self._mutate(operation)

    def tombstone_bundle(self, category_name: str, bundle_name: str) -> Root:
        def operation(tree: Root) -> Root:
            self._require_bundle(tree, category_name, bundle_name)
            return tombstones.tombstone_bundle(tree, category_name, bundle_name)
        return self._mutate(operation)

    def tombstone_bookmark(self, category_name: str, bundle_name: str, bookmark_id: str) -> Root:
        def operation(tree: Root) -> Root:
            self._require_bookmark(tree, category_name, bundle_name, bookmark_id)
            return tombstones.tombstone_bookmark(tree, category_name, bundle_name, bookmark_id)
        return self._mutate(operation)

    def purge_tombstones(self) -> Root:
        """Physically drop tombstoned entities; a no-op leaves dirty untouched."""
        with self._state_lock:
            if not tombstones.has_tombstones(self._tree):
                return self._tree
        return self._mutate(tombstones.purge_tombstones)

    def reset(self) -> Root:
        """Replace the tree with an empty one."""
        return self._mutate(lambda tree: stamp(Root(), current_timestamp()))

    def import_data(self, data: str, data_format: str = 'markdown') -> Root:
        """Replace the tree with imported markdown or JSON.

        Raises:
            ValidationFailureError: On an unknown format, unparsable or
                malformed JSON, or duplicate names or bookmark ids
        """
        if data_format == 'markdown':
            imported = self._converter.markdown_to_tree(data)
        elif data_format == 'json':
            try:
                imported = Root.from_dict(json.loads(data))
            except (TypeError, ValueError, AttributeError) as e:
                raise ValidationFailureError(f"Invalid JSON import: {e}", 'data') from e
        else:
            raise ValidationFailureError(f"Unsupported import format '{data_format}'", 'format')
        self._require_unique(imported)

        logger.info(f"Importing {len(imported.categories)} categories from {data_format}")
        return self._mutate(lambda tree: stamp(imported, current_timestamp()))

    def export_data(self, data_format: str = 'markdown') -> str:
        tree = self.tree
        if data_format == 'markdown':
            return self._converter.tree_to_markdown(tree)
        if data_format == 'json':
            return json.dumps(tree.to_dict(), indent=2, ensure_ascii=False)
        raise ValidationFailureError(f"Unsupported export format '{data_format}'", 'format')

    # Queries

    def search(self, bookmark_filter: Optional[BookmarkFilter] = None) -> List[BookmarkSearchResult]:
        return query.search(self.tree, bookmark_filter)

    def stats(self) -> BookmarkStats:
        return query.stats(self.tree)

    # Sync entry points

    def sync_with_remote(self, conflict_handler: Optional[ConflictHandler] = None) -> SyncResult:
        """Run one sync: pull, push, no-op or conflict.

        Args:
            conflict_handler: Called with the resumption actions when both
                sides changed; it runs after the sync lock is released

        Returns:
            SyncResult; FAILED immediately if another sync holds the lock
            or the token was rejected
        """
        disabled = self._remote_disabled()
        if disabled is not None:
            return disabled
        if not self._sync_lock.acquire(blocking=False):
            return self._in_progress()
        try:
            result = self._guarded(
                lambda: self._sync_locked(has_handler=conflict_handler is not None)
            )
        finally:
            self._sync_lock.release()

        if result.status is SyncStatus.CONFLICT and conflict_handler is not None:
            self._invoke_handler(conflict_handler)
        return result

    def load_from_remote(self) -> SyncResult:
        """Discard local edits and pull the remote document."""
        return self._run_exclusive(self._force_pull)

    def save_to_remote(self) -> SyncResult:
        """Push the local tree regardless of remote changes."""
        return self._run_exclusive(self._push)

    def handle_remote_change(self) -> bool:
        """Detector callback: sync unless busy or blocked by a conflict.

        Returns:
            False when skipped, so the detector reports the change again
        """
        result = self._run_background_sync('Detector')
        return result.status is not SyncStatus.SKIPPED

    def _run_auto_sync(self) -> None:
        self._run_background_sync('Auto-sync')

    def _run_background_sync(self, trigger: str) -> SyncResult:
        if self._closed or self._repository is None:
            return SyncResult(SyncStatus.SKIPPED)
        if self._conflict_state.is_blocking():
            logger.debug(f"{trigger} skipped: conflict resolution pending")
            return SyncResult(SyncStatus.SKIPPED)
        if not self._sync_lock.acquire(blocking=False):
            logger.debug(f"{trigger} skipped: sync already in progress")
            return SyncResult(SyncStatus.SKIPPED)
        try:
            result = self._guarded(lambda: self._sync_locked(has_handler=False))
        finally:
            self._sync_lock.release()
        logger.debug(f"{trigger} finished: {result.status.value}")
        return result

    # Sync internals (called with the sync lock held)

    def _sync_locked(self, has_handler: bool) -> SyncResult:
        changed = self._call_with_rebind(lambda repo: repo.has_remote_changes())
        with self._state_lock:
            dirty = self._dirty
            edits = self._edit_count

        if changed and dirty:
            logger.info("Remote and local both changed: conflict")
            return self._enter_conflict(has_handler)
        if dirty and self._conflict_state.unresolved_conflict:
            logger.info("Local edits still wait for a conflict decision, not pushing")
            return self._enter_conflict(has_handler)
        if changed:
            logger.info("Remote changed, pulling")
            return self._pull(expected_edits=edits, has_handler=has_handler)
        if dirty:
            logger.info("Local changes, pushing")
            return self._push()
        logger.debug("Already in sync")
        return SyncResult(SyncStatus.UP_TO_DATE)

    def _pull(self, expected_edits: Optional[int] = None, has_handler: bool = False) -> SyncResult:
        content, _ = self._call_with_rebind(lambda repo: repo.read())
        remote_tree = self._converter.markdown_to_tree(content)
        now = current_timestamp()

        with self._state_lock:
            if self._closed:
                return SyncResult(SyncStatus.SKIPPED)
            if expected_edits is not None and self._edit_count != expected_edits:
                logger.info("Local edits arrived during pull: conflict")
                return self._enter_conflict(has_handler)
            self._tree = mark_synced(stamp(remote_tree, now), now)
            self._dirty = False
            self._last_sync_at = now
            self._document_id = self._repository.document_id if self._repository else self._document_id

        self._write_mirror()
        logger.info(f"Pulled {len(remote_tree.categories)} categories from remote")
        return SyncResult(SyncStatus.PULLED)

    def _force_pull(self) -> SyncResult:
        return self._pull(expected_edits=None)

    def _push(self) -> SyncResult:
        with self._state_lock:
            tree = self._tree
            edits = self._edit_count
        content = self._converter.tree_to_markdown(tree)
        self._call_with_rebind(lambda repo: repo.update(content))
        now = current_timestamp()

        with self._state_lock:
            if self._closed:
                return SyncResult(SyncStatus.SKIPPED)
            if self._edit_count == edits:
                self._tree = mark_synced(self._tree, now)
                self._dirty = False
            self._last_sync_at = now
            self._document_id = self._repository.document_id if self._repository else self._document_id

        self._write_mirror()
        logger.info(f"Pushed local tree to gist {self._document_id}")
        return SyncResult(SyncStatus.PUSHED)

    def _initial_load(self, keep_local: bool) -> SyncResult:
        """Bind the repository, then pull (or hold a dirty mirror as a conflict)."""
        with self._state_lock:
            document_id = self._document_id
            initial_content = self._converter.tree_to_markdown(self._tree)

        repository = self._repository_factory(document_id)  # type: ignore[misc]
        try:
            repository.initialize(initial_content)
        except DocumentNotFoundError:
            if not document_id:
                raise
            logger.warning(f"Gist {document_id} no longer exists, looking up by filename")
            repository = self._repository_factory(None)  # type: ignore[misc]
            repository.initialize(initial_content)
        self._install_repository(repository)

        if keep_local:
            return self._hold_mirror_edits()
        return self._pull(expected_edits=None)

    def _hold_mirror_edits(self) -> SyncResult:
        """Compare unsynced mirror edits with the remote without overwriting either."""
        content, _ = self._call_with_rebind(lambda repo: repo.read())
        with self._state_lock:
            local_content = self._converter.tree_to_markdown(self._tree)

        if content == local_content:
            now = current_timestamp()
            with self._state_lock:
                self._tree = mark_synced(self._tree, now)
                self._dirty = False
                self._last_sync_at = now
            self._write_mirror()
            logger.info("Offline mirror edits already match the remote document")
            return SyncResult(SyncStatus.UP_TO_DATE)

        logger.warning("Offline mirror has unsynced edits and the remote differs: conflict")
        return self._enter_conflict(has_handler=False)

    def _call_with_rebind(self, operation: Callable[[Repository], T]) -> T:
        """Run a repository call, re-binding and retrying once on binding errors."""
        try:
            return operation(self._current_repository())
        except (ConcurrentModificationError, RepositoryNotInitializedError, DocumentNotFoundError) as e:
            logger.warning(f"{type(e).__name__}: {e}; re-binding and retrying once")
            self._rebind(keep_document=not isinstance(e, DocumentNotFoundError))
            return operation(self._current_repository())

    def _rebind(self, keep_document: bool) -> None:
        with self._state_lock:
            document_id = self._document_id if keep_document else None
            content = self._converter.tree_to_markdown(self._tree)
        repository = self._repository_factory(document_id)  # type: ignore[misc]
        repository.initialize(content)
        self._install_repository(repository)
        logger.info(f"Re-bound to gist {repository.document_id}")

    def _current_repository(self) -> Repository:
        repository = self._repository
        if repository is None:
            raise RepositoryNotInitializedError('sync')
        return repository

    def _install_repository(self, repository: Repository) -> None:
        with self._state_lock:
            self._repository = repository
            self._document_id = repository.document_id
            old_detector = self._detector
            self._detector = None
        if old_detector is not None and old_detector.is_running():
            old_detector.stop()
            self.start_detector()
        self._write_mirror()

    def _build_detector(
        self,
        repository: Repository,
        on_change: Callable[[], Optional[bool]],
        should_skip: Callable[[], bool],
        on_auth_failure: Callable[[AuthenticationFailedError], None],
    ) -> ChangeDetector:
        return RemoteChangeDetector(
            repository,
            on_change=on_change,
            interval=self._settings.poll_interval_seconds,
            scheduler=self._scheduler,
            should_skip=should_skip,
            on_auth_failure=on_auth_failure,
        )

    def _on_detector_auth_failure(self, error: AuthenticationFailedError) -> None:
        if self._closed:
            return
        self._handle_auth_failure(error)

    # Conflicts

    def _enter_conflict(self, has_handler: bool) -> SyncResult:
        resolution = ConflictResolution(
            load_remote=lambda: self._resolve(resolution, self._force_pull),
            save_local=lambda: self._resolve(resolution, self._push),
        )
        with self._state_lock:
            self._pending_resolution = resolution
        self._conflict_state.unresolved_conflict = True
        if not has_handler:
            self._set_error(REMOTE_CHANGED_MESSAGE)
        return SyncResult(SyncStatus.CONFLICT, REMOTE_CHANGED_MESSAGE)

    def _resolve(self, resolution: ConflictResolution, action: Callable[[], SyncResult]) -> SyncResult:
        with self._state_lock:
            if self._pending_resolution is not resolution:
                return SyncResult(SyncStatus.FAILED, ALREADY_RESOLVED_MESSAGE)
        result = self._run_exclusive(action)
        if result.ok:
            with self._state_lock:
                if self._pending_resolution is resolution:
                    self._pending_resolution = None
                self._error = None
            self._conflict_state.unresolved_conflict = False
            logger.info(f"Conflict resolved ({result.status.value})")
        return result

    def _invoke_handler(self, conflict_handler: ConflictHandler) -> None:
        with self._state_lock:
            resolution = self._pending_resolution
        if resolution is None:
            return
        try:
            conflict_handler(resolution)
        except Exception as e:
            logger.exception("Conflict handler failed")
            self._set_error(f"Conflict handler failed: {e}")

    # Error handling

    def _run_exclusive(self, action: Callable[[], SyncResult]) -> SyncResult:
        disabled = self._remote_disabled()
        if disabled is not None:
            return disabled
        if not self._sync_lock.acquire(blocking=False):
            return self._in_progress()
        try:
            return self._guarded(action)
        finally:
            self._sync_lock.release()

    def _guarded(self, action: Callable[[], SyncResult]) -> SyncResult:
        """Run a sync action, turning every failure into a SyncResult."""
        try:
            result = action()
        except AuthenticationFailedError as e:
            return self._handle_auth_failure(e)
        except ConcurrentModificationError as e:
            logger.warning(f"Concurrent modification persisted after re-bind: {e}")
            return self._enter_conflict(has_handler=False)
        except SyncError as e:
            logger.error(f"Sync failed: {e}")
            self._set_error(str(e))
            return SyncResult(SyncStatus.FAILED, str(e), error=e)

        if result.status in (SyncStatus.PULLED, SyncStatus.PUSHED, SyncStatus.UP_TO_DATE):
            self.clear_error()
        return result

    def _remote_disabled(self) -> Optional[SyncResult]:
        """Result to return instead of touching the remote, or None."""
        with self._state_lock:
            factory = self._repository_factory
            auth_failure = self._auth_failure
        if factory is None:
            return SyncResult(SyncStatus.LOCAL_ONLY)
        if auth_failure is not None:
            logger.debug("Remote sync disabled until a new token is supplied")
            self._set_error(AUTH_FAILED_MESSAGE)
            return SyncResult(SyncStatus.FAILED, AUTH_FAILED_MESSAGE, error=auth_failure)
        return None

    def _handle_auth_failure(self, error: AuthenticationFailedError) -> SyncResult:
        logger.error(f"Authentication failed: {error}")
        self._set_error(AUTH_FAILED_MESSAGE)
        self._debouncer.cancel()
        self.stop_detector()
        with self._state_lock:
            self._auth_failure = error
            self._repository = None
            self._detector = None
        if self._on_logout is not None:
            try:
                self._on_logout()
            except Exception:
                logger.exception("Logout callback failed")
        return SyncResult(SyncStatus.FAILED, AUTH_FAILED_MESSAGE, error=error)

    def _in_progress(self) -> SyncResult:
        message = str(SyncInProgressError())
        logger.debug(message)
        self._set_error(message)
        return SyncResult(SyncStatus.FAILED, message)

    def _set_error(self, message: str) -> None:
        with self._state_lock:
            self._error = message

    # Mutation helpers

    def _mutate(self, operation: Callable[[Root], Root]) -> Root:
        with self._state_lock:
            new_tree = operation(self._tree)
            self._tree = new_tree
            self._dirty = True
            self._edit_count += 1
        self._write_mirror()
        self._schedule_auto_sync()
        return new_tree

    def _schedule_auto_sync(self) -> None:
        if self._closed or not self._settings.auto_sync or self._repository is None:
            return
        self._debouncer.trigger()

    def _restore_mirror(self) -> MirrorState:
        if self._mirror is None:
            return MirrorState()
        try:
            state = self._mirror.load()
        except SyncError as e:
            logger.warning(f"Ignoring unreadable offline mirror: {e}")
            return MirrorState()
        with self._state_lock:
            if state.tree is not None:
                self._tree = state.tree
            self._dirty = state.dirty
            self._last_sync_at = state.last_sync_at
            self._document_id = self._settings.document_id or state.document_id
        logger.debug(f"Restored offline mirror (dirty={state.dirty})")
        return state

    def _write_mirror(self) -> None:
        if self._mirror is None:
            return
        with self._state_lock:
            state = MirrorState(
                tree=self._tree,
                document_id=self._document_id,
                dirty=self._dirty,
                last_sync_at=self._last_sync_at,
            )
        try:
            self._mirror.save(state)
        except SyncError as e:
            logger.warning(f"Could not write offline mirror: {e}")

    @staticmethod
    def _require_name(name: str, label: str) -> str:
        if name is None or not name.strip():
            raise ValidationFailureError(f"{label} cannot be empty", 'name')
        return name.strip()

    @classmethod
    def _validate_input(cls, bookmark_input: BookmarkInput) -> BookmarkInput:
        if not bookmark_input.url or not bookmark_input.url.strip():
            raise ValidationFailureError("Bookmark URL cannot be empty", 'url')
        cls._validate_tags(bookmark_input.tags)
        return replace(
            bookmark_input,
            url=bookmark_input.url.strip(),
            title=bookmark_input.title.strip() if bookmark_input.title else bookmark_input.url.strip(),
        )

    @staticmethod
    def _validate_tags(tags: Optional[Sequence[str]]) -> None:
        """Tags are written as one comma-separated line."""
        for tag in tags or ():
            if any(separator in tag for separator in (',', '\n', '\r')):
                raise ValidationFailureError(f"Tag '{tag}' cannot contain commas or line breaks", 'tags')

    @staticmethod
    def _require_unique(tree: Root) -> None:
        """Reject duplicate sibling names and duplicate bookmark ids."""
        category_names = [category.name for category in tree.categories]
        if len(set(category_names)) != len(category_names):
            raise ValidationFailureError("Duplicate category names in imported data", 'data')
        bookmark_ids = set()
        for category in tree.categories:
            bundle_names = [bundle.name for bundle in category.bundles]
            if len(set(bundle_names)) != len(bundle_names):
                raise ValidationFailureError(
                    f"Duplicate bundle names in category '{category.name}' in imported data", 'data'
                )
            for bundle in category.bundles:
                for bookmark in bundle.bookmarks:
                    if bookmark.id in bookmark_ids:
                        raise ValidationFailureError(
                            f"Duplicate bookmark id '{bookmark.id}' in imported data", 'data'
                        )
                    bookmark_ids.add(bookmark.id)

    @staticmethod
    def _require_category(tree: Root, name: str):
        category = tree.find_category(name)
        if category is None:
            raise ValidationFailureError(f"Category '{name}' not found")
        return category

    @classmethod
    def _require_bundle(cls, tree: Root, category_name: str, bundle_name: str):
        category = cls._require_category(tree, category_name)
        bundle = category.find_bundle(bundle_name)
        if bundle is None:
            raise ValidationFailureError(
                f"Bundle '{bundle_name}' not found in category '{category_name}'"
            )
        return bundle

    @classmethod
    def _require_bookmark(cls, tree: Root, category_name: str, bundle_name: str, bookmark_id: str):
        bundle = cls._require_bundle(tree, category_name, bundle_name)
        bookmark = bundle.find_bookmark(bookmark_id)
        if bookmark is None:
            raise ValidationFailureError(
                f"Bookmark '{bookmark_id}' not found in bundle '{bundle_name}'"
            )
        return bookmark
