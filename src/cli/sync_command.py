"""Sync command orchestration for CLI.

This module provides the SyncCommand class that drives a SyncOrchestrator
from the command line. It loads the settings and the access token, builds
the repository factory, starts the orchestrator (offline mirror restore plus
initial load), runs the requested operation and maps the outcome to an
ExitCode. It also acts as the conflict dialog by prompting the user.
"""

import logging
import time
from dataclasses import replace
from typing import Callable, List, Optional, Sequence

import typer

from src.bookmark_model.models import BookmarkFilter, BookmarkInput
from src.gist_client.auth import TOKEN_ENV_VARS, Authenticator
from src.gist_client.errors import (
    AuthenticationFailedError,
    SyncError,
    TransientError,
    ValidationFailureError,
)
from src.gist_client.repository import GistRepository, RepositoryConfig
from src.sync.config import SettingsLoader, SyncSettings
from src.sync.errors import ConfigError, SyncFilesystemError
from src.sync.models import SyncResult, SyncStatus
from src.sync.offline_mirror import OfflineMirror
from src.sync.orchestrator import (
    AUTH_FAILED_MESSAGE,
    REMOTE_CHANGED_MESSAGE,
    ConflictResolution,
    SyncOrchestrator,
)
from src.sync.scheduling import Scheduler

from .models import ExitCode
from .output import OutputHandler

logger = logging.getLogger(__name__)

CONFLICT_PROMPT = "Keep [r]emote, keep [l]ocal, or [s]kip?"


def exit_code_for(result: SyncResult) -> ExitCode:
    """Map a sync result to the process exit code."""
    if result.status is SyncStatus.CONFLICT:
        return ExitCode.CONFLICTS
    if result.status is not SyncStatus.FAILED:
        return ExitCode.SUCCESS
    if isinstance(result.error, AuthenticationFailedError):
        return ExitCode.AUTH_ERROR
    if isinstance(result.error, TransientError):
        return ExitCode.NETWORK_ERROR
    return ExitCode.GENERAL_ERROR


def _default_prompt(text: str) -> str:
    return typer.prompt(text, default='s')


class SyncCommand:
    """Runs bookmark operations from the command line.

    Every operation follows the same workflow:
        1. Load settings from .bookmarkdown/config.yaml
        2. Build the orchestrator (local-only when no token is configured)
        3. Start it: restore the offline mirror and load the remote document
        4. Run the operation (sync, watch, add, search, stats, export, import)
        5. Close the orchestrator and return an ExitCode

    Example:
        >>> output = OutputHandler(verbosity=1)
        >>> sync_cmd = SyncCommand(output_handler=output)
        >>> exit_code = sync_cmd.run()
        >>> sys.exit(exit_code)
    """

    def __init__(
        self,
        config_path: Optional[str] = None,
        mirror_path: Optional[str] = None,
        authenticator: Optional[Authenticator] = None,
        orchestrator: Optional[SyncOrchestrator] = None,
        output_handler: Optional[OutputHandler] = None,
        scheduler: Optional[Scheduler] = None,
        prompt: Optional[Callable[[str], str]] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        """Initialize sync command with dependencies.

        Args:
            config_path: Path to the settings YAML file
            mirror_path: Path to the offline mirror YAML file
            authenticator: Token source (optional)
            orchestrator: Pre-built orchestrator (optional, used by tests)
            output_handler: OutputHandler for terminal output (optional)
            scheduler: Timer source handed to the orchestrator (optional)
            prompt: Asks the user how to resolve a conflict (optional)
            sleep: Sleep used by the watch loop (optional)

        Note:
            All dependencies are optional to support testing. In production,
            they are created automatically.
        """
        self.config_path = config_path or SettingsLoader.default_path()
        self.mirror_path = mirror_path or OfflineMirror.default_path()
        self.authenticator = authenticator
        self.orchestrator = orchestrator
        self.output_handler = output_handler or OutputHandler()
        self.scheduler = scheduler
        self.prompt = prompt or _default_prompt
        self._sleep = sleep or time.sleep
        self.settings: Optional[SyncSettings] = None
        self._resolution_result: Optional[SyncResult] = None

    # Setup

    def build_orchestrator(self, settings: SyncSettings) -> SyncOrchestrator:
        """Create an orchestrator wired to the gist API (or local-only).

        Args:
            settings: Loaded sync settings

        Returns:
            SyncOrchestrator; without an access token it has no repository factory
        """
        if self.authenticator is None:
            self.authenticator = Authenticator()

        factory = None
        if self.authenticator.has_token():
            token = self.authenticator.get_credentials().access_token

            def factory(document_id: Optional[str]) -> GistRepository:
                return GistRepository(RepositoryConfig(
                    access_token=token,
                    filename=settings.filename,
                    document_id=document_id,
                    description=settings.description,
                    is_public=settings.is_public,
                    per_page=settings.per_page,
                ))

        return SyncOrchestrator(
            repository_factory=factory,
            settings=settings,
            scheduler=self.scheduler,
            mirror=OfflineMirror(self.mirror_path),
            on_logout=self._on_logout,
        )

    def _on_logout(self) -> None:
        if self.authenticator is not None:
            self.authenticator.logout()
        self.output_handler.error(AUTH_FAILED_MESSAGE)
        self.output_handler.info(f"Check {' or '.join(TOKEN_ENV_VARS)} in your environment or .env file")

    def _open(self, auto_sync: bool = False, start_detector: bool = False) -> SyncResult:
        """Load settings, build and start the orchestrator."""
        settings = SettingsLoader.load(self.config_path)
        self.settings = replace(settings, auto_sync=auto_sync)
        if self.orchestrator is None:
            self.orchestrator = self.build_orchestrator(self.settings)
        else:
            self.orchestrator.set_auto_sync(auto_sync)

        if self.orchestrator.is_local_only:
            logger.info("Running local-only")
            return self.orchestrator.start(start_detector=False)

        with self.output_handler.spinner("Loading bookmarks from gist..."):
            result = self.orchestrator.start(start_detector=start_detector)
        if result.ok:
            self._remember_document_id()
        return result

    def _remember_document_id(self) -> None:
        """Write the bound gist id back to the settings file."""
        document_id = self.orchestrator.document_id
        if not document_id or self.settings is None or document_id == self.settings.document_id:
            return
        stored = SettingsLoader.load(self.config_path)
        try:
            SettingsLoader.save(self.config_path, replace(stored, document_id=document_id))
        except SyncFilesystemError as e:
            logger.warning(f"Could not remember gist id: {e}")
            return
        self.settings = replace(self.settings, document_id=document_id)
        self.output_handler.info(f"Bound to gist {document_id}")

    def _close(self) -> None:
        if self.orchestrator is not None:
            self.orchestrator.close()

    def _guard(self, operation: Callable[[], ExitCode]) -> ExitCode:
        """Run a CLI operation and translate exceptions to exit codes."""
        try:
            return operation()

        except ValidationFailureError as e:
            logger.error(f"Invalid input: {e}")
            self.output_handler.error(str(e))
            return ExitCode.GENERAL_ERROR

        except (ConfigError, SyncFilesystemError) as e:
            logger.error(f"Configuration error: {e}")
            self.output_handler.error(f"Configuration error: {e}")
            return ExitCode.GENERAL_ERROR

        except SyncError as e:
            logger.error(f"Error: {e}")
            self.output_handler.error(f"Error: {e}")
            return ExitCode.GENERAL_ERROR

        except Exception as e:
            logger.exception("Unexpected error")
            self.output_handler.error(f"Unexpected error: {e}")
            return ExitCode.GENERAL_ERROR

        finally:
            self._close()

    def _report(self, result: SyncResult) -> ExitCode:
        self.output_handler.print_sync_result(result)
        if result.status is SyncStatus.FAILED and isinstance(result.error, TransientError):
            self.output_handler.info("Check your internet connection and try again")
        return exit_code_for(result)

    def _load(self) -> Optional[ExitCode]:
        """Start a one-shot session; returns an exit code only on failure."""
        result = self._open()
        if result.status is SyncStatus.LOCAL_ONLY:
            self.output_handler.warning("No access token configured; using the local copy")
            return None
        if result.status is SyncStatus.FAILED and not isinstance(result.error, AuthenticationFailedError):
            self.output_handler.warning(f"Could not load the gist, using the local copy: {result.message}")
            return None
        if result.status is SyncStatus.CONFLICT:
            self.output_handler.info("Run 'sync' to choose between the offline edits and the gist")
        if not result.ok:
            return self._report(result)
        return None

    # Conflict dialog

    def resolve_conflict(self, resolution: ConflictResolution) -> None:
        """Ask the user which side wins; used as the orchestrator's conflict handler."""
        conflict_state = self.orchestrator.conflict_state if self.orchestrator else None
        if conflict_state is not None:
            conflict_state.dialog_open = True
        try:
            self.output_handler.warning(REMOTE_CHANGED_MESSAGE)
            choice = self.prompt(CONFLICT_PROMPT).strip().lower()
        finally:
            if conflict_state is not None:
                conflict_state.dialog_open = False

        if choice.startswith('r'):
            self._resolution_result = resolution.load_remote()
        elif choice.startswith('l'):
            self._resolution_result = resolution.save_local()
        else:
            self.output_handler.warning("Conflict left unresolved")

    # Operations

    def run(self, force_push: bool = False, force_pull: bool = False, interactive: bool = True) -> ExitCode:
        """Execute one sync.

        Args:
            force_push: Overwrite the gist with the local tree
            force_pull: Replace the local tree with the gist content
            interactive: Prompt when both sides changed

        Returns:
            ExitCode indicating success or specific failure type
        """
        if force_push and force_pull:
            self.output_handler.error("Cannot use both --force-push and --force-pull")
            return ExitCode.GENERAL_ERROR

        def operation() -> ExitCode:
            started = self._open()
            if started.status is SyncStatus.CONFLICT:
                return self._report(self._settle_startup_conflict(started, force_push, force_pull, interactive))
            if not started.ok or started.status is SyncStatus.LOCAL_ONLY:
                return self._report(started)

            if force_push:
                with self.output_handler.spinner("Pushing..."):
                    return self._report(self.orchestrator.save_to_remote())
            if force_pull:
                with self.output_handler.spinner("Pulling..."):
                    return self._report(self.orchestrator.load_from_remote())

            self._resolution_result = None
            handler = self.resolve_conflict if interactive else None
            result = self.orchestrator.sync_with_remote(conflict_handler=handler)
            if result.status is SyncStatus.CONFLICT and self._resolution_result is not None:
                result = self._resolution_result
            return self._report(result)

        return self._guard(operation)

    def _settle_startup_conflict(
        self,
        started: SyncResult,
        force_push: bool,
        force_pull: bool,
        interactive: bool,
    ) -> SyncResult:
        """Unsynced offline edits met a remote document that differs."""
        resolution = self.orchestrator.pending_resolution
        if resolution is None:
            return started
        if force_push:
            with self.output_handler.spinner("Pushing..."):
                return resolution.save_local()
        if force_pull:
            with self.output_handler.spinner("Pulling..."):
                return resolution.load_remote()
        if not interactive:
            return started

        self.output_handler.info("Offline edits were never synced and the gist differs")
        self._resolution_result = None
        self.resolve_conflict(resolution)
        return self._resolution_result or started

    def watch(self, duration: Optional[float] = None, poll: float = 1.0) -> ExitCode:
        """Keep syncing until interrupted.

        Starts the remote change detector and debounced auto-sync, and prompts
        whenever a background sync leaves a conflict behind.

        Args:
            duration: Stop after this many seconds (None: until Ctrl-C)
            poll: Seconds between checks of the orchestrator state

        Returns:
            ExitCode of the last observed state
        """
        def operation() -> ExitCode:
            started = self._open(auto_sync=True, start_detector=True)
            if started.status is SyncStatus.LOCAL_ONLY:
                return self._report(started)
            # A startup conflict is offered by the loop below
            if not started.ok and started.status is not SyncStatus.CONFLICT:
                return self._report(started)

            interval = self.settings.poll_interval_seconds if self.settings else 0
            self.output_handler.success(
                f"Watching gist {self.orchestrator.document_id} every {interval:g}s (Ctrl-C to stop)"
            )
            waited = 0.0
            try:
                while duration is None or waited < duration:
                    self._sleep(poll)
                    waited += poll
                    if self.orchestrator.repository is None:
                        return ExitCode.AUTH_ERROR
                    resolution = self.orchestrator.pending_resolution
                    if resolution is not None and not self.orchestrator.conflict_state.dialog_open:
                        self.resolve_conflict(resolution)
            except KeyboardInterrupt:
                self.output_handler.info("Stopping watch")

            if self.orchestrator.unresolved_conflict:
                return ExitCode.CONFLICTS
            return ExitCode.SUCCESS

        return self._guard(operation)

    def add(
        self,
        category: str,
        bundle: str,
        url: str,
        title: Optional[str] = None,
        tags: Sequence[str] = (),
        notes: Optional[str] = None,
    ) -> ExitCode:
        """Add one bookmark, creating its category and bundle when missing, then sync."""
        def operation() -> ExitCode:
            failed = self._load()
            if failed is not None:
                return failed

            tree = self.orchestrator.tree
            if tree.find_category(category.strip()) is None:
                self.orchestrator.add_category(category)
                self.output_handler.info(f"Created category '{category}'")
            if tree.find_bundle(category.strip(), bundle.strip()) is None:
                self.orchestrator.add_bundle(category, bundle)
                self.output_handler.info(f"Created bundle '{bundle}'")
            self.orchestrator.add_bookmark(
                category.strip(),
                bundle.strip(),
                BookmarkInput(title=title or url, url=url, tags=tuple(tags), notes=notes),
            )
            self.output_handler.success(f"Added {url}")
            return self._sync_after_edit()

        return self._guard(operation)

    def search(
        self,
        search_term: Optional[str] = None,
        tags: Sequence[str] = (),
        category: Optional[str] = None,
        bundle: Optional[str] = None,
    ) -> ExitCode:
        def operation() -> ExitCode:
            failed = self._load()
            if failed is not None:
                return failed
            results = self.orchestrator.search(BookmarkFilter(
                category_name=category,
                bundle_name=bundle,
                search_term=search_term,
                tags=tuple(tags),
            ))
            self.output_handler.print_search_results(results)
            return ExitCode.SUCCESS

        return self._guard(operation)

    def stats(self) -> ExitCode:
        def operation() -> ExitCode:
            failed = self._load()
            if failed is not None:
                return failed
            self.output_handler.print_stats(self.orchestrator.stats())
            return ExitCode.SUCCESS

        return self._guard(operation)

    def export_data(self, data_format: str = 'markdown', output_path: Optional[str] = None) -> ExitCode:
        """Write the tree as markdown or JSON to a file or stdout."""
        def operation() -> ExitCode:
            failed = self._load()
            if failed is not None:
                return failed
            data = self.orchestrator.export_data(data_format)
            if output_path:
                try:
                    with open(output_path, 'w', encoding='utf-8') as f:
                        f.write(data)
                except OSError as e:
                    raise SyncFilesystemError(output_path, 'write', str(e)) from e
                self.output_handler.success(f"Exported bookmarks to {output_path}")
            else:
                self.output_handler.print(data)
            return ExitCode.SUCCESS

        return self._guard(operation)

    def import_data(self, input_path: str, data_format: str = 'markdown') -> ExitCode:
        """Replace the tree with the content of a markdown or JSON file, then sync."""
        def operation() -> ExitCode:
            try:
                with open(input_path, 'r', encoding='utf-8') as f:
                    data = f.read()
            except OSError as e:
                raise SyncFilesystemError(input_path, 'read', str(e)) from e

            failed = self._load()
            if failed is not None:
                return failed
            tree = self.orchestrator.import_data(data, data_format)
            self.output_handler.success(f"Imported {len(tree.categories)} categories from {input_path}")
            return self._sync_after_edit()

        return self._guard(operation)

    def _sync_after_edit(self) -> ExitCode:
        if self.orchestrator.is_local_only or self.orchestrator.repository is None:
            self.output_handler.info("Saved to the local copy")
            return ExitCode.SUCCESS
        self._resolution_result = None
        result = self.orchestrator.sync_with_remote(conflict_handler=self.resolve_conflict)
        if result.status is SyncStatus.CONFLICT and self._resolution_result is not None:
            result = self._resolution_result
        return self._report(result)


def split_tags(values: Optional[List[str]]) -> List[str]:
    """Accept both repeated --tag options and comma-separated lists."""
    tags: List[str] = []
    for value in values or []:
        tags.extend(part.strip() for part in value.split(',') if part.strip())
    return tags
