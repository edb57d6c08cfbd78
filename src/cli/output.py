"""Terminal output handling using Rich library.

This module provides the OutputHandler class for all CLI terminal output.
Uses Rich library for spinners, tables, colored output, and formatted text.
Supports verbosity levels and --no-color flag.
"""

from contextlib import contextmanager
from typing import Iterator, Optional, Sequence

from rich.console import Console
from rich.live import Live
from rich.markup import escape
from rich.spinner import Spinner
from rich.table import Table

from src.bookmark_model.models import BookmarkSearchResult, BookmarkStats
from src.sync.models import SyncResult, SyncStatus


class OutputHandler:
    """Handles all terminal output using Rich library.

    Provides methods for displaying messages, spinners, sync results and
    bookmark listings with color coding and verbosity level control.

    Attributes:
        verbosity: Verbosity level (0=summary, 1=info, 2=debug)
        console: Rich Console instance for output

    Example:
        >>> handler = OutputHandler(verbosity=1, no_color=False)
        >>> handler.success("Operation completed")
        >>> with handler.spinner("Syncing..."):
        ...     # Do work
        ...     pass
    """

    def __init__(self, verbosity: int = 0, no_color: bool = False, console: Optional[Console] = None):
        """Initialize output handler.

        Args:
            verbosity: Verbosity level (0=summary, 1=info, 2=debug)
            no_color: Disable color output if True
            console: Console to print to (a new one by default)
        """
        self.verbosity = verbosity
        self.console = console or Console(
            no_color=no_color,
            highlight=False,
        )

    def success(self, message: str) -> None:
        """Display success message in green.

        Args:
            message: Success message to display
        """
        self.console.print(f"[green]✓[/green] {message}")

    def error(self, message: str) -> None:
        """Display error message in red.

        Args:
            message: Error message to display
        """
        self.console.print(f"[red]✗[/red] {message}", style="red")

    def warning(self, message: str) -> None:
        """Display warning message in yellow.

        Args:
            message: Warning message to display
        """
        self.console.print(f"[yellow]⚠[/yellow] {message}", style="yellow")

    def info(self, message: str) -> None:
        """Display info message (only if verbosity >= 1).

        Args:
            message: Info message to display
        """
        if self.verbosity >= 1:
            self.console.print(message)

    def debug(self, message: str) -> None:
        """Display debug message (only if verbosity >= 2).

        Args:
            message: Debug message to display
        """
        if self.verbosity >= 2:
            self.console.print(f"[dim]{message}[/dim]")

    def print(self, message: str) -> None:
        """Display message without markup processing.

        Args:
            message: Message to display
        """
        self.console.print(message, markup=False)

    @contextmanager
    def spinner(self, message: str) -> Iterator[None]:
        """Display spinner for single operations.

        Args:
            message: Message to display with spinner

        Yields:
            None

        Example:
            >>> with handler.spinner("Fetching gist..."):
            ...     # Do work
            ...     pass
        """
        spinner = Spinner("dots", text=message)
        with Live(spinner, console=self.console, refresh_per_second=10, transient=True):
            yield

    def print_sync_result(self, result: SyncResult) -> None:
        """Display the outcome of a sync with color coding.

        Args:
            result: Result returned by the orchestrator
        """
        if result.status is SyncStatus.PULLED:
            self.console.print("[blue]↓[/blue] Pulled remote bookmarks")
        elif result.status is SyncStatus.PUSHED:
            self.console.print("[green]↑[/green] Pushed local bookmarks")
        elif result.status is SyncStatus.UP_TO_DATE:
            self.console.print("[green]Already in sync. No changes detected.[/green]")
        elif result.status is SyncStatus.LOCAL_ONLY:
            self.warning("No access token configured; changes are kept locally only")
        elif result.status is SyncStatus.SKIPPED:
            self.info("Sync skipped")
        elif result.status is SyncStatus.CONFLICT:
            self.console.print(f"[red]⚡[/red] {result.message}")
        else:
            self.error(result.message or "Sync failed")

    def print_stats(self, stats: BookmarkStats) -> None:
        """Display collection statistics.

        Args:
            stats: Counts computed over the live tree
        """
        self.console.print("\n[bold]Collection Summary:[/bold]")
        self.console.print(f"  Categories: {stats.categories_count}")
        self.console.print(f"  Bundles:    {stats.bundles_count}")
        self.console.print(f"  Bookmarks:  {stats.bookmarks_count}")
        self.console.print(f"  Tags:       {stats.tags_count}")
        if stats.tags and self.verbosity >= 1:
            self.console.print(f"  [dim]{', '.join(sorted(stats.tags))}[/dim]")

    def print_search_results(self, results: Sequence[BookmarkSearchResult]) -> None:
        """Display search results as a table.

        Args:
            results: Matches with their category and bundle
        """
        if not results:
            self.console.print("[yellow]No bookmarks found[/yellow]")
            return

        table = Table(show_header=True, header_style="bold")
        table.add_column("Category")
        table.add_column("Bundle")
        table.add_column("Title")
        table.add_column("URL", overflow="fold")
        table.add_column("Tags")
        if self.verbosity >= 1:
            table.add_column("ID", style="dim")

        for result in results:
            bookmark = result.bookmark
            row = [
                escape(result.category_name),
                escape(result.bundle_name),
                escape(bookmark.title),
                escape(bookmark.url),
                escape(", ".join(bookmark.tags)),
            ]
            if self.verbosity >= 1:
                row.append(bookmark.id)
            table.add_row(*row)

        self.console.print(table)
        self.console.print(f"\n{len(results)} bookmark(s) found")
