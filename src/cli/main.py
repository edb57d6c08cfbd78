"""Main CLI entry point for bookmarkdown-sync command.

This module provides the Typer application that serves as the entry point
for the bookmarkdown-sync command-line tool. Each operation is a subcommand;
the global options (verbosity, log directory, colors) live on the callback.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import typer

from src.cli.errors import InitError
from src.cli.init_command import InitCommand
from src.cli.models import ExitCode
from src.cli.output import OutputHandler
from src.cli.sync_command import SyncCommand, split_tags

app = typer.Typer(
    name="bookmarkdown-sync",
    help="""Keep a markdown bookmark collection in sync with a GitHub Gist.

QUICK START:
  export GITHUB_TOKEN=ghp_...                                   # Token with the 'gist' scope
  bookmarkdown-sync init                                        # Write .bookmarkdown/config.yaml
  bookmarkdown-sync add "Development" "React" https://react.dev # Add a bookmark and sync
  bookmarkdown-sync sync                                        # Pull/push/resolve conflicts
  bookmarkdown-sync watch                                       # Keep syncing until Ctrl-C""",
    add_completion=False,
    rich_markup_mode=None,
    no_args_is_help=True,
)

logger = logging.getLogger(__name__)

VERSION = "0.1.0"

EXPORT_FORMATS = ('markdown', 'json')


class _GlobalOptions:
    verbosity: int = 0
    no_color: bool = False
    config_path: Optional[str] = None
    mirror_path: Optional[str] = None


_options = _GlobalOptions()


def _configure_logging(verbosity: int, logdir: Optional[str] = None) -> None:
    """Configure logging based on verbosity level.

    Configures only the 'src' namespace logger to avoid affecting third-party
    libraries. The root logger is left unchanged.

    Args:
        verbosity: Verbosity level (0=WARNING, 1=INFO, 2=DEBUG)
        logdir: Optional directory for log files (creates timestamped log file)
    """
    if verbosity == 0:
        level = logging.WARNING
    elif verbosity == 1:
        level = logging.INFO
    else:  # verbosity >= 2
        level = logging.DEBUG

    app_logger = logging.getLogger("src")
    app_logger.setLevel(level)
    app_logger.handlers.clear()

    log_format = "%(asctime)s [%(levelname)8s] %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S"
    formatter = logging.Formatter(log_format, datefmt=date_format)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    app_logger.addHandler(console_handler)

    if logdir:
        log_path = Path(logdir)
        log_path.mkdir(parents=True, exist_ok=True)

        # Timestamped filename in local time
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file = log_path / f"bookmarkdown-sync_{timestamp}.log"

        file_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        file_formatter = logging.Formatter(file_format, datefmt=date_format)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(file_formatter)
        app_logger.addHandler(file_handler)

        logger.info(f"Logging to file: {log_file}")


def _output() -> OutputHandler:
    return OutputHandler(verbosity=_options.verbosity, no_color=_options.no_color)


def _command(output: OutputHandler) -> SyncCommand:
    return SyncCommand(
        config_path=_options.config_path,
        mirror_path=_options.mirror_path,
        output_handler=output,
    )


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"bookmarkdown-sync version {VERSION}")
        raise typer.Exit()


@app.callback()
def main_callback(
    verbosity: int = typer.Option(
        0,
        "--verbosity",
        "-v",
        help="Verbosity level: 0=summary, 1=info, 2=debug",
    ),
    logdir: Optional[str] = typer.Option(
        None,
        "--logdir",
        help="Directory for log files (creates timestamped log file)",
    ),
    no_color: bool = typer.Option(
        False,
        "--no-color",
        help="Disable colored output",
    ),
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Settings file (default: .bookmarkdown/config.yaml)",
        metavar="PATH",
    ),
    mirror_path: Optional[str] = typer.Option(
        None,
        "--mirror",
        help="Offline mirror file (default: .bookmarkdown/mirror.yaml)",
        metavar="PATH",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """Keep a markdown bookmark collection in sync with a GitHub Gist."""
    _options.verbosity = verbosity
    _options.no_color = no_color
    _options.config_path = config_path
    _options.mirror_path = mirror_path
    _configure_logging(verbosity, logdir)


@app.command("init")
def init_command(
    gist: Optional[str] = typer.Option(
        None,
        "--gist",
        help="Existing gist id or URL to bind to",
        metavar="ID_OR_URL",
    ),
    filename: Optional[str] = typer.Option(
        None,
        "--filename",
        help="Markdown file name inside the gist (default: bookmarks.md)",
    ),
    public: bool = typer.Option(
        False,
        "--public",
        help="Create the gist as public on first sync",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        help="Overwrite existing settings",
    ),
) -> None:
    """Write .bookmarkdown/config.yaml."""
    output = _output()
    init_cmd = InitCommand(config_path=_options.config_path)
    try:
        settings = init_cmd.run(gist=gist, filename=filename, public=public, force=force)
    except InitError as e:
        logger.error(f"Initialization failed: {e}")
        output.error(f"Initialization failed: {e}")
        raise typer.Exit(ExitCode.GENERAL_ERROR)

    output.success(f"Settings written to {init_cmd.config_path}")
    output.info(f"  File: {settings.filename}")
    output.info(f"  Gist: {settings.document_id or '(looked up or created on first sync)'}")
    output.info("")
    output.info("Next steps:")
    output.info("  1. Set GITHUB_TOKEN (or BOOKMARKDOWN_GITHUB_TOKEN) in your environment or .env")
    output.info("  2. Run 'bookmarkdown-sync sync'")
    raise typer.Exit(ExitCode.SUCCESS)


@app.command("sync")
def sync_command(
    force_push: bool = typer.Option(
        False,
        "--force-push",
        help="Overwrite the gist with the local bookmarks",
    ),
    force_pull: bool = typer.Option(
        False,
        "--force-pull",
        help="Replace the local bookmarks with the gist content",
    ),
    no_prompt: bool = typer.Option(
        False,
        "--no-prompt",
        help="Do not ask on conflict; exit with code 2 instead",
    ),
) -> None:
    """Sync once: pull, push, or resolve a conflict."""
    exit_code = _command(_output()).run(
        force_push=force_push,
        force_pull=force_pull,
        interactive=not no_prompt,
    )
    raise typer.Exit(exit_code)


@app.command("watch")
def watch_command(
    duration: Optional[float] = typer.Option(
        None,
        "--duration",
        help="Stop after this many seconds (default: until Ctrl-C)",
        min=0,
    ),
) -> None:
    """Poll the gist and auto-sync local changes until interrupted."""
    raise typer.Exit(_command(_output()).watch(duration=duration))


@app.command("add")
def add_command(
    category: str = typer.Argument(..., help="Category name (created if missing)"),
    bundle: str = typer.Argument(..., help="Bundle name (created if missing)"),
    url: str = typer.Argument(..., help="Bookmark URL"),
    title: Optional[str] = typer.Option(None, "--title", "-t", help="Title (default: the URL)"),
    tag: Optional[List[str]] = typer.Option(
        None,
        "--tag",
        help="Tag (repeatable, or comma-separated)",
    ),
    notes: Optional[str] = typer.Option(None, "--notes", "-n", help="Free-form notes"),
) -> None:
    """Add a bookmark and sync."""
    exit_code = _command(_output()).add(
        category=category,
        bundle=bundle,
        url=url,
        title=title,
        tags=split_tags(tag),
        notes=notes,
    )
    raise typer.Exit(exit_code)


@app.command("search")
def search_command(
    term: Optional[str] = typer.Argument(None, help="Text matched against title, URL, notes and tags"),
    tag: Optional[List[str]] = typer.Option(None, "--tag", help="Required tag (repeatable)"),
    category: Optional[str] = typer.Option(None, "--category", "-c", help="Restrict to a category"),
    bundle: Optional[str] = typer.Option(None, "--bundle", "-b", help="Restrict to a bundle"),
) -> None:
    """Search bookmarks."""
    exit_code = _command(_output()).search(
        search_term=term,
        tags=split_tags(tag),
        category=category,
        bundle=bundle,
    )
    raise typer.Exit(exit_code)


@app.command("stats")
def stats_command() -> None:
    """Show collection statistics."""
    raise typer.Exit(_command(_output()).stats())


def _check_format(data_format: str) -> str:
    data_format = data_format.lower()
    if data_format not in EXPORT_FORMATS:
        raise typer.BadParameter(f"must be one of: {', '.join(EXPORT_FORMATS)}")
    return data_format


@app.command("export")
def export_command(
    data_format: str = typer.Option(
        "markdown",
        "--format",
        "-f",
        help="markdown or json",
        callback=_check_format,
    ),
    output_path: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Write to a file instead of stdout",
    ),
) -> None:
    """Export bookmarks as markdown or JSON."""
    raise typer.Exit(_command(_output()).export_data(data_format, output_path))


@app.command("import")
def import_command(
    input_path: str = typer.Argument(..., help="Markdown or JSON file"),
    data_format: Optional[str] = typer.Option(
        None,
        "--format",
        "-f",
        help="markdown or json (default: from the file extension)",
    ),
) -> None:
    """Replace the bookmarks with the content of a file and sync."""
    if data_format is None:
        data_format = 'json' if input_path.lower().endswith('.json') else 'markdown'
    data_format = _check_format(data_format)
    raise typer.Exit(_command(_output()).import_data(input_path, data_format))


def main() -> None:
    """Main entry point for the CLI application.

    This function is called when the module is executed directly or
    when the console script is invoked.
    """
    app()


# Allow running as: python -m src.cli.main
if __name__ == "__main__":
    main()
