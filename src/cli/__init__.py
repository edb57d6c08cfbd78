"""Command-line interface for bookmark sync.

This package provides the `bookmarkdown-sync` CLI tool that drives the
SyncOrchestrator from a terminal: it loads settings and the access token,
syncs the bookmark tree with its gist, and offers add/search/stats/export/import
operations with progress indication and error handling.
"""

from .sync_command import SyncCommand, exit_code_for
from .init_command import InitCommand
from .models import ExitCode
from .errors import CLIError, InitError

__all__ = [
    'SyncCommand',
    'exit_code_for',
    'InitCommand',
    'ExitCode',
    'CLIError',
    'InitError',
]
