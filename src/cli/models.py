"""Data models for CLI operations.

This module defines the exit codes used by the bookmarkdown-sync CLI.
"""

from enum import IntEnum


class ExitCode(IntEnum):
    """Exit codes for CLI operations.

    These exit codes provide meaningful feedback about the operation result:
    - SUCCESS (0): Operation completed successfully
    - GENERAL_ERROR (1): General error (config issues, validation failures)
    - CONFLICTS (2): Local and remote both changed and the conflict is unresolved
    - AUTH_ERROR (3): The host rejected the access token
    - NETWORK_ERROR (4): Network connectivity or API availability issues

    Example:
        >>> exit_code = ExitCode.SUCCESS
        >>> sys.exit(exit_code)
    """
    SUCCESS = 0
    GENERAL_ERROR = 1
    CONFLICTS = 2
    AUTH_ERROR = 3
    NETWORK_ERROR = 4
