"""Typed exception hierarchy for the sync layer.

This module defines the exceptions raised by the orchestrator, the settings
loader and the offline mirror. All of them inherit from SyncError.
"""

from typing import Optional

from src.gist_client.errors import SyncError


class SyncInProgressError(SyncError):
    """Raised when an explicit sync is requested while another one holds the lock."""

    def __init__(self):
        super().__init__("Sync already in progress")


class ConfigError(SyncError):
    """Raised when the settings file is invalid."""

    def __init__(self, message: str, config_field: Optional[str] = None):
        if config_field:
            full_message = f"Config error in field '{config_field}': {message}"
        else:
            full_message = f"Config error: {message}"
        super().__init__(full_message)
        self.config_field = config_field
        self.original_message = message


class MirrorError(SyncError):
    """Raised when the offline mirror file is malformed."""

    def __init__(self, message: str, mirror_field: Optional[str] = None):
        if mirror_field:
            full_message = f"Mirror error in field '{mirror_field}': {message}"
        else:
            full_message = f"Mirror error: {message}"
        super().__init__(full_message)
        self.mirror_field = mirror_field
        self.original_message = message


class SyncFilesystemError(SyncError):
    """Raised when reading or writing a local settings/mirror file fails."""

    def __init__(self, file_path: str, operation: str, reason: Optional[str] = None):
        message = f"File operation '{operation}' failed for {file_path}"
        if reason:
            message += f": {reason}"
        super().__init__(message)
        self.file_path = file_path
        self.operation = operation
        self.reason = reason
