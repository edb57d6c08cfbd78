"""Synchronization of the bookmark tree with the remote document.

This package contains the SyncOrchestrator (tree ownership, pull/push/conflict
decisions, auto-sync, retry), the RemoteChangeDetector, the shared
ConflictState, scheduling primitives, the offline mirror and the settings
loader.
"""

from .models import SyncResult, SyncStatus
from .errors import (
    ConfigError,
    MirrorError,
    SyncFilesystemError,
    SyncInProgressError,
)
from .conflict_state import ConflictState
from .change_detector import RemoteChangeDetector
from .config import SettingsLoader, SyncSettings
from .offline_mirror import MirrorState, OfflineMirror
from .orchestrator import (
    AUTH_FAILED_MESSAGE,
    REMOTE_CHANGED_MESSAGE,
    ConflictResolution,
    SyncOrchestrator,
)

__all__ = [
    'SyncResult',
    'SyncStatus',
    'ConfigError',
    'MirrorError',
    'SyncFilesystemError',
    'SyncInProgressError',
    'ConflictState',
    'RemoteChangeDetector',
    'SettingsLoader',
    'SyncSettings',
    'MirrorState',
    'OfflineMirror',
    'AUTH_FAILED_MESSAGE',
    'REMOTE_CHANGED_MESSAGE',
    'ConflictResolution',
    'SyncOrchestrator',
]
