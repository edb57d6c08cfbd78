"""Data models for sync operations.

This module defines the result types returned by the sync orchestrator.
All models use dataclasses for clean, type-safe data structures.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class SyncStatus(Enum):
    """Outcome of one sync-class operation.

    - PULLED: Remote content replaced the local tree
    - PUSHED: Local tree was written to the remote document
    - UP_TO_DATE: Neither side changed
    - CONFLICT: Both sides changed; waiting for load_remote/save_local
    - SKIPPED: Auto-sync or detector trigger skipped (lock held, conflict open)
    - LOCAL_ONLY: No access token, nothing to sync with
    - FAILED: An error was surfaced in the error slot
    """
    PULLED = 'pulled'
    PUSHED = 'pushed'
    UP_TO_DATE = 'up_to_date'
    CONFLICT = 'conflict'
    SKIPPED = 'skipped'
    LOCAL_ONLY = 'local_only'
    FAILED = 'failed'


@dataclass(frozen=True)
class SyncResult:
    """Result of a sync-class operation.

    Attributes:
        status: What happened
        message: User-facing message (set for FAILED and CONFLICT)
        error: The exception behind a FAILED result, if any

    Example:
        >>> result = SyncResult(SyncStatus.PUSHED)
        >>> result.ok
        True
    """
    status: SyncStatus
    message: Optional[str] = None
    error: Optional[Exception] = field(default=None, compare=False)

    @property
    def ok(self) -> bool:
        return self.status not in (SyncStatus.FAILED, SyncStatus.CONFLICT)
