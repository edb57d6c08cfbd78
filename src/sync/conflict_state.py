"""Shared conflict-resolution flags.

A ConflictState is created by whoever composes the application and injected
into the orchestrator, the change detector and the UI. Reads and writes go
through a lock, so any thread may update the flags.

Contract:
    dialog_open: set by the UI while a conflict dialog is on screen
    unresolved_conflict: set by the orchestrator when it detects a conflict,
        cleared when load_remote/save_local completes
    is_blocking(): True while either flag is set; the detector and auto-sync
        skip their work in that case
"""

import threading


class ConflictState:
    """Thread-safe holder of the conflict/dialog flags.

    Example:
        >>> state = ConflictState()
        >>> state.unresolved_conflict = True
        >>> state.is_blocking()
        True
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._dialog_open = False
        self._unresolved_conflict = False

    @property
    def dialog_open(self) -> bool:
        with self._lock:
            return self._dialog_open

    @dialog_open.setter
    def dialog_open(self, value: bool) -> None:
        with self._lock:
            self._dialog_open = bool(value)

    @property
    def unresolved_conflict(self) -> bool:
        with self._lock:
            return self._unresolved_conflict

    @unresolved_conflict.setter
    def unresolved_conflict(self, value: bool) -> None:
        with self._lock:
            self._unresolved_conflict = bool(value)

    def is_blocking(self) -> bool:
        with self._lock:
            return self._dialog_open or self._unresolved_conflict

    def reset(self) -> None:
        with self._lock:
            self._dialog_open = False
            self._unresolved_conflict = False
