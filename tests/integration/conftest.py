"""Pytest configuration and fixtures for integration tests.

Integration tests run several orchestrators against one InMemoryGistHost,
the way two browser tabs or two machines share one gist, with a shared
ManualScheduler driving debounce and polling.
"""

from typing import Callable, Optional

import pytest

from src.gist_client.memory_repository import InMemoryGistHost, InMemoryRepository
from src.sync.config import SyncSettings
from src.sync.offline_mirror import OfflineMirror
from src.sync.orchestrator import SyncOrchestrator
from tests.helpers import ManualScheduler


@pytest.fixture
def host() -> InMemoryGistHost:
    return InMemoryGistHost()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def make_client(host, scheduler) -> Callable[..., SyncOrchestrator]:
    """Factory for orchestrators bound to the shared host.

    Example:
        >>> tab_a = make_client()
        >>> tab_b = make_client(auto_sync=True)
    """
    clients = []

    def _make(auto_sync: bool = False, mirror_path: Optional[str] = None) -> SyncOrchestrator:
        client = SyncOrchestrator(
            repository_factory=lambda document_id: InMemoryRepository(host, document_id=document_id),
            settings=SyncSettings(auto_sync=auto_sync),
            scheduler=scheduler,
            mirror=OfflineMirror(mirror_path) if mirror_path else None,
            sleep=lambda seconds: None,
        )
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.close()
