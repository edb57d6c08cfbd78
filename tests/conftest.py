"""Root pytest configuration for all tests.

This conftest applies to all test types (unit, integration).
"""

import logging

import pytest

# Keep urllib3 connection chatter out of captured logs
logging.getLogger("urllib3").setLevel(logging.WARNING)


@pytest.fixture(autouse=True)
def isolated_token_env(monkeypatch):
    """Make sure no real GitHub token leaks into a test."""
    monkeypatch.delenv("BOOKMARKDOWN_GITHUB_TOKEN", raising=False)
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)


@pytest.fixture(autouse=True)
def restore_app_logger():
    """Undo handler and level changes made by CLI logging setup."""
    app_logger = logging.getLogger("src")
    handlers = list(app_logger.handlers)
    level = app_logger.level
    yield
    for handler in app_logger.handlers:
        if handler not in handlers:
            handler.close()
    app_logger.handlers[:] = handlers
    app_logger.setLevel(level)
