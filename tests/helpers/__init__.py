"""Test helper modules for bookmark sync testing.

This package provides utilities for unit and integration testing:
- scheduling: ManualScheduler fake clock for debounce and polling
- detection: FakeDetector standing in for the polling change detector
"""

from .detection import FakeDetector
from .scheduling import ManualScheduler, ManualTask

__all__ = [
    'FakeDetector',
    'ManualScheduler',
    'ManualTask',
]
