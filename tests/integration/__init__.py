"""Integration tests for bookmark sync.

These tests run several SyncOrchestrator instances against one shared
InMemoryGistHost, covering the paths unit tests exercise one component at a
time: two clients racing on one gist, conflict resolution from either side,
auto-sync and the change detector working together, and offline edits
surviving a restart through the offline mirror.

No network access is needed. Use pytest marks to run specific suites:
    pytest tests/integration -m integration
    pytest tests/integration -m conflict
"""
