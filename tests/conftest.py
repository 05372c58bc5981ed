"""
Shared pytest fixtures for phantom_cleanup tests.
"""
import gc

import pytest


@pytest.fixture
def cleanup_manager():
    """Create CleanupManager instance with a running daemon for testing."""
    from phantom_cleanup.resources.manager import CleanupManager
    manager = CleanupManager()
    yield manager
    manager.shutdown()


@pytest.fixture
def idle_manager():
    """Create CleanupManager whose daemon is never started (drains run inline)."""
    from phantom_cleanup.resources.manager import CleanupManager
    manager = CleanupManager(autostart=False)
    yield manager
    manager.shutdown()


@pytest.fixture
def collect(cleanup_manager):
    """Force a collection and wait until every ready cleanup has run."""
    def _collect():
        gc.collect()
        assert cleanup_manager.run_cleanup_now(), "daemon did not drain in time"
    return _collect

