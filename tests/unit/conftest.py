"""Unit test fixtures (mocks and stubs).

Provides mock objects and in-memory collaborators for testing without
external dependencies.
"""

from unittest.mock import MagicMock, Mock

import pytest

from chunk_engine.chunk.memory import CollectingRecoveryListener, ListItemWriter, QueueItemReader
from chunk_engine.retry.context import InMemoryRetryContextStore


@pytest.fixture
def mock_redis():
    """Mock Redis client for unit tests (sync)."""
    mock = Mock()
    mock.get = Mock(return_value=None)
    mock.setex = Mock(return_value=True)
    mock.delete = Mock(return_value=1)
    mock.exists = Mock(return_value=0)

    lock = MagicMock()
    lock.acquire = Mock(return_value=True)
    lock.release = Mock(return_value=None)
    mock.lock = Mock(return_value=lock)
    return mock


@pytest.fixture
def store() -> InMemoryRetryContextStore:
    """In-memory retry context store with a short lock timeout."""
    return InMemoryRetryContextStore(capacity=64, lock_timeout=1.0)


@pytest.fixture
def make_reader(boundary):
    """Factory for transactional queue readers bound to the test boundary."""
    def _make(items):
        return QueueItemReader(items, boundary)
    return _make


@pytest.fixture
def writer(boundary) -> ListItemWriter:
    """Transactional list writer bound to the test boundary."""
    return ListItemWriter(boundary)


@pytest.fixture
def listener() -> CollectingRecoveryListener:
    """Recovery listener collecting every notified record."""
    return CollectingRecoveryListener()
