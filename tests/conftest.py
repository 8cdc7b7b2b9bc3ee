"""Shared test fixtures and configuration for all tests.

This conftest.py provides common fixtures used across unit and integration tests.
"""

import pytest

from chunk_engine.config import Settings
from chunk_engine.transaction.boundary import TransactionBoundary
from chunk_engine.transaction.managers import ResourcelessTransactionManager


@pytest.fixture
def test_settings() -> Settings:
    """Test settings with safe defaults for local testing.

    Override specific settings in individual tests as needed:
        def test_something(test_settings):
            test_settings.CHUNK_SIZE = 2
    """
    return Settings(
        # === Application ===
        APP_NAME="Chunk Engine (Test)",
        APP_VERSION="0.1.0",
        LOG_LEVEL="DEBUG",
        ENVIRONMENT="development",

        # === Chunking ===
        CHUNK_SIZE=5,
        MAX_OUTER_ATTEMPTS=10,
        CHUNK_CONCURRENCY=1,
        ITEM_CONCURRENCY=1,

        # === Retry ===
        RETRY_MODE="stateful",
        MAX_ATTEMPTS=3,
        RETRY_BACKOFF_INITIAL=0.0,
        ITEM_PROPAGATION=None,
        RECOVER_ON_FINAL_FAILURE=False,

        # === Retry Context Store ===
        RETRY_CONTEXT_BACKEND="memory",
        RETRY_CONTEXT_CAPACITY=128,
        RETRY_CONTEXT_LOCK_TIMEOUT=5.0,
        RETRY_CONTEXT_KEY_PREFIX="chunk_engine_test:retry",

        # === Redis ===
        REDIS_URL="redis://localhost:6379/0",
        REDIS_MAX_CONNECTIONS=10,

        # === Database ===
        DATABASE_URL="sqlite://",  # In-memory for tests

        # === Monitoring ===
        PROMETHEUS_ENABLED=False,  # Disable metrics server in tests unless explicitly needed
    )


@pytest.fixture
def tx_manager() -> ResourcelessTransactionManager:
    """Resourceless transaction manager with savepoint support."""
    return ResourcelessTransactionManager()


@pytest.fixture
def boundary(tx_manager) -> TransactionBoundary:
    """Transaction boundary over the resourceless manager."""
    return TransactionBoundary(tx_manager, name="test")


@pytest.fixture
def flat_boundary() -> TransactionBoundary:
    """Transaction boundary whose manager cannot open savepoints."""
    return TransactionBoundary(ResourcelessTransactionManager(supports_nested=False), name="flat")
