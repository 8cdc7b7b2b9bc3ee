"""Integration test fixtures (service checks and prerequisites).

Provides fixtures for checking if external services are available.
Integration tests are skipped if required services are not running.
"""

import pytest
from redis import Redis


@pytest.fixture(scope="session")
def check_redis():
    """Check if Redis is available at localhost:6379.

    Skips tests if Redis is not reachable.
    """
    try:
        client = Redis.from_url("redis://localhost:6379/0")
        client.ping()
        client.close()
    except Exception as e:
        pytest.skip(f"Redis not available: {e}")


@pytest.fixture
def real_redis_client(check_redis):
    """Real Redis client instance for integration tests (sync).

    Requires Redis to be running (checked by check_redis fixture).
    Uses database 15 (test database).
    """
    client = Redis.from_url("redis://localhost:6379/15", decode_responses=True)

    # Clear test database before test
    client.flushdb()

    yield client

    # Clear test database after test
    client.flushdb()
    client.close()


@pytest.fixture
def integration_settings(test_settings):
    """Settings for integration tests with real services.

    Points to localhost services on standard ports.
    """
    test_settings.REDIS_URL = "redis://localhost:6379/15"  # Test database
    test_settings.RETRY_CONTEXT_BACKEND = "redis"
    test_settings.RETRY_CONTEXT_TTL_SECONDS = 60
    test_settings.RETRY_CONTEXT_LOCK_TIMEOUT = 0.2
    test_settings.PROMETHEUS_ENABLED = False

    return test_settings
