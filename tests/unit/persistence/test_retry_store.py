"""
Unit tests for RedisRetryContextStore (mocked Redis).
"""

import json
from unittest.mock import patch

import pytest
from redis.exceptions import LockError, LockNotOwnedError

from chunk_engine.exceptions import ConfigurationError
from chunk_engine.persistence.retry_store import RedisRetryContextStore, build_retry_context_store
from chunk_engine.retry.context import InMemoryRetryContextStore, RetryContext
from chunk_engine.retry.exceptions import RetryContextBusyError


@pytest.fixture
def redis_store(mock_redis, test_settings):
    return RedisRetryContextStore(mock_redis, test_settings)


def test_put_stores_json_with_ttl(redis_store, mock_redis, test_settings):
    """Test the stored document."""
    context = RetryContext(key=42)
    context.register_error(ValueError("boom"))

    redis_store.put(context)

    mock_redis.setex.assert_called_once()
    kwargs = mock_redis.setex.call_args.kwargs
    assert kwargs["name"] == "chunk_engine_test:retry:ctx:42"
    assert kwargs["time"] == test_settings.RETRY_CONTEXT_TTL_SECONDS
    assert json.loads(kwargs["value"]) == {
        "key": "42",
        "attempts": 1,
        "error_type": "ValueError",
        "error_message": "boom",
        "exhausted": False,
    }


def test_get_missing_returns_none(redis_store, mock_redis):
    """Test lookup of an unknown identity."""
    assert redis_store.get("item") is None
    mock_redis.get.assert_called_once_with("chunk_engine_test:retry:ctx:item")


def test_get_restores_context_with_original_key(redis_store, mock_redis):
    """Test that the caller's key replaces the stringified one."""
    mock_redis.get.return_value = json.dumps(
        {"key": "42", "attempts": 3, "error_type": "TimeoutError", "error_message": "slow", "exhausted": True}
    )

    context = redis_store.get(42)

    assert context.key == 42
    assert context.attempts == 3
    assert context.exhausted is True
    assert context.last_error is None


def test_remove_and_contains(redis_store, mock_redis):
    """Test delete and exists calls."""
    mock_redis.exists.return_value = 1

    assert "item" in redis_store
    redis_store.remove("item")

    mock_redis.exists.assert_called_once_with("chunk_engine_test:retry:ctx:item")
    mock_redis.delete.assert_called_once_with("chunk_engine_test:retry:ctx:item")


def test_lock_acquires_and_releases(redis_store, mock_redis, test_settings):
    """Test the per-identity Redis lock."""
    with redis_store.lock("item"):
        pass

    mock_redis.lock.assert_called_once_with(
        "chunk_engine_test:retry:lock:item",
        timeout=test_settings.RETRY_CONTEXT_LOCK_LEASE,
        blocking_timeout=test_settings.RETRY_CONTEXT_LOCK_TIMEOUT,
    )
    lock = mock_redis.lock.return_value
    lock.acquire.assert_called_once()
    lock.release.assert_called_once()


def test_lock_released_when_block_fails(redis_store, mock_redis):
    """Test that the lock is released on exceptions."""
    with pytest.raises(ValueError):
        with redis_store.lock("item"):
            raise ValueError("attempt failed")

    mock_redis.lock.return_value.release.assert_called_once()


def test_lock_not_acquired_raises_busy(redis_store, mock_redis):
    """Test the blocking timeout."""
    mock_redis.lock.return_value.acquire.return_value = False

    with pytest.raises(RetryContextBusyError):
        with redis_store.lock("item"):
            pytest.fail("block must not run")

    mock_redis.lock.return_value.release.assert_not_called()


def test_lock_error_raises_busy(redis_store, mock_redis):
    """Test that redis LockError surfaces as RetryContextBusyError."""
    mock_redis.lock.return_value.acquire.side_effect = LockError("cannot acquire")

    with pytest.raises(RetryContextBusyError) as exc_info:
        with redis_store.lock("item"):
            pass

    assert isinstance(exc_info.value.__cause__, LockError)


def test_expired_lease_keeps_the_original_error(redis_store, mock_redis):
    """Test that a lock lost to its lease does not mask the attempt's failure."""
    mock_redis.lock.return_value.release.side_effect = LockNotOwnedError("lease expired")

    with pytest.raises(ValueError, match="attempt failed"):
        with redis_store.lock("item"):
            raise ValueError("attempt failed")

    mock_redis.lock.return_value.release.assert_called_once()


def test_expired_lease_after_success_is_not_raised(redis_store, mock_redis):
    mock_redis.lock.return_value.release.side_effect = LockNotOwnedError("lease expired")

    with redis_store.lock("item"):
        pass


def test_build_memory_store(test_settings):
    """Test the default backend."""
    store = build_retry_context_store(test_settings)

    assert isinstance(store, InMemoryRetryContextStore)
    assert store.capacity == test_settings.RETRY_CONTEXT_CAPACITY
    assert store.lock_timeout == test_settings.RETRY_CONTEXT_LOCK_TIMEOUT


def test_build_redis_store(test_settings, mock_redis):
    """Test the redis backend."""
    test_settings.RETRY_CONTEXT_BACKEND = "redis"

    with patch("chunk_engine.persistence.retry_store.RedisClient.get_client", return_value=mock_redis):
        store = build_retry_context_store(test_settings)

    assert isinstance(store, RedisRetryContextStore)
    assert store.redis is mock_redis
    assert store.prefix == test_settings.RETRY_CONTEXT_KEY_PREFIX


def test_build_unknown_backend(test_settings):
    test_settings.RETRY_CONTEXT_BACKEND = "memcached"

    with pytest.raises(ConfigurationError):
        build_retry_context_store(test_settings)
