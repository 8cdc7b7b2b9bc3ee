"""
Unit tests for RetryContext and the in-memory retry context store.
"""

import threading

import pytest

from chunk_engine.retry.context import (
    InMemoryRetryContextStore,
    PersistedError,
    RetryContext,
    context_error,
)
from chunk_engine.retry.exceptions import RetryCacheCapacityExceeded, RetryContextBusyError


def test_register_error_tracks_history():
    """Test that each failure increments attempts and keeps the last error."""
    context = RetryContext(key="item-1")
    first, second = ValueError("first"), KeyError("second")

    context.register_error(first)
    context.register_error(second)

    assert context.attempts == 2
    assert context.last_error is second
    assert context.error_type == "KeyError"
    assert context.error_message == "'second'"


def test_dict_round_trip_drops_live_exception():
    """Test that serialization keeps the error type and message only."""
    context = RetryContext(key="item-1")
    context.register_error(ValueError("boom"))
    context.exhausted = True

    restored = RetryContext.from_dict(context.to_dict())

    assert restored.key == "item-1"
    assert restored.attempts == 1
    assert restored.exhausted is True
    assert restored.last_error is None
    assert restored.error_type == "ValueError"


def test_context_error_restores_persisted_error():
    """Test that a context without a live exception yields a PersistedError."""
    context = RetryContext(key="k", attempts=3, error_type="TimeoutError", error_message="slow")

    error = context_error(context)

    assert isinstance(error, PersistedError)
    assert error.error_type == "TimeoutError"
    assert "slow" in str(error)


def test_store_put_get_remove(store):
    """Test basic store operations."""
    context = RetryContext(key=("order", 7))
    store.put(context)

    assert store.get(("order", 7)) is context
    assert ("order", 7) in store
    assert len(store) == 1

    store.remove(("order", 7))

    assert store.get(("order", 7)) is None
    assert len(store) == 0


def test_store_remove_unknown_key_is_noop(store):
    """Test removing a key that was never stored."""
    store.remove("missing")
    assert len(store) == 0


def test_store_capacity_exceeded():
    """Test that a full store rejects new identities but accepts updates."""
    store = InMemoryRetryContextStore(capacity=2)
    store.put(RetryContext(key="a"))
    store.put(RetryContext(key="b"))

    store.put(RetryContext(key="a", attempts=2))

    with pytest.raises(RetryCacheCapacityExceeded) as exc_info:
        store.put(RetryContext(key="c"))
    assert exc_info.value.capacity == 2


def test_store_rejects_invalid_capacity():
    """Test capacity validation."""
    with pytest.raises(ValueError):
        InMemoryRetryContextStore(capacity=0)


def test_lock_excludes_other_threads():
    """Test per-identity mutual exclusion with a timeout."""
    store = InMemoryRetryContextStore(lock_timeout=0.05)
    errors = []

    def contender():
        try:
            with store.lock("item"):
                pass
        except RetryContextBusyError as error:
            errors.append(error)

    with store.lock("item"):
        worker = threading.Thread(target=contender)
        worker.start()
        worker.join()

    assert len(errors) == 1
    assert errors[0].key == "item"


def test_lock_does_not_block_other_identities():
    """Test that different keys are locked independently."""
    store = InMemoryRetryContextStore(lock_timeout=0.05)
    entered = []

    def other():
        with store.lock("other"):
            entered.append("other")

    with store.lock("item"):
        worker = threading.Thread(target=other)
        worker.start()
        worker.join()

    assert entered == ["other"]


def test_lock_released_after_block(store):
    """Test that the lock can be taken again and unused locks are dropped."""
    with store.lock("item"):
        pass
    with store.lock("item"):
        pass

    assert store._locks == {}
    assert dict(store._waiters) == {}
