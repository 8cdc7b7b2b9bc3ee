"""
Retry context tracking.

A RetryContext holds the attempt history of one logical item identity
across invocations separated by transaction rollbacks. Contexts live in an
explicit keyed store that is passed to the RetryEngine; the store also
provides per-identity mutual exclusion so that at most one attempt per
identity is in flight at a time.
"""

import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass
from typing import Hashable

import structlog

from chunk_engine.retry.exceptions import RetryCacheCapacityExceeded, RetryContextBusyError

logger = structlog.get_logger(__name__)


@dataclass
class RetryContext:
    """
    Attempt history for one logical identity.

    Attributes:
        key: Logical identity of the item
        attempts: Number of failed attempts so far
        last_error: Most recent exception (not persisted by remote stores)
        error_type: Class name of the most recent exception
        error_message: Message of the most recent exception
        exhausted: No further attempt is allowed; the next presentation recovers
    """

    key: Hashable | None
    attempts: int = 0
    last_error: BaseException | None = None
    error_type: str | None = None
    error_message: str | None = None
    exhausted: bool = False

    def register_error(self, error: BaseException) -> None:
        self.attempts += 1
        self.last_error = error
        self.error_type = type(error).__name__
        self.error_message = str(error)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "key": self.key,
            "attempts": self.attempts,
            "error_type": self.error_type,
            "error_message": self.error_message,
            "exhausted": self.exhausted,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RetryContext":
        """Create from dictionary."""
        return cls(
            key=data["key"],
            attempts=data["attempts"],
            error_type=data.get("error_type"),
            error_message=data.get("error_message"),
            exhausted=data.get("exhausted", False),
        )


class RetryContextStore(ABC):
    """
    Keyed store of live retry contexts.

    Implementations must guarantee that ``lock(key)`` excludes every other
    holder of the same key, across threads (and processes, for remote
    stores).
    """

    @abstractmethod
    def get(self, key: Hashable) -> RetryContext | None:
        ...

    @abstractmethod
    def put(self, context: RetryContext) -> None:
        ...

    @abstractmethod
    def remove(self, key: Hashable) -> None:
        ...

    @abstractmethod
    def lock(self, key: Hashable) -> AbstractContextManager[None]:
        """Context manager holding the per-identity lock."""
        ...

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key) is not None


class InMemoryRetryContextStore(RetryContextStore):
    """
    Process-local retry context store.

    Contexts are kept in a dict bounded by ``capacity``; per-key locks are
    created on demand and dropped once no thread waits on them and the key
    holds no context.
    """

    def __init__(self, capacity: int = 4096, lock_timeout: float | None = 30.0):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self.lock_timeout = lock_timeout
        self._contexts: dict[Hashable, RetryContext] = {}
        self._locks: dict[Hashable, threading.Lock] = {}
        self._waiters: defaultdict[Hashable, int] = defaultdict(int)
        self._guard = threading.Lock()

    def get(self, key: Hashable) -> RetryContext | None:
        with self._guard:
            return self._contexts.get(key)

    def put(self, context: RetryContext) -> None:
        with self._guard:
            if context.key not in self._contexts and len(self._contexts) >= self.capacity:
                raise RetryCacheCapacityExceeded(self.capacity)
            self._contexts[context.key] = context

    def remove(self, key: Hashable) -> None:
        with self._guard:
            self._contexts.pop(key, None)
            if key not in self._waiters:
                self._locks.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._contexts)

    @contextmanager
    def lock(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            key_lock = self._locks.setdefault(key, threading.Lock())
            self._waiters[key] += 1

        timeout = -1 if self.lock_timeout is None else self.lock_timeout
        if not key_lock.acquire(timeout=timeout):
            self._release_waiter(key)
            logger.warning(
                "Retry context busy",
                extra={"key": repr(key), "timeout": self.lock_timeout},
            )
            raise RetryContextBusyError(key, self.lock_timeout)

        try:
            yield
        finally:
            key_lock.release()
            self._release_waiter(key)

    def _release_waiter(self, key: Hashable) -> None:
        with self._guard:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                if key not in self._contexts:
                    self._locks.pop(key, None)


class PersistedError(Exception):
    """
    Stand-in for an exception restored from a remote store.

    Only the class name and message survive persistence.
    """

    def __init__(self, error_type: str | None, message: str | None):
        self.error_type = error_type or "UnknownError"
        super().__init__(f"{self.error_type}: {message or ''}")


def context_error(context: RetryContext) -> BaseException:
    """Final exception of a context, restored if it was persisted remotely."""
    if context.last_error is not None:
        return context.last_error
    return PersistedError(context.error_type, context.error_message)
