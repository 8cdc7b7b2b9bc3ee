"""
Redis-backed retry context store.

Stateful retry contexts must outlive the transaction that failed, and with
several worker processes they must be visible to whichever process sees
the item next. This store keeps each context as a JSON document with a TTL
and guards each identity with a Redis lock:

    {prefix}:ctx:{key}    JSON context (attempts, error type/message, exhausted)
    {prefix}:lock:{key}   per-identity lock

Exceptions cannot cross process boundaries; only their type name and
message are persisted (see ``chunk_engine.retry.context.PersistedError``).
"""

import json
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Hashable

import structlog
from redis import Redis
from redis.exceptions import LockError

from chunk_engine.config import Settings
from chunk_engine.exceptions import ConfigurationError
from chunk_engine.persistence.redis_client import RedisClient
from chunk_engine.retry.context import InMemoryRetryContextStore, RetryContext, RetryContextStore
from chunk_engine.retry.exceptions import RetryContextBusyError

logger = structlog.get_logger(__name__)


class RedisRetryContextStore(RetryContextStore):
    """
    Retry context store in Redis.

    Keys are rendered with ``str()``; key generators must produce
    identities whose string form is unique.
    """

    def __init__(self, redis_client: Redis, settings: Settings):
        """
        Initialize store.

        Args:
            redis_client: Redis client (sync)
            settings: Application settings (key prefix, TTL, lock timeouts)
        """
        self.redis = redis_client
        self.prefix = settings.RETRY_CONTEXT_KEY_PREFIX
        self.ttl = settings.RETRY_CONTEXT_TTL_SECONDS
        self.lock_timeout = settings.RETRY_CONTEXT_LOCK_TIMEOUT
        self.lock_lease = settings.RETRY_CONTEXT_LOCK_LEASE

    def _context_key(self, key: Hashable) -> str:
        return f"{self.prefix}:ctx:{key}"

    def _lock_key(self, key: Hashable) -> str:
        return f"{self.prefix}:lock:{key}"

    def get(self, key: Hashable) -> RetryContext | None:
        raw = self.redis.get(self._context_key(key))
        if raw is None:
            return None
        context = RetryContext.from_dict(json.loads(raw))
        context.key = key
        return context

    def put(self, context: RetryContext) -> None:
        data = context.to_dict()
        data["key"] = str(context.key)
        self.redis.setex(
            name=self._context_key(context.key),
            time=self.ttl,
            value=json.dumps(data),
        )
        logger.debug(
            "Stored retry context",
            extra={"key": str(context.key), "attempts": context.attempts, "ttl": self.ttl},
        )

    def remove(self, key: Hashable) -> None:
        self.redis.delete(self._context_key(key))

    def __contains__(self, key: Hashable) -> bool:
        return bool(self.redis.exists(self._context_key(key)))

    @contextmanager
    def lock(self, key: Hashable) -> Iterator[None]:
        lock = self.redis.lock(
            self._lock_key(key),
            timeout=self.lock_lease,
            blocking_timeout=self.lock_timeout,
        )
        try:
            acquired = lock.acquire()
        except LockError as error:
            raise RetryContextBusyError(key, self.lock_timeout) from error
        if not acquired:
            raise RetryContextBusyError(key, self.lock_timeout)
        try:
            yield
        finally:
            try:
                lock.release()
            except LockError:
                # Lease ran out during the attempt; the attempt's own outcome stands
                logger.warning(
                    "Retry context lock expired before release",
                    extra={"key": str(key), "lease_seconds": self.lock_lease},
                )


def build_retry_context_store(settings: Settings) -> RetryContextStore:
    """
    Build the retry context store selected by RETRY_CONTEXT_BACKEND.

    Raises:
        ConfigurationError: Unknown backend
    """
    backend = settings.RETRY_CONTEXT_BACKEND.lower()
    if backend == "memory":
        return InMemoryRetryContextStore(
            capacity=settings.RETRY_CONTEXT_CAPACITY,
            lock_timeout=settings.RETRY_CONTEXT_LOCK_TIMEOUT,
        )
    if backend == "redis":
        return RedisRetryContextStore(RedisClient.get_client(settings), settings)
    raise ConfigurationError(
        f"Unknown retry context backend: {settings.RETRY_CONTEXT_BACKEND}",
        {"backend": settings.RETRY_CONTEXT_BACKEND},
    )
