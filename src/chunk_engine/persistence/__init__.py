"""
Persistence layer for retry contexts.

Main Components:
    - RedisClient: Pooled Redis client
    - RedisRetryContextStore: Retry contexts shared across processes
    - build_retry_context_store: Store selected by settings
"""

from chunk_engine.persistence.redis_client import RedisClient
from chunk_engine.persistence.retry_store import RedisRetryContextStore, build_retry_context_store

__all__ = [
    "RedisClient",
    "RedisRetryContextStore",
    "build_retry_context_store",
]
