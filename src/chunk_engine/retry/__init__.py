"""
Retry engine with stateless and stateful modes.

Main Components:
    - RetryEngine: Executes an action under a RetryPolicy
    - RetryPolicy: Attempt budget, backoff and failure classifiers
    - ExceptionClassifier: Type-based binary classification of failures
    - RetryContextStore: Keyed attempt history with per-identity locking
    - Processed / Recovered: Tagged results of an execution

Usage:
    >>> from chunk_engine.retry import RetryEngine, InMemoryRetryContextStore
    >>> engine = RetryEngine(RetryPolicy(max_attempts=3), store=InMemoryRetryContextStore())
    >>> result = engine.execute(lambda: process(item), on_skip, key=item.id, item=item)
"""

from chunk_engine.retry.classifier import ExceptionClassifier
from chunk_engine.retry.context import (
    InMemoryRetryContextStore,
    PersistedError,
    RetryContext,
    RetryContextStore,
)
from chunk_engine.retry.engine import RetryEngine
from chunk_engine.retry.exceptions import (
    RecoveryFailedError,
    RetryCacheCapacityExceeded,
    RetryContextBusyError,
    RetryExhausted,
)
from chunk_engine.retry.policy import BackoffConfig, RetryPolicy
from chunk_engine.retry.results import Processed, Recovered, RetryResult

__all__ = [
    "BackoffConfig",
    "ExceptionClassifier",
    "InMemoryRetryContextStore",
    "PersistedError",
    "Processed",
    "Recovered",
    "RecoveryFailedError",
    "RetryCacheCapacityExceeded",
    "RetryContext",
    "RetryContextBusyError",
    "RetryContextStore",
    "RetryEngine",
    "RetryExhausted",
    "RetryPolicy",
    "RetryResult",
]
