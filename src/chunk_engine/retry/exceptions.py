"""
Retry engine exceptions.

This module defines exceptions raised by the retry engine when attempts
run out without a recovery path, when the recovery path itself fails, or
when the retry context store cannot serve an identity.
"""

from typing import TYPE_CHECKING, Hashable

from chunk_engine.exceptions import ChunkEngineError

if TYPE_CHECKING:
    from chunk_engine.retry.context import RetryContext


class RetryExhausted(ChunkEngineError):
    """
    Raised when all attempts fail and no recovery action is configured.

    Attributes:
        context: Retry context with the attempt history
        last_error: Final exception that caused ultimate failure
    """

    def __init__(self, context: "RetryContext", last_error: BaseException) -> None:
        self.context = context
        self.last_error = last_error

        super().__init__(
            f"Retry exhausted after {context.attempts} attempts. "
            f"Final error: {type(last_error).__name__}",
            {"key": context.key, "attempts": context.attempts},
        )


class RecoveryFailedError(ChunkEngineError):
    """
    Raised when the recovery action itself fails.

    There is no second-order recovery: the enclosing transaction rolls
    back. The original failure is chained as ``__cause__``.
    """

    def __init__(self, key: Hashable | None, error: BaseException) -> None:
        self.key = key
        self.error = error
        super().__init__(
            f"Recovery failed for {key!r}: {type(error).__name__}: {error}",
            {"key": key, "error_type": type(error).__name__},
        )


class RetryContextBusyError(ChunkEngineError):
    """Raised when an identity stays locked by another attempt past the timeout."""

    def __init__(self, key: Hashable, timeout: float | None) -> None:
        self.key = key
        super().__init__(
            f"Retry context for {key!r} is held by another attempt (timeout={timeout}s)",
            {"key": key, "timeout": timeout},
        )


class RetryCacheCapacityExceeded(ChunkEngineError):
    """
    Raised when the retry context store is full.

    Usually means items fail faster than they are recovered, or the key
    generator does not produce stable identities.
    """

    def __init__(self, capacity: int) -> None:
        self.capacity = capacity
        super().__init__(
            f"Retry context store capacity ({capacity}) exceeded",
            {"capacity": capacity},
        )
