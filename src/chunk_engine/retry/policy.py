"""
Retry policy.

A RetryPolicy bounds the number of attempts and carries the classifiers
the RetryEngine consults:

- retryable: failure may be attempted again (otherwise exhaust at once)
- skippable: exhausted failure may be converted into a recovery/skip
- immediate: stateful mode retries in place instead of costing a
  transaction round-trip (e.g. deadlock loser)
- fatal: failure bypasses retry and recovery entirely
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from chunk_engine.retry.classifier import ExceptionClassifier
from chunk_engine.retry.context import RetryContext

if TYPE_CHECKING:
    from chunk_engine.config import Settings


@dataclass(frozen=True)
class BackoffConfig:
    """
    Exponential backoff between stateless attempts.

    An ``initial`` of 0 disables sleeping altogether.
    """

    initial: float = 0.0  # seconds
    multiplier: float = 2.0
    maximum: float = 30.0  # seconds

    def __post_init__(self) -> None:
        if self.initial < 0:
            raise ValueError("initial must be >= 0")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")
        if self.maximum < self.initial:
            raise ValueError("maximum must be >= initial")


@dataclass(frozen=True)
class RetryPolicy:
    """
    Attempt budget and failure classification for the RetryEngine.

    max_attempts is the TOTAL number of tries, not the number of retries.
    So max_attempts=3 means: try, retry, retry (3 total).
    """

    max_attempts: int = 3
    retryable: ExceptionClassifier = field(default_factory=lambda: ExceptionClassifier.always(True))
    skippable: ExceptionClassifier = field(default_factory=lambda: ExceptionClassifier.always(True))
    immediate: ExceptionClassifier = field(default_factory=lambda: ExceptionClassifier.always(False))
    fatal: ExceptionClassifier = field(default_factory=lambda: ExceptionClassifier.always(False))
    backoff: BackoffConfig = field(default_factory=BackoffConfig)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    @classmethod
    def no_retry(cls) -> "RetryPolicy":
        """Factory for no-retry policy (single attempt)."""
        return cls(max_attempts=1)

    @classmethod
    def from_settings(cls, settings: "Settings", **classifiers: ExceptionClassifier) -> "RetryPolicy":
        """
        Factory from Settings.

        Args:
            settings: Application settings (MAX_ATTEMPTS, RETRY_BACKOFF_*)
            **classifiers: Optional retryable / skippable / immediate / fatal overrides
        """
        return cls(
            max_attempts=settings.MAX_ATTEMPTS,
            backoff=BackoffConfig(
                initial=settings.RETRY_BACKOFF_INITIAL,
                multiplier=settings.RETRY_BACKOFF_MULTIPLIER,
                maximum=settings.RETRY_BACKOFF_MAX,
            ),
            **classifiers,
        )

    def is_retryable(self, error: BaseException) -> bool:
        return not self.fatal.classify(error) and self.retryable.classify(error)

    def is_skippable(self, error: BaseException) -> bool:
        return not self.fatal.classify(error) and self.skippable.classify(error)

    def can_retry(self, context: RetryContext) -> bool:
        if context.exhausted or context.attempts >= self.max_attempts:
            return False
        return context.last_error is None or self.is_retryable(context.last_error)
