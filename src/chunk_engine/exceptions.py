"""
Custom exceptions for the Chunk Engine.

These exceptions let the repeat, transaction and chunk layers distinguish
configuration mistakes, forced rollbacks and job-fatal failures from the
ordinary item errors raised by user code.
"""


class ChunkEngineError(Exception):
    """
    Base exception for all engine errors.

    All engine-specific exceptions inherit from this to allow catching
    any engine-related error with a single except clause.
    """
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(ChunkEngineError):
    """
    Raised at setup when components are combined in an unsafe way.

    Examples:
    - Stateless retry with a recovery path on a manager without savepoints
    - Recover-on-final-failure without nested item propagation
    - Outer attempt budget too small for stateful retries to reach recovery
    """
    pass


class TransactionConfigurationError(ConfigurationError):
    """
    Raised when a propagation mode is not supported by the transaction manager.

    NESTED propagation is rejected rather than silently downgraded.
    """
    pass


class UnexpectedRollbackError(ChunkEngineError):
    """
    Raised when a transaction owner tries to commit but a participating
    block has already marked the transaction rollback-only.
    """
    pass


class CriticalFailure(ChunkEngineError):
    """
    Wraps an error classified as critical.

    Once wrapped, the failure propagates through every enclosing repeat loop
    regardless of that loop's own classifier, and terminates the job.
    """
    def __init__(self, error: BaseException):
        super().__init__(
            f"Critical failure: {type(error).__name__}: {error}",
            {"error_type": type(error).__name__},
        )
        self.error = error


class OuterRetryLimitExceeded(ChunkEngineError):
    """
    Raised when an exception-tolerant loop sees too many consecutive failures.

    The last failure is chained as ``__cause__``.
    """
    def __init__(self, failures: int, last_error: BaseException):
        super().__init__(
            f"Loop failed {failures} consecutive times. "
            f"Final error: {type(last_error).__name__}",
            {"failures": failures, "error_type": type(last_error).__name__},
        )
        self.failures = failures
        self.last_error = last_error


class SynchronizationError(ChunkEngineError):
    """
    Raised when a transaction synchronization callback fails.

    ``committed`` tells whether the physical transaction had already
    committed: a failing commit callback cannot undo the commit, so callers
    must not treat it as a rollback. The first failing callback's error is
    kept in ``error`` and chained as ``__cause__``.
    """
    def __init__(self, committed: bool, error: BaseException):
        phase = "commit" if committed else "rollback"
        super().__init__(
            f"Synchronization failed after {phase}: {type(error).__name__}: {error}",
            {"committed": committed, "error_type": type(error).__name__},
        )
        self.committed = committed
        self.error = error
