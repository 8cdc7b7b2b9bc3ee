"""
Enumerations shared by the engine layers.

All enums are closed taxonomies - no values outside these sets are permitted.
"""

from enum import Enum


class RepeatStatus(str, Enum):
    """
    Result reported by one iteration of a repeat body.

    FINISHED means the body has nothing more to do (e.g. input exhausted).
    """

    CONTINUABLE = "continuable"
    FINISHED = "finished"


class Decision(str, Enum):
    """Verdict of a completion policy after one iteration."""

    CONTINUE = "continue"
    STOP_NORMAL = "stop_normal"
    STOP_EXCEPTIONAL = "stop_exceptional"


class Propagation(str, Enum):
    """
    Transaction propagation modes.

    REQUIRED joins the current transaction, REQUIRES_NEW suspends it and
    starts an independent one, NESTED opens a savepoint inside it.
    """

    REQUIRED = "required"
    REQUIRES_NEW = "requires_new"
    NESTED = "nested"


class TransactionOutcome(str, Enum):
    """Final outcome of a transactional block."""

    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class RetryMode(str, Enum):
    """
    Retry modes for item processing.

    STATELESS retries in place; STATEFUL rethrows to roll the chunk back
    and correlates attempts by item identity.
    """

    STATELESS = "stateless"
    STATEFUL = "stateful"


class JobStatus(str, Enum):
    """Final status reported by a chunk job."""

    COMPLETED = "completed"
    COMPLETED_WITH_SKIPS = "completed_with_skips"
    FAILED = "failed"
