"""
Tagged results of a retry execution.

Exactly one of the two continuation paths runs per attempt, and the
engine reports which one through the result type rather than through
exceptions.
"""

from dataclasses import dataclass
from typing import Any, Literal, Union

from chunk_engine.models.records import RecoveryRecord


@dataclass(frozen=True)
class Processed:
    """The action completed; ``value`` is its return value."""

    value: Any
    attempts: int
    kind: Literal["processed"] = "processed"


@dataclass(frozen=True)
class Recovered:
    """Attempts were exhausted and the recovery action ran instead."""

    record: RecoveryRecord
    kind: Literal["recovered"] = "recovered"


RetryResult = Union[Processed, Recovered]
