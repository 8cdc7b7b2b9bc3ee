"""
Runtime records produced by the engine.

These dataclasses carry live Python objects (items, exceptions) and are
not meant for serialization; see ``JobSummary`` for the serializable view.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Hashable

from chunk_engine.models.enums import Decision, JobStatus


@dataclass(frozen=True)
class CompletionDecision:
    """
    Result of evaluating a completion policy.

    Attributes:
        decision: CONTINUE, STOP_NORMAL or STOP_EXCEPTIONAL
        error: Failure that caused a STOP_EXCEPTIONAL decision
        restarted: True when a tolerated failure abandoned the iteration
    """

    decision: Decision
    error: BaseException | None = None
    restarted: bool = False

    def __post_init__(self) -> None:
        if self.decision is Decision.STOP_EXCEPTIONAL and self.error is None:
            raise ValueError("STOP_EXCEPTIONAL decision requires an error")

    @property
    def is_complete(self) -> bool:
        return self.decision is not Decision.CONTINUE


CONTINUE = CompletionDecision(Decision.CONTINUE)
STOP_NORMAL = CompletionDecision(Decision.STOP_NORMAL)


def stop_exceptional(error: BaseException) -> CompletionDecision:
    return CompletionDecision(Decision.STOP_EXCEPTIONAL, error=error)


@dataclass(frozen=True)
class RecoveryRecord:
    """
    Record of an item whose retries were exhausted.

    Produced once per recovery and handed to the recovery sink after the
    enclosing transaction commits. The item never reaches the writer.

    Attributes:
        item: The skipped item (None if the failure happened before a read)
        key: Logical identity used to correlate attempts (None when stateless)
        error: Final exception
        attempts: Number of process attempts made
        skipped: Always True; the item was skipped rather than processed
    """

    item: Any
    key: Hashable | None
    error: BaseException
    attempts: int
    skipped: bool = True
    recovered_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class JobReport:
    """
    Mutable job counters, shared by concurrent chunk workers.

    ``status`` is set once the outer loop ends.
    """

    job_id: str
    status: JobStatus | None = None
    chunks_committed: int = 0
    rollbacks: int = 0
    items_read: int = 0
    items_written: int = 0
    items_filtered: int = 0
    skips: list[RecoveryRecord] = field(default_factory=list)
    error: BaseException | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def increment(self, counter: str, amount: int = 1) -> None:
        with self._lock:
            setattr(self, counter, getattr(self, counter) + amount)

    def add_skips(self, records: list[RecoveryRecord]) -> None:
        with self._lock:
            self.skips.extend(records)

    def finish(self, error: BaseException | None = None) -> None:
        self.error = error
        self.finished_at = datetime.now(timezone.utc)
        if error is not None:
            self.status = JobStatus.FAILED
        elif self.skips:
            self.status = JobStatus.COMPLETED_WITH_SKIPS
        else:
            self.status = JobStatus.COMPLETED
