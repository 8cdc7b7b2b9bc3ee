"""
In-memory collaborators.

These take part in a TransactionBoundary through synchronizations: a
QueueItemReader requeues drawn items when their transaction (or savepoint)
rolls back, and a ListItemWriter only publishes writes once the chunk
commits. Both are thread-safe.
"""

import threading
from collections import deque
from collections.abc import Iterable
from typing import Any

from chunk_engine.chunk.interfaces import EXHAUSTED
from chunk_engine.models.records import RecoveryRecord
from chunk_engine.transaction.boundary import TransactionBoundary


class QueueItemReader:
    """
    Transactional queue-style reader.

    Items drawn inside a transaction go back to the head of the queue, in
    their original order, when that transaction rolls back. Outside a
    transaction reads are final.

    Attributes:
        deliveries: Every item handed out, re-deliveries included
    """

    def __init__(self, items: Iterable[Any], boundary: TransactionBoundary | None = None):
        self.boundary = boundary
        self.deliveries: list[Any] = []
        self._queue: deque[Any] = deque(items)
        self._lock = threading.Lock()

    def read(self) -> Any:
        with self._lock:
            if not self._queue:
                return EXHAUSTED
            item = self._queue.popleft()
            self.deliveries.append(item)

        status = self.boundary.current() if self.boundary else None
        if status is not None:
            status.register_synchronization(on_rollback=lambda: self._requeue(item))
        return item

    def _requeue(self, item: Any) -> None:
        with self._lock:
            self._queue.appendleft(item)

    def __len__(self) -> int:
        with self._lock:
            return len(self._queue)


class ListItemWriter:
    """
    Transactional list writer.

    Writes made inside a transaction become visible in ``written`` when it
    commits and are dropped when it rolls back.
    """

    def __init__(self, boundary: TransactionBoundary | None = None):
        self.boundary = boundary
        self.written: list[Any] = []
        self._lock = threading.Lock()

    def apply(self, item: Any) -> None:
        status = self.boundary.current() if self.boundary else None
        if status is None:
            self._publish(item)
        else:
            status.register_synchronization(on_commit=lambda: self._publish(item))

    def _publish(self, item: Any) -> None:
        with self._lock:
            self.written.append(item)


class CollectingRecoveryListener:
    """Recovery sink keeping every record it is notified of."""

    def __init__(self):
        self.records: list[RecoveryRecord] = []
        self._lock = threading.Lock()

    def notify(self, record: RecoveryRecord) -> None:
        with self._lock:
            self.records.append(record)
