"""
Chunk: the unit of transactional commit.

A Chunk collects the outputs and skip records of one outer iteration. It is
created empty, grown by successful inner iterations, and either discarded
(rolled back) or finalized (committed) with its transaction.
"""

import threading
from dataclasses import dataclass, field
from typing import Any

from chunk_engine.models.records import RecoveryRecord


@dataclass
class Chunk:
    """
    Outputs and skips of one chunk transaction.

    Outputs are tagged with the draw sequence of their item so that the
    written order follows input order even when items are processed
    concurrently.

    Attributes:
        number: 1-based chunk number within the job (attempts included)
        max_size: Configured chunk size
        items_read: Items drawn from the reader
        filtered: Items the processor filtered out
        exhausted: The reader reported EXHAUSTED during this chunk
    """

    number: int
    max_size: int
    items_read: int = 0
    filtered: int = 0
    exhausted: bool = False
    skips: list[RecoveryRecord] = field(default_factory=list)
    _outputs: list[tuple[int, Any]] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def mark_read(self) -> int:
        """Count a drawn item and return its sequence within the chunk."""
        with self._lock:
            self.items_read += 1
            if self.items_read > self.max_size:
                raise ValueError(f"Chunk {self.number} exceeded its size of {self.max_size}")
            return self.items_read

    def add_output(self, sequence: int, value: Any) -> None:
        with self._lock:
            self._outputs.append((sequence, value))

    def add_skip(self, record: RecoveryRecord) -> None:
        with self._lock:
            self.skips.append(record)

    def mark_filtered(self) -> None:
        with self._lock:
            self.filtered += 1

    @property
    def outputs(self) -> list[Any]:
        with self._lock:
            return [value for _, value in sorted(self._outputs, key=lambda pair: pair[0])]

    def __len__(self) -> int:
        with self._lock:
            return len(self._outputs)
