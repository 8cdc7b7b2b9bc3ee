"""
Collaborator interfaces consumed by the chunk orchestrator.

Readers and writers must either take part in the chunk transaction (roll
back with it) or tolerate re-delivery; the engine relies on one of the two
to re-present items after a rollback.
"""

from typing import Any, Protocol, runtime_checkable

from chunk_engine.models.records import RecoveryRecord


class _Exhausted:
    """Sentinel returned by ItemReader.read() once the input is exhausted."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "EXHAUSTED"

    def __bool__(self) -> bool:
        return False


EXHAUSTED = _Exhausted()


@runtime_checkable
class ItemReader(Protocol):
    """Input collaborator: one item per call, EXHAUSTED when done."""

    def read(self) -> Any:
        ...


@runtime_checkable
class ItemProcessor(Protocol):
    """
    Process step: transforms an item into the output to write.

    Returning None filters the item (neither written nor skipped).
    """

    def process(self, item: Any) -> Any:
        ...


@runtime_checkable
class ItemWriter(Protocol):
    """Output collaborator, called once per processed item inside the chunk transaction."""

    def apply(self, item: Any) -> None:
        ...


@runtime_checkable
class RecoveryListener(Protocol):
    """Recovery sink, notified once per skipped item after its chunk commits."""

    def notify(self, record: RecoveryRecord) -> None:
        ...
