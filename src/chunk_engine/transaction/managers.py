"""
Transaction manager interface and the resourceless implementation.

A TransactionManager owns physical transactions and savepoints; the
propagation rules (join, suspend, sub-scope) live in TransactionBoundary.
"""

import itertools
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import structlog

from chunk_engine.exceptions import TransactionConfigurationError
from chunk_engine.models.enums import Propagation

logger = structlog.get_logger(__name__)


class TransactionManager(ABC):
    """
    Resource driver behind a TransactionBoundary.

    ``begin`` receives the enclosing handle as ``parent`` only for NESTED
    propagation inside an active transaction; the manager must then open a
    savepoint-equivalent sub-transaction. Managers that cannot do so set
    ``supports_nested = False`` and NESTED is rejected at setup.
    """

    supports_nested: bool = False

    @abstractmethod
    def begin(self, propagation: Propagation, parent: Any = None) -> Any:
        ...

    @abstractmethod
    def commit(self, handle: Any) -> None:
        ...

    @abstractmethod
    def rollback(self, handle: Any) -> None:
        ...


@dataclass
class ResourcelessTransaction:
    """Handle of a resourceless transaction or savepoint."""

    id: int
    parent: "ResourcelessTransaction | None" = None
    state: str = "active"

    @property
    def is_savepoint(self) -> bool:
        return self.parent is not None


class ResourcelessTransactionManager(TransactionManager):
    """
    Transaction manager without a physical resource.

    Commit and rollback only move the handle's state; in-memory
    collaborators take part through transaction synchronizations registered
    on the TransactionBoundary.
    """

    def __init__(self, supports_nested: bool = True):
        self.supports_nested = supports_nested
        self._ids = itertools.count(1)
        self._ids_lock = threading.Lock()

    def begin(self, propagation: Propagation, parent: Any = None) -> ResourcelessTransaction:
        if parent is not None and not self.supports_nested:
            raise TransactionConfigurationError(
                "Nested transactions are disabled on this manager",
                {"propagation": propagation.value},
            )
        with self._ids_lock:
            tx_id = next(self._ids)
        logger.debug(
            "Began resourceless transaction",
            extra={"tx_id": tx_id, "propagation": propagation.value, "savepoint": parent is not None},
        )
        return ResourcelessTransaction(id=tx_id, parent=parent)

    def commit(self, handle: ResourcelessTransaction) -> None:
        self._finish(handle, "committed")

    def rollback(self, handle: ResourcelessTransaction) -> None:
        self._finish(handle, "rolled_back")

    @staticmethod
    def _finish(handle: ResourcelessTransaction, state: str) -> None:
        if handle.state != "active":
            raise RuntimeError(f"Transaction {handle.id} already {handle.state}")
        handle.state = state
        logger.debug("Finished resourceless transaction", extra={"tx_id": handle.id, "state": state})
