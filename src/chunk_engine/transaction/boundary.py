"""
Transaction boundary with propagation modes.

TransactionBoundary wraps a block of work in a transaction and commits or
rolls it back atomically. Propagation decides how the block relates to a
transaction already active in the current execution context:

    REQUIRED      join it (a failure taints it: the owner must roll back)
    REQUIRES_NEW  suspend it and run in an independent transaction
    NESTED        open a savepoint inside it

The active transaction is tracked per boundary in a ContextVar, so two
boundaries over orthogonal resources never see each other's transactions,
and worker threads started with a copied context share the dispatcher's
transaction.

Usage:
    boundary = TransactionBoundary(ResourcelessTransactionManager())
    outcome = boundary.run(lambda status: write_chunk(status))
"""

import threading
from collections.abc import Callable
from contextvars import ContextVar
from typing import Any, TypeVar

import structlog

from chunk_engine.exceptions import (
    SynchronizationError,
    TransactionConfigurationError,
    UnexpectedRollbackError,
)
from chunk_engine.models.enums import Propagation, TransactionOutcome
from chunk_engine.transaction.managers import TransactionManager

logger = structlog.get_logger(__name__)

T = TypeVar("T")
Callback = Callable[[], None]


class TransactionStatus:
    """
    One scope on the boundary's transaction stack.

    A status either owns a physical transaction or savepoint (``is_new``)
    or participates in its enclosing owner. Rollback-only marks and
    synchronizations always land on the owner.
    """

    def __init__(
        self,
        handle: Any,
        propagation: Propagation,
        *,
        is_new: bool,
        is_savepoint: bool = False,
        parent: "TransactionStatus | None" = None,
    ):
        self.handle = handle
        self.propagation = propagation
        self.is_new = is_new
        self.is_savepoint = is_savepoint
        self.parent = parent
        self._rollback_only = False
        self._tainted = False
        self._on_commit: list[Callback] = []
        self._on_rollback: list[Callback] = []
        self._lock = threading.Lock()

    @property
    def owner(self) -> "TransactionStatus":
        return self if self.is_new else self.parent.owner

    @property
    def rollback_only(self) -> bool:
        return self.owner._rollback_only

    @property
    def tainted(self) -> bool:
        """True when a participant marked the owner rollback-only."""
        return self.owner._tainted

    def set_rollback_only(self) -> None:
        owner = self.owner
        owner._rollback_only = True
        if owner is not self:
            owner._tainted = True

    def register_synchronization(
        self,
        on_commit: Callback | None = None,
        on_rollback: Callback | None = None,
    ) -> None:
        """
        Register callbacks fired when the owning scope completes.

        Commit callbacks of a released savepoint move to its parent and fire
        only when the physical transaction commits. Rollback callbacks fire
        in reverse registration order.
        """
        owner = self.owner
        with owner._lock:
            if on_commit is not None:
                owner._on_commit.append(on_commit)
            if on_rollback is not None:
                owner._on_rollback.append(on_rollback)

    def _merge_into_parent(self) -> None:
        parent = self.parent.owner
        with self._lock:
            on_commit, on_rollback = self._on_commit, self._on_rollback
            self._on_commit, self._on_rollback = [], []
        with parent._lock:
            parent._on_commit.extend(on_commit)
            parent._on_rollback.extend(on_rollback)

    def _fire(self, committed: bool) -> None:
        with self._lock:
            callbacks = list(self._on_commit) if committed else list(reversed(self._on_rollback))
            self._on_commit, self._on_rollback = [], []
        first_error: Exception | None = None
        for callback in callbacks:
            try:
                callback()
            except Exception as error:
                logger.error(
                    "Transaction synchronization failed",
                    extra={"committed": committed, "error_type": type(error).__name__},
                    exc_info=True,
                )
                first_error = first_error or error
        if first_error is not None:
            raise SynchronizationError(committed, first_error) from first_error


class TransactionBoundary:
    """
    Runs blocks of work inside transactions of a TransactionManager.

    Attributes:
        manager: Resource driver (physical transactions and savepoints)
        default_propagation: Propagation used when ``run`` is not given one
    """

    def __init__(
        self,
        manager: TransactionManager,
        default_propagation: Propagation = Propagation.REQUIRED,
        name: str = "default",
    ):
        self.manager = manager
        self.name = name
        self.default_propagation = Propagation(default_propagation)
        self._stack: ContextVar[tuple[TransactionStatus, ...]] = ContextVar(
            f"chunk_engine_tx_{name}_{id(self)}", default=()
        )
        self.validate(self.default_propagation)

    def supports(self, propagation: Propagation) -> bool:
        return Propagation(propagation) is not Propagation.NESTED or self.manager.supports_nested

    def validate(self, propagation: Propagation) -> None:
        """
        Reject propagation modes the manager cannot honour.

        Raises:
            TransactionConfigurationError: NESTED without savepoint support
        """
        if not self.supports(propagation):
            raise TransactionConfigurationError(
                f"{type(self.manager).__name__} does not support NESTED propagation",
                {"boundary": self.name},
            )

    def current(self) -> TransactionStatus | None:
        stack = self._stack.get()
        return stack[-1] if stack else None

    def in_transaction(self) -> bool:
        return bool(self._stack.get())

    def after_commit(self, callback: Callback) -> None:
        """Run ``callback`` after the current transaction commits, or now if none is active."""
        status = self.current()
        if status is None:
            callback()
        else:
            status.register_synchronization(on_commit=callback)

    def run(
        self,
        block: Callable[[TransactionStatus], Any],
        propagation: Propagation | None = None,
    ) -> TransactionOutcome:
        """
        Run ``block`` in a transaction.

        Returns:
            COMMITTED, or ROLLED_BACK when the block asked for a quiet
            rollback with ``status.set_rollback_only()``. For a block that
            joined an outer transaction the outcome reports whether that
            transaction can still commit.

        Raises:
            UnexpectedRollbackError: The block completed but a participant
                had already doomed the transaction
            SynchronizationError: A commit or rollback callback failed;
                ``committed`` tells whether the transaction is durable
            Exception: Anything raised by the block, after rollback
        """
        outcome, _ = self._execute(block, propagation)
        return outcome

    def call(
        self,
        block: Callable[[TransactionStatus], T],
        propagation: Propagation | None = None,
    ) -> T:
        """Like ``run`` but returns the block's value; a quiet rollback raises."""
        outcome, value = self._execute(block, propagation)
        if outcome is TransactionOutcome.ROLLED_BACK:
            raise UnexpectedRollbackError(
                "Transaction was rolled back", {"boundary": self.name}
            )
        return value

    def _execute(
        self,
        block: Callable[[TransactionStatus], T],
        propagation: Propagation | None,
    ) -> tuple[TransactionOutcome, T | None]:
        propagation = Propagation(propagation or self.default_propagation)
        self.validate(propagation)
        current = self.current()

        if current is not None and propagation is Propagation.REQUIRED:
            return self._participate(block, current)

        if current is not None and propagation is Propagation.NESTED:
            owner = current.owner
            handle = self.manager.begin(propagation, parent=owner.handle)
            status = TransactionStatus(
                handle, propagation, is_new=True, is_savepoint=True, parent=owner
            )
        else:
            # No active transaction, or REQUIRES_NEW suspending the current one
            handle = self.manager.begin(propagation)
            status = TransactionStatus(handle, propagation, is_new=True)

        token = self._stack.set(self._stack.get() + (status,))
        try:
            value = block(status)
        except BaseException as error:
            self._stack.reset(token)
            logger.info(
                "Rolling back after failure",
                extra={
                    "boundary": self.name,
                    "propagation": propagation.value,
                    "savepoint": status.is_savepoint,
                    "error_type": type(error).__name__,
                },
            )
            self._rollback(status)
            raise
        self._stack.reset(token)

        if status.rollback_only:
            self._rollback(status)
            if status.tainted:
                raise UnexpectedRollbackError(
                    "Transaction rolled back because a participant marked it rollback-only",
                    {"boundary": self.name, "propagation": propagation.value},
                )
            return TransactionOutcome.ROLLED_BACK, value

        self._commit(status)
        return TransactionOutcome.COMMITTED, value

    def _participate(
        self,
        block: Callable[[TransactionStatus], T],
        current: TransactionStatus,
    ) -> tuple[TransactionOutcome, T | None]:
        status = TransactionStatus(
            current.handle, Propagation.REQUIRED, is_new=False, parent=current
        )
        token = self._stack.set(self._stack.get() + (status,))
        try:
            value = block(status)
        except BaseException as error:
            self._stack.reset(token)
            status.set_rollback_only()
            logger.info(
                "Participating block failed, marking transaction rollback-only",
                extra={"boundary": self.name, "error_type": type(error).__name__},
            )
            raise
        self._stack.reset(token)
        if status.rollback_only:
            return TransactionOutcome.ROLLED_BACK, value
        return TransactionOutcome.COMMITTED, value

    def _commit(self, status: TransactionStatus) -> None:
        try:
            self.manager.commit(status.handle)
        except Exception as error:
            logger.error(
                "Commit failed, rolling back",
                extra={"boundary": self.name, "error_type": type(error).__name__},
            )
            status._fire(committed=False)
            raise
        if status.is_savepoint:
            status._merge_into_parent()
        else:
            status._fire(committed=True)

    def _rollback(self, status: TransactionStatus) -> None:
        try:
            self.manager.rollback(status.handle)
        finally:
            status._fire(committed=False)
