"""
SQLAlchemy-backed transaction manager.

Each physical transaction gets its own Session; NESTED propagation maps to
``Session.begin_nested()`` (SAVEPOINT). Writers reach the session of the
active transaction through ``current_session``.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import structlog
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, SessionTransaction, sessionmaker

from chunk_engine.config import Settings
from chunk_engine.exceptions import ChunkEngineError, TransactionConfigurationError
from chunk_engine.models.enums import Propagation
from chunk_engine.transaction.boundary import TransactionBoundary
from chunk_engine.transaction.managers import TransactionManager

logger = structlog.get_logger(__name__)


@dataclass
class SqlAlchemyTransaction:
    """Handle pairing a Session with one of its (sub-)transactions."""

    session: Session
    transaction: SessionTransaction
    is_savepoint: bool = False


class SqlAlchemyTransactionManager(TransactionManager):
    """
    Transaction manager over a SQLAlchemy sessionmaker.

    Savepoints are supported by relational backends; pass
    ``supports_nested=False`` for drivers where SAVEPOINT is unreliable so
    NESTED propagation is rejected at setup.
    """

    def __init__(self, session_factory: Callable[[], Session], supports_nested: bool = True):
        self.session_factory = session_factory
        self.supports_nested = supports_nested

    @classmethod
    def from_settings(cls, settings: Settings, supports_nested: bool = True) -> "SqlAlchemyTransactionManager":
        engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True)
        factory = sessionmaker(bind=engine, autoflush=False, class_=Session)
        return cls(factory, supports_nested=supports_nested)

    def begin(self, propagation: Propagation, parent: SqlAlchemyTransaction | None = None) -> SqlAlchemyTransaction:
        if parent is not None:
            if not self.supports_nested:
                raise TransactionConfigurationError(
                    "SAVEPOINT support is disabled on this manager",
                    {"propagation": propagation.value},
                )
            return SqlAlchemyTransaction(
                session=parent.session,
                transaction=parent.session.begin_nested(),
                is_savepoint=True,
            )

        session = self.session_factory()
        logger.debug("Opened session transaction", extra={"propagation": propagation.value})
        return SqlAlchemyTransaction(session=session, transaction=session.begin())

    def commit(self, handle: SqlAlchemyTransaction) -> None:
        try:
            handle.transaction.commit()
        finally:
            if not handle.is_savepoint:
                handle.session.close()

    def rollback(self, handle: SqlAlchemyTransaction) -> None:
        try:
            handle.transaction.rollback()
        finally:
            if not handle.is_savepoint:
                handle.session.close()


def current_session(boundary: TransactionBoundary) -> Session:
    """
    Session of the boundary's active transaction.

    Raises:
        ChunkEngineError: No transaction is active, or the boundary is not
            backed by a SqlAlchemyTransactionManager
    """
    status = boundary.current()
    if status is None or not isinstance(status.handle, SqlAlchemyTransaction):
        raise ChunkEngineError(
            "No active SQLAlchemy transaction", {"boundary": boundary.name}
        )
    return status.handle.session


class SqlAlchemyItemWriter:
    """
    Output collaborator adding one ORM entity per item to the active session.

    Rows become visible when the chunk transaction commits and disappear
    with it on rollback.
    """

    def __init__(self, boundary: TransactionBoundary, to_entity: Callable[[Any], Any] = lambda item: item):
        self.boundary = boundary
        self.to_entity = to_entity

    def apply(self, item: Any) -> None:
        current_session(self.boundary).add(self.to_entity(item))
