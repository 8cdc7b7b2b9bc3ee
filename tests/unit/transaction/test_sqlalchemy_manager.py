"""
Unit tests for SqlAlchemyTransactionManager.

Runs against a temporary SQLite file with the pysqlite SAVEPOINT
workaround (driver-level autocommit, explicit BEGIN).
"""

import pytest
from sqlalchemy import String, create_engine, event, select
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from chunk_engine.exceptions import ChunkEngineError, TransactionConfigurationError
from chunk_engine.models.enums import Propagation, TransactionOutcome
from chunk_engine.transaction.boundary import TransactionBoundary
from chunk_engine.transaction.sqlalchemy_manager import (
    SqlAlchemyItemWriter,
    SqlAlchemyTransactionManager,
    current_session,
)


class Base(DeclarativeBase):
    pass


class OutputRow(Base):
    __tablename__ = "output_rows"

    id: Mapped[int] = mapped_column(primary_key=True)
    value: Mapped[str] = mapped_column(String(50))


@pytest.fixture
def session_factory(tmp_path):
    """Session factory over a SQLite file that supports savepoints."""
    engine = create_engine(f"sqlite:///{tmp_path / 'chunks.db'}")

    @event.listens_for(engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, class_=Session)
    engine.dispose()


@pytest.fixture
def db_boundary(session_factory):
    return TransactionBoundary(SqlAlchemyTransactionManager(session_factory), name="database")


@pytest.fixture
def row_writer(db_boundary):
    return SqlAlchemyItemWriter(db_boundary, to_entity=lambda value: OutputRow(value=value))


def stored_values(session_factory):
    with session_factory() as session:
        return sorted(session.scalars(select(OutputRow.value)))


def test_commit_persists_rows(db_boundary, row_writer, session_factory):
    """Test that writes become visible after commit."""
    def block(status):
        row_writer.apply("a")
        row_writer.apply("b")

    assert db_boundary.run(block) is TransactionOutcome.COMMITTED
    assert stored_values(session_factory) == ["a", "b"]


def test_rollback_discards_rows(db_boundary, row_writer, session_factory):
    """Test that a failed block leaves no rows behind."""
    def block(status):
        row_writer.apply("a")
        current_session(db_boundary).flush()
        raise ValueError("boom")

    with pytest.raises(ValueError):
        db_boundary.run(block)

    assert stored_values(session_factory) == []


def test_savepoint_rollback_keeps_outer_rows(db_boundary, row_writer, session_factory):
    """Test that a failed NESTED block only undoes its own rows."""
    def savepoint(status):
        row_writer.apply("inner")
        current_session(db_boundary).flush()
        raise ValueError("nested failure")

    def outer(status):
        row_writer.apply("outer")
        with pytest.raises(ValueError):
            db_boundary.run(savepoint, Propagation.NESTED)

    assert db_boundary.run(outer) is TransactionOutcome.COMMITTED
    assert stored_values(session_factory) == ["outer"]


def test_savepoint_shares_outer_session(db_boundary):
    """Test that NESTED reuses the session of the enclosing transaction."""
    sessions = []

    def outer(status):
        sessions.append(current_session(db_boundary))
        db_boundary.run(lambda sp: sessions.append(current_session(db_boundary)), Propagation.NESTED)

    db_boundary.run(outer)

    assert sessions[0] is sessions[1]


def test_requires_new_uses_separate_session(db_boundary, row_writer, session_factory):
    """Test that REQUIRES_NEW commits independently of the outer transaction."""
    def inner(status):
        row_writer.apply("independent")

    def outer(status):
        outer_session = current_session(db_boundary)
        db_boundary.run(inner, Propagation.REQUIRES_NEW)
        assert current_session(db_boundary) is outer_session
        row_writer.apply("doomed")
        raise RuntimeError("outer failure")

    with pytest.raises(RuntimeError):
        db_boundary.run(outer)

    assert stored_values(session_factory) == ["independent"]


def test_current_session_requires_transaction(db_boundary):
    """Test that writers cannot run outside a transaction."""
    with pytest.raises(ChunkEngineError):
        current_session(db_boundary)


def test_nested_disabled(session_factory):
    """Test that a manager without savepoints rejects NESTED at setup."""
    boundary = TransactionBoundary(SqlAlchemyTransactionManager(session_factory, supports_nested=False))

    with pytest.raises(TransactionConfigurationError):
        boundary.validate(Propagation.NESTED)


def test_from_settings(test_settings):
    """Test building the manager from DATABASE_URL."""
    manager = SqlAlchemyTransactionManager.from_settings(test_settings)

    handle = manager.begin(Propagation.REQUIRED)
    assert isinstance(handle.session, Session)
    manager.rollback(handle)
    assert manager.supports_nested is True
