"""
Transaction boundary and resource managers.

- boundary.py: TransactionBoundary (propagation rules, synchronizations)
- managers.py: TransactionManager interface, ResourcelessTransactionManager
- sqlalchemy_manager.py: SqlAlchemyTransactionManager (Session + SAVEPOINT)
"""

from chunk_engine.transaction.boundary import TransactionBoundary, TransactionStatus
from chunk_engine.transaction.managers import (
    ResourcelessTransaction,
    ResourcelessTransactionManager,
    TransactionManager,
)
from chunk_engine.transaction.sqlalchemy_manager import (
    SqlAlchemyItemWriter,
    SqlAlchemyTransaction,
    SqlAlchemyTransactionManager,
    current_session,
)

__all__ = [
    "TransactionBoundary",
    "TransactionStatus",
    "TransactionManager",
    "ResourcelessTransaction",
    "ResourcelessTransactionManager",
    "SqlAlchemyItemWriter",
    "SqlAlchemyTransaction",
    "SqlAlchemyTransactionManager",
    "current_session",
]
