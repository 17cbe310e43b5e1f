"""Persistence primitives for the transaction assistant."""

from persistence.postgrest import PostgrestTransactionStore
from persistence.store import (
    BUDGET_FOLDERS_TABLE,
    RECURRING_RULES_TABLE,
    TRANSACTIONS_TABLE,
    InMemoryTransactionStore,
    PersistenceError,
    TransactionStore,
)

__all__ = [
    "BUDGET_FOLDERS_TABLE",
    "InMemoryTransactionStore",
    "PersistenceError",
    "PostgrestTransactionStore",
    "RECURRING_RULES_TABLE",
    "TRANSACTIONS_TABLE",
    "TransactionStore",
]
