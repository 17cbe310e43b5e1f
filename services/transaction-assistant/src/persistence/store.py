"""Transaction store interface and the in-memory implementation."""

from __future__ import annotations

import copy
import itertools
from collections.abc import Mapping, Sequence
from typing import Any, Protocol

TRANSACTIONS_TABLE = "transactions"
BUDGET_FOLDERS_TABLE = "budget_folders"
RECURRING_RULES_TABLE = "recurring_rules"

KNOWN_TABLES = (TRANSACTIONS_TABLE, BUDGET_FOLDERS_TABLE, RECURRING_RULES_TABLE)

Row = dict[str, Any]


class PersistenceError(RuntimeError):
    """Raised when the backing store rejects or cannot serve a request."""


class TransactionStore(Protocol):
    """CRUD surface the assistant needs from its persistence collaborator."""

    async def select(
        self,
        table: str,
        *,
        filters: Mapping[str, Any] | None = None,
        columns: Sequence[str] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Row]: ...

    async def insert(self, table: str, row: Mapping[str, Any]) -> Row: ...

    async def update(self, table: str, values: Mapping[str, Any], *, filters: Mapping[str, Any]) -> list[Row]: ...


class InMemoryTransactionStore:
    """Dictionary-backed store used by tests and local runs without a backend."""

    def __init__(self, seed: Mapping[str, Sequence[Mapping[str, Any]]] | None = None):
        self._tables: dict[str, list[Row]] = {table: [] for table in KNOWN_TABLES}
        self._ids = itertools.count(1)
        for table, rows in (seed or {}).items():
            for row in rows:
                self._store_row(table, row)

    async def select(
        self,
        table: str,
        *,
        filters: Mapping[str, Any] | None = None,
        columns: Sequence[str] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Row]:
        rows = [row for row in self._table(table) if _matches(row, filters)]
        if order_by:
            rows.sort(key=lambda row: (row.get(order_by) is None, row.get(order_by) or ""), reverse=descending)
        if limit is not None:
            rows = rows[: max(0, limit)]
        if columns:
            return [{column: row.get(column) for column in columns} for row in rows]
        return [copy.deepcopy(row) for row in rows]

    async def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        return copy.deepcopy(self._store_row(table, row))

    async def update(self, table: str, values: Mapping[str, Any], *, filters: Mapping[str, Any]) -> list[Row]:
        if not filters:
            raise PersistenceError("Refusing to update without filters")
        updated = []
        for row in self._table(table):
            if _matches(row, filters):
                row.update(values)
                updated.append(copy.deepcopy(row))
        return updated

    def rows(self, table: str) -> list[Row]:
        return copy.deepcopy(self._table(table))

    def _store_row(self, table: str, row: Mapping[str, Any]) -> Row:
        stored = dict(row)
        stored.setdefault("id", str(next(self._ids)))
        self._table(table).append(stored)
        return stored

    def _table(self, table: str) -> list[Row]:
        if table not in self._tables:
            raise PersistenceError(f"Unknown table: {table}")
        return self._tables[table]


def _matches(row: Mapping[str, Any], filters: Mapping[str, Any] | None) -> bool:
    return all(row.get(key) == value for key, value in (filters or {}).items())
