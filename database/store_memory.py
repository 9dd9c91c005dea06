"""
InMemoryRowStore — Dict-backed row store for development and testing.

Features:
  - Zero dependencies (no spreadsheet, no network)
  - Full interface compatibility with SheetsRowStore
  - Safe under a single asyncio event loop (no awaits inside mutations)
  - All data lost on process restart

Tables are created on first write; listing an unknown table yields no rows.
"""
from __future__ import annotations

import copy
import structlog
from typing import Any, Sequence

from database.store_base import BaseRowStore, ID_COLUMN, RowNotFound, find_row

logger = structlog.get_logger()


class InMemoryRowStore(BaseRowStore):
    """
    Full-featured in-memory store with the same interface as SheetsRowStore.
    Returns copies of rows so callers never mutate stored state in place.
    """

    def __init__(self):
        self._tables: dict[str, list[dict[str, Any]]] = {}
        self._headers: dict[str, list[str]] = {}
        logger.info("inmemory_row_store_initialized")

    async def list_rows(self, table: str) -> list[dict[str, Any]]:
        return copy.deepcopy(self._tables.get(table, []))

    async def append_rows(self, table: str, records: Sequence[dict[str, Any]]) -> None:
        rows = self._tables.setdefault(table, [])
        for record in records:
            rows.append(dict(record))
        self._touch(table)

    async def update_row(self, table: str, row_id: str, patch: dict[str, Any]) -> None:
        rows = self._tables.get(table, [])
        idx = find_row(rows, row_id)
        if idx is None:
            raise RowNotFound(table, row_id)
        rows[idx].update(patch)
        rows[idx][ID_COLUMN] = row_id
        self._touch(table)

    async def delete_row(self, table: str, row_id: str) -> None:
        rows = self._tables.get(table, [])
        idx = find_row(rows, row_id)
        if idx is None:
            raise RowNotFound(table, row_id)
        del rows[idx]
        self._touch(table)

    async def ensure_table(self, table: str, headers: Sequence[str]) -> bool:
        if table in self._headers:
            return False
        self._headers[table] = list(headers)
        self._tables.setdefault(table, [])
        self._touch(table)
        logger.info("table_created", table=table, backend="memory")
        return True

    async def list_tables(self) -> list[str]:
        return sorted(set(self._tables) | set(self._headers))

    def _touch(self, table: str) -> None:
        """Hook for subclasses that persist a table after each mutation."""
