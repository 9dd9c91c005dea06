"""
Abstract Row Store — Interface for all table storage backends.

Implementations:
  - InMemoryRowStore  (dict-based, single-process, no persistence)
  - FileRowStore      (JSON files on disk, single-process, durable)
  - SheetsRowStore    (Google Sheets, one worksheet per table)

Rows are flat ``{column: value}`` dicts. Row identity is the opaque ``ID``
column; there is no multi-row transaction guarantee, so callers must not
assume a partially failed ``append_rows`` wrote nothing.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

ID_COLUMN = "ID"


class StoreError(Exception):
    """Base exception for all row store operations."""

    def __init__(self, message: str, table: str = ""):
        self.table = table
        super().__init__(message)


class StoreUnavailable(StoreError):
    """The round trip to the backing store could not be completed."""


class RowNotFound(StoreError):
    def __init__(self, table: str, row_id: str):
        self.row_id = row_id
        super().__init__(f"No row with ID {row_id!r} in {table}", table)


class BaseRowStore(ABC):
    """Interface that all row store backends must implement."""

    @abstractmethod
    async def list_rows(self, table: str) -> list[dict[str, Any]]:
        ...

    @abstractmethod
    async def append_rows(self, table: str, records: Sequence[dict[str, Any]]) -> None:
        ...

    @abstractmethod
    async def update_row(self, table: str, row_id: str, patch: dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def delete_row(self, table: str, row_id: str) -> None:
        ...

    @abstractmethod
    async def list_tables(self) -> list[str]:
        ...

    @abstractmethod
    async def ensure_table(self, table: str, headers: Sequence[str]) -> bool:
        """Create ``table`` with ``headers`` if missing. Returns True if created."""
        ...

    async def close(self) -> None:
        pass


def find_row(rows: list[dict[str, Any]], row_id: str) -> Optional[int]:
    for idx, row in enumerate(rows):
        if str(row.get(ID_COLUMN, "")) == str(row_id):
            return idx
    return None
