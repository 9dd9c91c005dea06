"""Read-only view over the Birthdays table."""
from __future__ import annotations

import structlog

from pydantic import ValidationError as RowDecodeError

from database.store_base import BaseRowStore
from models.schemas import BIRTHDAY_COLUMNS, ReminderSource

logger = structlog.get_logger()


class ReminderSourceStore:
    def __init__(self, rows: BaseRowStore, table: str = "Birthdays"):
        self.rows = rows
        self.table = table

    async def ensure_table(self) -> bool:
        return await self.rows.ensure_table(self.table, BIRTHDAY_COLUMNS)

    async def list_sources(self) -> list[ReminderSource]:
        sources = []
        for row in await self.rows.list_rows(self.table):
            try:
                sources.append(ReminderSource.from_row(row))
            except (RowDecodeError, ValueError) as e:
                logger.warning("birthday_row_skipped", row_id=row.get("ID"), error=str(e))
        return sources
