"""
FileRowStore — JSON file-backed row store with persistence across restarts.

Data layout:
  {data_dir}/
    Schedule.json
    Birthdays.json
    Auth.json

Each file holds ``{"headers": [...], "rows": [...]}``.

Features:
  - Survives process restarts (unlike InMemoryRowStore)
  - No external dependencies (no spreadsheet, no network)
  - Flushes the changed table on every mutation (write-then-rename)
  - Single-process only (no concurrent write safety)

Best for: small deployments, demos, running without Google credentials.
"""
from __future__ import annotations

import json
import structlog
from pathlib import Path
from typing import Any

from database.store_base import StoreUnavailable
from database.store_memory import InMemoryRowStore

logger = structlog.get_logger()


class FileRowStore(InMemoryRowStore):
    """
    Extends InMemoryRowStore with JSON file persistence.

    On init: loads every ``*.json`` table in ``data_dir`` into memory.
    On every write: flushes the changed table to disk.
    """

    def __init__(self, data_dir: str = "./data"):
        super().__init__()
        self._data_dir = Path(data_dir)
        self._data_dir.mkdir(parents=True, exist_ok=True)
        self._load_all()
        logger.info("file_row_store_initialized", data_dir=str(self._data_dir))

    # ── Load / Save ───────────────────────────────────────

    def _file_path(self, table: str) -> Path:
        return self._data_dir / f"{table}.json"

    def _load_all(self):
        """Load all tables from disk."""
        for path in sorted(self._data_dir.glob("*.json")):
            table = path.stem
            try:
                with open(path, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("file_store_load_error", table=table, error=str(e))
                continue
            self._set_table(table, data)

    def _set_table(self, table: str, data: Any):
        if isinstance(data, dict):
            self._tables[table] = list(data.get("rows") or [])
            if data.get("headers"):
                self._headers[table] = list(data["headers"])
        elif isinstance(data, list):
            self._tables[table] = data
        logger.debug("file_store_loaded", table=table, records=len(self._tables.get(table, [])))

    def _flush_table(self, table: str):
        """Write a single table to disk."""
        path = self._file_path(table)
        data = {
            "headers": self._headers.get(table, []),
            "rows": self._tables.get(table, []),
        }
        tmp_path = path.with_suffix(".tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False, default=str)
            tmp_path.replace(path)  # atomic on POSIX
        except OSError as e:
            raise StoreUnavailable(f"Failed to write {path}: {e}", table) from e

    def _touch(self, table: str) -> None:
        self._flush_table(table)
