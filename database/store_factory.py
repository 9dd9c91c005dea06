"""
Store Factory — Create the right row store backend from configuration.

Configuration in settings.yaml:
    store:
      # Row store backend — where the Schedule / Birthdays / Auth tables live
      #   "sheets"   — Google Sheets (production)
      #   "memory"   — In-memory dicts (development, testing)
      #   "file"     — JSON files on disk (small deployments, demos)
      backend: "sheets"

      # For file backend: directory path
      file_dir: "./data"

      # For sheets backend
      spreadsheet_id: "${GOOGLE_SHEET_ID}"
      service_account_email: "${GOOGLE_SERVICE_ACCOUNT_EMAIL}"
      private_key: "${GOOGLE_PRIVATE_KEY}"

Usage:
    from database.store_factory import create_row_store, get_row_store
    store = create_row_store(config)     # Create from StoreConfig
    store = get_row_store()              # Get singleton instance
"""
from __future__ import annotations

import structlog
from typing import Optional

from config.settings import StoreConfig
from database.store_base import BaseRowStore

logger = structlog.get_logger()

_instance: Optional[BaseRowStore] = None


def create_row_store(config: StoreConfig = None) -> BaseRowStore:
    """
    Factory: create the appropriate row store backend.

    Args:
        config: StoreConfig; ``backend`` selects "sheets" | "memory" | "file"
            (default: "memory").
    """
    global _instance
    if _instance is not None:
        return _instance

    config = config or StoreConfig()
    backend = config.backend

    if backend == "sheets":
        from database.store_sheets import SheetsRowStore
        _instance = SheetsRowStore(config)
        logger.info("store_created", backend="sheets")

    elif backend == "file":
        from database.store_file import FileRowStore
        _instance = FileRowStore(data_dir=config.file_dir)
        logger.info("store_created", backend="file", data_dir=config.file_dir)

    else:  # "memory" or default
        from database.store_memory import InMemoryRowStore
        _instance = InMemoryRowStore()
        logger.info("store_created", backend="memory")

    return _instance


def get_row_store() -> BaseRowStore:
    """Return the singleton store instance, creating a memory store if none exists."""
    global _instance
    if _instance is None:
        _instance = create_row_store()
    return _instance


def reset_row_store() -> None:
    """Reset the singleton (for testing)."""
    global _instance
    _instance = None
