"""
Database layer — Row store backends and typed table views.

Backends:
  - Google Sheets (production)
  - In-memory (dict-based, for development/testing)
  - File (JSON files on disk, for small deployments)

Quick start:
  from database import create_row_store, JobStore
  rows = create_row_store(settings.store)
  jobs = await JobStore(rows).list_jobs()
"""
from database.store_base import BaseRowStore, StoreError, StoreUnavailable, RowNotFound
from database.store_memory import InMemoryRowStore
from database.store_file import FileRowStore
from database.store_factory import create_row_store, get_row_store, reset_row_store
from database.jobs import JobStore, validate_job
from database.sources import ReminderSourceStore

__all__ = [
    # Store interface
    "BaseRowStore", "StoreError", "StoreUnavailable", "RowNotFound",
    # Store backends
    "InMemoryRowStore", "FileRowStore",
    # Factory
    "create_row_store", "get_row_store", "reset_row_store",
    # Table views
    "JobStore", "validate_job", "ReminderSourceStore",
]
