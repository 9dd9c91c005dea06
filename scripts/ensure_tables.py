#!/usr/bin/env python3
"""
Table bootstrap — create the Schedule, Birthdays and Auth tables with their
header rows in the configured row store.

Usage:
    # Local:
    python scripts/ensure_tables.py

    # Alternate config file:
    DELIVERY_CONFIG=config/prod.yaml python scripts/ensure_tables.py

    # Check status only (no changes):
    python scripts/ensure_tables.py --check
"""
import asyncio
import os
import sys
import argparse

# Ensure app root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


async def run(check_only: bool = False) -> int:
    from config.settings import load_settings
    settings = load_settings()

    from channels.session import AUTH_COLUMNS
    from database.store_base import StoreError
    from database.store_factory import create_row_store
    from models.schemas import BIRTHDAY_COLUMNS, SCHEDULE_COLUMNS

    tables = {
        settings.store.schedule_table: SCHEDULE_COLUMNS,
        settings.store.birthdays_table: BIRTHDAY_COLUMNS,
        settings.store.auth_table: AUTH_COLUMNS,
    }
    store = create_row_store(settings.store)
    print(f"Backend: {settings.store.backend}")

    try:
        if check_only:
            existing = await store.list_tables()
            print(f"Tables existing: {', '.join(existing) or '(none)'}")
            missing = [t for t in tables if t not in existing]
            if missing:
                print(f"Tables MISSING: {', '.join(missing)}")
                print("Run without --check to create them.")
                return 1
            print("All tables present.")
            return 0

        for table, headers in tables.items():
            created = await store.ensure_table(table, headers)
            print(f"  {table}: {'created' if created else 'exists'}")
        print("Done.")
        return 0
    except StoreError as e:
        print(f"Row store error: {e}", file=sys.stderr)
        return 2
    finally:
        await store.close()


def main():
    parser = argparse.ArgumentParser(description="Create row store tables")
    parser.add_argument("--check", action="store_true", help="Check status only")
    args = parser.parse_args()
    sys.exit(asyncio.run(run(check_only=args.check)))


if __name__ == "__main__":
    main()
