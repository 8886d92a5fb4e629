#!/usr/bin/env python3
"""Utility script to inspect or clear the listing state database."""
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from mtm_listings.config import STATE_DB
from mtm_listings.errors import ConfirmationRequired
from mtm_listings.logging_conf import setup_logging
from mtm_listings.store.listing_store import ListingStore
from mtm_listings.store.staging import StagingArea
from mtm_listings.store.storage import SqliteStorage


async def show_stats() -> None:
    """Show statistics about the listing store."""
    storage = SqliteStorage(STATE_DB)
    store = ListingStore(storage)
    staging = StagingArea(storage)
    await store.initialize()
    await staging.initialize()

    stats = store.stats()
    print(f"State database: {STATE_DB}")
    print(f"Total listings: {stats['total']}")
    print(f"Pending: {stats['pending']}  Approved: {stats['approved']}  Exported: {stats['exported']}")
    print(f"Today: {stats['todayProcessed']} processed, {stats['todayApproved']} approved")
    print(f"Staged images: {len(staging.images)}")


async def clear_all(confirmed: bool) -> None:
    """Delete every listing and the staged batch. SKU counter is kept."""
    storage = SqliteStorage(STATE_DB)
    store = ListingStore(storage)
    staging = StagingArea(storage)
    await store.initialize()
    await staging.initialize()

    count = await store.clear_all(confirmed=confirmed)
    await staging.clear()
    print(f"Deleted {count} listings and cleared the staged batch")


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage:")
        print("  python scripts/clear_data.py stats        # Show statistics")
        print("  python scripts/clear_data.py clear-all    # Delete all listings and staged photos")
        sys.exit(1)

    setup_logging()
    command = sys.argv[1]

    if command == "stats":
        asyncio.run(show_stats())
    elif command == "clear-all":
        confirm = input("Are you sure you want to delete ALL listings? (yes/no): ")
        try:
            asyncio.run(clear_all(confirm.lower() == "yes"))
        except ConfirmationRequired:
            print("Cancelled")
    else:
        print(f"Unknown command: {command}")
        sys.exit(1)
