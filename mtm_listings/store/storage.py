"""Key/value persistence backends for listing state."""
import copy
import logging
from pathlib import Path
from typing import Any, Mapping, Optional, Protocol

import aiosqlite
import orjson

from mtm_listings.config import STATE_DB
from mtm_listings.errors import StorageError

logger = logging.getLogger(__name__)

# Keys mirror the browser client's localStorage layout
LISTINGS_KEY = "mtm-listings"
IMAGES_KEY = "mtm-uploaded-images"
SKU_COUNTER_KEY = "mtm-sku-counter"
ANALYSIS_KEY = "mtm-last-analysis"
DRAFT_KEY = "mtm-current-draft"


class KeyValueStorage(Protocol):
    """Durable storage contract used by the record store and staging area."""

    async def initialize(self) -> None: ...

    async def get(self, key: str) -> Optional[Any]: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def set_many(self, values: Mapping[str, Any]) -> None: ...

    async def delete(self, *keys: str) -> None: ...


class SqliteStorage:
    """SQLite-backed key/value store. Each call is one transaction."""

    def __init__(self, db_path: Path = STATE_DB):
        self.db_path = Path(db_path)

    async def initialize(self) -> None:
        """Create the table if it doesn't exist."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    """
                    CREATE TABLE IF NOT EXISTS kv (
                        key TEXT PRIMARY KEY,
                        value BLOB NOT NULL,
                        updated_at TIMESTAMP
                    )
                    """
                )
                await db.commit()
        except (aiosqlite.Error, OSError) as e:
            raise StorageError(f"Could not initialize {self.db_path}: {e}") from e
        logger.info(f"State database initialized at {self.db_path}")

    async def get(self, key: str) -> Optional[Any]:
        try:
            async with aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute("SELECT value FROM kv WHERE key = ?", (key,))
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise StorageError(f"Read of {key} failed: {e}") from e
        if row is None:
            return None
        try:
            return orjson.loads(row[0])
        except orjson.JSONDecodeError as e:
            raise StorageError(f"Stored value for {key} is corrupt: {e}") from e

    async def set(self, key: str, value: Any) -> None:
        await self.set_many({key: value})

    async def set_many(self, values: Mapping[str, Any]) -> None:
        """Write several keys atomically."""
        try:
            rows = [(key, orjson.dumps(value)) for key, value in values.items()]
        except TypeError as e:
            raise StorageError(f"Value is not serializable: {e}") from e
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.executemany(
                    """
                    INSERT OR REPLACE INTO kv (key, value, updated_at)
                    VALUES (?, ?, datetime('now'))
                    """,
                    rows,
                )
                await db.commit()
        except aiosqlite.Error as e:
            raise StorageError(f"Write of {', '.join(values)} failed: {e}") from e

    async def delete(self, *keys: str) -> None:
        if not keys:
            return
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.executemany("DELETE FROM kv WHERE key = ?", [(key,) for key in keys])
                await db.commit()
        except aiosqlite.Error as e:
            raise StorageError(f"Delete of {', '.join(keys)} failed: {e}") from e


class MemoryStorage:
    """In-process backend for tests and throwaway sessions."""

    def __init__(self, initial: Optional[Mapping[str, Any]] = None, fail_writes: bool = False):
        self.data: dict[str, Any] = copy.deepcopy(dict(initial or {}))
        self.fail_writes = fail_writes
        self.write_count = 0

    async def initialize(self) -> None:
        return None

    async def get(self, key: str) -> Optional[Any]:
        return copy.deepcopy(self.data.get(key))

    async def set(self, key: str, value: Any) -> None:
        await self.set_many({key: value})

    async def set_many(self, values: Mapping[str, Any]) -> None:
        if self.fail_writes:
            raise StorageError("Storage is unavailable")
        # Round-trip through orjson so non-serializable values fail here too
        try:
            encoded = {key: orjson.loads(orjson.dumps(value)) for key, value in values.items()}
        except TypeError as e:
            raise StorageError(f"Value is not serializable: {e}") from e
        self.data.update(encoded)
        self.write_count += 1

    async def delete(self, *keys: str) -> None:
        if self.fail_writes:
            raise StorageError("Storage is unavailable")
        for key in keys:
            self.data.pop(key, None)
        self.write_count += 1
