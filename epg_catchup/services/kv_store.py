"""
Persistent key-value stores

The cache layer only needs get/set/remove on opaque string keys. Stores have an
explicit open/close lifecycle and are passed to the cache by the caller.
"""
import logging
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable

from sqlalchemy import delete, select, text

from epg_catchup.database import CacheDatabase
from epg_catchup.models import CacheEntryRow


logger = logging.getLogger(__name__)


@runtime_checkable
class KeyValueStore(Protocol):
    async def open(self) -> None: ...

    async def close(self) -> None: ...

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def remove(self, key: str) -> None: ...


class MemoryKeyValueStore:
    """Process-local store, used when persistence is disabled and in tests."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    async def open(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def __len__(self) -> int:
        return len(self._data)


class SqliteKeyValueStore:
    """Key-value store persisted in the SQLite cache database."""

    def __init__(self, database: CacheDatabase | str) -> None:
        self.database = database if isinstance(database, CacheDatabase) else CacheDatabase(database)

    async def open(self) -> None:
        await self.database.init()

    async def close(self) -> None:
        await self.database.close()

    async def get(self, key: str) -> str | None:
        async with self.database.session_scope() as session:
            result = await session.execute(
                select(CacheEntryRow.value).where(CacheEntryRow.key == key)
            )
            return result.scalar_one_or_none()

    async def set(self, key: str, value: str) -> None:
        upsert_stmt = text(
            """
            INSERT INTO cache_entries (key, value, updated_at)
            VALUES (:key, :value, :updated_at)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                updated_at = excluded.updated_at
            """
        )
        async with self.database.session_scope() as session:
            await session.execute(
                upsert_stmt,
                {"key": key, "value": value, "updated_at": datetime.now(timezone.utc)},
            )
        logger.debug("Stored cache entry %s (%s bytes)", key, len(value))

    async def remove(self, key: str) -> None:
        async with self.database.session_scope() as session:
            await session.execute(delete(CacheEntryRow).where(CacheEntryRow.key == key))
        logger.debug("Removed cache entry %s", key)
