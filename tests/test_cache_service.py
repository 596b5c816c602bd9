"""
Tests for EPG cache persistence.
"""
from datetime import datetime, timezone

import pytest

from conftest import SAMPLE_XMLTV, SOURCE_URL
from epg_catchup.services.cache_service import (
    CACHE_KEY_PREFIX,
    EpgCacheStore,
    source_key,
)
from epg_catchup.services.kv_store import MemoryKeyValueStore, SqliteKeyValueStore
from epg_catchup.services.xmltv_parser_service import parse_xmltv


class BrokenStore(MemoryKeyValueStore):
    """Store whose every operation fails."""

    async def get(self, key):
        raise OSError("disk unavailable")

    async def set(self, key, value):
        raise OSError("disk full")

    async def remove(self, key):
        raise OSError("disk unavailable")


@pytest.fixture
async def epg_data():
    return await parse_xmltv(SAMPLE_XMLTV)


class TestSourceKey:
    """Test cache key derivation."""

    def test_key_is_stable_and_prefixed(self):
        assert source_key(SOURCE_URL) == source_key(SOURCE_URL)
        assert source_key(SOURCE_URL).startswith(CACHE_KEY_PREFIX)

    def test_distinct_urls_get_distinct_keys(self):
        assert source_key(SOURCE_URL) != source_key(SOURCE_URL + "?v=2")


class TestMemoryCache:
    """Test cache behaviour on the in-memory store."""

    async def test_round_trip(self, epg_data):
        cache = EpgCacheStore(MemoryKeyValueStore())
        written_at = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        key = source_key(SOURCE_URL)

        assert await cache.save(key, epg_data, written_at) is True
        cached = await cache.load(key)

        assert cached.written_at == written_at
        assert cached.data.programs == epg_data.programs
        assert list(cached.data.channels) == list(epg_data.channels)
        assert cached.data.channels["BBC1.uk"] == epg_data.channels["BBC1.uk"]

    async def test_channel_programmes_share_flat_list_objects(self, epg_data):
        cache = EpgCacheStore(MemoryKeyValueStore())
        key = source_key(SOURCE_URL)
        await cache.save(key, epg_data)

        restored = (await cache.load(key)).data
        flat_ids = {id(program) for program in restored.programs}
        for channel in restored.channels.values():
            assert all(id(program) in flat_ids for program in channel.programs)

    async def test_age_hours(self, epg_data):
        cache = EpgCacheStore(MemoryKeyValueStore())
        key = source_key(SOURCE_URL)
        await cache.save(key, epg_data, datetime(2024, 1, 1, 0, 0, tzinfo=timezone.utc))

        cached = await cache.load(key)
        assert cached.age_hours(datetime(2024, 1, 1, 7, 30, tzinfo=timezone.utc)) == 7.5

    async def test_missing_entry(self):
        cache = EpgCacheStore(MemoryKeyValueStore())
        assert await cache.load(source_key(SOURCE_URL)) is None

    async def test_unreadable_entry_is_discarded(self):
        store = MemoryKeyValueStore()
        key = source_key(SOURCE_URL)
        await store.set(key, "{not json")

        cache = EpgCacheStore(store)
        assert await cache.load(key) is None
        assert len(store) == 0

    async def test_dangling_programme_reference_is_discarded(self, epg_data):
        store = MemoryKeyValueStore()
        cache = EpgCacheStore(store)
        key = source_key(SOURCE_URL)
        await cache.save(key, epg_data)

        raw = await store.get(key)
        first_id = epg_data.programs[0].id
        await store.set(key, raw.replace(f'"id":"{first_id}"', '"id":"renamed"', 1))

        assert await cache.load(key) is None

    async def test_clear(self, epg_data):
        cache = EpgCacheStore(MemoryKeyValueStore())
        key = source_key(SOURCE_URL)
        await cache.save(key, epg_data)

        await cache.clear(key)
        assert await cache.load(key) is None


class TestStoreFailures:
    """Storage failures never propagate."""

    async def test_failed_write_returns_false(self, epg_data):
        cache = EpgCacheStore(BrokenStore())
        assert await cache.save(source_key(SOURCE_URL), epg_data) is False

    async def test_failed_read_is_a_miss(self):
        cache = EpgCacheStore(BrokenStore())
        assert await cache.load(source_key(SOURCE_URL)) is None

    async def test_failed_clear_is_logged_only(self):
        cache = EpgCacheStore(BrokenStore())
        await cache.clear(source_key(SOURCE_URL))


class TestSqliteCache:
    """Test the SQLite-backed store."""

    async def test_round_trip_survives_reopen(self, tmp_path, epg_data):
        path = str(tmp_path / "cache.db")
        key = source_key(SOURCE_URL)

        cache = EpgCacheStore(SqliteKeyValueStore(path))
        await cache.open()
        try:
            assert await cache.save(key, epg_data) is True
        finally:
            await cache.close()

        reopened = EpgCacheStore(SqliteKeyValueStore(path))
        await reopened.open()
        try:
            cached = await reopened.load(key)
        finally:
            await reopened.close()

        assert cached is not None
        assert cached.data.programs == epg_data.programs

    async def test_overwrite_and_remove(self, tmp_path):
        store = SqliteKeyValueStore(str(tmp_path / "cache.db"))
        await store.open()
        try:
            await store.set("k", "first")
            await store.set("k", "second")
            assert await store.get("k") == "second"

            await store.remove("k")
            assert await store.get("k") is None
        finally:
            await store.close()

    async def test_unopened_store_is_a_miss(self, tmp_path):
        cache = EpgCacheStore(SqliteKeyValueStore(str(tmp_path / "cache.db")))
        assert await cache.load(source_key(SOURCE_URL)) is None
