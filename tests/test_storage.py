import asyncio

import pytest

from mediacache.config import CacheSettings
from mediacache.database import close_db, create_engine, create_session_factory, init_db, session_scope
from mediacache.errors import StorageError
from mediacache.models import KeyValueEntry
from mediacache.services.content_cache_service import ContentListingCache
from mediacache.schemas import RowItem
from mediacache.services.storage_service import FileKeyValueStore, SqliteKeyValueStore, create_store


def test_sqlite_store_round_trip_and_upsert(tmp_path):
    store = SqliteKeyValueStore(str(tmp_path / "cache.db"))

    async def scenario():
        try:
            assert await store.get("missing") is None
            await store.set("key", "first")
            await store.set("key", "second")
            return await store.get("key")
        finally:
            await store.close()

    assert asyncio.run(scenario()) == "second"


def test_session_scope_commits_or_rolls_back(tmp_path):
    engine = create_engine(str(tmp_path / "scope.db"))
    session_factory = create_session_factory(engine)

    async def scenario():
        try:
            await init_db(engine)
            async with session_scope(session_factory) as session:
                session.add(KeyValueEntry(key="kept", value="1"))

            with pytest.raises(RuntimeError):
                async with session_scope(session_factory) as session:
                    session.add(KeyValueEntry(key="dropped", value="2"))
                    await session.flush()
                    raise RuntimeError("boom")

            async with session_scope(session_factory) as session:
                return {
                    "kept": await session.get(KeyValueEntry, "kept"),
                    "dropped": await session.get(KeyValueEntry, "dropped"),
                }
        finally:
            await close_db(engine)

    rows = asyncio.run(scenario())

    assert rows["kept"].value == "1"
    assert rows["dropped"] is None


def test_file_store_round_trip(tmp_path):
    store = FileKeyValueStore(tmp_path / "kv")

    async def scenario():
        assert await store.get("home_content_cache_v1") is None
        await store.set("home_content_cache_v1", '{"version": 1}')
        return await store.get("home_content_cache_v1")

    assert asyncio.run(scenario()) == '{"version": 1}'
    assert (tmp_path / "kv" / "home_content_cache_v1.json").exists()
    assert not list((tmp_path / "kv").glob("*.tmp"))


def test_file_store_sanitizes_key(tmp_path):
    store = FileKeyValueStore(tmp_path)
    asyncio.run(store.set("../escape/key", "value"))
    assert (tmp_path / ".._escape_key.json").exists()


def test_file_store_write_failure_raises_storage_error(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("file in the way")
    store = FileKeyValueStore(blocker)

    with pytest.raises(StorageError):
        asyncio.run(store.set("key", "value"))


def test_create_store_picks_backend(tmp_path):
    file_settings = CacheSettings(storage_backend="file", storage_path=str(tmp_path / "dir"))
    sqlite_settings = CacheSettings(storage_backend="sqlite", storage_path=str(tmp_path / "db.sqlite"))

    assert isinstance(create_store(file_settings), FileKeyValueStore)
    sqlite_store = create_store(sqlite_settings)
    assert isinstance(sqlite_store, SqliteKeyValueStore)
    asyncio.run(sqlite_store.close())


def test_listing_cache_survives_restart_with_sqlite(tmp_path, clock):
    path = str(tmp_path / "cache.db")
    items = [RowItem(id="1", source="douban", title="Kept")]

    async def first_run():
        store = SqliteKeyValueStore(path)
        cache = ContentListingCache(store, clock=clock)
        cache.write("movie-Hot-", cache.create_entry("movie", items, True))
        await cache.flush()
        await store.close()

    async def second_run():
        store = SqliteKeyValueStore(path)
        cache = ContentListingCache(store, clock=clock)
        await cache.hydrate()
        entry = cache.read("movie-Hot-")
        await store.close()
        return entry

    asyncio.run(first_run())
    entry = asyncio.run(second_run())

    assert entry is not None
    assert entry.data[0].title == "Kept"
    assert entry.has_more is True
