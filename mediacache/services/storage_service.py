"""
Persisted key-value stores

Asynchronous string stores backing the content listing cache. Both
implementations raise StorageError on failure; callers decide whether to
swallow it.
"""
import asyncio
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

import aiofiles
import aiofiles.os
from sqlalchemy import select
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.exc import SQLAlchemyError

from mediacache.config import CacheSettings
from mediacache.database import close_db, create_engine, create_session_factory, init_db, session_scope
from mediacache.errors import StorageError
from mediacache.models import KeyValueEntry


logger = logging.getLogger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class KeyValueStore(Protocol):
    """Asynchronous string key-value store."""

    async def get(self, key: str) -> str | None:
        ...

    async def set(self, key: str, value: str) -> None:
        ...

    async def close(self) -> None:
        ...


class SqliteKeyValueStore:
    """Key-value store kept in a single SQLite table."""

    def __init__(self, database_path: str):
        self._database_path = database_path
        self._engine = create_engine(database_path)
        self._session_factory = create_session_factory(self._engine)
        self._init_lock = asyncio.Lock()
        self._initialized = False

    async def _ensure_initialized(self) -> None:
        if self._initialized:
            return
        async with self._init_lock:
            if not self._initialized:
                await init_db(self._engine)
                self._initialized = True

    async def get(self, key: str) -> str | None:
        """
        Read a value.

        Raises:
            StorageError: If the database cannot be read
        """
        try:
            await self._ensure_initialized()
            async with session_scope(self._session_factory) as session:
                result = await session.execute(
                    select(KeyValueEntry.value).where(KeyValueEntry.key == key)
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to read '{key}' from {self._database_path}: {exc}") from exc

    async def set(self, key: str, value: str) -> None:
        """
        Insert or replace a value.

        Raises:
            StorageError: If the database cannot be written
        """
        stmt = insert(KeyValueEntry).values(key=key, value=value)
        stmt = stmt.on_conflict_do_update(
            index_elements=[KeyValueEntry.key],
            set_={"value": stmt.excluded.value, "updated_at": datetime.now(timezone.utc)},
        )
        try:
            await self._ensure_initialized()
            async with session_scope(self._session_factory) as session:
                await session.execute(stmt)
        except SQLAlchemyError as exc:
            raise StorageError(f"Failed to write '{key}' to {self._database_path}: {exc}") from exc

        logger.debug("Stored %s (%s bytes)", key, len(value))

    async def close(self) -> None:
        await close_db(self._engine)


class FileKeyValueStore:
    """Key-value store keeping one file per key inside a directory."""

    def __init__(self, directory: str | Path):
        self._directory = Path(directory)

    def _path_for(self, key: str) -> Path:
        return self._directory / f"{_UNSAFE_KEY_CHARS.sub('_', key)}.json"

    async def get(self, key: str) -> str | None:
        """
        Read a value, or None if it was never written.

        Raises:
            StorageError: If the file exists but cannot be read
        """
        path = self._path_for(key)
        if not await aiofiles.os.path.exists(path):
            return None
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                return await f.read()
        except (OSError, UnicodeDecodeError) as exc:
            raise StorageError(f"Failed to read {path}: {exc}") from exc

    async def set(self, key: str, value: str) -> None:
        """
        Write a value atomically (temporary file then rename).

        Raises:
            StorageError: If the file cannot be written
        """
        path = self._path_for(key)
        temp_path = path.with_suffix(".tmp")
        try:
            await aiofiles.os.makedirs(self._directory, exist_ok=True)
            async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
                await f.write(value)
            await aiofiles.os.replace(temp_path, path)
        except OSError as exc:
            raise StorageError(f"Failed to write {path}: {exc}") from exc

        logger.debug("Stored %s (%s bytes) in %s", key, len(value), path)

    async def close(self) -> None:
        return None


def create_store(settings: CacheSettings) -> KeyValueStore:
    """Build the configured key-value store backend"""
    if settings.storage_backend == "file":
        logger.info("Using file key-value store at %s", settings.storage_path)
        return FileKeyValueStore(settings.storage_path)

    logger.info("Using SQLite key-value store at %s", settings.storage_path)
    return SqliteKeyValueStore(settings.storage_path)
