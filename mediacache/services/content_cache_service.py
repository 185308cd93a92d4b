"""
Content Listing Cache

Bounded, TTL-expiring cache of paginated content rows, persisted to a
key-value store with debounced writes and rehydrated at startup.
This cache is an accelerator only: storage failures are logged and ignored.
"""
import asyncio
import logging
from dataclasses import replace
from typing import Any, Sequence

from pydantic import ValidationError

from mediacache.schemas import (
    Category,
    ContentType,
    HOME_CACHE_VERSION,
    PersistedCacheEntry,
    PersistedCachePayload,
    RowItem,
)
from mediacache.services.cache_types import CacheItem, Clock, epoch_ms
from mediacache.services.storage_service import KeyValueStore
from mediacache.utils.logging_helpers import log_cache_event

logger = logging.getLogger(__name__)


def build_category_cache_key(category: Category) -> str:
    """
    Build the cache key of a category

    Active filters are sorted by name so the same filter set always maps to
    the same key.

    Args:
        category: Category requested by a listing screen

    Returns:
        Composite key of type, title, tag and filters
    """
    key = f"{category.type or 'unknown'}-{category.title}-{category.tag or ''}"
    if category.active_filters:
        filter_part = "|".join(
            f"{name}:{value}" for name, value in sorted(category.active_filters.items())
        )
        key += f"-{filter_part}"
    return key


class ContentListingCache:
    """
    In-memory cache of content rows keyed by an opaque composite key.

    Expiry is lazy: entries are dropped when examined, and every write first
    sweeps all expired entries. Overflow evicts by insertion order, not by
    access recency.
    """

    def __init__(
        self,
        store: KeyValueStore | None = None,
        *,
        expire_ms: int = 5 * 60 * 1000,
        max_size: int = 10,
        max_items: int = 40,
        storage_key: str = "home_content_cache_v1",
        persist_debounce_ms: int = 150,
        clock: Clock = epoch_ms,
    ):
        self._store = store
        self._expire_ms = expire_ms
        self._max_size = max_size
        self._max_items = max_items
        self._storage_key = storage_key
        self._debounce_sec = persist_debounce_ms / 1000
        self._clock = clock

        self._entries: dict[str, CacheItem] = {}
        self._flush_handle: asyncio.TimerHandle | None = None
        self._flush_task: asyncio.Task | None = None
        self._persist_lock = asyncio.Lock()
        self._dirty = False
        self._hydration_task: asyncio.Task | None = None
        self._hydrated = False

    @property
    def is_hydrated(self) -> bool:
        return self._hydrated

    @property
    def flush_pending(self) -> bool:
        return self._flush_handle is not None

    def is_valid(self, entry: CacheItem) -> bool:
        return self._clock() - entry.timestamp < self._expire_ms

    def read(self, key: str) -> CacheItem | None:
        """Return the live entry at key, dropping it if expired"""
        entry = self._entries.get(key)
        if entry is None:
            log_cache_event(logger, "content", "miss", key)
            return None

        if not self.is_valid(entry):
            log_cache_event(logger, "content", "expired", key)
            del self._entries[key]
            return None

        log_cache_event(logger, "content", "hit", key)
        return entry

    def create_entry(self, type: ContentType, items: Sequence[RowItem], has_more: bool) -> CacheItem:
        """Build a fresh entry, keeping at most max_items leading items"""
        return CacheItem(
            data=list(items[:self._max_items]),
            timestamp=self._clock(),
            type=type,
            has_more=has_more,
        )

    def write(self, key: str, entry: CacheItem) -> None:
        """
        Insert or replace the entry at key

        Sweeps expired entries, moves key to the newest insertion position,
        evicts oldest-inserted keys while at capacity, then schedules a
        debounced persist.
        """
        if len(entry.data) > self._max_items:
            entry = replace(entry, data=entry.data[:self._max_items])

        self._prune_expired()
        self._entries.pop(key, None)
        self._evict_for_insert()
        self._entries[key] = entry
        self._schedule_persist()

    def append(
        self,
        key: str,
        type: ContentType,
        items: Sequence[RowItem],
        has_more: bool,
    ) -> CacheItem:
        """
        Append a further page after the live entry at key

        The merged list is rebuilt with the given type through create_entry,
        so once the cap is reached the newly appended items are the ones
        dropped.

        Returns:
            The entry written
        """
        existing = self.read(key)
        merged = [*existing.data, *items] if existing else list(items)
        entry = self.create_entry(type, merged, has_more)
        self.write(key, entry)
        return entry

    def keys(self) -> list[str]:
        """Keys in insertion order, oldest first (expired entries included)"""
        return list(self._entries)

    def clear(self) -> int:
        """
        Drop every in-memory entry

        Any pending persist is cancelled so the stored copy survives for a
        later hydrate(); the hydrated flag is reset to allow that.

        Returns:
            Number of entries dropped
        """
        count = len(self._entries)
        self._entries.clear()
        self._cancel_pending_flush()
        self._dirty = False
        self._hydrated = False
        return count

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.read(key) is not None

    async def hydrate(self) -> None:
        """
        Load persisted entries into memory

        Idempotent; concurrent callers share one hydration and storage is
        read exactly once. Absent, malformed or version-mismatched payloads
        leave memory untouched.
        """
        if self._hydrated:
            return

        task = self._hydration_task
        if task is None:
            task = asyncio.ensure_future(self._hydrate_from_store())
            self._hydration_task = task

        await asyncio.shield(task)

    async def flush(self) -> None:
        """Persist immediately instead of waiting for the debounce timer"""
        running = self._flush_task
        if running is not None and not running.done():
            await running

        self._cancel_pending_flush()
        if self._dirty:
            await self._persist()

    async def _hydrate_from_store(self) -> None:
        try:
            if self._store is None:
                return

            try:
                stored = await self._store.get(self._storage_key)
            except Exception as exc:
                logger.warning("Failed to read persisted content cache: %s", exc)
                return

            if not stored:
                logger.debug("No persisted content cache found")
                return

            payload = self._decode_payload(stored)
            if payload is None:
                return

            restored: dict[str, CacheItem] = {}
            for raw_entry in payload.entries:
                sanitized = self._sanitize_entry(raw_entry)
                if sanitized is None:
                    continue
                key, entry = sanitized
                if not self.is_valid(entry) or key in self._entries:
                    continue
                restored.pop(key, None)
                restored[key] = entry

            # Restored entries predate anything written since startup
            live = self._entries
            self._entries = {**restored, **live}
            self._prune_expired()
            while len(self._entries) > self._max_size:
                del self._entries[next(iter(self._entries))]
            admitted = sum(1 for key in restored if key in self._entries)

            self._schedule_persist()
            logger.info(
                "Hydrated %s of %s persisted content cache entries",
                admitted,
                len(payload.entries),
            )
        finally:
            self._hydration_task = None
            self._hydrated = True

    def _decode_payload(self, stored: str) -> PersistedCachePayload | None:
        try:
            payload = PersistedCachePayload.model_validate_json(stored)
        except ValidationError as exc:
            logger.warning("Discarding malformed content cache payload: %s", exc.errors()[:1])
            return None

        if payload.version != HOME_CACHE_VERSION:
            logger.info(
                "Discarding content cache payload with schema version %s (expected %s)",
                payload.version,
                HOME_CACHE_VERSION,
            )
            return None

        return payload

    def _sanitize_entry(self, raw_entry: Any) -> tuple[str, CacheItem] | None:
        try:
            persisted = PersistedCacheEntry.model_validate(raw_entry)
        except ValidationError:
            logger.debug("Skipping malformed persisted content cache entry")
            return None

        return persisted.key, CacheItem(
            data=persisted.data[:self._max_items],
            timestamp=persisted.timestamp,
            type=persisted.type,
            has_more=persisted.has_more,
        )

    def _prune_expired(self) -> int:
        expired = [key for key, entry in self._entries.items() if not self.is_valid(entry)]
        for key in expired:
            del self._entries[key]
            log_cache_event(logger, "content", "expired", key)
        return len(expired)

    def _evict_for_insert(self) -> None:
        while self._entries and len(self._entries) >= self._max_size:
            oldest_key = next(iter(self._entries))
            del self._entries[oldest_key]
            log_cache_event(logger, "content", "evicted", oldest_key)

    def _snapshot(self) -> str:
        payload = PersistedCachePayload(
            version=HOME_CACHE_VERSION,
            entries=[
                PersistedCacheEntry(
                    key=key,
                    data=entry.data,
                    timestamp=entry.timestamp,
                    type=entry.type,
                    has_more=entry.has_more,
                ).model_dump(mode="json", by_alias=True)
                for key, entry in self._entries.items()
            ],
        )
        return payload.model_dump_json()

    def _schedule_persist(self) -> None:
        if self._store is None:
            return

        self._dirty = True
        self._cancel_pending_flush()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; content cache persist deferred until flush()")
            return

        self._flush_handle = loop.call_later(self._debounce_sec, self._start_flush)

    def _cancel_pending_flush(self) -> None:
        if self._flush_handle is not None:
            self._flush_handle.cancel()
            self._flush_handle = None

    def _start_flush(self) -> None:
        self._flush_handle = None
        self._flush_task = asyncio.ensure_future(self._persist())

    async def _persist(self) -> None:
        if self._store is None:
            return

        async with self._persist_lock:
            payload = self._snapshot()
            self._dirty = False
            try:
                await self._store.set(self._storage_key, payload)
            except Exception as exc:
                logger.warning("Failed to persist content cache: %s", exc)
                return

        logger.debug("Persisted %s content cache entries", len(self._entries))
