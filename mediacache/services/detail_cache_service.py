"""
Detail Aggregate Cache

Bounded in-memory cache of fully resolved title details keyed by the search
query used to look the title up.
"""
import copy
import logging
from typing import Sequence

from mediacache.schemas import SearchResultWithResolution, SourceInfo
from mediacache.services.cache_types import Clock, DetailCacheEntry, epoch_ms
from mediacache.utils.logging_helpers import log_cache_event


logger = logging.getLogger(__name__)


class DetailAggregateCache:
    """
    TTL cache of detail aggregates.

    Entries are stored as deep copies, so callers cannot mutate cached state
    through references they still hold. Overflow evicts exactly one entry:
    the one with the smallest timestamp.
    """

    def __init__(
        self,
        *,
        ttl_ms: int = 10 * 60 * 1000,
        max_entries: int = 8,
        clock: Clock = epoch_ms,
    ):
        self._ttl_ms = ttl_ms
        self._max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, DetailCacheEntry] = {}

    def read(self, key: str) -> DetailCacheEntry | None:
        """Return the live entry at key, dropping it if expired"""
        entry = self._entries.get(key)
        if entry is None:
            log_cache_event(logger, "detail", "miss", key)
            return None

        if self._clock() - entry.timestamp > self._ttl_ms:
            log_cache_event(logger, "detail", "expired", key)
            del self._entries[key]
            return None

        log_cache_event(logger, "detail", "hit", key)
        return entry

    def build_entry(
        self,
        detail: SearchResultWithResolution | None,
        search_results: Sequence[SearchResultWithResolution],
        sources: Sequence[SourceInfo],
        all_sources_loaded: bool,
    ) -> DetailCacheEntry:
        """Build an independent copy of a detail aggregate without storing it"""
        return DetailCacheEntry(
            timestamp=self._clock(),
            detail=copy.deepcopy(detail),
            search_results=copy.deepcopy(list(search_results)),
            sources=copy.deepcopy(list(sources)),
            all_sources_loaded=all_sources_loaded,
        )

    def write(
        self,
        key: str,
        detail: SearchResultWithResolution | None,
        search_results: Sequence[SearchResultWithResolution],
        sources: Sequence[SourceInfo],
        all_sources_loaded: bool,
    ) -> DetailCacheEntry:
        """
        Store an independent copy of a detail aggregate

        Returns:
            The stored entry
        """
        entry = self.build_entry(detail, search_results, sources, all_sources_loaded)
        self._entries[key] = entry

        if len(self._entries) > self._max_entries:
            self._evict_oldest()

        return entry

    def clear(self) -> int:
        """Drop every entry and return how many were dropped"""
        count = len(self._entries)
        self._entries.clear()
        return count

    def __len__(self) -> int:
        return len(self._entries)

    def _evict_oldest(self) -> None:
        oldest_key: str | None = None
        oldest_timestamp = float("inf")
        for key, entry in self._entries.items():
            if entry.timestamp < oldest_timestamp:
                oldest_timestamp = entry.timestamp
                oldest_key = key

        if oldest_key is not None:
            del self._entries[oldest_key]
            log_cache_event(logger, "detail", "evicted", oldest_key)
