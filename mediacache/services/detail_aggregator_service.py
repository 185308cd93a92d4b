"""
Detail Aggregation Service

Searches a title across several sources concurrently, enriches each hit with
the stream resolution of its first episode, and stores the aggregate in the
detail cache.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Literal, Protocol, Sequence
from urllib.parse import urlencode

from pydantic import ValidationError

from mediacache.errors import NetworkError, ResolutionAborted, ResolutionFetchError
from mediacache.schemas import SearchResult, SearchResultWithResolution, SourceInfo, SourceSearchResponse
from mediacache.services.cache_types import DetailCacheEntry
from mediacache.services.detail_cache_service import DetailAggregateCache
from mediacache.services.resolution_resolver import ResolutionResolver
from mediacache.utils.http_client import TextFetcher


logger = logging.getLogger(__name__)


class SourceSearcher(Protocol):
    """Network collaborator searching one source for a title."""

    async def search(self, query: str, source: str) -> list[SearchResult]:
        ...


class HttpSourceSearcher:
    """Searches a single source through the backend's /api/search/one endpoint."""

    def __init__(self, fetcher: TextFetcher, api_base_url: str):
        self._fetcher = fetcher
        self._api_base_url = api_base_url.rstrip("/")

    async def search(self, query: str, source: str) -> list[SearchResult]:
        url = f"{self._api_base_url}/api/search/one?{urlencode({'q': query, 'resourceId': source})}"
        body = await self._fetcher.fetch_text(url)
        try:
            return SourceSearchResponse.model_validate_json(body).results
        except ValidationError as exc:
            raise NetworkError(url, f"Malformed search response: {exc.errors()[:1]}") from exc


@dataclass(slots=True)
class SourceSearchSummary:
    index: int
    source: str
    status: Literal["success", "failed"]
    results: list[SearchResult] = field(default_factory=list)
    error: str | None = None


@dataclass(slots=True)
class DetailLoadResult:
    entry: DetailCacheEntry
    cached: bool
    failed_sources: list[str] = field(default_factory=list)


class DetailAggregator:
    """Cache-first detail loader fanning out over the configured sources."""

    def __init__(
        self,
        cache: DetailAggregateCache,
        resolver: ResolutionResolver,
        searcher: SourceSearcher,
        sources: Sequence[str],
        *,
        max_concurrency: int | None = None,
    ) -> None:
        self._cache = cache
        self._resolver = resolver
        self._searcher = searcher
        self.sources = [source for source in sources if source]
        self._concurrency = max(1, max_concurrency or min(4, len(self.sources) or 1))
        self._semaphore = asyncio.Semaphore(self._concurrency)

    async def load(
        self,
        query: str,
        *,
        preferred_source: str | None = None,
        signal: asyncio.Event | None = None,
    ) -> DetailLoadResult:
        """
        Load the detail aggregate of a title

        Args:
            query: Title search query, also the cache key
            preferred_source: Source whose result becomes the detail, if present
            signal: Abort signal forwarded to resolution lookups

        Returns:
            The aggregate, whether it came from cache, and the sources that failed
        """
        cached = self._cache.read(query)
        if cached is not None:
            return DetailLoadResult(entry=cached, cached=True)

        summaries = await self._collect_sources(query)
        failed_sources = [summary.source for summary in summaries if summary.status == "failed"]

        found = [result for summary in summaries for result in summary.results]
        enriched = await asyncio.gather(*(self._with_resolution(result, signal) for result in found))

        search_results: list[SearchResultWithResolution] = []
        seen_sources: set[str] = set()
        for result in enriched:
            if result.source in seen_sources:
                continue
            seen_sources.add(result.source)
            search_results.append(result)

        detail = None
        if preferred_source:
            detail = next((r for r in search_results if r.source == preferred_source), None)
        if detail is None and search_results:
            detail = search_results[0]

        sources = [
            SourceInfo(source=r.source, source_name=r.source_name, resolution=r.resolution)
            for r in search_results
        ]

        logger.info(
            "Aggregated '%s': %s result(s) from %s source(s), %s failed",
            query,
            len(search_results),
            len(self.sources),
            len(failed_sources),
        )

        # Partial aggregates are returned but never cached
        if signal is not None and signal.is_set():
            logger.debug("Detail load for '%s' aborted; aggregate not cached", query)
            entry = self._cache.build_entry(detail, search_results, sources, all_sources_loaded=False)
            return DetailLoadResult(entry=entry, cached=False, failed_sources=failed_sources)

        if failed_sources:
            logger.info("Not caching '%s' while %s source(s) failed", query, len(failed_sources))
            entry = self._cache.build_entry(detail, search_results, sources, all_sources_loaded=False)
            return DetailLoadResult(entry=entry, cached=False, failed_sources=failed_sources)

        entry = self._cache.write(query, detail, search_results, sources, all_sources_loaded=True)
        return DetailLoadResult(entry=entry, cached=False, failed_sources=failed_sources)

    async def _collect_sources(self, query: str) -> list[SourceSearchSummary]:
        if not self.sources:
            logger.warning("No search sources configured - nothing to aggregate")
            return []

        tasks = [
            asyncio.create_task(self._search_source(index, source, query))
            for index, source in enumerate(self.sources, start=1)
        ]
        summaries = await asyncio.gather(*tasks)
        summaries.sort(key=lambda summary: summary.index)
        return summaries

    async def _search_source(self, index: int, source: str, query: str) -> SourceSearchSummary:
        async with self._semaphore:
            try:
                results = await self._searcher.search(query, source)
            except NetworkError as exc:
                logger.warning("[Source %s] Search for '%s' on %s failed: %s", index, query, source, exc)
                return SourceSearchSummary(index=index, source=source, status="failed", error=str(exc))

        logger.debug("[Source %s] %s result(s) for '%s' on %s", index, len(results), query, source)
        return SourceSearchSummary(index=index, source=source, status="success", results=list(results))

    async def _with_resolution(
        self,
        result: SearchResult,
        signal: asyncio.Event | None,
    ) -> SearchResultWithResolution:
        resolution = None
        if result.episodes:
            try:
                resolution = await self._resolver.resolve(result.episodes[0], signal=signal)
            except ResolutionAborted:
                pass
            except ResolutionFetchError as exc:
                logger.info("Failed to get resolution for %s: %s", result.source_name, exc)

        return SearchResultWithResolution(**result.model_dump(by_alias=True), resolution=resolution)
