"""
Dependency Injection Configuration

Builds the cache subsystem's collaborators once and hands them to the HTTP
layer. Caches are plain objects owned by a container, so tests can build an
isolated container with fakes and install it with set_container().
"""
import logging
from dataclasses import dataclass, field

from mediacache import config
from mediacache.config import CacheSettings
from mediacache.services.cache_types import Clock, epoch_ms
from mediacache.services.content_cache_service import ContentListingCache
from mediacache.services.content_listing_service import ContentListingLoader, HttpContentSource
from mediacache.services.detail_aggregator_service import DetailAggregator, HttpSourceSearcher
from mediacache.services.detail_cache_service import DetailAggregateCache
from mediacache.services.resolution_resolver import ResolutionResolver
from mediacache.services.storage_service import KeyValueStore, create_store
from mediacache.utils.http_client import HttpTextFetcher, TextFetcher
from mediacache.utils.logging_helpers import log_clear_summary


logger = logging.getLogger(__name__)


@dataclass
class CacheContainer:
    """Every long-lived object of the cache subsystem."""
    fetcher: TextFetcher
    store: KeyValueStore | None
    content_cache: ContentListingCache
    detail_cache: DetailAggregateCache
    resolver: ResolutionResolver
    listing_loader: ContentListingLoader | None = None
    aggregator: DetailAggregator | None = None
    user_agent: str | None = None
    _closed: bool = field(default=False, repr=False)

    def clear_all(self) -> dict[str, int]:
        """
        Drop every in-memory cache entry (memory-pressure hook)

        Returns:
            Mapping of cache name to number of entries dropped
        """
        cleared = {
            "content": self.content_cache.clear(),
            "detail": self.detail_cache.clear(),
            "resolution": self.resolver.clear(),
        }
        log_clear_summary(logger, cleared)
        return cleared

    async def startup(self) -> None:
        await self.content_cache.hydrate()

    async def shutdown(self) -> None:
        """Flush pending writes and release the store and HTTP client"""
        if self._closed:
            return
        self._closed = True

        await self.content_cache.flush()
        if self.store is not None:
            await self.store.close()
        aclose = getattr(self.fetcher, "aclose", None)
        if aclose is not None:
            await aclose()


def build_container(
    settings: CacheSettings,
    *,
    fetcher: TextFetcher | None = None,
    store: KeyValueStore | None = None,
    clock: Clock = epoch_ms,
) -> CacheContainer:
    """
    Build a container from settings

    Args:
        settings: Cache subsystem settings
        fetcher: Network collaborator; an HttpTextFetcher by default
        store: Key-value store; the configured backend by default
        clock: Source of epoch-millisecond timestamps shared by all caches

    Returns:
        A container whose caches are empty and not yet hydrated
    """
    if fetcher is None:
        fetcher = HttpTextFetcher(timeout=settings.http_timeout_sec)
    if store is None:
        store = create_store(settings)

    content_cache = ContentListingCache(
        store,
        expire_ms=settings.content_cache_expire_ms,
        max_size=settings.content_cache_max_size,
        max_items=settings.content_cache_max_items,
        storage_key=settings.content_cache_storage_key,
        persist_debounce_ms=settings.persist_debounce_ms,
        clock=clock,
    )
    detail_cache = DetailAggregateCache(
        ttl_ms=settings.detail_cache_ttl_ms,
        max_entries=settings.detail_cache_max_entries,
        clock=clock,
    )
    resolver = ResolutionResolver(
        fetcher,
        ttl_ms=settings.resolution_cache_ttl_ms,
        user_agent=settings.http_user_agent,
        clock=clock,
    )

    listing_loader = None
    aggregator = None
    if settings.api_base_url:
        listing_loader = ContentListingLoader(
            content_cache,
            HttpContentSource(fetcher, settings.api_base_url, page_size=settings.content_page_size),
            page_size=settings.content_page_size,
        )
        aggregator = DetailAggregator(
            detail_cache,
            resolver,
            HttpSourceSearcher(fetcher, settings.api_base_url),
            settings.search_sources or [],
            max_concurrency=settings.search_max_concurrency,
        )
    else:
        logger.info("API_BASE_URL not configured - content listing and detail routes disabled")

    return CacheContainer(
        fetcher=fetcher,
        store=store,
        content_cache=content_cache,
        detail_cache=detail_cache,
        resolver=resolver,
        listing_loader=listing_loader,
        aggregator=aggregator,
        user_agent=settings.http_user_agent,
    )


# Global container instance
_container: CacheContainer | None = None


def get_container() -> CacheContainer:
    """
    Get the global container, building it from settings on first use.

    Returns:
        The global CacheContainer
    """
    global _container
    if _container is None:
        _container = build_container(config.settings)
    return _container


def set_container(container: CacheContainer) -> None:
    """Install a container (used by the application lifespan and tests)"""
    global _container
    _container = container


def reset_container() -> None:
    """
    Forget the global container (mainly for testing).

    The previous container is not shut down.
    """
    global _container
    _container = None
