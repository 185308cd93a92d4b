"""
Content Listing Service

Cache-first loading of paginated content rows. Separated from the cache
itself so the cache stays free of network concerns.
"""
import json
import logging
from typing import Protocol
from urllib.parse import urlencode

from pydantic import ValidationError

from mediacache.errors import NetworkError
from mediacache.schemas import Category, RowItem, normalize_content_type
from mediacache.services.cache_types import CacheItem, ContentPage
from mediacache.services.content_cache_service import ContentListingCache, build_category_cache_key
from mediacache.utils.http_client import TextFetcher


logger = logging.getLogger(__name__)


class ContentSource(Protocol):
    """Network collaborator returning one page of a category."""

    async def fetch_page(self, category: Category, page: int) -> ContentPage:
        ...


class HttpContentSource:
    """Reads category pages from the content backend's /api/douban endpoint."""

    def __init__(self, fetcher: TextFetcher, api_base_url: str, page_size: int = 20):
        self._fetcher = fetcher
        self._api_base_url = api_base_url.rstrip("/")
        self._page_size = page_size

    async def fetch_page(self, category: Category, page: int) -> ContentPage:
        """
        Fetch one page of a category

        Args:
            category: Category to list
            page: 1-based page number

        Returns:
            Items of the page and whether more pages follow

        Raises:
            NetworkError: If the backend is unreachable or answers garbage
        """
        query = urlencode({
            "type": category.type or "movie",
            "tag": category.tag or category.title,
            "pageSize": self._page_size,
            "pageStart": (max(page, 1) - 1) * self._page_size,
        })
        url = f"{self._api_base_url}/api/douban?{query}"
        body = await self._fetcher.fetch_text(url)

        try:
            raw_items = json.loads(body).get("list") or []
            items = [
                RowItem.model_validate({
                    "id": item.get("id") or item.get("title"),
                    "source": "douban",
                    "title": item.get("title"),
                    "poster": item.get("poster") or "",
                    "rate": item.get("rate"),
                })
                for item in raw_items
            ]
        except (ValueError, AttributeError, ValidationError) as e:
            raise NetworkError(url, f"Malformed content listing response: {e}") from e

        return ContentPage(items=items, has_more=len(items) > 0)


class ContentListingLoader:
    """
    Serves category pages from the content cache, falling back to the network.

    Page 1 is served from cache when fresh and replaces the entry when
    fetched. A later page is appended only when the cached rows end exactly
    where it starts; a page already covered by the cache is served from it,
    and any other page is fetched and returned without touching the cache.
    """

    def __init__(self, cache: ContentListingCache, source: ContentSource, page_size: int = 20):
        self._cache = cache
        self._source = source
        self._page_size = page_size
        self._prefetching: set[str] = set()

    async def load_page(self, category: Category, page: int = 1) -> CacheItem:
        """
        Load a page of a category

        Raises:
            NetworkError: If the page is not cached and cannot be fetched
        """
        key = build_category_cache_key(category)
        content_type = normalize_content_type(category.type)

        if page <= 1:
            cached = self._cache.read(key)
            if cached is not None:
                return cached

            logger.info("Fetching page 1 of '%s'", key)
            result = await self._source.fetch_page(category, 1)
            entry = self._cache.create_entry(content_type, result.items, result.has_more)
            self._cache.write(key, entry)
            return entry

        offset = (page - 1) * self._page_size
        existing = self._cache.read(key)
        if existing is not None and len(existing.data) > offset:
            return existing

        logger.info("Fetching page %s of '%s'", page, key)
        result = await self._source.fetch_page(category, page)

        # Re-read: the entry may have changed while the fetch was pending
        existing = self._cache.read(key)
        if existing is not None and len(existing.data) == offset:
            return self._cache.append(key, content_type, result.items, result.has_more)

        logger.debug("Page %s of '%s' does not follow the cached rows; not caching", page, key)
        return self._cache.create_entry(content_type, result.items, result.has_more)

    async def prefetch(self, category: Category) -> bool:
        """
        Warm the cache with the first page of a category

        Skips categories already cached or being prefetched; fetch failures
        are logged and ignored.

        Returns:
            True if a page was fetched and cached
        """
        key = build_category_cache_key(category)
        if self._cache.read(key) is not None or key in self._prefetching:
            return False

        self._prefetching.add(key)
        try:
            result = await self._source.fetch_page(category, 1)
        except NetworkError as e:
            logger.info("Prefetch of '%s' failed: %s", key, e)
            return False
        finally:
            self._prefetching.discard(key)

        entry = self._cache.create_entry(normalize_content_type(category.type), result.items, result.has_more)
        self._cache.write(key, entry)
        return True
