import asyncio
import json

import pytest

from mediacache.errors import NetworkError
from mediacache.schemas import Category, RowItem
from mediacache.services.cache_types import ContentPage
from mediacache.services.content_cache_service import ContentListingCache, build_category_cache_key
from mediacache.services.content_listing_service import ContentListingLoader, HttpContentSource


CATEGORY = Category(title="Hot Movies", type="movie", tag="热门")


class FakeSource:
    def __init__(self, pages: dict[int, ContentPage] | None = None, error: Exception | None = None):
        self.pages = pages or {}
        self.error = error
        self.calls: list[tuple[str, int]] = []
        self.gate: asyncio.Event | None = None

    async def fetch_page(self, category: Category, page: int) -> ContentPage:
        self.calls.append((category.title, page))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.pages.get(page, ContentPage(items=[], has_more=False))


def make_page(prefix: str, count: int, has_more: bool = True) -> ContentPage:
    items = [RowItem(id=f"{prefix}{i}", source="douban", title=f"{prefix} {i}") for i in range(count)]
    return ContentPage(items=items, has_more=has_more)


def make_loader(clock, source, max_items: int = 40, page_size: int = 2) -> tuple[ContentListingLoader, ContentListingCache]:
    cache = ContentListingCache(None, max_items=max_items, clock=clock)
    return ContentListingLoader(cache, source, page_size=page_size), cache


def test_first_page_is_cache_first(clock):
    source = FakeSource({1: make_page("a", 3)})
    loader, cache = make_loader(clock, source)

    first = asyncio.run(loader.load_page(CATEGORY))
    second = asyncio.run(loader.load_page(CATEGORY))

    assert source.calls == [("Hot Movies", 1)]
    assert second is first
    assert cache.read(build_category_cache_key(CATEGORY)) is first
    assert first.type == "movie"


def test_later_pages_are_appended(clock):
    source = FakeSource({1: make_page("a", 2), 2: make_page("b", 2, has_more=False)})
    loader, _ = make_loader(clock, source)

    asyncio.run(loader.load_page(CATEGORY, 1))
    entry = asyncio.run(loader.load_page(CATEGORY, 2))

    assert [item.id for item in entry.data] == ["a0", "a1", "b0", "b1"]
    assert entry.has_more is False


def test_repeated_page_is_served_from_cache(clock):
    source = FakeSource({1: make_page("a", 2), 2: make_page("b", 2)})
    loader, cache = make_loader(clock, source)

    asyncio.run(loader.load_page(CATEGORY, 1))
    asyncio.run(loader.load_page(CATEGORY, 2))
    again = asyncio.run(loader.load_page(CATEGORY, 2))

    assert [item.id for item in again.data] == ["a0", "a1", "b0", "b1"]
    assert [item.id for item in cache.read(build_category_cache_key(CATEGORY)).data] == ["a0", "a1", "b0", "b1"]
    assert source.calls == [("Hot Movies", 1), ("Hot Movies", 2)]


def test_page_without_preceding_rows_is_not_cached(clock):
    source = FakeSource({1: make_page("a", 2), 2: make_page("b", 2)})
    loader, cache = make_loader(clock, source)

    detached = asyncio.run(loader.load_page(CATEGORY, 2))

    assert [item.id for item in detached.data] == ["b0", "b1"]
    assert len(cache) == 0

    first = asyncio.run(loader.load_page(CATEGORY, 1))

    assert [item.id for item in first.data] == ["a0", "a1"]
    assert source.calls == [("Hot Movies", 2), ("Hot Movies", 1)]


def test_skipped_page_leaves_cached_rows_untouched(clock):
    source = FakeSource({1: make_page("a", 2), 3: make_page("c", 2)})
    loader, cache = make_loader(clock, source)

    asyncio.run(loader.load_page(CATEGORY, 1))
    skipped = asyncio.run(loader.load_page(CATEGORY, 3))

    assert [item.id for item in skipped.data] == ["c0", "c1"]
    assert [item.id for item in cache.read(build_category_cache_key(CATEGORY)).data] == ["a0", "a1"]


def test_fetch_errors_propagate_from_load_page(clock):
    loader, _ = make_loader(clock, FakeSource(error=NetworkError("http://api", "HTTP 500", status_code=500)))
    with pytest.raises(NetworkError):
        asyncio.run(loader.load_page(CATEGORY))


def test_prefetch_is_deduplicated(clock):
    source = FakeSource({1: make_page("a", 1)})
    loader, cache = make_loader(clock, source)

    async def scenario():
        source.gate = asyncio.Event()
        first = asyncio.create_task(loader.prefetch(CATEGORY))
        second = asyncio.create_task(loader.prefetch(CATEGORY))
        await asyncio.sleep(0)
        source.gate.set()
        return await asyncio.gather(first, second)

    assert asyncio.run(scenario()) == [True, False]
    assert len(source.calls) == 1
    assert len(cache) == 1
    assert asyncio.run(loader.prefetch(CATEGORY)) is False


def test_prefetch_fails_soft(clock):
    loader, cache = make_loader(clock, FakeSource(error=NetworkError("http://api", "timeout")))
    assert asyncio.run(loader.prefetch(CATEGORY)) is False
    assert len(cache) == 0


def test_http_content_source_builds_request(fetcher):
    url = "http://api.example.com/api/douban?type=tv&tag=%E7%BE%8E%E5%89%A7&pageSize=20&pageStart=20"
    fetcher.responses[url] = json.dumps({
        "code": 200,
        "message": "ok",
        "list": [{"title": "Show", "poster": "http://p/1.jpg", "rate": "8.5"}],
    })
    source = HttpContentSource(fetcher, "http://api.example.com")

    page = asyncio.run(source.fetch_page(Category(title="US Shows", type="tv", tag="美剧"), 2))

    assert fetcher.urls() == [url]
    assert page.has_more is True
    assert page.items[0].title == "Show"
    assert page.items[0].rate == "8.5"
    assert page.items[0].source == "douban"


def test_http_content_source_empty_list_ends_pagination(fetcher):
    url = "http://api/api/douban?type=movie&tag=Top&pageSize=20&pageStart=0"
    fetcher.responses[url] = json.dumps({"code": 200, "message": "ok", "list": []})
    source = HttpContentSource(fetcher, "http://api")

    page = asyncio.run(source.fetch_page(Category(title="Top"), 1))

    assert page.items == []
    assert page.has_more is False
