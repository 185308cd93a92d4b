from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, Query
import logging

from mediacache.dependencies import CacheContainer, get_container
from mediacache.errors import NetworkError, ResolutionFetchError
from mediacache.schemas import (
    Category,
    ChannelListResponse,
    ChannelResponse,
    ClearResponse,
    ContentType,
    DetailResponse,
    HealthResponse,
    ResolutionResponse,
)
from mediacache.services.playlist_parser_service import fetch_and_parse_m3u


logger = logging.getLogger(__name__)

main_router = APIRouter()

Container = Annotated[CacheContainer, Depends(get_container)]


@main_router.get("/")
async def root() -> dict:
    """Root endpoint with service information"""
    return {
        "service": "Media Cache",
        "version": "0.1.0",
        "endpoints": {
            "channels": "/channels?url= - Channel directory of an M3U playlist",
            "resolution": "/resolution?url= - Best resolution of an HLS stream",
            "content": "/content?title=&type=&tag=&page= - Cached category listing",
            "detail": "/detail?q=&source= - Title detail across sources",
            "clear": "/cache/clear - Drop every in-memory cache (POST)",
            "health": "/health - Health check",
        },
    }


@main_router.get("/health", response_model=HealthResponse)
async def health_check(container: Container) -> HealthResponse:
    """Health check endpoint"""
    return HealthResponse(
        status="ok",
        content_cache_hydrated=container.content_cache.is_hydrated,
        content_cache_entries=len(container.content_cache),
        detail_cache_entries=len(container.detail_cache),
        resolution_cache_entries=len(container.resolver),
        resolutions_in_flight=container.resolver.in_flight_count,
    )


@main_router.get("/channels", response_model=ChannelListResponse)
async def get_channels(
    container: Container,
    url: Annotated[str, Query(min_length=1)],
) -> ChannelListResponse:
    """
    Parse the channel directory of an M3U playlist

    An unreachable playlist yields an empty directory rather than an error.
    """
    channels = await fetch_and_parse_m3u(url, container.fetcher)
    return ChannelListResponse(
        url=url,
        total=len(channels),
        channels=[
            ChannelResponse(id=c.id, name=c.name, url=c.url, logo=c.logo, group=c.group)
            for c in channels
        ],
    )


@main_router.get("/resolution", response_model=ResolutionResponse)
async def get_resolution(
    container: Container,
    url: Annotated[str, Query(min_length=1)],
) -> ResolutionResponse:
    """Best resolution advertised by a stream playlist (cached, coalesced)"""
    try:
        resolution = await container.resolver.resolve(url)
    except ResolutionFetchError as exc:
        raise HTTPException(status_code=502, detail=str(exc))
    return ResolutionResponse(url=url, resolution=resolution)


@main_router.get("/content")
async def get_content(
    container: Container,
    title: Annotated[str, Query(min_length=1)],
    type: ContentType | None = None,
    tag: str | None = None,
    page: Annotated[int, Query(ge=1)] = 1,
) -> dict:
    """
    Load a page of a content category

    Page 1 is served from the listing cache when fresh; later pages are
    appended to the cached entry.
    """
    if container.listing_loader is None:
        raise HTTPException(status_code=503, detail="API_BASE_URL not configured")

    category = Category(title=title, type=type, tag=tag)
    try:
        entry = await container.listing_loader.load_page(category, page)
    except NetworkError as exc:
        raise HTTPException(status_code=502, detail=str(exc))

    return {
        "type": entry.type,
        "has_more": entry.has_more,
        "timestamp": entry.timestamp,
        "data": [item.model_dump() for item in entry.data],
    }


@main_router.get("/detail", response_model=DetailResponse)
async def get_detail(
    container: Container,
    q: Annotated[str, Query(min_length=1)],
    source: str | None = None,
) -> DetailResponse:
    """
    Aggregate a title across every configured source

    Results are served from the detail cache while fresh.
    """
    if container.aggregator is None:
        raise HTTPException(status_code=503, detail="API_BASE_URL not configured")

    result = await container.aggregator.load(q, preferred_source=source)
    entry = result.entry
    return DetailResponse(
        query=q,
        cached=result.cached,
        detail=entry.detail,
        search_results=entry.search_results,
        sources=entry.sources,
        all_sources_loaded=entry.all_sources_loaded,
        failed_sources=result.failed_sources,
    )


@main_router.post("/cache/clear", response_model=ClearResponse)
async def clear_caches(container: Container) -> ClearResponse:
    """Drop every in-memory cache entry; the persisted listing copy is kept"""
    logger.info("Cache purge triggered via API")
    return ClearResponse(status="ok", cleared=container.clear_all())
