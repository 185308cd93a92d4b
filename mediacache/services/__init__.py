"""
Services package for Media Cache

This package contains the caches and the loaders built on top of them.
"""
from mediacache.services.content_cache_service import ContentListingCache, build_category_cache_key
from mediacache.services.content_listing_service import ContentListingLoader
from mediacache.services.detail_aggregator_service import DetailAggregator
from mediacache.services.detail_cache_service import DetailAggregateCache
from mediacache.services.playlist_parser_service import (
    fetch_and_parse_m3u,
    get_resolution_from_m3u8,
    parse_m3u,
    parse_stream_resolution,
)
from mediacache.services.resolution_resolver import ResolutionResolver

__all__ = [
    'ContentListingCache',
    'ContentListingLoader',
    'DetailAggregateCache',
    'DetailAggregator',
    'ResolutionResolver',
    'build_category_cache_key',
    'fetch_and_parse_m3u',
    'get_resolution_from_m3u8',
    'parse_m3u',
    'parse_stream_resolution',
]
