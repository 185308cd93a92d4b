"""
Shared dataclasses used across the caching subsystem.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Literal

from mediacache.schemas import ContentType, RowItem, SearchResultWithResolution, SourceInfo


Clock = Callable[[], int]


def epoch_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass(slots=True)
class Channel:
    """Channel parsed from an M3U playlist; the stream URL doubles as its id."""
    id: str
    name: str
    url: str
    logo: str = ""
    group: str = "Default"


@dataclass(slots=True)
class ResolutionProbe:
    """Outcome of probing a stream playlist for its best resolution.

    ``missing`` means the playlist was not probed or carried no resolution
    tag and is safe to cache; ``failed`` means the fetch itself failed.
    """
    status: Literal["found", "missing", "failed"]
    resolution: str | None = None
    error: Exception | None = None

    @property
    def failed(self) -> bool:
        return self.status == "failed"


@dataclass(slots=True)
class ResolutionCacheEntry:
    value: str | None
    timestamp: int


@dataclass(slots=True)
class CacheItem:
    """Cached page(s) of a content row."""
    data: list[RowItem]
    timestamp: int
    type: ContentType
    has_more: bool


@dataclass(slots=True)
class DetailCacheEntry:
    """Fully resolved detail aggregate of a title."""
    timestamp: int
    detail: SearchResultWithResolution | None
    search_results: list[SearchResultWithResolution] = field(default_factory=list)
    sources: list[SourceInfo] = field(default_factory=list)
    all_sources_loaded: bool = False


@dataclass(slots=True)
class ContentPage:
    """Single page returned by the content-listing collaborator."""
    items: list[RowItem]
    has_more: bool


__all__ = [
    "CacheItem",
    "Channel",
    "Clock",
    "ContentPage",
    "DetailCacheEntry",
    "ResolutionCacheEntry",
    "ResolutionProbe",
    "epoch_ms",
]
