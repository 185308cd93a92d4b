from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


ContentType = Literal["movie", "tv", "record"]
CONTENT_TYPES: tuple[str, ...] = ("movie", "tv", "record")

HOME_CACHE_VERSION = 1


def normalize_content_type(value: Any) -> ContentType:
    """Return value if it is a known content type, otherwise 'movie'"""
    if value in CONTENT_TYPES:
        return value
    return "movie"


class RowItem(BaseModel):
    """Single item of a content row (search result or play record)"""
    model_config = ConfigDict(extra="allow")

    id: str = Field(..., description="Item identifier within its source")
    source: str = Field(..., description="Source key the item belongs to")
    title: str = Field(..., description="Display title")
    poster: str = Field("", description="Poster image URL")
    year: str | None = Field(None, description="Release year")
    rate: str | None = Field(None, description="Rating label")

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        """Numeric ids from upstream APIs are kept as strings"""
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


class Category(BaseModel):
    """Content category requested by a listing screen"""
    title: str = Field(..., description="Category title")
    type: ContentType | None = Field(None, description="Content type of the category")
    tag: str | None = Field(None, description="Upstream tag used to query the category")
    active_filters: dict[str, str] | None = Field(None, description="Filters applied to the category")


class SearchResult(BaseModel):
    """Single title returned by a source search"""
    model_config = ConfigDict(populate_by_name=True)

    id: int | str
    title: str
    poster: str = ""
    episodes: list[str] = Field(default_factory=list)
    source: str
    source_name: str
    class_: str | None = Field(None, alias="class")
    year: str = ""
    desc: str | None = None
    type_name: str | None = None


class SearchResultWithResolution(SearchResult):
    """Search result enriched with the best stream resolution of its first episode"""
    resolution: str | None = None


class SourceSearchResponse(BaseModel):
    """Envelope returned by the source search backend"""
    results: list[SearchResult] = Field(default_factory=list)


class PersistedCacheEntry(BaseModel):
    """Content cache entry as written to persistent storage.

    Validators sanitize rather than reject: an unknown type falls back to
    'movie', a non-numeric timestamp to 0 (which is always expired).
    """
    model_config = ConfigDict(populate_by_name=True)

    key: str
    data: list[RowItem] = Field(default_factory=list)
    timestamp: int = 0
    type: ContentType = "movie"
    has_more: bool = Field(False, alias="hasMore")

    @field_validator("type", mode="before")
    @classmethod
    def sanitize_type(cls, v: Any) -> ContentType:
        return normalize_content_type(v)

    @field_validator("timestamp", mode="before")
    @classmethod
    def sanitize_timestamp(cls, v: Any) -> int:
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            return 0
        return int(v)

    @field_validator("has_more", mode="before")
    @classmethod
    def sanitize_has_more(cls, v: Any) -> bool:
        return bool(v)

    @field_validator("data", mode="before")
    @classmethod
    def sanitize_data(cls, v: Any) -> list:
        return v if isinstance(v, list) else []


class PersistedCachePayload(BaseModel):
    """Versioned envelope of the persisted content cache"""
    version: int
    entries: list[Any]


class HealthResponse(BaseModel):
    """Cache subsystem health"""
    status: str
    content_cache_hydrated: bool
    content_cache_entries: int
    detail_cache_entries: int
    resolution_cache_entries: int
    resolutions_in_flight: int


class ChannelResponse(BaseModel):
    """Channel parsed from an M3U playlist"""
    id: str
    name: str
    url: str
    logo: str
    group: str


class ChannelListResponse(BaseModel):
    """Channel directory response"""
    url: str
    total: int
    channels: list[ChannelResponse]


class ResolutionResponse(BaseModel):
    """Best resolution advertised by a stream playlist"""
    url: str
    resolution: str | None


class SourceInfo(BaseModel):
    """Source summary shown on the detail screen"""
    source: str
    source_name: str
    resolution: str | None = None


class DetailResponse(BaseModel):
    """Aggregated title detail across sources"""
    query: str
    cached: bool
    detail: SearchResultWithResolution | None
    search_results: list[SearchResultWithResolution]
    sources: list[SourceInfo]
    all_sources_loaded: bool
    failed_sources: list[str] = Field(default_factory=list)


class ClearResponse(BaseModel):
    """Result of a memory-pressure cache purge"""
    status: str
    cleared: dict[str, int]
