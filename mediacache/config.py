from pathlib import Path
from typing import Annotated
import logging

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)


class CacheSettings(BaseSettings):
    """Cache subsystem settings loaded from environment variables.

    Validates configuration at startup to catch misconfiguration early.
    """

    content_cache_expire_sec: int = 300  # 5 minutes
    content_cache_max_size: int = 10  # In-memory buckets
    content_cache_max_items: int = 40  # Rows kept per bucket
    content_page_size: int = 20  # Rows requested per listing page
    content_cache_storage_key: str = "home_content_cache_v1"
    persist_debounce_ms: int = 150

    detail_cache_ttl_sec: int = 600  # 10 minutes
    detail_cache_max_entries: int = 8

    resolution_cache_ttl_sec: int = 3600  # 1 hour

    http_timeout_sec: float = 15.0
    http_user_agent: str = DEFAULT_USER_AGENT

    storage_backend: str = "sqlite"
    storage_path: str = "./data/mediacache.db"

    api_base_url: str | None = None
    search_sources: Annotated[list[str] | None, NoDecode] = None
    search_max_concurrency: int = 4

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("search_sources", mode="before")
    @classmethod
    def parse_search_sources(cls, value):
        """Parse comma-separated source keys or list."""
        if value is None:
            return []
        if isinstance(value, str):
            if not value.strip():
                return []
            return [source.strip() for source in value.split(",") if source.strip()]
        if isinstance(value, list):
            return value
        return []

    @field_validator("api_base_url")
    @classmethod
    def validate_api_base_url(cls, value: str | None) -> str | None:
        """Validate the search backend URL is HTTP/HTTPS."""
        if value is None or not value.strip():
            return None
        if not value.lower().startswith(("http://", "https://")):
            raise ValueError(f"API base URL must be HTTP/HTTPS: {value}")
        return value.rstrip("/")

    @field_validator(
        "content_cache_expire_sec",
        "content_cache_max_size",
        "content_cache_max_items",
        "content_page_size",
        "detail_cache_ttl_sec",
        "detail_cache_max_entries",
        "resolution_cache_ttl_sec",
        "search_max_concurrency",
    )
    @classmethod
    def validate_positive_ints(cls, value: int, info) -> int:
        """Ensure cache bounds and TTLs are positive."""
        if value <= 0:
            raise ValueError(f"{info.field_name} must be > 0")
        return value

    @field_validator("persist_debounce_ms")
    @classmethod
    def validate_debounce(cls, value: int) -> int:
        """Validate persistence debounce delay (milliseconds)."""
        if value < 0:
            raise ValueError("persist_debounce_ms must be >= 0")
        return value

    @field_validator("http_timeout_sec")
    @classmethod
    def validate_timeout(cls, value: float) -> float:
        """Ensure the network timeout is positive."""
        if value <= 0:
            raise ValueError("http_timeout_sec must be > 0")
        return value

    @field_validator("storage_backend")
    @classmethod
    def validate_storage_backend(cls, value: str) -> str:
        """Validate the persisted key-value store backend."""
        normalized = value.lower()
        allowed = {"sqlite", "file"}
        if normalized not in allowed:
            raise ValueError(f"storage_backend must be one of {sorted(allowed)}")
        return normalized

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Validate logging level name."""
        normalized = value.upper()
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if normalized not in allowed:
            raise ValueError(f"log_level must be one of {sorted(allowed)}")
        return normalized

    @model_validator(mode="after")
    def validate_storage_path(self):
        """Validate the storage location is accessible."""
        path = Path(self.storage_path)
        target = path if self.storage_backend == "file" else path.parent
        try:
            target.mkdir(parents=True, exist_ok=True)
        except (OSError, PermissionError) as exc:
            raise ValueError(f"Cannot access storage path '{self.storage_path}': {exc}") from exc

        if self.search_sources and not self.api_base_url:
            logger.warning(
                "Search sources configured without API_BASE_URL - detail lookups will be empty"
            )

        return self

    def __init__(self, **data):
        """Initialize settings and log configuration."""
        super().__init__(**data)

        logger.info("Cache configuration loaded:")
        logger.info(
            "  Content Cache: %s buckets x %s items, expires after %ss",
            self.content_cache_max_size,
            self.content_cache_max_items,
            self.content_cache_expire_sec,
        )
        logger.info("  Persist Debounce: %sms", self.persist_debounce_ms)
        logger.info(
            "  Detail Cache: %s entries, TTL %ss",
            self.detail_cache_max_entries,
            self.detail_cache_ttl_sec,
        )
        logger.info("  Resolution Cache TTL: %ss", self.resolution_cache_ttl_sec)
        logger.info("  Storage: %s at %s", self.storage_backend, self.storage_path)
        logger.info("  Search Sources: %s configured", len(self.search_sources or []))

    @property
    def content_cache_expire_ms(self) -> int:
        return self.content_cache_expire_sec * 1000

    @property
    def detail_cache_ttl_ms(self) -> int:
        return self.detail_cache_ttl_sec * 1000

    @property
    def resolution_cache_ttl_ms(self) -> int:
        return self.resolution_cache_ttl_sec * 1000


settings = CacheSettings()


def setup_logging(level: str | None = None) -> None:
    """Configure application logging."""
    logging.basicConfig(
        level=getattr(logging, (level or settings.log_level).upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
