"""
Structured logging helpers for consistent log formatting.

Stream and playlist URLs frequently embed credentials, so anything logged
about a URL goes through sanitize_url_for_logging first.
"""
import logging


def sanitize_url_for_logging(url: str) -> str:
    """Remove credentials from URL for safe logging."""
    if "://" not in url:
        return url
    try:
        protocol, rest = url.split("://", 1)
        if "@" in rest.split("/", 1)[0]:
            rest = rest.split("@", 1)[1]
            return f"{protocol}://***:***@{rest}"
        return url
    except (ValueError, IndexError):
        return url


def log_cache_event(logger: logging.Logger, cache_name: str, event: str, key: str) -> None:
    """
    Log a cache hit/miss/eviction at debug level.

    Args:
        logger: Logger instance
        cache_name: Name of the cache reporting the event
        event: Event name (e.g. 'hit', 'miss', 'expired', 'evicted')
        key: Cache key the event concerns
    """
    logger.debug("[%s] %s: %s", cache_name, event, sanitize_url_for_logging(key))


def log_clear_summary(logger: logging.Logger, cleared: dict[str, int]) -> None:
    """
    Log the outcome of a memory-pressure purge.

    Args:
        logger: Logger instance
        cleared: Mapping of cache name to number of entries dropped
    """
    summary = ", ".join(f"{name}={count}" for name, count in cleared.items())
    logger.info(f"Caches cleared - {summary}")
