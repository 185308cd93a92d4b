"""
Exception hierarchy for the cache subsystem.

Nothing here is fatal to the host application: every failure degrades to
"cache miss, fetch fresh" somewhere up the call chain.
"""


class MediaCacheError(Exception):
    """Base class for cache subsystem errors"""
    pass


class NetworkError(MediaCacheError):
    """Raised when a fetch returns a non-2xx status or the connection fails"""

    def __init__(self, url: str, message: str, status_code: int | None = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class ResolutionFetchError(MediaCacheError):
    """Raised to every caller coalesced onto a failed resolution lookup"""

    def __init__(self, url: str, cause: Exception | None = None):
        super().__init__(f"Failed to fetch stream playlist: {cause or url}")
        self.url = url
        self.cause = cause


class ResolutionAborted(MediaCacheError):
    """Raised when a caller's abort signal fires before its lookup completes"""

    def __init__(self, url: str):
        super().__init__(f"Resolution lookup aborted: {url}")
        self.url = url


class StorageError(MediaCacheError):
    """Raised by key-value store implementations on read/write failure"""
    pass
