"""
Resolution Resolver

Wraps playlist resolution probing with a TTL cache and single-flight request
coalescing keyed by stream URL.
"""
import asyncio
import logging

from mediacache.errors import ResolutionAborted, ResolutionFetchError
from mediacache.services.cache_types import Clock, ResolutionCacheEntry, epoch_ms
from mediacache.services.playlist_parser_service import probe_resolution
from mediacache.utils.http_client import TextFetcher
from mediacache.utils.logging_helpers import log_cache_event


logger = logging.getLogger(__name__)


class ResolutionResolver:
    """
    Resolves the best stream resolution for episode URLs.

    At most one fetch+parse per URL is outstanding at any time: the in-flight
    task is registered before the first suspension point, and every caller
    for that URL awaits the same task. Parse misses are cached as a stable
    negative result; fetch failures evict the entry and are raised to all
    coalesced callers so the next call fetches afresh.
    """

    def __init__(
        self,
        fetcher: TextFetcher,
        *,
        ttl_ms: int = 60 * 60 * 1000,
        user_agent: str | None = None,
        clock: Clock = epoch_ms,
    ):
        """
        Initialize the resolver.

        Args:
            fetcher: Network collaborator used to download playlists
            ttl_ms: Lifetime of a cached result in milliseconds
            user_agent: User-Agent header sent with playlist requests
            clock: Source of epoch-millisecond timestamps
        """
        self._fetcher = fetcher
        self._ttl_ms = ttl_ms
        self._user_agent = user_agent
        self._clock = clock
        self._cache: dict[str, ResolutionCacheEntry] = {}
        self._in_flight: dict[str, asyncio.Task] = {}

    async def resolve(self, url: str, *, signal: asyncio.Event | None = None) -> str | None:
        """
        Resolve the best resolution label of a stream.

        Args:
            url: Episode stream URL
            signal: Optional abort signal; setting it abandons this caller's
                wait only, the shared lookup still completes and is cached

        Returns:
            Resolution label (e.g. '1080p'), or None if none is advertised

        Raises:
            ResolutionFetchError: If the playlist could not be fetched
            ResolutionAborted: If signal was set before the lookup completed
        """
        if not url:
            return None

        entry = self._cache.get(url)
        if entry is not None:
            if self._is_fresh(entry):
                log_cache_event(logger, "resolution", "hit", url)
                return entry.value
            log_cache_event(logger, "resolution", "expired", url)
            del self._cache[url]

        task = self._in_flight.get(url)
        if task is None:
            log_cache_event(logger, "resolution", "miss", url)
            task = asyncio.ensure_future(self._run(url))
            task.add_done_callback(lambda done, key=url: self._on_done(key, done))
            self._in_flight[url] = task
        else:
            log_cache_event(logger, "resolution", "coalesced", url)

        return await self._wait(url, task, signal)

    def peek(self, url: str) -> str | None:
        """Return a fresh cached value without fetching"""
        entry = self._cache.get(url)
        if entry is None or not self._is_fresh(entry):
            return None
        return entry.value

    def is_in_flight(self, url: str) -> bool:
        return url in self._in_flight

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    def clear(self) -> int:
        """
        Drop every cached resolution.

        In-flight lookups are left running so that no second fetch for the
        same URL can start while they are outstanding.

        Returns:
            Number of entries dropped
        """
        count = len(self._cache)
        self._cache.clear()
        return count

    def __len__(self) -> int:
        return len(self._cache)

    def _is_fresh(self, entry: ResolutionCacheEntry) -> bool:
        return self._clock() - entry.timestamp < self._ttl_ms

    async def _run(self, url: str) -> str | None:
        try:
            try:
                probe = await probe_resolution(url, self._fetcher, user_agent=self._user_agent)
            except Exception:
                self._cache.pop(url, None)
                raise

            if probe.failed:
                self._cache.pop(url, None)
                raise ResolutionFetchError(url, probe.error)

            self._cache[url] = ResolutionCacheEntry(value=probe.resolution, timestamp=self._clock())
            return probe.resolution
        finally:
            self._release(url, asyncio.current_task())

    async def _wait(
        self,
        url: str,
        task: asyncio.Task,
        signal: asyncio.Event | None,
    ) -> str | None:
        if signal is None:
            # Cancelling one caller must not cancel the shared lookup
            return await asyncio.shield(task)

        if signal.is_set():
            raise ResolutionAborted(url)

        abort_waiter = asyncio.ensure_future(signal.wait())
        try:
            done, _ = await asyncio.wait(
                {task, abort_waiter},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            abort_waiter.cancel()

        if task in done:
            return task.result()

        logger.debug("Caller abandoned resolution lookup for %s", url)
        raise ResolutionAborted(url)

    def _release(self, url: str, task: asyncio.Task | None) -> None:
        if task is not None and self._in_flight.get(url) is task:
            del self._in_flight[url]

    def _on_done(self, url: str, task: asyncio.Task) -> None:
        self._release(url, task)
        if task.cancelled():
            return
        # Retrieve the exception so abandoned lookups do not warn at shutdown
        error = task.exception()
        if error is not None:
            logger.debug("Resolution lookup failed for %s: %s", url, error)
