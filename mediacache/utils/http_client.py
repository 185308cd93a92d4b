"""
HTTP text fetching

This module is the network collaborator used by the playlist parser and the
listing/search loaders. Failures are raised as NetworkError and never retried.
"""
import logging
from typing import Mapping, Protocol

import httpx

from mediacache.errors import NetworkError
from mediacache.utils.logging_helpers import sanitize_url_for_logging


logger = logging.getLogger(__name__)


class TextFetcher(Protocol):
    """Anything able to fetch the body of a URL as text."""

    async def fetch_text(self, url: str, headers: Mapping[str, str] | None = None) -> str:
        ...


class HttpTextFetcher:
    """
    Fetches URL bodies as text over httpx.

    A long-lived AsyncClient may be injected and is released by aclose();
    otherwise a short-lived client is opened per request.
    """

    def __init__(
        self,
        timeout: float = 15.0,
        user_agent: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._timeout = timeout
        self._user_agent = user_agent
        self._client = client

    async def fetch_text(self, url: str, headers: Mapping[str, str] | None = None) -> str:
        """
        Fetch a URL and return its decoded body.

        Args:
            url: URL to fetch
            headers: Extra request headers

        Returns:
            Response body as text

        Raises:
            NetworkError: On non-2xx status or connectivity failure
        """
        request_headers = {}
        if self._user_agent:
            request_headers["User-Agent"] = self._user_agent
        if headers:
            request_headers.update(headers)

        safe_url = sanitize_url_for_logging(url)
        logger.debug("Fetching %s", safe_url)

        try:
            if self._client is not None:
                response = await self._client.get(url, headers=request_headers, timeout=self._timeout)
            else:
                async with httpx.AsyncClient(timeout=self._timeout, follow_redirects=True) as client:
                    response = await client.get(url, headers=request_headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.debug("HTTP %s fetching %s", status, safe_url)
            raise NetworkError(url, f"HTTP {status} fetching {safe_url}", status_code=status) from e
        except httpx.HTTPError as e:
            logger.debug("Fetch of %s failed: %s", safe_url, type(e).__name__)
            raise NetworkError(url, f"{type(e).__name__} fetching {safe_url}") from e

        return response.text

    async def aclose(self) -> None:
        """Close the injected client, if any."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
