import asyncio
from typing import Mapping

import pytest

from mediacache.errors import NetworkError


class FakeFetcher:
    """Returns canned bodies per URL and records every request."""

    def __init__(self, responses: Mapping[str, str | Exception] | None = None):
        self.responses: dict[str, str | Exception] = dict(responses or {})
        self.calls: list[tuple[str, dict[str, str] | None]] = []
        self.gate: asyncio.Event | None = None

    async def fetch_text(self, url: str, headers: Mapping[str, str] | None = None) -> str:
        self.calls.append((url, dict(headers) if headers else None))
        if self.gate is not None:
            await self.gate.wait()
        response = self.responses.get(url)
        if response is None:
            raise NetworkError(url, f"HTTP 404 fetching {url}", status_code=404)
        if isinstance(response, Exception):
            raise response
        return response

    def urls(self) -> list[str]:
        return [url for url, _ in self.calls]


class MemoryStore:
    """In-memory key-value store counting reads and writes."""

    def __init__(self, initial: Mapping[str, str] | None = None):
        self.data: dict[str, str] = dict(initial or {})
        self.get_calls = 0
        self.set_calls = 0
        self.fail_reads = False
        self.fail_writes = False
        self.closed = False

    async def get(self, key: str) -> str | None:
        self.get_calls += 1
        await asyncio.sleep(0)
        if self.fail_reads:
            raise OSError("disk unavailable")
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self.set_calls += 1
        if self.fail_writes:
            raise OSError("disk full")
        self.data[key] = value

    async def close(self) -> None:
        self.closed = True


class ManualClock:
    """Epoch-millisecond clock advanced by hand."""

    def __init__(self, now: int = 1_700_000_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()
