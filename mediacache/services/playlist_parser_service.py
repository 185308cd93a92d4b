import logging
import re

from mediacache.errors import NetworkError
from mediacache.services.cache_types import Channel, ResolutionProbe
from mediacache.utils.http_client import TextFetcher
from mediacache.utils.logging_helpers import sanitize_url_for_logging

logger = logging.getLogger(__name__)

EXTINF_MARKER = "#EXTINF:"
STREAM_INF_MARKER = "#EXT-X-STREAM-INF"

DEFAULT_CHANNEL_NAME = "Unknown"
DEFAULT_CHANNEL_GROUP = "Default"

_LOGO_PATTERN = re.compile(r'tvg-logo="([^"]*)"', re.IGNORECASE)
_GROUP_PATTERN = re.compile(r'group-title="([^"]*)"', re.IGNORECASE)
_RESOLUTION_PATTERN = re.compile(r"RESOLUTION=(\d+)x(\d+)")


def parse_m3u(m3u_text: str) -> list[Channel]:
    """
    Parse M3U playlist text into channels

    Args:
        m3u_text: Full text of an M3U playlist

    Returns:
        Channels in playlist order. A metadata line with no following URL
        contributes nothing; a URL with no preceding metadata is skipped.
    """
    channels: list[Channel] = []
    current: dict[str, str] | None = None

    for line in m3u_text.split("\n"):
        trimmed = line.strip()

        if trimmed.startswith(EXTINF_MARKER):
            current = _parse_extinf(trimmed)
            continue

        if current is None or not trimmed or trimmed.startswith("#") or "://" not in trimmed:
            continue

        channels.append(Channel(
            id=trimmed,
            url=trimmed,
            name=current.get("name") or DEFAULT_CHANNEL_NAME,
            logo=current.get("logo") or "",
            group=current.get("group") or DEFAULT_CHANNEL_GROUP,
        ))
        current = None

    logger.debug(f"Parsed {len(channels)} channels from M3U playlist")

    return channels


def _parse_extinf(line: str) -> dict[str, str]:
    """Extract name, logo and group from an #EXTINF line"""
    info: dict[str, str] = {}

    comma_index = line.rfind(",")
    if comma_index == -1:
        info["name"] = line[len(EXTINF_MARKER):].strip()
        return info

    info["name"] = line[comma_index + 1:].strip()
    attributes = line[len(EXTINF_MARKER):comma_index]

    logo_match = _LOGO_PATTERN.search(attributes)
    if logo_match and logo_match.group(1):
        info["logo"] = logo_match.group(1)

    group_match = _GROUP_PATTERN.search(attributes)
    if group_match and group_match.group(1):
        info["group"] = group_match.group(1)

    return info


async def fetch_and_parse_m3u(m3u_url: str, fetcher: TextFetcher) -> list[Channel]:
    """
    Fetch and parse an M3U playlist, failing soft

    A channel directory is non-critical, so any fetch failure yields an
    empty list instead of propagating.
    """
    try:
        m3u_text = await fetcher.fetch_text(m3u_url)
    except NetworkError as e:
        logger.info(f"Error fetching M3U playlist {sanitize_url_for_logging(m3u_url)}: {e}")
        return []

    channels = parse_m3u(m3u_text)
    logger.info(f"Loaded {len(channels)} channels from {sanitize_url_for_logging(m3u_url)}")
    return channels


def parse_stream_resolution(playlist_text: str) -> str | None:
    """
    Find the highest vertical resolution declared by an HLS master playlist

    Only a strictly greater height replaces the running maximum, so the
    first variant seen at the winning height is kept.

    Returns:
        Label such as '1080p', or None if no variant declares a resolution
    """
    highest = 0
    label: str | None = None

    for line in playlist_text.split("\n"):
        if not line.startswith(STREAM_INF_MARKER):
            continue
        match = _RESOLUTION_PATTERN.search(line)
        if not match:
            continue
        height = int(match.group(2))
        if height > highest:
            highest = height
            label = f"{height}p"

    return label


def is_hls_playlist_url(url: str) -> bool:
    """Check whether a URL points at an .m3u8 playlist"""
    return url.lower().endswith(".m3u8")


async def probe_resolution(
    url: str,
    fetcher: TextFetcher,
    user_agent: str | None = None,
) -> ResolutionProbe:
    """
    Probe a stream URL for its best advertised resolution

    URLs that are not .m3u8 playlists are never fetched.

    Args:
        url: Stream URL believed to be an HLS master playlist
        fetcher: Network collaborator
        user_agent: Optional User-Agent header for the request

    Returns:
        ResolutionProbe with status 'found', 'missing' or 'failed'
    """
    if not is_hls_playlist_url(url):
        return ResolutionProbe(status="missing")

    headers = {"User-Agent": user_agent} if user_agent else None
    try:
        playlist_text = await fetcher.fetch_text(url, headers=headers)
    except NetworkError as e:
        logger.info(f"M3U8 resolution probe failed for {sanitize_url_for_logging(url)}: {e}")
        return ResolutionProbe(status="failed", error=e)

    resolution = parse_stream_resolution(playlist_text)
    logger.debug(
        "M3U8 resolution probe complete for %s: %s",
        sanitize_url_for_logging(url),
        resolution,
    )

    if resolution is None:
        return ResolutionProbe(status="missing")
    return ResolutionProbe(status="found", resolution=resolution)


async def get_resolution_from_m3u8(
    url: str,
    fetcher: TextFetcher,
    user_agent: str | None = None,
) -> str | None:
    """Best resolution label of a stream, or None if absent or unreachable"""
    probe = await probe_resolution(url, fetcher, user_agent=user_agent)
    return probe.resolution
