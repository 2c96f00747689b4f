"""
Channel id resolution.

Fetches a channel's public page and pulls the stable channel id out of the
first `channel_id=<id>"` marker embedded in it.
"""

from __future__ import annotations

import re

import httpx
import structlog

from .errors import ChannelLookupError

log = structlog.get_logger()

CHANNEL_ID_PATTERN = re.compile(r'channel_id=(.+?)(?=")')


def extract_channel_id(page: str) -> str | None:
    match = CHANNEL_ID_PATTERN.search(page)
    return match.group(1) if match else None


class ChannelResolver:
    """
    Resolves channel URLs to channel ids.

    Returns None for input that will never resolve (4xx, no marker on the
    page) and raises ChannelLookupError for failures worth retrying later.
    Every call performs a fresh fetch.
    """

    def __init__(
        self,
        request_timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._request_timeout = request_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def open(self) -> None:
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self._request_timeout),
            follow_redirects=True,
            transport=self._transport,
        )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def resolve(self, channel_url: str) -> str | None:
        assert self._client
        try:
            resp = await self._client.get(channel_url)
        except (httpx.InvalidURL, httpx.UnsupportedProtocol):
            log.info("resolver.invalid_url", url=channel_url)
            return None
        except httpx.HTTPError as exc:
            log.warning("resolver.fetch_failed", url=channel_url, error=str(exc))
            raise ChannelLookupError(f"could not fetch {channel_url}") from exc

        if resp.status_code >= 500:
            log.warning("resolver.server_error", url=channel_url, status=resp.status_code)
            raise ChannelLookupError(f"{channel_url} answered {resp.status_code}")
        if resp.status_code >= 400:
            log.info("resolver.not_found", url=channel_url, status=resp.status_code)
            return None

        channel_id = extract_channel_id(resp.text)
        if channel_id is None:
            log.info("resolver.no_marker", url=channel_url)
        return channel_id
