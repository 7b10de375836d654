"""HTTP client construction and bounded body reads."""

import httpx

from local_feed.config import FetchConfig

FEED_ACCEPT = (
    "application/xml, application/atom+xml, application/rss+xml, "
    "application/feed+json, text/xml, text/html, */*;q=0.8"
)


def build_http_client(config: FetchConfig) -> httpx.AsyncClient:
    """Create the HTTP client used for a fetcher's lifetime.

    Idle keep-alive connections are capped and expire on their own timer,
    independent of the per-request timeout.
    """
    return httpx.AsyncClient(
        timeout=httpx.Timeout(config.http_timeout, connect=10.0),
        limits=httpx.Limits(
            max_connections=50,
            max_keepalive_connections=10,
            keepalive_expiry=30.0,
        ),
        headers={"User-Agent": config.user_agent},
        follow_redirects=True,
    )


async def read_limited(response: httpx.Response, limit: int) -> bytes:
    """Read at most ``limit`` bytes of a streamed response body."""
    chunks = []
    size = 0
    async for chunk in response.aiter_bytes():
        remaining = limit - size
        if len(chunk) >= remaining:
            chunks.append(chunk[:remaining])
            break
        chunks.append(chunk)
        size += len(chunk)
    return b"".join(chunks)
