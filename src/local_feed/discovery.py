"""Locate a feed URL from a site or feed address."""

import logging
import posixpath
from urllib.parse import urljoin, urlparse, urlunparse

import httpx
from bs4 import BeautifulSoup

from local_feed.errors import DiscoveryError, FeedParseError, InvalidInputError
from local_feed.feed_parser import parse_feed
from local_feed.net import FEED_ACCEPT, read_limited

logger = logging.getLogger(__name__)

MAX_DISCOVERY_BYTES = 8 << 20
FEED_TYPES = frozenset({
    "application/rss+xml",
    "application/atom+xml",
    "application/feed+json",
    "application/json",
    "application/xml",
    "text/xml",
})
FEED_EXTENSIONS = (".rss", ".atom", ".xml", ".json")


def normalize_url(raw: str) -> str:
    """Default the scheme to https and require a host.

    Raises:
        InvalidInputError: If the URL is empty or has no host.
    """
    raw = (raw or "").strip()
    if not raw:
        raise InvalidInputError("url is required")
    parsed = urlparse(raw)
    if not parsed.scheme:
        parsed = urlparse("https://" + raw)
    if not parsed.netloc:
        raise InvalidInputError(f"invalid url {raw!r}")
    return urlunparse(parsed)


async def discover_feed_url(
    client: httpx.AsyncClient, raw_url: str, user_agent: str = "local-feed/0.1"
) -> str:
    """Return a feed URL for ``raw_url``.

    The URL itself is returned when it already serves a feed. Otherwise the
    HTML body is scanned for ``<link rel="alternate">`` candidates and the
    first one in document order wins.

    Raises:
        InvalidInputError: If ``raw_url`` cannot be normalized.
        DiscoveryError: If the page holds no feed candidates.
        httpx.HTTPError: If the page cannot be fetched.
    """
    normalized = normalize_url(raw_url)
    headers = {"User-Agent": user_agent or "local-feed/0.1", "Accept": FEED_ACCEPT}

    async with client.stream("GET", normalized, headers=headers) as response:
        body = await read_limited(response, MAX_DISCOVERY_BYTES)
        effective_url = str(response.url)
        status = response.status_code
        content_type = response.headers.get("content-type")

    if not body:
        raise DiscoveryError(f"empty response body from {normalized}")

    try:
        parse_feed(body, effective_url, content_type)
    except FeedParseError:
        pass
    else:
        return effective_url

    candidates = discover_feed_candidates(body, effective_url)
    if candidates:
        logger.debug("Discovered %d feed candidates at %s", len(candidates), effective_url)
        return candidates[0]

    if not 200 <= status < 300:
        raise httpx.HTTPStatusError(
            f"request failed: {status}", request=response.request, response=response
        )
    raise DiscoveryError(f"no feed discovered at {effective_url}")


def discover_feed_candidates(body: bytes | str, base_url: str) -> list[str]:
    """Collect absolute feed URLs from alternate links, in document order."""
    try:
        soup = BeautifulSoup(body, "lxml")
    except Exception as e:
        logger.debug("Could not parse HTML for discovery: %s", e)
        return []

    base = base_url
    base_tag = soup.find("base", href=True)
    if base_tag and base_tag["href"].strip():
        base = urljoin(base_url, base_tag["href"].strip())

    out: list[str] = []
    seen: set[str] = set()
    for link in soup.find_all("link"):
        if not _is_alternate(link.get("rel")):
            continue
        href = (link.get("href") or "").strip()
        if not href:
            continue
        type_attr = (link.get("type") or "").strip().lower()
        if not is_feed_link_type(type_attr, href):
            continue
        if type_attr == "application/json" and "/wp-json/" in href.lower():
            continue
        absolute = urljoin(base, href)
        if absolute not in seen:
            seen.add(absolute)
            out.append(absolute)
    return out


def _is_alternate(rel) -> bool:
    if isinstance(rel, str):
        rel = rel.split()
    return any(token.lower() == "alternate" for token in rel or [])


def is_feed_link_type(type_attr: str, href: str) -> bool:
    """Heuristically decide whether an alternate link points at a feed."""
    type_attr = (type_attr or "").strip().lower()
    if type_attr in FEED_TYPES:
        return True
    if type_attr:
        return "rss" in type_attr or "atom" in type_attr or "feed" in type_attr

    lowered = href.strip().lower()
    path = urlparse(lowered).path or lowered
    if posixpath.splitext(path)[1] in FEED_EXTENSIONS:
        return True
    return "/feed" in lowered or "rss" in lowered or "atom" in lowered
