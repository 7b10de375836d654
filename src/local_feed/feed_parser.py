"""RSS/Atom/JSON feed parsing using feedparser."""

import calendar
import hashlib
import io
from dataclasses import dataclass, field
from datetime import datetime, timezone
from time import struct_time
from urllib.parse import urljoin, urlparse

import feedparser

from local_feed.errors import FeedParseError


@dataclass
class ParsedItem:
    """One normalized entry from a parsed feed."""

    guid: str
    title: str = ""
    link: str = ""
    content: str = ""
    description: str = ""
    author: str = ""
    published_at: datetime | None = None
    date_modified: datetime | None = None


@dataclass
class ParsedFeed:
    """Result of parsing an RSS/Atom/JSON feed."""

    title: str
    description: str
    site_link: str
    items: list[ParsedItem] = field(default_factory=list)
    version: str = ""


def parse_feed(data: bytes, url: str, content_type: str | None = None) -> ParsedFeed:
    """Parse a feed document.

    Args:
        data: Raw response body.
        url: The URL the body was fetched from, used to resolve relative links.
        content_type: Optional Content-Type header of the response.

    Returns:
        ParsedFeed with feed metadata and normalized items.

    Raises:
        FeedParseError: If the body is not a recognizable feed.
    """
    # No content-location: feedparser would resolve bare GUIDs against it.
    headers = {"content-type": content_type} if content_type else None
    parsed = feedparser.parse(io.BytesIO(data), response_headers=headers)

    if not parsed.get("version") and not parsed.entries:
        if parsed.bozo and parsed.get("bozo_exception"):
            raise FeedParseError(f"failed to parse feed: {parsed.bozo_exception}")
        raise FeedParseError("failed to detect feed type")

    feed = parsed.feed
    return ParsedFeed(
        title=_text(feed.get("title")),
        description=_text(feed.get("subtitle") or feed.get("description")),
        site_link=_resolve(url, _text(feed.get("link"))),
        items=[_extract_item(entry, url) for entry in parsed.entries],
        version=parsed.get("version", ""),
    )


def _extract_item(entry, base_url: str) -> ParsedItem:
    """Normalize a feedparser entry."""
    title = _text(entry.get("title"))
    raw_link = _text(entry.get("link"))
    link = _resolve(base_url, raw_link)
    published_at = _parse_date(entry, ("published_parsed", "updated_parsed"))

    guid = _text(entry.get("id")) or dedup_guid(raw_link, title, published_at)

    content = ""
    for block in entry.get("content") or []:
        value = _text(block.get("value"))
        if value:
            content = value
            break

    author = _text(entry.get("author"))
    if not author and entry.get("author_detail"):
        author = _text(entry.author_detail.get("name"))

    return ParsedItem(
        guid=guid,
        title=title,
        link=link,
        content=content,
        description=_text(entry.get("summary") or entry.get("description")),
        author=author,
        published_at=published_at,
        date_modified=_parse_date(entry, ("updated_parsed",)),
    )


def dedup_guid(link: str, title: str, published_at: datetime | None) -> str:
    """Synthesize a stable identifier for an item that has none.

    An absolute link wins; otherwise the identifier is a SHA-1 of the trimmed
    title and the UTC publication time.
    """
    link = (link or "").strip()
    if link and _is_absolute(link):
        return link
    stamp = ""
    if published_at is not None:
        stamp = published_at.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
    digest = hashlib.sha1(f"{(title or '').strip()}|{stamp}".encode("utf-8"))
    return "sha1:" + digest.hexdigest()


def _is_absolute(url: str) -> bool:
    parsed = urlparse(url)
    return bool(parsed.scheme and parsed.netloc)


def _resolve(base_url: str, link: str) -> str:
    return urljoin(base_url, link) if link else ""


def _text(value) -> str:
    return value.strip() if isinstance(value, str) else ""


def _parse_date(entry, fields: tuple[str, ...]) -> datetime | None:
    """Parse the first usable UTC date from a feedparser entry."""
    for name in fields:
        # feedparser answers updated_parsed with the published date unless <updated> exists.
        if name not in entry:
            continue
        time_struct = entry[name]
        if isinstance(time_struct, struct_time):
            try:
                return datetime.fromtimestamp(calendar.timegm(time_struct), tz=timezone.utc)
            except (ValueError, OverflowError, OSError):
                continue
    return None
