"""Data models for local_feed."""

from dataclasses import asdict, dataclass, field
from datetime import datetime


@dataclass
class Feed:
    """Represents a subscribed RSS/Atom/JSON source."""

    url: str
    id: int | None = None
    site_url: str | None = None
    title: str | None = None
    description: str | None = None
    last_fetched_at: datetime | None = None
    etag: str | None = None
    last_modified: str | None = None
    last_error: str | None = None
    error_count: int = 0
    created_at: datetime | None = None
    unread_count: int = 0
    total_count: int = 0

    @property
    def display_title(self) -> str:
        return self.title or self.url


@dataclass
class Entry:
    """Represents a single stored entry joined with its feed and status."""

    id: int
    feed_id: int
    guid: str
    feed_title: str = ""
    url: str | None = None
    external_url: str | None = None
    title: str | None = None
    summary: str | None = None
    content_html: str | None = None
    content_md: str | None = None
    author: str | None = None
    published_at: datetime | None = None
    date_modified: datetime | None = None
    fetched_at: datetime | None = None
    read: bool = False
    starred: bool = False


@dataclass
class UpsertEntryInput:
    """Fields written for one entry sighting."""

    feed_id: int
    guid: str
    url: str = ""
    external_url: str = ""
    title: str = ""
    summary: str = ""
    content_html: str = ""
    content_md: str = ""
    author: str = ""
    published_at: datetime | None = None
    date_modified: datetime | None = None


@dataclass
class Stats:
    feeds: int = 0
    unread: int = 0
    starred: int = 0
    total: int = 0


@dataclass
class Staleness:
    """Freshness of the most recent fetch across all feeds."""

    has_feeds: bool
    stale: bool
    last_fetched_at: datetime | None = None


@dataclass
class FetchResult:
    """Outcome of fetching one feed."""

    feed_id: int
    feed_title: str
    feed_url: str
    new_entries: int = 0
    updated_entries: int = 0
    not_modified: bool = False
    error: str | None = None


@dataclass
class FetchReport:
    """Aggregated outcome of one fetch cycle."""

    started_at: datetime
    ended_at: datetime | None = None
    results: list[FetchResult] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Return a JSON-serializable dict of the report."""
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        data["ended_at"] = self.ended_at.isoformat() if self.ended_at else None
        for result in data["results"]:
            if result["error"] is None:
                del result["error"]
        return data
