"""Fetch cycle: poll feeds concurrently and ingest their entries."""

import asyncio
import logging
import sqlite3
from collections.abc import Callable
from datetime import datetime, timezone

import httpx

from local_feed.config import FetchConfig
from local_feed.database import Database
from local_feed.discovery import discover_feed_url
from local_feed.errors import FeedParseError
from local_feed.feed_parser import ParsedFeed, ParsedItem, parse_feed
from local_feed.models import Feed, FetchReport, FetchResult, UpsertEntryInput
from local_feed.net import FEED_ACCEPT, build_http_client, read_limited
from local_feed.renderer import Renderer
from local_feed.sanitizer import sanitize_html

logger = logging.getLogger(__name__)

MAX_FEED_BYTES = 16 << 20

ProgressCallback = Callable[[int, int, FetchResult], None]


class FeedFetcher:
    """Runs fetch cycles against the store with a bounded worker pool."""

    def __init__(
        self,
        db: Database,
        config: FetchConfig | None = None,
        client: httpx.AsyncClient | None = None,
        renderer: Renderer | None = None,
    ):
        self.db = db
        self.config = config or FetchConfig()
        self.renderer = renderer or Renderer()
        self._owns_client = client is None
        self.client = client or build_http_client(self.config)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> "FeedFetcher":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def discover_feed_url(self, raw_url: str) -> str:
        return await discover_feed_url(self.client, raw_url, self.config.user_agent)

    async def run_fetch(
        self,
        feed_id: int | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> FetchReport:
        """Fetch one feed, or all feeds, and return an aggregated report.

        Per-feed failures are recorded on the feed and in its result; they
        never fail the cycle. Cancelling the calling task cancels in-flight
        requests, and entries committed before that stay persisted.

        Raises:
            NotFoundError: If ``feed_id`` does not exist.
        """
        feeds = await asyncio.to_thread(self.db.list_feeds_for_fetch, feed_id)

        report = FetchReport(started_at=_utcnow())
        if not feeds:
            report.ended_at = _utcnow()
            return report

        results = await self._fetch_all(feeds, on_progress)
        report.results = sorted(results, key=lambda r: r.feed_id)

        if self.config.retention_days > 0:
            try:
                pruned = await asyncio.to_thread(
                    self.db.prune_read_entries_older_than, self.config.retention_days
                )
            except sqlite3.Error as e:
                logger.warning("Retention prune failed: %s", e)
                report.warnings.append(f"prune failed: {e}")
            else:
                if pruned > 0:
                    report.warnings.append(f"pruned {pruned} old entries")

        report.ended_at = _utcnow()
        failed = sum(1 for r in report.results if r.error)
        logger.info(
            "Fetch cycle complete: %d feeds, %d failed, %d new entries",
            len(report.results),
            failed,
            sum(r.new_entries for r in report.results),
        )
        return report

    async def _fetch_all(
        self, feeds: list[Feed], on_progress: ProgressCallback | None
    ) -> list[FetchResult]:
        total = len(feeds)
        if total == 1:
            result = await self.fetch_single(feeds[0])
            if on_progress:
                on_progress(1, 1, result)
            return [result]

        queue: asyncio.Queue[Feed] = asyncio.Queue()
        for feed in feeds:
            queue.put_nowait(feed)

        results: list[FetchResult] = []

        async def worker() -> None:
            while True:
                try:
                    feed = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                result = await self.fetch_single(feed)
                results.append(result)
                if on_progress:
                    on_progress(len(results), total, result)

        workers = [
            asyncio.create_task(worker())
            for _ in range(min(self.config.fetch_concurrency, total))
        ]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise
        return results

    async def fetch_single(self, feed: Feed) -> FetchResult:
        """Fetch, parse and ingest one feed, recording the outcome on it."""
        result = FetchResult(
            feed_id=feed.id,
            feed_title=feed.display_title,
            feed_url=feed.url,
        )

        # A malformed stored URL fails in build_request with InvalidURL.
        try:
            request = self.client.build_request(
                "GET", feed.url, headers=self._request_headers(feed)
            )
            response = await self.client.send(request, stream=True)
            try:
                etag, last_modified = _merge_cache_headers(response, feed)
                status = response.status_code
                if status == 304 or not 200 <= status < 300:
                    body = b""
                else:
                    body = await read_limited(response, MAX_FEED_BYTES)
                content_type = response.headers.get("content-type")
            finally:
                await response.aclose()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            return await self._fail_feed(feed, result, str(e) or type(e).__name__)

        if status == 304:
            result.not_modified = True
            try:
                await asyncio.to_thread(
                    self.db.update_feed_fetch_success,
                    feed.id, "", "", "", etag, last_modified, _utcnow(),
                )
            except sqlite3.ProgrammingError:
                raise
            except sqlite3.DatabaseError as e:
                return await self._fail_feed(feed, result, str(e))
            logger.debug("Feed '%s' not modified", result.feed_title)
            return result

        if not 200 <= status < 300:
            return await self._fail_feed(feed, result, f"http {status}")

        try:
            parsed = await asyncio.to_thread(parse_feed, body, feed.url, content_type)
        except FeedParseError as e:
            return await self._fail_feed(feed, result, str(e))

        try:
            new_count, updated_count = await asyncio.to_thread(
                self._store_items, feed.id, parsed.items
            )
            result.new_entries = new_count
            result.updated_entries = updated_count
            await asyncio.to_thread(self._record_success, feed, parsed, etag, last_modified)
        except sqlite3.ProgrammingError:
            raise
        except sqlite3.DatabaseError as e:
            return await self._fail_feed(feed, result, str(e))

        if parsed.title:
            result.feed_title = parsed.title
        logger.info(
            "Feed '%s': %d new, %d updated",
            result.feed_title, result.new_entries, result.updated_entries,
        )
        return result

    def _request_headers(self, feed: Feed) -> dict[str, str]:
        headers = {"User-Agent": self.config.user_agent, "Accept": FEED_ACCEPT}
        if feed.etag:
            headers["If-None-Match"] = feed.etag
        if feed.last_modified:
            headers["If-Modified-Since"] = feed.last_modified
        return headers

    def _store_items(self, feed_id: int, items: list[ParsedItem]) -> tuple[int, int]:
        """Sanitize, render and upsert items. Returns (new, updated) counts.

        A store error stops processing; earlier upserts stay committed.
        """
        new_count = 0
        updated_count = 0
        for item in items:
            content_html = sanitize_html(item.content or item.description)
            _, inserted = self.db.upsert_entry(
                UpsertEntryInput(
                    feed_id=feed_id,
                    guid=item.guid,
                    url=item.link,
                    title=item.title,
                    summary=self.renderer.summarize(item.description),
                    content_html=content_html,
                    content_md=self.renderer.html_to_markdown(content_html),
                    author=item.author,
                    published_at=item.published_at,
                    date_modified=item.date_modified,
                )
            )
            if inserted:
                new_count += 1
            else:
                updated_count += 1
        return new_count, updated_count

    def _record_success(
        self, feed: Feed, parsed: ParsedFeed, etag: str, last_modified: str
    ) -> None:
        self.db.update_feed_fetch_success(
            feed.id,
            parsed.title,
            parsed.site_link,
            parsed.description,
            etag,
            last_modified,
            _utcnow(),
        )

    async def _fail_feed(self, feed: Feed, result: FetchResult, message: str) -> FetchResult:
        result.error = message
        logger.warning("Feed '%s' error: %s", result.feed_title, message)
        try:
            await asyncio.to_thread(self.db.set_feed_error, feed.id, message)
        except sqlite3.ProgrammingError:
            raise
        except sqlite3.DatabaseError as e:
            result.error = f"{message}; additionally failed to persist feed error: {e}"
        return result


def _merge_cache_headers(response: httpx.Response, feed: Feed) -> tuple[str, str]:
    """Prefer fresh caching tokens, keeping the stored ones when absent."""
    etag = response.headers.get("etag", "").strip() or (feed.etag or "")
    last_modified = response.headers.get("last-modified", "").strip() or (
        feed.last_modified or ""
    )
    return etag, last_modified


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)
