"""Tests for the staleness-gated poller."""

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from conftest import SAMPLE_RSS_XML, mock_client
from local_feed.poller import poll_once


def _handler(requests):
    def handler(request):
        requests.append(request)
        return httpx.Response(
            200, text=SAMPLE_RSS_XML, headers={"content-type": "application/rss+xml"}
        )

    return handler


@pytest.mark.asyncio
async def test_skips_without_feeds(db, make_fetcher):
    requests = []

    async with make_fetcher(mock_client(_handler(requests))) as fetcher:
        report = await poll_once(fetcher, db, timedelta(minutes=30))

    assert report is None
    assert requests == []


@pytest.mark.asyncio
async def test_fetches_never_fetched_feeds(db, make_fetcher):
    db.create_feed("https://example.com/feed.xml")
    requests = []

    async with make_fetcher(mock_client(_handler(requests))) as fetcher:
        report = await poll_once(fetcher, db, timedelta(minutes=30))

    assert report is not None
    assert report.results[0].new_entries == 2
    assert len(requests) == 1


@pytest.mark.asyncio
async def test_skips_when_recently_fetched(db, make_fetcher):
    feed, _ = db.create_feed("https://example.com/feed.xml")
    db.update_feed_fetch_success(feed.id, "", "", "", "", "", datetime.now(timezone.utc))
    requests = []

    async with make_fetcher(mock_client(_handler(requests))) as fetcher:
        report = await poll_once(fetcher, db, timedelta(minutes=30))

    assert report is None
    assert requests == []


@pytest.mark.asyncio
async def test_fetches_when_stale(db, make_fetcher):
    feed, _ = db.create_feed("https://example.com/feed.xml")
    an_hour_ago = datetime.now(timezone.utc) - timedelta(hours=1)
    db.update_feed_fetch_success(feed.id, "", "", "", "", "", an_hour_ago)
    requests = []

    async with make_fetcher(mock_client(_handler(requests))) as fetcher:
        report = await poll_once(fetcher, db, timedelta(minutes=30))

    assert report is not None
    assert len(requests) == 1
