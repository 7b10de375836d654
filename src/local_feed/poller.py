"""Background polling loop for local_feed."""

import asyncio
import logging
import sqlite3
from datetime import timedelta

import httpx

from local_feed.database import Database
from local_feed.fetcher import FeedFetcher
from local_feed.models import FetchReport

logger = logging.getLogger(__name__)


async def poll_once(
    fetcher: FeedFetcher, db: Database, stale_after: timedelta
) -> FetchReport | None:
    """Run a fetch cycle if the newest fetch is older than ``stale_after``.

    Returns the report, or None when there is nothing to do.
    """
    staleness = await asyncio.to_thread(db.get_fetch_staleness, stale_after)
    if not staleness.has_feeds:
        logger.debug("No feeds subscribed; skipping poll")
        return None
    if not staleness.stale:
        logger.debug("Feeds fresh as of %s; skipping poll", staleness.last_fetched_at)
        return None
    return await fetcher.run_fetch()


async def start_polling(
    fetcher: FeedFetcher,
    db: Database,
    interval: int,
    stale_after: timedelta,
) -> None:
    """Run the polling loop until cancelled."""
    logger.info("Poller started (interval: %ds)", interval)

    while True:
        try:
            report = await poll_once(fetcher, db, stale_after)
            if report is not None:
                new_count = sum(r.new_entries for r in report.results)
                if new_count > 0:
                    logger.info("Poll cycle complete: %d new entries", new_count)
        except (sqlite3.Error, httpx.HTTPError) as e:
            logger.error("Poll cycle failed: %s", e)

        await asyncio.sleep(interval)
