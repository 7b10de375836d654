"""Entry point for local_feed: python -m local_feed"""

import asyncio
import json
import logging

from local_feed.config import FetchConfig
from local_feed.database import Database
from local_feed.fetcher import FeedFetcher
from local_feed.poller import start_polling

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)
# Quiet noisy loggers
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


async def main() -> None:
    """Run one fetch cycle, or poll forever when FEED_POLL_INTERVAL is set."""
    config = FetchConfig.from_env()

    db = Database(config.db_path)
    db.connect()

    try:
        async with FeedFetcher(db, config) as fetcher:
            if config.poll_interval > 0:
                await start_polling(fetcher, db, config.poll_interval, config.stale_after)
            else:
                report = await fetcher.run_fetch()
                print(json.dumps(report.to_dict(), indent=2))
    finally:
        db.close()


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nGoodbye!")


if __name__ == "__main__":
    run()
