"""Shared test fixtures for local_feed tests."""

import os
import tempfile

import httpx
import pytest

from local_feed.config import FetchConfig
from local_feed.database import Database
from local_feed.fetcher import FeedFetcher


SAMPLE_RSS_XML = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Test Feed</title>
    <link>https://example.com</link>
    <description>A test RSS feed</description>
    <item>
      <title>First Article</title>
      <link>https://example.com/article-1</link>
      <guid>article-1</guid>
      <description>Description of the first article</description>
      <pubDate>Fri, 13 Feb 2026 10:00:00 GMT</pubDate>
    </item>
    <item>
      <title>Second Article</title>
      <link>https://example.com/article-2</link>
      <guid>article-2</guid>
      <description>Description of the second article</description>
      <pubDate>Fri, 13 Feb 2026 09:00:00 GMT</pubDate>
    </item>
  </channel>
</rss>"""

SAMPLE_ATOM_XML = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Test Atom Feed</title>
  <link href="https://example.com"/>
  <subtitle>A test Atom feed</subtitle>
  <entry>
    <title>Atom Entry 1</title>
    <link href="https://example.com/entry-1"/>
    <id>urn:uuid:entry-1</id>
    <author><name>Ada</name></author>
    <summary>Summary of entry 1</summary>
    <content type="html">&lt;p&gt;Full &lt;b&gt;content&lt;/b&gt; of entry 1&lt;/p&gt;</content>
    <updated>2026-02-13T10:00:00Z</updated>
  </entry>
</feed>"""

SAMPLE_UNSAFE_RSS_XML = """<?xml version="1.0"?>
<rss version="2.0"><channel>
<title>Unsafe Feed</title><link>https://example.com</link><description>desc</description>
<item>
  <guid>item-1</guid>
  <title>Entry One</title>
  <link>https://example.com/entry-1</link>
  <description><![CDATA[<p onclick="steal()">Hello</p><script>alert(1)</script><a href="javascript:alert(2)">x</a>]]></description>
</item>
</channel></rss>"""

SAMPLE_NOT_A_FEED_HTML = """<!DOCTYPE html>
<html>
  <head><title>Not a feed</title></head>
  <body>This is not a feed</body>
</html>"""


def rss_feed(title: str, *items: tuple[str, str]) -> str:
    """Build a small RSS document from (guid, title) pairs."""
    body = "".join(
        f"<item><guid>{guid}</guid><title>{item_title}</title>"
        f"<description>{item_title} body</description></item>"
        for guid, item_title in items
    )
    return (
        '<?xml version="1.0"?><rss version="2.0"><channel>'
        f"<title>{title}</title><link>https://example.com</link>"
        f"<description>{title} description</description>{body}</channel></rss>"
    )


def mock_client(handler) -> httpx.AsyncClient:
    """An AsyncClient whose requests are answered by ``handler``."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def tmp_db_path():
    """Provide a temporary SQLite database path."""
    with tempfile.TemporaryDirectory() as tmp_dir:
        yield os.path.join(tmp_dir, "feeds.db")


@pytest.fixture
def db(tmp_db_path):
    """A connected Database with migrations applied."""
    database = Database(tmp_db_path)
    database.connect()
    yield database
    database.close()


@pytest.fixture
def fetch_config(tmp_db_path):
    return FetchConfig(db_path=tmp_db_path, fetch_concurrency=4, user_agent="local-feed-test/1.0")


@pytest.fixture
def make_fetcher(db, fetch_config):
    """Factory building a FeedFetcher around a mocked HTTP client."""

    def _make(client: httpx.AsyncClient, **overrides) -> FeedFetcher:
        config = fetch_config
        if overrides:
            config = FetchConfig(**{**fetch_config.__dict__, **overrides})
        return FeedFetcher(db, config, client=client)

    return _make

