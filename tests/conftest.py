"""Shared test fixtures for feedsync tests."""

import os
import tempfile
from datetime import datetime, timezone

import pytest

from feedsync.database import Database
from feedsync.models import FetchedFeed, FetchedItem


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
      <pubDate>Thu, 13 Feb 2026 10:00:00 GMT</pubDate>
    </item>
    <item>
      <title>Second Article</title>
      <link>https://example.com/article-2</link>
      <guid>article-2</guid>
      <description>Description of the second article</description>
      <pubDate>Thu, 13 Feb 2026 09:00:00 GMT</pubDate>
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
    <summary>Summary of entry 1</summary>
    <content type="html">&lt;p&gt;Full body of entry 1&lt;/p&gt;</content>
    <updated>2026-02-13T10:00:00Z</updated>
  </entry>
</feed>"""

SAMPLE_MALFORMED_XML = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Malformed Feed</title>
    <link>https://example.com</link>
    <item>
      <title>Good Item</title>
      <guid>good-item</guid>
    </item>
    <item>
      <title>Bad Item</title>
      <!-- Missing closing tags intentionally -->
"""

SAMPLE_NOT_A_FEED_XML = """<?xml version="1.0" encoding="UTF-8"?>
<html>
  <body>This is not a feed</body>
</html>"""

T1 = datetime(2026, 2, 13, 9, 0, tzinfo=timezone.utc)
T2 = datetime(2026, 2, 13, 10, 0, tzinfo=timezone.utc)


class FakeFetcher:
    """Stands in for fetch_feed: serves canned feeds or raises canned errors."""

    def __init__(self):
        self.feeds: dict[str, FetchedFeed | Exception] = {}
        self.calls: list[str] = []

    def __call__(self, url: str, timeout: float) -> FetchedFeed:
        self.calls.append(url)
        result = self.feeds[url]
        if isinstance(result, Exception):
            raise result
        return result


def make_item(guid: str, published_at: datetime | None = T1, **fields) -> FetchedItem:
    return FetchedItem(
        guid=guid,
        title=fields.pop("title", f"Title {guid}"),
        link=fields.pop("link", f"https://example.com/{guid}"),
        published_at=published_at,
        **fields,
    )


def make_feed(url: str, items: list[FetchedItem]) -> FetchedFeed:
    return FetchedFeed(
        feed_link=url,
        title=f"Feed at {url}",
        site_link="https://example.com",
        items=items,
    )


@pytest.fixture
def tmp_db_path():
    """Provide a temporary SQLite database path."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        path = f.name
    yield path
    for suffix in ("", "-wal", "-shm"):
        try:
            os.unlink(path + suffix)
        except OSError:
            pass


@pytest.fixture
def db(tmp_db_path):
    """A connected Database on a temporary file."""
    database = Database(tmp_db_path, pool_size=4, pool_timeout=5.0)
    database.connect()
    yield database
    database.close()


@pytest.fixture
def users(db):
    """Two stored users, alice and bob."""
    return {
        name: db.add_user(name, f"hash-of-{name}")
        for name in ("alice", "bob")
    }


@pytest.fixture
def fake_fetcher():
    return FakeFetcher()


@pytest.fixture
def sample_rss_xml():
    """Sample valid RSS 2.0 XML."""
    return SAMPLE_RSS_XML


@pytest.fixture
def sample_atom_xml():
    """Sample valid Atom XML."""
    return SAMPLE_ATOM_XML


@pytest.fixture
def sample_malformed_xml():
    """Sample malformed RSS XML."""
    return SAMPLE_MALFORMED_XML


@pytest.fixture
def sample_not_a_feed_xml():
    """Sample XML that is not a feed."""
    return SAMPLE_NOT_A_FEED_XML
