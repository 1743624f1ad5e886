"""Tests for fetching and decoding feeds."""

import time
from datetime import datetime, timezone

import httpx
import pytest
import respx

from feedsync.errors import FetchError
from feedsync.feed_parser import fetch_feed, parse_document

FEED_URL = "https://example.com/feed.xml"


class TestFetchFeed:
    @respx.mock
    def test_rss_feed(self, sample_rss_xml):
        respx.get(FEED_URL).mock(
            return_value=httpx.Response(200, content=sample_rss_xml.encode())
        )

        fetched = fetch_feed(FEED_URL)

        assert fetched.feed_link == FEED_URL
        assert fetched.title == "Test Feed"
        assert fetched.description == "A test RSS feed"
        assert fetched.site_link == "https://example.com"
        assert [i.guid for i in fetched.items] == ["article-1", "article-2"]

        first = fetched.items[0]
        assert first.title == "First Article"
        assert first.link == "https://example.com/article-1"
        assert first.summary == "Description of the first article"
        assert first.published_at == datetime(2026, 2, 13, 10, 0, tzinfo=timezone.utc)

    @respx.mock
    def test_atom_feed_with_content(self, sample_atom_xml):
        respx.get(FEED_URL).mock(
            return_value=httpx.Response(200, content=sample_atom_xml.encode())
        )

        fetched = fetch_feed(FEED_URL)

        assert fetched.title == "Test Atom Feed"
        assert fetched.description == "A test Atom feed"
        assert len(fetched.items) == 1
        entry = fetched.items[0]
        assert entry.guid == "urn:uuid:entry-1"
        assert "Full body of entry 1" in entry.content
        assert entry.published_at == datetime(2026, 2, 13, 10, 0, tzinfo=timezone.utc)
        assert entry.updated_at == entry.published_at

    @respx.mock
    def test_non_2xx_is_fetch_failed(self):
        respx.get(FEED_URL).mock(return_value=httpx.Response(404))

        with pytest.raises(FetchError) as exc_info:
            fetch_feed(FEED_URL)

        assert exc_info.value.kind == FetchError.FETCH_FAILED
        assert exc_info.value.status_code == 404
        assert exc_info.value.url == FEED_URL

    @respx.mock
    def test_timeout(self):
        respx.get(FEED_URL).mock(side_effect=httpx.ReadTimeout("timed out"))

        with pytest.raises(FetchError) as exc_info:
            fetch_feed(FEED_URL, timeout=0.5)

        assert exc_info.value.kind == FetchError.TIMEOUT

    @respx.mock
    def test_slow_body_hits_overall_deadline(self, sample_rss_xml):
        def trickle():
            yield sample_rss_xml.encode()
            for _ in range(20):
                time.sleep(0.05)
                yield b" "

        respx.get(FEED_URL).mock(return_value=httpx.Response(200, content=trickle()))

        with pytest.raises(FetchError) as exc_info:
            fetch_feed(FEED_URL, timeout=0.2)

        assert exc_info.value.kind == FetchError.TIMEOUT

    @respx.mock
    def test_connection_error(self):
        respx.get(FEED_URL).mock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(FetchError) as exc_info:
            fetch_feed(FEED_URL)

        assert exc_info.value.kind == FetchError.FETCH_FAILED

    @respx.mock
    def test_not_a_feed_is_parse_failed(self, sample_not_a_feed_xml):
        respx.get(FEED_URL).mock(
            return_value=httpx.Response(200, content=sample_not_a_feed_xml.encode())
        )

        with pytest.raises(FetchError) as exc_info:
            fetch_feed(FEED_URL)

        assert exc_info.value.kind == FetchError.PARSE_FAILED

    @pytest.mark.parametrize("url", ["ftp://example.com/feed", "not a url", "/relative/feed"])
    def test_invalid_url(self, url):
        with respx.mock(assert_all_called=False) as router:
            with pytest.raises(FetchError) as exc_info:
                fetch_feed(url)

        assert exc_info.value.kind == FetchError.FETCH_FAILED
        assert not router.calls


class TestParseDocument:
    def test_malformed_feed_keeps_entries_with_warning(self, sample_malformed_xml):
        fetched = parse_document(FEED_URL, sample_malformed_xml)

        assert fetched.title == "Malformed Feed"
        assert "good-item" in [i.guid for i in fetched.items]
        assert any("formatting issues" in w for w in fetched.warnings)

    def test_entry_without_identifier_is_skipped(self):
        xml = """<?xml version="1.0"?>
<rss version="2.0"><channel><title>T</title>
  <item><title>No id at all</title></item>
  <item><title>Has link</title><link>https://example.com/x</link></item>
</channel></rss>"""

        fetched = parse_document(FEED_URL, xml)

        assert [i.guid for i in fetched.items] == ["https://example.com/x"]
        assert any("no identifier" in w for w in fetched.warnings)

    def test_missing_title_gets_default(self):
        xml = """<?xml version="1.0"?>
<rss version="2.0"><channel>
  <item><guid>only</guid></item>
</channel></rss>"""

        fetched = parse_document(FEED_URL, xml)

        assert fetched.title == "Untitled Feed"
        assert fetched.items[0].title == "Untitled"
        assert fetched.items[0].published_at is None
