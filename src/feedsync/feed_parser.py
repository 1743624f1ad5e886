"""RSS/Atom fetching and decoding using httpx and feedparser."""

import logging
import time
from collections.abc import Callable
from datetime import datetime, timezone
from time import struct_time
from urllib.parse import urlparse

import feedparser
import httpx

from feedsync.errors import FetchError
from feedsync.models import FetchedFeed, FetchedItem

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
USER_AGENT = "feedsync/0.1"

Fetcher = Callable[[str, float], FetchedFeed]


def fetch_feed(url: str, timeout: float = DEFAULT_TIMEOUT) -> FetchedFeed:
    """Fetch and decode an RSS or Atom feed from a URL.

    Args:
        url: The feed URL to fetch.
        timeout: Seconds before the whole request, body included, is abandoned.

    Returns:
        FetchedFeed with channel metadata and entries in document order.

    Raises:
        FetchError: If the URL is invalid, unreachable, times out, or is not a valid feed.
    """
    _validate_url(url)

    deadline = time.monotonic() + timeout
    try:
        with httpx.Client(
            timeout=timeout,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        ) as client:
            with client.stream("GET", url) as response:
                if not response.is_success:
                    raise FetchError(
                        f"Could not reach URL: HTTP {response.status_code}",
                        url=url,
                        status_code=response.status_code,
                    )
                body = _read_body(response, url, timeout, deadline)
    except httpx.TimeoutException as e:
        raise FetchError(
            f"Timed out after {timeout}s", kind=FetchError.TIMEOUT, url=url
        ) from e
    except httpx.HTTPError as e:
        raise FetchError(f"Could not reach URL: {e}", url=url) from e

    return parse_document(url, body)


def _read_body(
    response: httpx.Response, url: str, timeout: float, deadline: float
) -> bytes:
    """Read the response body, giving up once ``deadline`` has passed.

    The client timeout bounds each read separately, not the total.
    """
    chunks = []
    for chunk in response.iter_bytes():
        chunks.append(chunk)
        if time.monotonic() > deadline:
            raise FetchError(
                f"Timed out after {timeout}s", kind=FetchError.TIMEOUT, url=url
            )
    return b"".join(chunks)


def parse_document(url: str, body: bytes | str) -> FetchedFeed:
    """Decode a raw feed document into a FetchedFeed.

    Raises:
        FetchError: With kind ``parse-failed`` if the document is not a feed.
    """
    parsed = feedparser.parse(body)

    if not parsed.get("version") and not parsed.entries:
        detail = f": {parsed.bozo_exception}" if parsed.bozo else ""
        raise FetchError(
            f"URL does not point to a valid RSS or Atom feed{detail}",
            kind=FetchError.PARSE_FAILED,
            url=url,
        )

    warnings: list[str] = []
    if parsed.bozo:
        warnings.append(f"Feed has formatting issues: {parsed.bozo_exception}")

    items = _extract_items(parsed.entries, warnings)
    for warning in warnings:
        logger.debug("%s: %s", url, warning)

    channel = parsed.feed
    return FetchedFeed(
        feed_link=url,
        title=channel.get("title") or "Untitled Feed",
        description=channel.get("description") or channel.get("subtitle"),
        site_link=channel.get("link"),
        updated_at=_parse_date(channel, ("updated_parsed", "published_parsed")),
        items=items,
        warnings=warnings,
    )


def _validate_url(url: str) -> None:
    """Validate that the URL has a valid format."""
    try:
        result = urlparse(url)
    except ValueError:
        raise FetchError("Invalid URL format", url=url)
    if not result.scheme or not result.netloc:
        raise FetchError("Invalid URL format", url=url)
    if result.scheme not in ("http", "https"):
        raise FetchError(
            "Invalid URL format: only http and https are supported", url=url
        )


def _extract_items(entries: list, warnings: list[str]) -> list[FetchedItem]:
    """Normalize feedparser entries, keeping document order."""
    items = []
    for entry in entries:
        guid = entry.get("id") or entry.get("guid") or entry.get("link")
        if not guid:
            warnings.append(
                f"Skipping entry with no identifier: {entry.get('title', 'unknown')}"
            )
            continue

        items.append(
            FetchedItem(
                guid=guid,
                title=entry.get("title") or "Untitled",
                link=entry.get("link"),
                summary=entry.get("summary") or entry.get("description"),
                content=_extract_content(entry),
                published_at=_parse_date(entry, ("published_parsed", "updated_parsed")),
                updated_at=_parse_date(entry, ("updated_parsed",)),
            )
        )
    return items


def _extract_content(entry: dict) -> str | None:
    contents = entry.get("content")
    if not contents:
        return None
    first = contents[0]
    return first.get("value") if isinstance(first, dict) else None


def _parse_date(source: dict, fields: tuple[str, ...]) -> datetime | None:
    """Parse the first usable UTC date among ``fields``."""
    for name in fields:
        time_struct = source.get(name)
        if isinstance(time_struct, struct_time):
            try:
                return datetime(*time_struct[:6], tzinfo=timezone.utc)
            except (ValueError, OverflowError):
                continue
    return None
