"""Data models for feedsync."""

from dataclasses import dataclass, field
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Feed:
    """Represents a remote syndication source, keyed by its fetch URL."""

    feed_link: str
    title: str
    description: str | None = None
    site_link: str | None = None
    updated_at: datetime | None = None
    last_fetched_at: datetime | None = None
    error_count: int = 0
    last_error: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    id: int | None = None


@dataclass
class Item:
    """Represents a single stored entry from a feed."""

    feed_id: int
    guid: str
    title: str
    link: str | None = None
    summary: str | None = None
    content: str | None = None
    published_at: datetime | None = None
    updated_at: datetime | None = None
    fetched_at: datetime = field(default_factory=utcnow)
    id: int | None = None


@dataclass
class User:
    username: str
    password_hash: str
    id: int | None = None


@dataclass
class Subscription:
    """A user following a feed."""

    user_id: int
    feed_id: int
    created_at: datetime = field(default_factory=utcnow)
    id: int | None = None


@dataclass
class SubscribedItem:
    """Per-user visibility record for an item."""

    user_id: int
    item_id: int
    seen: bool = False
    id: int | None = None


# --- Fetch boundary ---


@dataclass
class FetchedItem:
    """One entry as decoded from a remote document."""

    guid: str
    title: str
    link: str | None = None
    summary: str | None = None
    content: str | None = None
    published_at: datetime | None = None
    updated_at: datetime | None = None

    def to_item(self, feed_id: int) -> Item:
        return Item(
            feed_id=feed_id,
            guid=self.guid,
            title=self.title,
            link=self.link,
            summary=self.summary,
            content=self.content,
            published_at=self.published_at,
            updated_at=self.updated_at,
        )


@dataclass
class FetchedFeed:
    """Channel metadata plus ordered entries from one fetch."""

    feed_link: str
    title: str
    description: str | None = None
    site_link: str | None = None
    updated_at: datetime | None = None
    items: list[FetchedItem] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_feed(self) -> Feed:
        return Feed(
            feed_link=self.feed_link,
            title=self.title,
            description=self.description,
            site_link=self.site_link,
            updated_at=self.updated_at,
        )


@dataclass(frozen=True)
class ExistingItem:
    """Stored identity of an item, as returned by the duplicate lookup."""

    id: int
    guid: str
    published_at: datetime | None


@dataclass(frozen=True)
class FeedTarget:
    """A feed to poll together with everyone subscribed to it."""

    feed_id: int
    feed_url: str
    subscriber_ids: frozenset[int] = frozenset()
