"""Onboarding path: attach a user to a feed, creating the feed if needed."""

import logging
from dataclasses import dataclass
from enum import Enum

from feedsync.database import Database
from feedsync.errors import DuplicateSubscriptionError, FetchError, PersistenceError
from feedsync.fanout import fan_out
from feedsync.feed_parser import DEFAULT_TIMEOUT, Fetcher, fetch_feed
from feedsync.models import FetchedFeed, utcnow
from feedsync.reconciler import reconcile

logger = logging.getLogger(__name__)


class SubscribeState(Enum):
    RESOLVE_FEED = "resolve-feed"
    FETCH_OR_READ_EXISTING = "fetch-or-read-existing"
    ENSURE_SUBSCRIPTION = "ensure-subscription"
    BACKFILL_VISIBILITY = "backfill-visibility"
    DONE = "done"
    FAILED = "failed"


@dataclass
class SubscribeResult:
    """Outcome of one subscribe call."""

    url: str
    user_id: int
    state: SubscribeState = SubscribeState.RESOLVE_FEED
    feed_id: int | None = None
    created_feed: bool = False
    already_subscribed: bool = False
    backfilled: int = 0
    new_items: int = 0
    failed_at: SubscribeState | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.state is SubscribeState.DONE

    def advance(self, state: SubscribeState) -> None:
        logger.debug("subscribe %s by %d: %s", self.url, self.user_id, state.value)
        self.state = state

    def fail(self, error: Exception) -> None:
        self.failed_at = self.state
        self.state = SubscribeState.FAILED
        self.error = str(error)


def subscribe(
    db: Database,
    url: str,
    user_id: int,
    fetcher: Fetcher = fetch_feed,
    timeout: float = DEFAULT_TIMEOUT,
) -> SubscribeResult:
    """Subscribe a user to the feed at ``url``.

    An unknown URL is fetched and stored first; its initial items are made
    visible to the new subscriber. For a known feed, every item already
    stored is backfilled as unseen for the user.

    Failures never raise: the returned result ends in ``FAILED`` with the
    error and the state it happened in. Writes made before the failure are
    not rolled back.
    """
    result = SubscribeResult(url=url, user_id=user_id)
    logger.info("Subscribing %s by user %d", url, user_id)

    try:
        _run(db, result, fetcher, timeout)
    except FetchError as e:
        logger.warning("Subscribe %s by user %d failed (%s): %s", url, user_id, e.kind, e)
        result.fail(e)
    except PersistenceError as e:
        logger.warning(
            "Subscribe %s by user %d failed during %s: %s",
            url,
            user_id,
            result.state.value,
            e,
        )
        result.fail(e)

    return result


def _run(db: Database, result: SubscribeResult, fetcher: Fetcher, timeout: float) -> None:
    feed_id = db.find_feed_by_url(result.url)

    result.advance(SubscribeState.FETCH_OR_READ_EXISTING)
    fetched: FetchedFeed | None = None
    existing_item_ids: list[int] = []
    if feed_id is None:
        fetched = fetcher(result.url, timeout)
        feed = db.insert_feed(fetched.to_feed())
        feed_id = feed.id
        result.created_feed = True
        logger.info("Created feed %d for %s", feed_id, result.url)
    else:
        existing_item_ids = db.list_item_ids(feed_id)
    result.feed_id = feed_id

    result.advance(SubscribeState.ENSURE_SUBSCRIPTION)
    try:
        db.insert_subscription(result.user_id, feed_id)
    except DuplicateSubscriptionError as e:
        logger.warning("Subscribe failure: %s", e)
        result.already_subscribed = True
        result.advance(SubscribeState.DONE)
        return
    logger.info("Subscribed: feed %d by user %d", feed_id, result.user_id)

    result.advance(SubscribeState.BACKFILL_VISIBILITY)
    if fetched is not None:
        inserted = reconcile(db, feed_id, fetched.items)
        # Includes items a concurrent tick stored before the subscription existed
        fan_out(db, db.list_item_ids(feed_id), [result.user_id])
        db.record_fetch_success(feed_id, utcnow())
        result.new_items = len(inserted)
    elif existing_item_ids:
        result.backfilled = fan_out(db, existing_item_ids, [result.user_id])

    result.advance(SubscribeState.DONE)
