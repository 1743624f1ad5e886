"""Background polling loop for feedsync."""

import asyncio
import logging

from feedsync.config import DEFAULT_MAX_CONCURRENCY, DEFAULT_POLL_INTERVAL, Settings
from feedsync.database import Database
from feedsync.errors import FetchError, PersistenceError
from feedsync.fanout import fan_out
from feedsync.feed_parser import DEFAULT_TIMEOUT, Fetcher, fetch_feed
from feedsync.models import FeedTarget, Item, utcnow
from feedsync.reconciler import reconcile

logger = logging.getLogger(__name__)


async def sync_feed(
    db: Database,
    target: FeedTarget,
    fetcher: Fetcher = fetch_feed,
    timeout: float = DEFAULT_TIMEOUT,
) -> list[Item]:
    """Fetch one feed, reconcile it and fan new items out to its subscribers.

    Stages run strictly one after another. Any failure is logged and ends
    this feed's sync with an empty result; it is never raised.
    """
    try:
        fetched = await asyncio.to_thread(fetcher, target.feed_url, timeout)
    except FetchError as e:
        logger.warning("Feed %d (%s) %s: %s", target.feed_id, target.feed_url, e.kind, e)
        await _record_error(db, target.feed_id, str(e))
        return []
    except Exception as e:
        logger.exception("Feed %d (%s) unexpected fetch error", target.feed_id, target.feed_url)
        await _record_error(db, target.feed_id, str(e))
        return []

    try:
        new_items = await asyncio.to_thread(reconcile, db, target.feed_id, fetched.items)
        if new_items:
            await asyncio.to_thread(
                fan_out, db, [item.id for item in new_items], target.subscriber_ids
            )
            logger.info(
                "Feed %d (%s): %d new items for %d subscribers",
                target.feed_id,
                target.feed_url,
                len(new_items),
                len(target.subscriber_ids),
            )
        await asyncio.to_thread(db.record_fetch_success, target.feed_id, utcnow())
    except PersistenceError as e:
        logger.warning("Feed %d (%s) storage error: %s", target.feed_id, target.feed_url, e)
        return []
    except Exception as e:
        logger.exception("Feed %d (%s) unexpected error", target.feed_id, target.feed_url)
        await _record_error(db, target.feed_id, str(e))
        return []

    return new_items


async def _record_error(db: Database, feed_id: int, message: str) -> None:
    try:
        await asyncio.to_thread(db.record_fetch_error, feed_id, message)
    except Exception as e:
        logger.warning("Feed %d: could not record error: %s", feed_id, e)


class FeedPoller:
    """Periodically dispatches one independent sync task per known feed.

    Ticks never wait for the previous tick's tasks; the number of syncs
    running at once is capped by a semaphore shared across ticks.
    """

    def __init__(
        self,
        db: Database,
        interval: float = DEFAULT_POLL_INTERVAL,
        fetch_timeout: float = DEFAULT_TIMEOUT,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        fetcher: Fetcher = fetch_feed,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.db = db
        self.interval = interval
        self.fetch_timeout = fetch_timeout
        self.max_concurrency = max_concurrency
        self.fetcher = fetcher
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._tasks: set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        """Number of dispatched sync tasks that have not finished."""
        return len(self._tasks)

    async def poll_once(self) -> list[asyncio.Task]:
        """List feeds with their subscribers and dispatch a sync task for each.

        Returns the dispatched tasks without awaiting them.
        """
        targets = await asyncio.to_thread(self.db.list_feeds_with_subscribers)

        tasks = []
        for target in targets:
            task = asyncio.create_task(
                self._sync_bounded(target), name=f"sync-feed-{target.feed_id}"
            )
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            tasks.append(task)

        logger.info("Poll cycle dispatched %d feeds (%d in flight)", len(tasks), self.in_flight)
        return tasks

    async def _sync_bounded(self, target: FeedTarget) -> list[Item]:
        async with self._semaphore:
            return await sync_feed(self.db, target, self.fetcher, self.fetch_timeout)

    async def run(self) -> None:
        """Run the polling loop indefinitely."""
        logger.info(
            "Poller started (interval: %ds, max concurrency: %d)",
            self.interval,
            self.max_concurrency,
        )

        while True:
            try:
                await self.poll_once()
            except Exception as e:
                logger.error("Poll cycle failed: %s", e)

            await asyncio.sleep(self.interval)

    async def shutdown(self) -> None:
        """Cancel in-flight sync tasks and wait for them to unwind."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Cancelled %d in-flight feed syncs", len(tasks))


async def start_polling(db: Database, settings: Settings) -> None:
    """Run a FeedPoller configured from settings until cancelled."""
    poller = FeedPoller(
        db,
        interval=settings.poll_interval,
        fetch_timeout=settings.fetch_timeout,
        max_concurrency=settings.max_concurrency,
    )
    try:
        await poller.run()
    finally:
        await poller.shutdown()
