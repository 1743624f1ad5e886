"""Create per-subscriber visibility rows for newly inserted items."""

import logging
from collections.abc import Iterable

from feedsync.database import Database
from feedsync.models import SubscribedItem

logger = logging.getLogger(__name__)


def fan_out(db: Database, item_ids: Iterable[int], subscriber_ids: Iterable[int]) -> int:
    """Mark every item unseen for every subscriber in one bulk write.

    Returns the number of rows created. With no subscribers or no items this
    is a no-op and storage is not touched.
    """
    items = list(item_ids)
    subscribers = sorted(set(subscriber_ids))
    if not items or not subscribers:
        return 0

    rows = [
        SubscribedItem(user_id=user_id, item_id=item_id)
        for user_id in subscribers
        for item_id in items
    ]
    created = db.insert_subscribed_items(rows)
    logger.debug(
        "Fanned out %d items to %d subscribers (%d rows)",
        len(items),
        len(subscribers),
        created,
    )
    return created
