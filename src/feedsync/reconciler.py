"""Reconcile freshly fetched entries against stored items.

Each fetched entry is classified by its guid and publication date:

- new: no stored item in the same feed has the guid; it is inserted.
- updated: a stored item has the guid but a different ``published_at``;
  the stored row is overwritten in place.
- unchanged: same guid, same ``published_at``; nothing is written.

Only new items are handed on to the fan-out step. Change detection looks
at ``published_at`` alone, so an entry whose body changes without a new
publication date is treated as unchanged.
"""

import logging
from dataclasses import dataclass, field

from feedsync.database import Database
from feedsync.models import ExistingItem, FetchedItem, Item

logger = logging.getLogger(__name__)


@dataclass
class Reconciliation:
    """Classification of one fetched batch."""

    new: list[FetchedItem] = field(default_factory=list)
    updated: list[tuple[int, FetchedItem]] = field(default_factory=list)
    unchanged: list[FetchedItem] = field(default_factory=list)


def classify(
    fetched_items: list[FetchedItem], existing: list[ExistingItem]
) -> Reconciliation:
    """Partition fetched items into new, updated and unchanged.

    A guid repeated within ``fetched_items`` is only considered once, at its
    first position.
    """
    stored = {e.guid: e for e in existing}
    result = Reconciliation()
    seen_guids: set[str] = set()

    for item in fetched_items:
        if item.guid in seen_guids:
            continue
        seen_guids.add(item.guid)

        match = stored.get(item.guid)
        if match is None:
            result.new.append(item)
        elif item.published_at != match.published_at:
            result.updated.append((match.id, item))
        else:
            result.unchanged.append(item)

    return result


def reconcile(db: Database, feed_id: int, fetched_items: list[FetchedItem]) -> list[Item]:
    """Apply a fetched batch to storage and return the newly inserted items.

    Raises:
        PersistenceError: If any storage call fails. Writes that already
            succeeded are kept; the next poll picks up whatever is left.
    """
    if not fetched_items:
        return []

    existing = db.find_existing_by_guid(feed_id, (i.guid for i in fetched_items))
    result = classify(fetched_items, existing)

    for item_id, item in result.updated:
        db.update_item(item_id, item)
    if result.updated:
        logger.debug("Feed %d: %d updated items", feed_id, len(result.updated))

    inserted = db.insert_items([item.to_item(feed_id) for item in result.new])

    logger.debug(
        "Feed %d: %d new, %d updated, %d unchanged",
        feed_id,
        len(inserted),
        len(result.updated),
        len(result.unchanged),
    )
    return inserted
