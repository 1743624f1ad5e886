"""SQLite persistence gateway for feedsync."""

import logging
import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import QueuePool

from feedsync.errors import DuplicateSubscriptionError, PersistenceError
from feedsync.models import (
    ExistingItem,
    Feed,
    FeedTarget,
    FetchedItem,
    Item,
    SubscribedItem,
    Subscription,
    User,
    utcnow,
)

logger = logging.getLogger(__name__)

# Stay well under SQLITE_MAX_VARIABLE_NUMBER on older builds
GUID_CHUNK_SIZE = 500

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    username TEXT UNIQUE NOT NULL,
    password_hash TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS feeds (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    feed_link TEXT UNIQUE NOT NULL,
    site_link TEXT,
    title TEXT NOT NULL,
    description TEXT,
    updated_at TEXT,
    last_fetched_at TEXT,
    error_count INTEGER DEFAULT 0,
    last_error TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    feed_id INTEGER NOT NULL REFERENCES feeds(id),
    guid TEXT NOT NULL,
    link TEXT,
    title TEXT NOT NULL,
    summary TEXT,
    content TEXT,
    published_at TEXT,
    updated_at TEXT,
    fetched_at TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE(feed_id, guid)
);

CREATE TABLE IF NOT EXISTS subscriptions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id),
    feed_id INTEGER NOT NULL REFERENCES feeds(id),
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    UNIQUE(user_id, feed_id)
);

CREATE TABLE IF NOT EXISTS subscribed_items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id),
    item_id INTEGER NOT NULL REFERENCES items(id),
    seen INTEGER NOT NULL DEFAULT 0,
    UNIQUE(user_id, item_id)
);

CREATE INDEX IF NOT EXISTS idx_items_feed_id ON items(feed_id);
CREATE INDEX IF NOT EXISTS idx_items_published_at ON items(published_at);
CREATE INDEX IF NOT EXISTS idx_subscriptions_feed_id ON subscriptions(feed_id);
CREATE INDEX IF NOT EXISTS idx_subscribed_items_item_id ON subscribed_items(item_id);
"""


class Database:
    """SQLite gateway over a bounded pool of connections.

    Every public method checks out one connection, runs as a single
    transaction and hands the connection back, so concurrent sync tasks
    never hold a connection between calls.
    """

    def __init__(self, db_path: str, pool_size: int = 5, pool_timeout: float = 30.0):
        if pool_size < 1:
            raise ValueError("pool_size must be at least 1")
        self.db_path = db_path
        self.pool_size = pool_size
        self.pool_timeout = pool_timeout
        self._engine: Engine | None = None

    def connect(self) -> None:
        """Open the connection pool and initialize schema."""
        engine = create_engine(
            f"sqlite:///{self.db_path}",
            poolclass=QueuePool,
            pool_size=self.pool_size,
            max_overflow=0,
            pool_timeout=self.pool_timeout,
            connect_args={"check_same_thread": False, "timeout": self.pool_timeout},
        )
        event.listen(engine, "connect", _configure_sqlite_connection)
        self._engine = engine

        with self._connection() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(SCHEMA_SQL)
        logger.info("Database ready: %s (pool size %d)", self.db_path, self.pool_size)

    def close(self) -> None:
        """Close pooled connections.

        Connections still checked out are closed when they are handed back.
        """
        if self._engine is None:
            return
        engine, self._engine = self._engine, None
        engine.dispose()

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Check out a pooled connection for one transaction."""
        engine = self._engine
        if engine is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        try:
            pooled = engine.raw_connection()
        except SQLAlchemyError as e:
            raise PersistenceError(f"No database connection available: {e}") from e

        conn = pooled.driver_connection
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(str(e)) from e
        except BaseException:
            conn.rollback()
            raise
        finally:
            if self._engine is engine:
                pooled.close()
            else:
                # Engine was disposed while this connection was out
                pooled.invalidate()

    # --- User operations ---

    def add_user(self, username: str, password_hash: str) -> User:
        """Insert a user. Hashing happens upstream."""
        with self._connection() as conn:
            cursor = conn.execute(
                "INSERT INTO users (username, password_hash) VALUES (?, ?)",
                (username, password_hash),
            )
        return User(username=username, password_hash=password_hash, id=cursor.lastrowid)

    def get_user(self, username: str) -> User | None:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE username = ?", (username,)
            ).fetchone()
        if row is None:
            return None
        return User(id=row["id"], username=row["username"], password_hash=row["password_hash"])

    # --- Feed operations ---

    def insert_feed(self, feed: Feed) -> Feed:
        """Insert a new feed and return it with its assigned id."""
        with self._connection() as conn:
            cursor = conn.execute(
                """INSERT INTO feeds (feed_link, site_link, title, description,
                   updated_at, last_fetched_at, error_count, last_error, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    feed.feed_link,
                    feed.site_link,
                    feed.title,
                    feed.description,
                    _dt_to_str(feed.updated_at),
                    _dt_to_str(feed.last_fetched_at),
                    feed.error_count,
                    feed.last_error,
                    _dt_to_str(feed.created_at),
                ),
            )
        feed.id = cursor.lastrowid
        return feed

    def find_feed_by_url(self, url: str) -> int | None:
        """Return the id of the feed fetched from ``url``, if any."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT id FROM feeds WHERE feed_link = ?", (url,)
            ).fetchone()
        return row["id"] if row else None

    def get_feed_by_url(self, url: str) -> Feed | None:
        """Look up a feed by its URL."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM feeds WHERE feed_link = ?", (url,)
            ).fetchone()
        return _row_to_feed(row) if row else None

    def get_feed_by_id(self, feed_id: int) -> Feed | None:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM feeds WHERE id = ?", (feed_id,)
            ).fetchone()
        return _row_to_feed(row) if row else None

    def list_feeds_with_subscribers(self) -> list[FeedTarget]:
        """Return every feed with the ids of its subscribers.

        Feeds nobody follows are included with an empty subscriber set.
        """
        with self._connection() as conn:
            feed_rows = conn.execute(
                "SELECT id, feed_link FROM feeds ORDER BY id"
            ).fetchall()
            subscription_rows = conn.execute(
                "SELECT feed_id, user_id FROM subscriptions"
            ).fetchall()

        subscribers: dict[int, set[int]] = {}
        for row in subscription_rows:
            subscribers.setdefault(row["feed_id"], set()).add(row["user_id"])

        return [
            FeedTarget(
                feed_id=row["id"],
                feed_url=row["feed_link"],
                subscriber_ids=frozenset(subscribers.get(row["id"], ())),
            )
            for row in feed_rows
        ]

    def record_fetch_success(self, feed_id: int, timestamp: datetime) -> None:
        """Set last_fetched_at and clear any recorded error."""
        with self._connection() as conn:
            conn.execute(
                """UPDATE feeds SET last_fetched_at = ?, error_count = 0,
                   last_error = NULL WHERE id = ?""",
                (_dt_to_str(timestamp), feed_id),
            )

    def record_fetch_error(self, feed_id: int, error_message: str) -> None:
        """Increment error count and store error message for a feed."""
        with self._connection() as conn:
            conn.execute(
                """UPDATE feeds SET error_count = error_count + 1, last_error = ?
                   WHERE id = ?""",
                (error_message, feed_id),
            )

    # --- Item operations ---

    def find_existing_by_guid(
        self, feed_id: int, guids: Iterable[str]
    ) -> list[ExistingItem]:
        """Return stored (id, guid, published_at) for guids already in a feed."""
        guid_list = list(dict.fromkeys(guids))
        if not guid_list:
            return []

        found: list[ExistingItem] = []
        with self._connection() as conn:
            for start in range(0, len(guid_list), GUID_CHUNK_SIZE):
                chunk = guid_list[start:start + GUID_CHUNK_SIZE]
                placeholders = ",".join("?" for _ in chunk)
                rows = conn.execute(
                    f"""SELECT id, guid, published_at FROM items
                        WHERE feed_id = ? AND guid IN ({placeholders})""",
                    (feed_id, *chunk),
                ).fetchall()
                found.extend(
                    ExistingItem(
                        id=r["id"],
                        guid=r["guid"],
                        published_at=_str_to_dt(r["published_at"]),
                    )
                    for r in rows
                )
        return found

    def insert_items(self, items: list[Item]) -> list[Item]:
        """Insert items in one transaction and return them with ids assigned."""
        if not items:
            return []
        with self._connection() as conn:
            for item in items:
                cursor = conn.execute(
                    """INSERT INTO items (feed_id, guid, link, title, summary,
                       content, published_at, updated_at, fetched_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        item.feed_id,
                        item.guid,
                        item.link,
                        item.title,
                        item.summary,
                        item.content,
                        _dt_to_str(item.published_at),
                        _dt_to_str(item.updated_at),
                        _dt_to_str(item.fetched_at),
                    ),
                )
                item.id = cursor.lastrowid
        return items

    def update_item(self, item_id: int, fetched: FetchedItem) -> None:
        """Overwrite a stored item's mutable fields in place."""
        with self._connection() as conn:
            conn.execute(
                """UPDATE items SET title = ?, link = ?, summary = ?, content = ?,
                   published_at = ?, updated_at = ? WHERE id = ?""",
                (
                    fetched.title,
                    fetched.link,
                    fetched.summary,
                    fetched.content,
                    _dt_to_str(fetched.published_at),
                    _dt_to_str(fetched.updated_at or utcnow()),
                    item_id,
                ),
            )

    def get_item(self, item_id: int) -> Item | None:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM items WHERE id = ?", (item_id,)
            ).fetchone()
        return _row_to_item(row) if row else None

    def list_item_ids(self, feed_id: int) -> list[int]:
        """Return ids of all items stored for a feed."""
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT id FROM items WHERE feed_id = ? ORDER BY id", (feed_id,)
            ).fetchall()
        return [r["id"] for r in rows]

    def count_items(self, feed_id: int | None = None) -> int:
        query = "SELECT COUNT(*) AS cnt FROM items"
        params: list = []
        if feed_id is not None:
            query += " WHERE feed_id = ?"
            params.append(feed_id)
        with self._connection() as conn:
            row = conn.execute(query, params).fetchone()
        return row["cnt"] if row else 0

    # --- Subscription operations ---

    def insert_subscription(self, user_id: int, feed_id: int) -> Subscription:
        """Subscribe a user to a feed.

        Raises:
            DuplicateSubscriptionError: If the user already follows the feed.
        """
        subscription = Subscription(user_id=user_id, feed_id=feed_id)
        with self._connection() as conn:
            try:
                cursor = conn.execute(
                    """INSERT INTO subscriptions (user_id, feed_id, created_at)
                       VALUES (?, ?, ?)""",
                    (user_id, feed_id, _dt_to_str(subscription.created_at)),
                )
            except sqlite3.IntegrityError as e:
                if "UNIQUE" not in str(e):
                    raise
                raise DuplicateSubscriptionError(
                    f"User {user_id} is already subscribed to feed {feed_id}"
                ) from e
        subscription.id = cursor.lastrowid
        return subscription

    def insert_subscribed_items(self, rows: Iterable[SubscribedItem]) -> int:
        """Bulk-create visibility rows.

        Pairs that already exist are left untouched. Returns count of created rows.
        """
        params = [(r.user_id, r.item_id, int(r.seen)) for r in rows]
        if not params:
            return 0
        with self._connection() as conn:
            cursor = conn.executemany(
                """INSERT OR IGNORE INTO subscribed_items (user_id, item_id, seen)
                   VALUES (?, ?, ?)""",
                params,
            )
        return cursor.rowcount

    def count_subscribed_items(
        self, item_id: int | None = None, user_id: int | None = None
    ) -> int:
        query = "SELECT COUNT(*) AS cnt FROM subscribed_items WHERE 1=1"
        params: list = []
        if item_id is not None:
            query += " AND item_id = ?"
            params.append(item_id)
        if user_id is not None:
            query += " AND user_id = ?"
            params.append(user_id)
        with self._connection() as conn:
            row = conn.execute(query, params).fetchone()
        return row["cnt"] if row else 0

    def get_subscribed_feeds(self, user_id: int) -> list[dict]:
        """List a user's feeds ordered by title, with unseen counts."""
        with self._connection() as conn:
            rows = conn.execute(
                """SELECT feeds.id, feeds.title, feeds.description, feeds.site_link,
                          feeds.feed_link, feeds.updated_at,
                          (SELECT COUNT(*) FROM subscribed_items
                           JOIN items ON items.id = subscribed_items.item_id
                           WHERE items.feed_id = feeds.id
                             AND subscribed_items.user_id = subscriptions.user_id
                             AND subscribed_items.seen = 0) AS unseen_count
                   FROM subscriptions
                   JOIN feeds ON feeds.id = subscriptions.feed_id
                   WHERE subscriptions.user_id = ?
                   ORDER BY feeds.title ASC""",
                (user_id,),
            ).fetchall()
        return [
            {
                "id": r["id"],
                "title": r["title"],
                "description": r["description"],
                "site_link": r["site_link"],
                "feed_link": r["feed_link"],
                "updated_at": r["updated_at"],
                "unseen_count": r["unseen_count"],
            }
            for r in rows
        ]

    def get_subscribed_items(
        self,
        user_id: int,
        feed_id: int,
        before: datetime | None = None,
        limit: int = 50,
    ) -> list[dict]:
        """Get a user's visible items for a feed, newest first.

        ``before`` pages backwards by publication date.
        """
        query = """
            SELECT items.*, subscribed_items.id AS subscribed_item_id,
                   subscribed_items.seen
            FROM subscribed_items
            JOIN items ON items.id = subscribed_items.item_id
            WHERE subscribed_items.user_id = ? AND items.feed_id = ?
        """
        params: list = [user_id, feed_id]
        if before is not None:
            query += " AND items.published_at < ?"
            params.append(_dt_to_str(before))
        query += " ORDER BY items.published_at DESC LIMIT ?"
        params.append(limit)

        with self._connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_subscribed_item(r) for r in rows]

    def get_subscribed_item(self, user_id: int, item_id: int) -> dict | None:
        """Return one visible item and mark it seen for that user."""
        with self._connection() as conn:
            row = conn.execute(
                """SELECT items.*, subscribed_items.id AS subscribed_item_id,
                          subscribed_items.seen
                   FROM subscribed_items
                   JOIN items ON items.id = subscribed_items.item_id
                   WHERE subscribed_items.user_id = ? AND items.id = ?""",
                (user_id, item_id),
            ).fetchone()
            if row is None:
                return None
            conn.execute(
                "UPDATE subscribed_items SET seen = 1 WHERE id = ?",
                (row["subscribed_item_id"],),
            )
        return _row_to_subscribed_item(row)

    def mark_items_seen(self, user_id: int, item_ids: list[int]) -> int:
        """Mark items seen for a user. Returns count of affected rows."""
        if not item_ids:
            return 0
        placeholders = ",".join("?" for _ in item_ids)
        with self._connection() as conn:
            cursor = conn.execute(
                f"""UPDATE subscribed_items SET seen = 1
                    WHERE user_id = ? AND item_id IN ({placeholders}) AND seen = 0""",
                (user_id, *item_ids),
            )
        return cursor.rowcount


# --- Helper functions ---


def _configure_sqlite_connection(dbapi_connection, connection_record) -> None:
    dbapi_connection.execute("PRAGMA foreign_keys=ON")
    dbapi_connection.row_factory = sqlite3.Row


def _dt_to_str(dt: datetime | None) -> str | None:
    """Convert datetime to ISO string for storage."""
    return dt.isoformat() if dt else None


def _str_to_dt(s: str | None) -> datetime | None:
    """Convert stored ISO string back to datetime."""
    if not s:
        return None
    return datetime.fromisoformat(s)


def _row_to_feed(row: sqlite3.Row) -> Feed:
    """Convert a database row to a Feed dataclass."""
    return Feed(
        id=row["id"],
        feed_link=row["feed_link"],
        site_link=row["site_link"],
        title=row["title"],
        description=row["description"],
        updated_at=_str_to_dt(row["updated_at"]),
        last_fetched_at=_str_to_dt(row["last_fetched_at"]),
        error_count=row["error_count"],
        last_error=row["last_error"],
        created_at=_str_to_dt(row["created_at"]) or utcnow(),
    )


def _row_to_item(row: sqlite3.Row) -> Item:
    """Convert a database row to an Item dataclass."""
    return Item(
        id=row["id"],
        feed_id=row["feed_id"],
        guid=row["guid"],
        link=row["link"],
        title=row["title"],
        summary=row["summary"],
        content=row["content"],
        published_at=_str_to_dt(row["published_at"]),
        updated_at=_str_to_dt(row["updated_at"]),
        fetched_at=_str_to_dt(row["fetched_at"]) or utcnow(),
    )


def _row_to_subscribed_item(row: sqlite3.Row) -> dict:
    return {
        "id": row["id"],
        "feed_id": row["feed_id"],
        "link": row["link"],
        "title": row["title"],
        "summary": row["summary"],
        "content": row["content"],
        "published_at": row["published_at"],
        "updated_at": row["updated_at"],
        "subscribed_item_id": row["subscribed_item_id"],
        "seen": bool(row["seen"]),
    }
