"""Exception types raised by the synchronization pipeline."""


class FeedSyncError(Exception):
    """Base class for feedsync errors."""


class FetchError(FeedSyncError):
    """Raised when a feed cannot be fetched or decoded.

    ``kind`` is one of ``fetch-failed``, ``parse-failed`` or ``timeout``.
    """

    FETCH_FAILED = "fetch-failed"
    PARSE_FAILED = "parse-failed"
    TIMEOUT = "timeout"

    def __init__(
        self,
        message: str,
        kind: str = FETCH_FAILED,
        url: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.url = url
        self.status_code = status_code


class PersistenceError(FeedSyncError):
    """Raised when a storage call fails."""


class DuplicateSubscriptionError(PersistenceError):
    """Raised when a user is already subscribed to a feed."""
