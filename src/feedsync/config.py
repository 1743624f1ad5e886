"""Environment-driven settings for feedsync."""

import math
import os
from collections.abc import Mapping
from dataclasses import dataclass

DEFAULT_DB_PATH = "feedsync.db"
DEFAULT_POLL_INTERVAL = 300  # 5 minutes
DEFAULT_FETCH_TIMEOUT = 30.0
DEFAULT_MAX_CONCURRENCY = 20
DEFAULT_POOL_SIZE = 5


@dataclass(frozen=True)
class Settings:
    db_path: str = DEFAULT_DB_PATH
    poll_interval: int = DEFAULT_POLL_INTERVAL
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    pool_size: int = DEFAULT_POOL_SIZE
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        """Build settings from FEEDSYNC_* environment variables.

        Raises:
            ValueError: If a numeric variable cannot be parsed or is not positive.
        """
        env = os.environ if environ is None else environ
        return cls(
            db_path=env.get("FEEDSYNC_DB_PATH", DEFAULT_DB_PATH),
            poll_interval=_positive(env, "FEEDSYNC_POLL_INTERVAL", int, DEFAULT_POLL_INTERVAL),
            fetch_timeout=_positive(env, "FEEDSYNC_FETCH_TIMEOUT", float, DEFAULT_FETCH_TIMEOUT),
            max_concurrency=_positive(env, "FEEDSYNC_MAX_CONCURRENCY", int, DEFAULT_MAX_CONCURRENCY),
            pool_size=_positive(env, "FEEDSYNC_POOL_SIZE", int, DEFAULT_POOL_SIZE),
            log_level=env.get("FEEDSYNC_LOG_LEVEL", "INFO").upper(),
        )


def _positive(env: Mapping[str, str], name: str, convert, default):
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = convert(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueError(f"{name} must be a finite number, got {raw!r}")
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value
