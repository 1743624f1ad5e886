"""Tests for environment-driven settings."""

import pytest

from feedsync.config import Settings


def test_defaults():
    settings = Settings.from_env({})

    assert settings.db_path == "feedsync.db"
    assert settings.poll_interval == 300
    assert settings.fetch_timeout == 30.0
    assert settings.max_concurrency == 20
    assert settings.pool_size == 5
    assert settings.log_level == "INFO"


def test_overrides():
    settings = Settings.from_env(
        {
            "FEEDSYNC_DB_PATH": "/tmp/feeds.db",
            "FEEDSYNC_POLL_INTERVAL": "60",
            "FEEDSYNC_FETCH_TIMEOUT": "2.5",
            "FEEDSYNC_MAX_CONCURRENCY": "4",
            "FEEDSYNC_POOL_SIZE": "2",
            "FEEDSYNC_LOG_LEVEL": "debug",
        }
    )

    assert settings.db_path == "/tmp/feeds.db"
    assert settings.poll_interval == 60
    assert settings.fetch_timeout == 2.5
    assert settings.max_concurrency == 4
    assert settings.pool_size == 2
    assert settings.log_level == "DEBUG"


def test_blank_value_falls_back_to_default():
    assert Settings.from_env({"FEEDSYNC_POLL_INTERVAL": "  "}).poll_interval == 300


@pytest.mark.parametrize("value", ["soon", "0", "-5", "1.5"])
def test_invalid_poll_interval(value):
    with pytest.raises(ValueError, match="FEEDSYNC_POLL_INTERVAL"):
        Settings.from_env({"FEEDSYNC_POLL_INTERVAL": value})


def test_reads_process_environment(monkeypatch):
    monkeypatch.setenv("FEEDSYNC_MAX_CONCURRENCY", "7")

    assert Settings.from_env().max_concurrency == 7


@pytest.mark.parametrize("value", ["nan", "inf", "-inf"])
def test_non_finite_fetch_timeout(value):
    with pytest.raises(ValueError, match="FEEDSYNC_FETCH_TIMEOUT"):
        Settings.from_env({"FEEDSYNC_FETCH_TIMEOUT": value})
