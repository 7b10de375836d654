"""Tests for environment-driven configuration."""

from datetime import timedelta

import pytest

from local_feed.config import DEFAULT_FETCH_CONCURRENCY, DEFAULT_USER_AGENT, FetchConfig
from local_feed.errors import InvalidInputError


def test_defaults_without_environment():
    config = FetchConfig.from_env({})

    assert config.db_path == "local_feed.db"
    assert config.fetch_concurrency == DEFAULT_FETCH_CONCURRENCY
    assert config.retention_days == 0
    assert config.stale_after == timedelta(minutes=30)


def test_reads_feed_variables():
    config = FetchConfig.from_env({
        "FEED_DB_PATH": "/tmp/feeds.db",
        "FEED_FETCH_CONCURRENCY": "3",
        "FEED_HTTP_TIMEOUT": "5",
        "FEED_RETENTION_DAYS": "14",
        "FEED_USER_AGENT": "reader/2.0",
        "FEED_STALE_MINUTES": "60",
        "FEED_POLL_INTERVAL": "300",
    })

    assert config.db_path == "/tmp/feeds.db"
    assert config.fetch_concurrency == 3
    assert config.http_timeout == 5.0
    assert config.retention_days == 14
    assert config.user_agent == "reader/2.0"
    assert config.stale_after == timedelta(hours=1)
    assert config.poll_interval == 300


def test_non_integer_value_names_the_variable():
    with pytest.raises(InvalidInputError, match="FEED_FETCH_CONCURRENCY"):
        FetchConfig.from_env({"FEED_FETCH_CONCURRENCY": "many"})


@pytest.mark.parametrize("concurrency", [0, -4])
def test_non_positive_concurrency_uses_default(concurrency):
    assert FetchConfig(fetch_concurrency=concurrency).fetch_concurrency == DEFAULT_FETCH_CONCURRENCY


def test_invalid_values_are_coerced():
    config = FetchConfig(http_timeout=0, retention_days=-1, user_agent="  ", poll_interval=-5)

    assert config.http_timeout > 0
    assert config.retention_days == 0
    assert config.user_agent == DEFAULT_USER_AGENT
    assert config.poll_interval == 0
