"""Runtime settings for the fetch pipeline, read from the environment."""

import os
from dataclasses import dataclass
from datetime import timedelta

from local_feed.errors import InvalidInputError

DEFAULT_DB_PATH = "local_feed.db"
DEFAULT_FETCH_CONCURRENCY = 10
DEFAULT_HTTP_TIMEOUT = 20.0
DEFAULT_STALE_MINUTES = 30
DEFAULT_USER_AGENT = "local-feed/0.1"


@dataclass
class FetchConfig:
    """Settings consumed by the fetcher, store and poller."""

    db_path: str = DEFAULT_DB_PATH
    fetch_concurrency: int = DEFAULT_FETCH_CONCURRENCY
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    retention_days: int = 0
    user_agent: str = DEFAULT_USER_AGENT
    stale_after: timedelta = timedelta(minutes=DEFAULT_STALE_MINUTES)
    poll_interval: int = 0

    def __post_init__(self) -> None:
        if self.fetch_concurrency < 1:
            self.fetch_concurrency = DEFAULT_FETCH_CONCURRENCY
        if self.http_timeout <= 0:
            self.http_timeout = DEFAULT_HTTP_TIMEOUT
        if self.retention_days < 0:
            self.retention_days = 0
        if self.stale_after <= timedelta(0):
            self.stale_after = timedelta(minutes=DEFAULT_STALE_MINUTES)
        if self.poll_interval < 0:
            self.poll_interval = 0
        if not self.user_agent.strip():
            self.user_agent = DEFAULT_USER_AGENT

    @classmethod
    def from_env(cls, environ: dict | None = None) -> "FetchConfig":
        """Build a config from FEED_* environment variables."""
        env = os.environ if environ is None else environ
        return cls(
            db_path=env.get("FEED_DB_PATH", DEFAULT_DB_PATH),
            fetch_concurrency=_env_int(env, "FEED_FETCH_CONCURRENCY", DEFAULT_FETCH_CONCURRENCY),
            http_timeout=float(_env_int(env, "FEED_HTTP_TIMEOUT", int(DEFAULT_HTTP_TIMEOUT))),
            retention_days=_env_int(env, "FEED_RETENTION_DAYS", 0),
            user_agent=env.get("FEED_USER_AGENT", DEFAULT_USER_AGENT),
            stale_after=timedelta(
                minutes=_env_int(env, "FEED_STALE_MINUTES", DEFAULT_STALE_MINUTES)
            ),
            poll_interval=_env_int(env, "FEED_POLL_INTERVAL", 0),
        )


def _env_int(env, name: str, default: int) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise InvalidInputError(f"{name} must be an integer, got {raw!r}")
