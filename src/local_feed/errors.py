"""Error types surfaced by the feed store and fetch pipeline."""


class FeedError(Exception):
    """Base class for local_feed errors."""


class NotFoundError(FeedError, LookupError):
    """Raised when a feed or entry does not exist."""


class InvalidInputError(FeedError, ValueError):
    """Raised when caller-supplied input is malformed."""


class FeedParseError(FeedError):
    """Raised when a response body cannot be parsed as a feed."""


class DiscoveryError(NotFoundError):
    """Raised when no feed can be found for a URL."""
