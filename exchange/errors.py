"""
Error taxonomy for the ingestion layer.
None of these ever reach the strategy engine; missing data is HOLD there.
"""

from typing import Optional


class FeedError(Exception):
    """Base class for ingestion failures."""


class FeedConnectionError(FeedError, ConnectionError):
    """Transient network/socket failure. Triggers backoff + reconnect."""


class ParseError(FeedError, ValueError):
    """Malformed or unexpected message. The single message is dropped."""


class RateLimitError(FeedError):
    """HTTP 429 from a REST source. The current cycle is skipped."""

    def __init__(self, source: str, retry_after: Optional[float] = None):
        self.source = source
        self.retry_after = retry_after
        super().__init__(f"{source} rate limited")


class PersistenceError(FeedError):
    """Snapshot read/write failure. Treated as a cold cache."""
