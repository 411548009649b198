"""Exception hierarchy for the market feed client."""

from typing import List, Optional


class FeedError(Exception):
    """Base class for all market feed errors."""


class FrameEncodingError(FeedError):
    """Outbound message cannot be represented in the wire framing."""


class StreamDesyncError(FeedError):
    """Too many inbound bytes were skipped without finding a valid frame.

    Messages that were fully decoded before the limit was hit are carried on
    ``messages`` so the caller can still deliver them.
    """

    def __init__(self, skipped: int, limit: int, messages: Optional[List[bytes]] = None):
        super().__init__(
            f"Stream desynchronized: skipped {skipped} bytes without a valid frame (limit {limit})"
        )
        self.skipped = skipped
        self.limit = limit
        self.messages = messages or []


class NotConnectedError(FeedError):
    """Operation requires an open WebSocket connection."""


class SubscriptionError(FeedError):
    """Subscription request could not be built from the given input."""
