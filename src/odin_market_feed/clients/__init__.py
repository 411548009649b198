"""Transport-facing clients."""

from .odin_feed import ODINMarketFeedClient

__all__ = ["ODINMarketFeedClient"]
