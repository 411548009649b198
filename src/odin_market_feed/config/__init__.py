"""Configuration for the market feed client."""

from .settings import (
    FeedSettings,
    ConnectionConfig,
    CodecConfig,
    RetryConfig,
    LoggingConfig,
    SubscriptionConfig,
    load_settings,
)

__all__ = [
    "FeedSettings",
    "ConnectionConfig",
    "CodecConfig",
    "RetryConfig",
    "LoggingConfig",
    "SubscriptionConfig",
    "load_settings",
]
