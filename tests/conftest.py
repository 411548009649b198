"""Pytest configuration and shared fixtures."""

import zlib
from typing import Callable
from unittest.mock import AsyncMock

import pytest

from odin_market_feed.codec.reassembler import FrameReassembler
from odin_market_feed.codec.touchline import TouchlineRecord
from odin_market_feed.config.settings import FeedSettings, RetryConfig


def inner_message(payload: bytes, flag: int = 5) -> bytes:
    """Prefix one application message with its 6-byte sub-header."""
    return bytes([flag]) + f"{len(payload):05d}".encode("ascii") + payload


def server_frame(*messages: bytes, flag: int = 5) -> bytes:
    """Build a wire frame the way the server does: inner messages, compressed, framed."""
    compressed = zlib.compress(b"".join(inner_message(m) for m in messages))
    return bytes([flag]) + f"{len(compressed):05d}".encode("ascii") + compressed


@pytest.fixture
def make_frame() -> Callable[..., bytes]:
    return server_frame


@pytest.fixture
def reassembler() -> FrameReassembler:
    return FrameReassembler()


@pytest.fixture
def sample_record() -> TouchlineRecord:
    """A touchline record with a distinct value in every field."""
    return TouchlineRecord(
        market_segment_id=1,
        token=22,
        last_update_time=86400 + 3661,   # 1980-01-02 01:01:01
        last_trade_time=86400 + 3600,    # 1980-01-02 01:00:00
        last_traded_price=250050,
        buy_quantity=100,
        buy_price=250000,
        sell_quantity=200,
        sell_price=250100,
        open_price=249000,
        high_price=251000,
        low_price=248000,
        close_price=249500,
        decimal_locator=100,
        previous_close_price=249400,
        indicative_close_price=250075,
    )


@pytest.fixture
def touchline_message(sample_record) -> bytes:
    """Native touchline response: text header, ``|50=`` marker, binary record."""
    return b"63=FT3.0|64=209|65=84|50=" + sample_record.pack()


@pytest.fixture
def test_settings() -> FeedSettings:
    """Settings with retries collapsed so failing connects return immediately."""
    return FeedSettings(
        service_name="test-feed",
        environment="local",
        retry=RetryConfig(max_attempts=1, initial_backoff_seconds=0.0, jitter=False)
    )


@pytest.fixture
def mock_websocket():
    """Mock WebSocket connection that yields no inbound messages."""
    websocket = AsyncMock()
    websocket.send = AsyncMock()
    websocket.close = AsyncMock()
    websocket.close_code = 1000
    websocket.close_reason = ""
    websocket.__aiter__.return_value = []
    return websocket
