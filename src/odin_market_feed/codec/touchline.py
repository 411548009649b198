"""
Decoder for the fixed-width touchline record embedded in text messages.

A touchline response with native data carries the token ``|50=`` followed by
64 bytes of little-endian 32-bit fields instead of further text. The record
is expanded back into ``key=value|`` tokens so consumers only ever see text.
"""

import logging
import struct
from dataclasses import dataclass, fields
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Tuple, Union

logger = logging.getLogger(__name__)

MARKER = b"|50="
RECORD_SIZE = 64

# Update and trade times are signed second offsets; everything else unsigned
RECORD_STRUCT = struct.Struct("<IIiiIIIIIIIIIIII")

EPOCH = datetime(1980, 1, 1)
TIME_FORMAT = "%Y-%m-%d %H%M%S"


class FieldMapping(Enum):
    """Which record positions feed the sell/OHLC tokens."""
    CORRECTED = "corrected"
    LEGACY = "legacy"


@dataclass(frozen=True)
class TouchlineRecord:
    """One decoded touchline update, in wire order."""
    market_segment_id: int
    token: int
    last_update_time: int
    last_trade_time: int
    last_traded_price: int
    buy_quantity: int
    buy_price: int
    sell_quantity: int
    sell_price: int
    open_price: int
    high_price: int
    low_price: int
    close_price: int
    decimal_locator: int
    previous_close_price: int
    indicative_close_price: int

    @classmethod
    def unpack(cls, data: bytes) -> "TouchlineRecord":
        """Build a record from exactly ``RECORD_SIZE`` bytes."""
        return cls(*RECORD_STRUCT.unpack(data))

    def pack(self) -> bytes:
        return RECORD_STRUCT.pack(*(getattr(self, f.name) for f in fields(self)))

    @property
    def last_update_datetime(self) -> datetime:
        return EPOCH + timedelta(seconds=self.last_update_time)

    @property
    def last_trade_datetime(self) -> datetime:
        return EPOCH + timedelta(seconds=self.last_trade_time)

    def to_tokens(self, mapping: FieldMapping = FieldMapping.CORRECTED) -> List[Tuple[str, str]]:
        """
        Return the record as ordered ``(key, value)`` pairs.

        ``FieldMapping.LEGACY`` reproduces what existing consumers of the feed
        have historically received: the sell quantity, open and low tokens
        repeat the buy quantity, and sell price, high and close repeat the buy
        price.
        """
        if mapping is FieldMapping.LEGACY:
            sell_quantity, sell_price = self.buy_quantity, self.buy_price
            open_price, high_price = self.buy_quantity, self.buy_price
            low_price, close_price = self.buy_quantity, self.buy_price
        else:
            sell_quantity, sell_price = self.sell_quantity, self.sell_price
            open_price, high_price = self.open_price, self.high_price
            low_price, close_price = self.low_price, self.close_price

        return [
            ("1", str(self.market_segment_id)),
            ("7", str(self.token)),
            ("74", self.last_update_datetime.strftime(TIME_FORMAT)),
            ("73", self.last_trade_datetime.strftime(TIME_FORMAT)),
            ("8", str(self.last_traded_price)),
            ("2", str(self.buy_quantity)),
            ("3", str(self.buy_price)),
            ("5", str(sell_quantity)),
            ("6", str(sell_price)),
            ("75", str(open_price)),
            ("77", str(high_price)),
            ("78", str(low_price)),
            ("76", str(close_price)),
            ("399", str(self.decimal_locator)),
            ("250", str(self.previous_close_price)),
            ("88", str(self.indicative_close_price)),
        ]

    def to_text(self, mapping: FieldMapping = FieldMapping.CORRECTED) -> str:
        return "".join(f"{key}={value}|" for key, value in self.to_tokens(mapping))


def decode_if_present(
    message: Union[bytes, bytearray, str],
    mapping: FieldMapping = FieldMapping.CORRECTED
) -> str:
    """
    Expand an embedded touchline record into text tokens.

    Args:
        message: Raw application message bytes as produced by the reassembler
        mapping: Field mapping for the sell/OHLC tokens

    Returns:
        The message text. When a complete record follows ``|50=``, the text up
        to and including the marker's leading ``|`` is kept and the record's
        tokens replace the rest. Messages without a marker, or with fewer than
        64 bytes after it, are returned undecoded.
    """
    if isinstance(message, str):
        data = message.encode("utf-8")
    else:
        data = bytes(message)

    marker_index = data.find(MARKER)
    if marker_index < 0:
        return data.decode("utf-8", errors="replace")

    record_start = marker_index + len(MARKER)
    record_bytes = data[record_start:record_start + RECORD_SIZE]
    if len(record_bytes) < RECORD_SIZE:
        logger.warning(
            f"Touchline record truncated: {len(record_bytes)} of {RECORD_SIZE} bytes, "
            f"passing message through undecoded"
        )
        return data.decode("utf-8", errors="replace")

    record = TouchlineRecord.unpack(record_bytes)
    prefix = data[:marker_index + 1].decode("utf-8", errors="replace")
    return prefix + record.to_text(mapping)


def has_record(message: Union[bytes, bytearray]) -> bool:
    """True when ``message`` carries a complete record after ``|50=``."""
    marker_index = message.find(MARKER)
    return marker_index >= 0 and len(message) - marker_index - len(MARKER) >= RECORD_SIZE
