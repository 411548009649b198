"""
ODIN Market Feed - streaming client for the ODIN market data protocol.

This package provides the frame codec (reassembly, zlib compression and the
binary touchline record decoder) and an asyncio WebSocket session built on it.
"""

from .clients.odin_feed import ODINMarketFeedClient
from .codec.compression import ZlibCompressor
from .codec.framing import encode_outbound, parse_frame_header
from .codec.reassembler import FrameReassembler
from .codec.touchline import FieldMapping, TouchlineRecord, decode_if_present

__version__ = "1.0.0"
__author__ = "ODIN Market Feed Team"
__all__ = [
    "ODINMarketFeedClient",
    "ZlibCompressor",
    "FrameReassembler",
    "FieldMapping",
    "TouchlineRecord",
    "decode_if_present",
    "encode_outbound",
    "parse_frame_header",
]
