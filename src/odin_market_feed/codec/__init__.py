"""Wire codec: compression, framing, reassembly and touchline decoding."""

from .compression import ZlibCompressor, DecompressionError
from .framing import (
    COMPRESSED_FLAG,
    RAW_FLAG,
    HEADER_SIZE,
    MAX_PAYLOAD_LENGTH,
    INVALID_LENGTH,
    encode_outbound,
    parse_frame_header,
    parse_inner_length,
)
from .reassembler import FrameReassembler
from .touchline import FieldMapping, TouchlineRecord, decode_if_present, has_record

__all__ = [
    "ZlibCompressor",
    "DecompressionError",
    "COMPRESSED_FLAG",
    "RAW_FLAG",
    "HEADER_SIZE",
    "MAX_PAYLOAD_LENGTH",
    "INVALID_LENGTH",
    "encode_outbound",
    "parse_frame_header",
    "parse_inner_length",
    "FrameReassembler",
    "FieldMapping",
    "TouchlineRecord",
    "decode_if_present",
    "has_record",
]
