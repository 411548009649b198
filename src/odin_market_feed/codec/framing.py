"""
Wire framing for the ODIN market feed protocol.

Every frame on the wire is a 6-byte ASCII header followed by the payload:

    byte[0]      flag (5 = compressed, 2 = raw-marker variant)
    bytes[1:6]   payload length as 5 zero-padded decimal digits
    bytes[6:]    payload (zlib stream)

A decompressed payload carries one or more inner messages, each prefixed by
a sub-header with the same shape.
"""

import logging
from typing import Optional, Union

from .compression import ZlibCompressor
from ..exceptions import FrameEncodingError

logger = logging.getLogger(__name__)

COMPRESSED_FLAG = 5
RAW_FLAG = 2
RECOGNIZED_FLAGS = frozenset({COMPRESSED_FLAG, RAW_FLAG})

LENGTH_DIGITS = 5
HEADER_SIZE = 1 + LENGTH_DIGITS
MAX_PAYLOAD_LENGTH = 10 ** LENGTH_DIGITS - 1

INVALID_LENGTH = -1

_default_compressor = ZlibCompressor()


def parse_frame_header(header: bytes) -> int:
    """
    Validate a candidate frame header and extract its payload length.

    Args:
        header: Exactly ``HEADER_SIZE`` bytes taken from the stream

    Returns:
        The declared payload length, or ``INVALID_LENGTH`` if the bytes are
        not a recognized flag followed by five ASCII digits
    """
    if len(header) != HEADER_SIZE:
        return INVALID_LENGTH

    if header[0] not in RECOGNIZED_FLAGS:
        return INVALID_LENGTH

    digits = bytes(header[1:HEADER_SIZE])
    if not digits.isdigit():
        return INVALID_LENGTH

    return int(digits)


def parse_inner_length(unit: bytes) -> int:
    """
    Read the length prefix of the next inner message in a decompressed unit.

    A prefix needs a recognized flag control byte followed by five ASCII
    digits, so plain text that happens to look like ``A00004...`` is never
    mistaken for one. Returns ``INVALID_LENGTH`` when the unit has no
    readable prefix.
    """
    if len(unit) < HEADER_SIZE:
        return INVALID_LENGTH

    if unit[0] not in RECOGNIZED_FLAGS:
        return INVALID_LENGTH

    digits = bytes(unit[1:HEADER_SIZE])
    if not digits.isdigit():
        return INVALID_LENGTH

    return int(digits)


def build_header(flag: int, length: int) -> bytes:
    if not 0 <= length <= MAX_PAYLOAD_LENGTH:
        raise FrameEncodingError(
            f"Payload length {length} does not fit in {LENGTH_DIGITS} digits"
        )
    return bytes([flag]) + f"{length:0{LENGTH_DIGITS}d}".encode("ascii")


def encode_outbound(
    message: Union[str, bytes],
    compressor: Optional[ZlibCompressor] = None
) -> bytes:
    """
    Compress an application message and wrap it in a single wire frame.

    Args:
        message: Pipe-delimited ``key=value`` command text
        compressor: Compressor to use (module default if omitted)

    Returns:
        Header plus compressed payload, ready for one binary transport write

    Raises:
        FrameEncodingError: If the message is empty or its compressed form is
            longer than the 5-digit length field can express
    """
    if isinstance(message, str):
        data = message.encode("utf-8")
    else:
        data = bytes(message)

    if not data:
        raise FrameEncodingError("Cannot frame an empty message")

    compressed = (compressor or _default_compressor).compress(data)
    if len(compressed) > MAX_PAYLOAD_LENGTH:
        raise FrameEncodingError(
            f"Compressed payload is {len(compressed)} bytes, "
            f"maximum is {MAX_PAYLOAD_LENGTH}"
        )

    return build_header(COMPRESSED_FLAG, len(compressed)) + compressed
