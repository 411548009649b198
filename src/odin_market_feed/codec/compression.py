"""ZLIB compression used for every frame payload on the wire."""

import zlib


class DecompressionError(Exception):
    """Raised when a frame payload is not a valid zlib stream."""


class ZlibCompressor:
    """Stateless zlib compressor/decompressor."""

    def __init__(self, level: int = zlib.Z_DEFAULT_COMPRESSION):
        self.level = level

    def compress(self, data: bytes) -> bytes:
        return zlib.compress(data, self.level)

    def decompress(self, data: bytes) -> bytes:
        """Inflate a complete zlib stream.

        Truncated streams are rejected rather than returned partially.
        """
        decompressor = zlib.decompressobj()
        try:
            result = decompressor.decompress(data) + decompressor.flush()
        except zlib.error as e:
            raise DecompressionError(str(e)) from e

        if not decompressor.eof:
            raise DecompressionError("Incomplete zlib stream")
        return result
