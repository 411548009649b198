"""Tests for the zlib compressor."""

import zlib

import pytest

from odin_market_feed.codec.compression import DecompressionError, ZlibCompressor


@pytest.mark.unit
class TestZlibCompressor:
    """Test compression and decompression."""

    def test_round_trip(self):
        compressor = ZlibCompressor()
        data = b"This is test data for compression"

        compressed = compressor.compress(data)

        assert compressed
        assert compressor.decompress(compressed) == data

    def test_interoperates_with_zlib(self):
        compressor = ZlibCompressor()
        assert compressor.decompress(zlib.compress(b"63=FT3.0|64=101")) == b"63=FT3.0|64=101"
        assert zlib.decompress(compressor.compress(b"abc")) == b"abc"

    def test_corrupt_stream(self):
        with pytest.raises(DecompressionError):
            ZlibCompressor().decompress(b"not a zlib stream")

    def test_truncated_stream(self):
        compressed = zlib.compress(b"x" * 1000)
        with pytest.raises(DecompressionError, match="Incomplete"):
            ZlibCompressor().decompress(compressed[:-4])

    def test_empty_input(self):
        with pytest.raises(DecompressionError):
            ZlibCompressor().decompress(b"")
