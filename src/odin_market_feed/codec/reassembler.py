"""Reassembly of application messages from the inbound byte stream."""

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from .compression import DecompressionError, ZlibCompressor
from .framing import HEADER_SIZE, INVALID_LENGTH, parse_frame_header, parse_inner_length
from ..exceptions import StreamDesyncError

logger = logging.getLogger(__name__)

DEFAULT_MAX_RESYNC_BYTES = 1024 * 1024


class FrameReassembler:
    """
    Turns an arbitrarily fragmented byte stream into application messages.

    Inbound chunks are appended to an accumulator which is scanned for
    complete length-prefixed frames. Each frame payload is decompressed and
    split into the inner messages it carries. Partial frames stay buffered
    until a later ``feed`` completes them; stray bytes are skipped one at a
    time until a valid header lines up again.

    One instance belongs to one session. ``feed`` and ``dispose`` share a lock
    so a late chunk cannot race a shutdown.
    """

    def __init__(
        self,
        compressor: Optional[ZlibCompressor] = None,
        max_resync_bytes: Optional[int] = DEFAULT_MAX_RESYNC_BYTES,
        on_error: Optional[Callable[[Exception], None]] = None
    ):
        self.compressor = compressor or ZlibCompressor()
        self.max_resync_bytes = max_resync_bytes
        self.on_error = on_error

        self._buffer = bytearray()
        self._disposed = False
        self._lock = threading.Lock()
        self._consecutive_resync = 0

        # Statistics
        self.stats = {
            'bytes_received': 0,
            'frames_decoded': 0,
            'messages_decoded': 0,
            'resync_bytes': 0,
            'decompress_errors': 0,
            'inner_truncated': 0,
            'last_frame_time': None
        }

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    @property
    def buffered_bytes(self) -> int:
        return len(self._buffer)

    def feed(self, chunk: bytes) -> List[bytes]:
        """
        Append a chunk from the transport and extract every complete message.

        Args:
            chunk: Raw bytes in arrival order, split anywhere

        Returns:
            Decoded application messages in stream order (possibly empty).
            Always empty once the reassembler has been disposed.

        Raises:
            StreamDesyncError: If more than ``max_resync_bytes`` consecutive
                bytes were skipped. The reassembler is disposed first.
        """
        with self._lock:
            if self._disposed:
                return []

            if chunk:
                self._buffer.extend(chunk)
                self.stats['bytes_received'] += len(chunk)

            messages: List[bytes] = []
            consumed = self._parse(messages)
            self._clear_processed(consumed)

            if (
                self.max_resync_bytes is not None
                and self._consecutive_resync > self.max_resync_bytes
            ):
                skipped = self._consecutive_resync
                self._release()
                logger.error(
                    f"Stream desynchronized: {skipped} bytes skipped without a valid frame"
                )
                raise StreamDesyncError(skipped, self.max_resync_bytes, messages)

            return messages

    def dispose(self):
        """Drop buffered data and turn subsequent ``feed`` calls into no-ops."""
        with self._lock:
            if self._disposed:
                return
            self._release()
            logger.debug("Frame reassembler disposed")

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.stats,
            'buffered_bytes': len(self._buffer),
            'disposed': self._disposed
        }

    def _parse(self, messages: List[bytes]) -> int:
        """Scan the accumulator; return the number of leading bytes consumed."""
        buffer = self._buffer
        end = len(buffer)
        position = 0

        while end - position > HEADER_SIZE:
            payload_length = parse_frame_header(buffer[position:position + HEADER_SIZE])

            if payload_length <= 0:
                position += 1
                self._consecutive_resync += 1
                self.stats['resync_bytes'] += 1
                continue

            data_start = position + HEADER_SIZE
            data_end = data_start + payload_length
            if data_end > end:
                # Wait for the rest of the frame
                break

            if self._consecutive_resync:
                logger.debug(f"Resynchronized after skipping {self._consecutive_resync} bytes")
            self._consecutive_resync = 0

            self._decode_frame(bytes(buffer[data_start:data_end]), messages)
            position = data_end

        return position

    def _decode_frame(self, payload: bytes, messages: List[bytes]):
        try:
            unit = self.compressor.decompress(payload)
        except DecompressionError as e:
            self.stats['decompress_errors'] += 1
            logger.warning(f"Dropping frame of {len(payload)} bytes: {e}")
            self._report_error(e)
            return

        self.stats['frames_decoded'] += 1
        self.stats['last_frame_time'] = time.time()

        for message in self._split_unit(unit):
            messages.append(message)
            self.stats['messages_decoded'] += 1

    def _split_unit(self, unit: bytes) -> List[bytes]:
        """
        Peel length-prefixed inner messages off a decompressed unit.

        A unit that does not start with a sub-header is a single bare message.
        """
        inner: List[bytes] = []

        if unit and parse_inner_length(unit) == INVALID_LENGTH:
            return [unit]

        while True:
            message_length = parse_inner_length(unit)
            if message_length <= 0:
                if unit:
                    logger.debug(f"Discarding {len(unit)} trailing bytes without a message header")
                break

            message_end = HEADER_SIZE + message_length
            if message_end > len(unit):
                self.stats['inner_truncated'] += 1
                logger.warning(
                    f"Inner message declares {message_length} bytes but only "
                    f"{len(unit) - HEADER_SIZE} remain; dropping rest of frame"
                )
                break

            inner.append(unit[HEADER_SIZE:message_end])

            remainder = unit[message_end:]
            if not remainder:
                break
            unit = remainder

        return inner

    def _clear_processed(self, length: int):
        if length <= 0:
            return

        if length >= len(self._buffer):
            self._buffer = bytearray()
            return

        del self._buffer[:length]

    def _release(self):
        self._disposed = True
        self._buffer = bytearray()
        self._consecutive_resync = 0

    def _report_error(self, error: Exception):
        if self.on_error is None:
            return
        try:
            self.on_error(error)
        except Exception as e:
            logger.error(f"Error callback failed: {e}")
