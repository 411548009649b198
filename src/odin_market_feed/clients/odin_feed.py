"""ODIN market feed WebSocket client."""

import asyncio
import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException

from .. import commands
from ..codec.compression import ZlibCompressor
from ..codec.framing import encode_outbound
from ..codec.reassembler import FrameReassembler
from ..codec.touchline import decode_if_present, has_record
from ..config.settings import FeedSettings, validate_host, validate_port, validate_user_id
from ..exceptions import FeedError, NotConnectedError, StreamDesyncError, SubscriptionError
from ..utils.retry import exponential_backoff

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str], Union[None, Awaitable[None]]]
ErrorHandler = Callable[[str], Union[None, Awaitable[None]]]
CloseHandler = Callable[[int, str], Union[None, Awaitable[None]]]
OpenHandler = Callable[[], Union[None, Awaitable[None]]]


class ODINMarketFeedClient:
    """
    Session against an ODIN market feed server.

    Owns the WebSocket, a fresh ``FrameReassembler`` per connection and a
    send lock so that outbound frames are never interleaved. Decoded messages
    reach ``on_message`` one at a time, in stream order, with any native
    touchline record already expanded into text tokens.

    Callbacks may be plain functions or coroutines.
    """

    def __init__(
        self,
        settings: Optional[FeedSettings] = None,
        on_open: Optional[OpenHandler] = None,
        on_message: Optional[MessageHandler] = None,
        on_error: Optional[ErrorHandler] = None,
        on_close: Optional[CloseHandler] = None
    ):
        self.settings = settings or FeedSettings()
        self.on_open = on_open
        self.on_message = on_message
        self.on_error = on_error
        self.on_close = on_close

        self.compression_enabled = self.settings.codec.compression
        self.field_mapping = self.settings.codec.touchline_field_mapping
        self.user_id: Optional[str] = None

        self.compressor = ZlibCompressor()
        self.reassembler = self._new_reassembler()

        self.websocket = None
        self._receive_task: Optional[asyncio.Task] = None
        self._closed_by_client = None
        self._send_lock = asyncio.Lock()
        self._pending_callbacks: Set[asyncio.Future] = set()
        self._disposed = False

        # Statistics
        self.stats = {
            'messages_received': 0,
            'messages_sent': 0,
            'touchline_records': 0,
            'callback_errors': 0,
            'last_message_time': None,
            'connection_count': 0
        }

    @property
    def is_connected(self) -> bool:
        return self.websocket is not None

    def set_compression(self, enabled: bool):
        """Record the compression preference. Outbound frames are always zlib-compressed."""
        self.compression_enabled = enabled

    def _new_reassembler(self) -> FrameReassembler:
        return FrameReassembler(
            compressor=self.compressor,
            max_resync_bytes=self.settings.codec.max_resync_bytes,
            on_error=self._on_codec_error
        )

    async def connect(
        self,
        host: str,
        port: int,
        use_ssl: bool,
        user_id: str,
        api_key: str = ""
    ):
        """
        Open the WebSocket, start receiving and log in.

        Raises:
            FeedError: If the client has been disposed
            ValueError: If host, port or user id are invalid
            OSError, WebSocketException: If every connection attempt failed
        """
        if self._disposed:
            raise FeedError("Client has been disposed")

        validate_host(host)
        validate_port(port)
        validate_user_id(user_id)

        if self.websocket is not None or self._receive_task is not None:
            logger.info("Closing previous market feed connection before reconnecting")
            await self.disconnect()

        # Buffered bytes from an earlier connection must not prefix the new stream
        self.reassembler.dispose()
        self.reassembler = self._new_reassembler()

        self.user_id = user_id
        protocol = "wss" if use_ssl else "ws"
        url = f"{protocol}://{host}:{port}"
        retry = self.settings.retry

        logger.info(f"Connecting to market feed: {url}")
        try:
            self.websocket = await exponential_backoff(
                lambda: self._open(url),
                max_attempts=retry.max_attempts,
                initial_delay=retry.initial_backoff_seconds,
                max_delay=retry.max_backoff_seconds,
                backoff_factor=retry.backoff_multiplier,
                jitter=retry.jitter,
                exceptions=(OSError, asyncio.TimeoutError, WebSocketException),
                operation=f"Connect to {url}"
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            await self._report_error(f"Connection failed: {e}")
            raise

        self.stats['connection_count'] += 1
        logger.info("Connected to market feed")

        self._receive_task = asyncio.create_task(self._receive_loop(self.websocket))

        await self.send_message(commands.build_login(user_id, api_key))

        await self._invoke(self.on_open)

    async def connect_with_settings(self):
        """Connect using ``settings.connection``."""
        conn = self.settings.connection
        await self.connect(conn.host, conn.port, conn.use_ssl, conn.user_id, conn.api_key)

    async def _open(self, url: str):
        conn = self.settings.connection
        return await websockets.connect(
            url,
            open_timeout=conn.open_timeout_seconds,
            ping_interval=conn.ping_interval_seconds,
            max_size=conn.max_message_size,
            compression=None
        )

    async def disconnect(self):
        """Close the WebSocket normally and wait for the receive loop to finish."""
        websocket, self.websocket = self.websocket, None
        if websocket is not None:
            self._closed_by_client = websocket
            await websocket.close()
            logger.info("Disconnected from market feed")

        task, self._receive_task = self._receive_task, None
        if task is not None and task is not asyncio.current_task():
            await task

    async def dispose(self):
        """Release the reassembler and the connection. Safe to call repeatedly."""
        if self._disposed:
            return
        self._disposed = True
        self.reassembler.dispose()
        await self.disconnect()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.dispose()

    async def send_message(self, message: str):
        """
        Frame and send one command message.

        Encoding and the transport write happen under one lock so concurrent
        senders cannot interleave frames on the wire.
        """
        async with self._send_lock:
            if self.websocket is None:
                raise NotConnectedError("WebSocket is not connected")

            logger.debug(f"Sending message: {message}")
            packet = encode_outbound(message, self.compressor)
            await self.websocket.send(packet)
            self.stats['messages_sent'] += 1

    async def subscribe_touchline(
        self,
        token_list: List[str],
        response_type: str = "0",
        ltp_change_only: bool = False
    ):
        """
        Subscribe to touchline updates.

        Args:
            token_list: Entries like ``"1_22"`` (market segment, token)
            response_type: "1" for fixed-length native data, "0" for text
            ltp_change_only: Only push updates when the LTP changes
        """
        if token_list and response_type not in ("0", "1"):
            await self._report_error("Invalid response type passed. Valid values are 0 or 1")
            raise SubscriptionError("invalid response type")

        await self._send_token_request(
            token_list,
            lambda pairs: commands.build_touchline_subscribe(pairs, response_type, ltp_change_only),
            "Subscribed to touchline tokens"
        )

    async def unsubscribe_touchline(self, token_list: List[str]):
        await self._send_token_request(
            token_list,
            commands.build_touchline_unsubscribe,
            "Unsubscribed from touchline tokens"
        )

    async def subscribe_ltp_touchline(self, token_list: List[str]):
        await self._send_token_request(
            token_list,
            lambda pairs: commands.build_ltp_touchline(pairs, subscribe=True),
            "Subscribed to LTP touchline tokens"
        )

    async def unsubscribe_ltp_touchline(self, token_list: List[str]):
        await self._send_token_request(
            token_list,
            lambda pairs: commands.build_ltp_touchline(pairs, subscribe=False),
            "Unsubscribed from LTP touchline tokens"
        )

    async def subscribe_best_five(self, token: str, market_segment_id: int):
        await self._send_best_five(token, market_segment_id, subscribe=True)

    async def unsubscribe_best_five(self, token: str, market_segment_id: int):
        await self._send_best_five(token, market_segment_id, subscribe=False)

    async def pause_resume(self, is_pause: bool):
        """Pause (True) or resume (False) the broadcast."""
        await self.send_message(commands.build_pause_resume(is_pause))
        logger.info(f"{'Pause' if is_pause else 'Resume'} request sent")

    async def _send_token_request(
        self,
        token_list: List[str],
        builder: Callable[[List[commands.TokenPair]], str],
        description: str
    ):
        if not token_list:
            await self._report_error("Token list cannot be null or empty.")
            raise SubscriptionError("token list cannot be empty")

        invalid: List[str] = []
        pairs = commands.parse_token_list(token_list, on_invalid=invalid.append)
        for error_msg in invalid:
            await self._report_error(error_msg)

        try:
            request = builder(pairs)
        except SubscriptionError as e:
            await self._report_error(str(e))
            raise

        await self.send_message(request)
        logger.info(f"{description}: {', '.join(token_list)}")

    async def _send_best_five(self, token: str, market_segment_id: int, subscribe: bool):
        try:
            request = commands.build_best_five(token, market_segment_id, subscribe=subscribe)
        except SubscriptionError as e:
            await self._report_error(str(e))
            raise

        await self.send_message(request)
        action = "Subscribed to" if subscribe else "Unsubscribed from"
        logger.info(f"{action} BestFive token: {token}, MarketSegmentId: {market_segment_id}")

    async def _receive_loop(self, websocket):
        """Feed every inbound WebSocket message to the reassembler until the socket closes."""
        try:
            async for raw_message in websocket:
                await self._handle_chunk(raw_message)
        except ConnectionClosedOK:
            pass
        except ConnectionClosed as e:
            if websocket is self._closed_by_client:
                # Already reported by whoever closed it
                logger.debug(f"WebSocket closed by client: {e}")
            else:
                logger.warning(f"WebSocket connection closed unexpectedly: {e}")
                await self._report_error(str(e))
        except Exception as e:
            logger.error(f"Error in receive loop: {e}", exc_info=True)
            await self._report_error(str(e))

        if self.websocket is websocket:
            self.websocket = None
        if self._closed_by_client is websocket:
            self._closed_by_client = None

        code = getattr(websocket, 'close_code', None)
        reason = getattr(websocket, 'close_reason', None) or ""
        logger.info(f"Receive loop finished (code={code}, reason={reason!r})")
        await self._invoke(self.on_close, code if code is not None else 1006, reason)

    async def _handle_chunk(self, raw_message: Union[bytes, str]) -> List[str]:
        """Reassemble, decode and deliver everything contained in one inbound chunk."""
        if isinstance(raw_message, str):
            raw_message = raw_message.encode("utf-8")

        desync: Optional[StreamDesyncError] = None
        try:
            messages = self.reassembler.feed(raw_message)
        except StreamDesyncError as e:
            messages = e.messages
            desync = e

        delivered: List[str] = []
        for message in messages:
            if has_record(message):
                self.stats['touchline_records'] += 1
            text = decode_if_present(message, self.field_mapping)

            self.stats['messages_received'] += 1
            self.stats['last_message_time'] = time.time()
            delivered.append(text)
            await self._invoke(self.on_message, text)

        if desync is not None:
            await self._report_error(str(desync))
            if self.websocket is not None:
                self._closed_by_client = self.websocket
                await self.websocket.close(code=1002, reason="stream desynchronized")

        return delivered

    def _on_codec_error(self, error: Exception):
        # Called synchronously from inside FrameReassembler.feed
        if self.on_error is None:
            return
        result = self.on_error(f"Decompression failed: {error}")
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._pending_callbacks.add(task)
            task.add_done_callback(self._pending_callbacks.discard)

    async def _report_error(self, error_msg: str):
        logger.error(error_msg)
        await self._invoke(self.on_error, error_msg)

    async def _invoke(self, callback: Optional[Callable[..., Any]], *args):
        if callback is None:
            return
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self.stats['callback_errors'] += 1
            logger.error(f"Callback {getattr(callback, '__name__', callback)} failed: {e}")

    def get_stats(self) -> Dict[str, Any]:
        """Get connection and processing statistics."""
        last_message_age = None
        if self.stats['last_message_time']:
            last_message_age = time.time() - self.stats['last_message_time']

        return {
            **self.stats,
            'last_message_age_seconds': last_message_age,
            'is_connected': self.is_connected,
            'codec': self.reassembler.get_stats()
        }

    async def health_check(self) -> Dict[str, Any]:
        """Summarize connection state and decode error rates."""
        stats = self.get_stats()
        issues = []

        if not stats['is_connected']:
            issues.append('WebSocket not connected')

        if stats['last_message_age_seconds'] and stats['last_message_age_seconds'] > 30:
            issues.append(f"No messages for {stats['last_message_age_seconds']:.1f}s")

        codec = stats['codec']
        frames = codec['frames_decoded'] + codec['decompress_errors']
        if frames > 0:
            error_rate = codec['decompress_errors'] / frames
            if error_rate > 0.05:
                issues.append(f"High decompression error rate: {error_rate:.2%}")

        return {
            'status': 'healthy' if not issues else 'unhealthy',
            'issues': issues,
            'stats': stats
        }
