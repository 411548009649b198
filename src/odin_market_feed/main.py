"""Market feed service - streams decoded ODIN market data to the log."""

import asyncio
import logging
import os
import signal
import sys
from functools import partial
from typing import Optional

from .clients.odin_feed import ODINMarketFeedClient
from .config.settings import FeedSettings, load_settings
from .exceptions import FeedError
from .utils.logging import setup_logging


logger = logging.getLogger(__name__)


class MarketFeedService:
    """Connects, applies the configured subscriptions and runs until signalled."""

    def __init__(self, settings: FeedSettings):
        self.settings = settings
        self.client: Optional[ODINMarketFeedClient] = None
        self._shutdown_event = asyncio.Event()

    async def start(self):
        logger.info(f"Starting {self.settings.service_name}")

        self.client = ODINMarketFeedClient(
            self.settings,
            on_open=self._on_open,
            on_message=self._on_message,
            on_error=self._on_error,
            on_close=self._on_close
        )

        self._setup_signal_handlers()

        try:
            await self.client.connect_with_settings()
            await self._apply_subscriptions()

            await self._shutdown_event.wait()
        finally:
            logger.info(f"Shutting down {self.settings.service_name}")
            await self.client.dispose()
            logger.info(f"{self.settings.service_name} stopped")

    def stop(self):
        self._shutdown_event.set()

    async def _apply_subscriptions(self) -> int:
        """Send every configured subscription; return how many failed.

        A failed request is logged and does not stop the remaining ones.
        """
        subs = self.settings.subscriptions
        requests = []

        if subs.touchline:
            requests.append(("touchline", partial(
                self.client.subscribe_touchline,
                subs.touchline, subs.touchline_response_type, subs.ltp_change_only
            )))
        if subs.ltp_touchline:
            requests.append(("LTP touchline", partial(
                self.client.subscribe_ltp_touchline, subs.ltp_touchline
            )))
        for entry in subs.best_five:
            requests.append((f"best five {entry}", partial(self._subscribe_best_five, entry)))

        failures = 0
        for name, request in requests:
            try:
                await request()
            except (FeedError, ValueError) as e:
                failures += 1
                logger.error(f"Subscription to {name} failed: {e}")

        return failures

    async def _subscribe_best_five(self, entry: str):
        segment, separator, token = entry.partition("_")
        if not separator:
            raise ValueError(
                f"Invalid best five entry: '{entry}'. Expected format: 'MarketSegmentID_Token'."
            )
        await self.client.subscribe_best_five(token, int(segment))

    def _setup_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, self._handle_signal, signum)
            except NotImplementedError:
                # Windows event loops
                signal.signal(signum, lambda s, f: self._handle_signal(s))

    def _handle_signal(self, signum):
        logger.info(f"Received signal {signum}, initiating shutdown")
        self.stop()

    def _on_open(self):
        logger.info("Market feed session established")

    def _on_message(self, message: str):
        logger.info(f"Market data: {message}")

    def _on_error(self, error: str):
        logger.error(f"Market feed error: {error}")

    def _on_close(self, code: int, reason: str):
        logger.info(f"Connection closed: code={code}, reason={reason}")
        self.stop()


async def main():
    """Main entry point."""
    config_file = os.getenv("CONFIG_FILE", "config/local.yaml")
    settings = load_settings(config_file)
    setup_logging(settings.logging, settings.service_name)

    service = MarketFeedService(settings)

    try:
        await service.start()
    except Exception as e:
        logger.error(f"Service failed: {e}", exc_info=True)
        sys.exit(1)


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
