"""Tests for the market feed service entry point."""

from unittest.mock import AsyncMock, patch

import pytest

from odin_market_feed.config.settings import FeedSettings, SubscriptionConfig
from odin_market_feed.exceptions import SubscriptionError
from odin_market_feed.main import MarketFeedService


def make_service(**subscriptions) -> MarketFeedService:
    settings = FeedSettings(subscriptions=SubscriptionConfig(**subscriptions))
    service = MarketFeedService(settings)
    service.client = AsyncMock()
    return service


@pytest.mark.unit
class TestApplySubscriptions:
    """Test that configured subscriptions reach the client."""

    @pytest.mark.asyncio
    async def test_all_configured_requests_sent(self):
        service = make_service(
            touchline=["1_22", "1_2885"],
            touchline_response_type="1",
            ltp_change_only=True,
            ltp_touchline=["2_10"],
            best_five=["1_2885", "3_500"]
        )

        failures = await service._apply_subscriptions()

        assert failures == 0
        service.client.subscribe_touchline.assert_awaited_once_with(["1_22", "1_2885"], "1", True)
        service.client.subscribe_ltp_touchline.assert_awaited_once_with(["2_10"])
        assert [c.args for c in service.client.subscribe_best_five.await_args_list] == [
            ("2885", 1), ("500", 3)
        ]

    @pytest.mark.asyncio
    async def test_nothing_configured(self):
        service = make_service()

        assert await service._apply_subscriptions() == 0
        service.client.subscribe_touchline.assert_not_awaited()
        service.client.subscribe_ltp_touchline.assert_not_awaited()
        service.client.subscribe_best_five.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failure_does_not_skip_later_requests(self):
        service = make_service(touchline=["bad"], ltp_touchline=["2_10"], best_five=["1_2885"])
        service.client.subscribe_touchline.side_effect = SubscriptionError("No valid tokens found to subscribe.")

        failures = await service._apply_subscriptions()

        assert failures == 1
        service.client.subscribe_ltp_touchline.assert_awaited_once_with(["2_10"])
        service.client.subscribe_best_five.assert_awaited_once_with("2885", 1)

    @pytest.mark.asyncio
    async def test_malformed_best_five_entries_skipped(self):
        service = make_service(best_five=["2885", "x_10", "1_2885"])

        failures = await service._apply_subscriptions()

        assert failures == 2
        service.client.subscribe_best_five.assert_awaited_once_with("2885", 1)


@pytest.mark.unit
class TestServiceLifecycle:
    """Test start and shutdown."""

    @pytest.mark.asyncio
    async def test_close_stops_service(self):
        service = make_service()

        service._on_close(1000, "")

        assert service._shutdown_event.is_set()

    @pytest.mark.asyncio
    async def test_start_runs_until_stopped(self):
        service = MarketFeedService(FeedSettings(subscriptions=SubscriptionConfig(touchline=["1_22"])))
        client = AsyncMock()
        client.connect_with_settings.side_effect = service.stop

        with patch("odin_market_feed.main.ODINMarketFeedClient", return_value=client) as client_cls, \
                patch.object(MarketFeedService, "_setup_signal_handlers"):
            await service.start()

        assert client_cls.call_args.kwargs['on_close'] == service._on_close
        client.subscribe_touchline.assert_awaited_once()
        client.dispose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_start_disposes_client_when_connect_fails(self):
        service = MarketFeedService(FeedSettings())
        client = AsyncMock()
        client.connect_with_settings.side_effect = OSError("refused")

        with patch("odin_market_feed.main.ODINMarketFeedClient", return_value=client), \
                patch.object(MarketFeedService, "_setup_signal_handlers"):
            with pytest.raises(OSError):
                await service.start()

        client.dispose.assert_awaited_once()
        client.subscribe_touchline.assert_not_awaited()
