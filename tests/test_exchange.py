import unittest
import asyncio
from unittest.mock import MagicMock, AsyncMock, patch
import ccxt.async_support as ccxt
from data_engine.exchange import ExchangeClient, ExchangeManager
from data_engine.errors import NetworkError, ParseError
from data_engine.models import OrderBook, TickerSnapshot


class TestExchangeIntegration(unittest.IsolatedAsyncioTestCase):
    """Tests for the Exchange Integration layer."""

    async def asyncSetUp(self):
        """Setup mock environment."""
        self.exchange_id = "binance"
        self.symbol = "BTCUSDT"

        # Patch ccxt.binance to return a mock instance
        self.mock_ccxt_instance = MagicMock()
        self.mock_ccxt_instance.public_get_ticker_24hr = AsyncMock()
        self.mock_ccxt_instance.public_get_depth = AsyncMock()
        self.mock_ccxt_instance.public_get_klines = AsyncMock()
        self.mock_ccxt_instance.close = AsyncMock()

        self.patcher_ccxt = patch(f'ccxt.async_support.{self.exchange_id}', return_value=self.mock_ccxt_instance)
        self.mock_ccxt_class = self.patcher_ccxt.start()

        # Patch settings
        self.patcher_settings = patch('data_engine.exchange.settings')
        self.mock_settings = self.patcher_settings.start()
        self.mock_settings.default_exchange = "binance"
        self.mock_settings.exchange_api_key = None
        self.mock_settings.exchange_api_secret = None
        self.mock_settings.request_timeout = 5.0
        self.mock_settings.logfire_token = None

        self.client = ExchangeClient(self.exchange_id)

    async def asyncTearDown(self):
        """Cleanup."""
        self.patcher_ccxt.stop()
        self.patcher_settings.stop()

    # ========== ExchangeClient Tests ==========

    def test_client_initialization(self):
        """Test ExchangeClient init passes rate limiting and timeout to ccxt."""
        self.assertEqual(self.client.exchange_id, "binance")
        self.assertTrue(self.client.status["is_healthy"])
        config = self.mock_ccxt_class.call_args.args[0]
        self.assertTrue(config["enableRateLimit"])
        self.assertEqual(config["timeout"], 5000)
        self.assertNotIn("apiKey", config)

    def test_client_init_with_keys(self):
        """Test initialization with explicit API keys."""
        client = ExchangeClient(self.exchange_id, api_key="key", api_secret="secret")
        self.assertEqual(client.api_key, "key")
        self.assertEqual(client.api_secret, "secret")
        config = self.mock_ccxt_class.call_args.args[0]
        self.assertEqual(config["apiKey"], "key")

    async def test_fetch_tickers_preserves_order(self):
        self.mock_ccxt_instance.public_get_ticker_24hr.return_value = [
            {"symbol": "ABCUSDT", "quoteVolume": "5000000"},
            {"symbol": "XYZBTC", "quoteVolume": "9000000"},
        ]
        tickers = await self.client.fetch_tickers_24h()

        self.assertEqual([t.symbol for t in tickers], ["ABCUSDT", "XYZBTC"])
        self.assertEqual(tickers[0].quote_volume, 5_000_000.0)
        self.mock_ccxt_instance.public_get_ticker_24hr.assert_awaited_once_with({})

    async def test_fetch_ticker_single_symbol(self):
        self.mock_ccxt_instance.public_get_ticker_24hr.return_value = {"symbol": self.symbol, "quoteVolume": "123.5"}
        ticker = await self.client.fetch_ticker_24h(self.symbol)

        self.assertIsInstance(ticker, TickerSnapshot)
        self.assertEqual(ticker.quote_volume, 123.5)
        self.mock_ccxt_instance.public_get_ticker_24hr.assert_awaited_once_with({"symbol": self.symbol})

    async def test_fetch_ticker_unexpected_shape(self):
        self.mock_ccxt_instance.public_get_ticker_24hr.return_value = []
        with self.assertRaises(ParseError):
            await self.client.fetch_ticker_24h(self.symbol)

    async def test_fetch_tickers_negative_volume_is_parse_error(self):
        """One out-of-range ticker surfaces as ParseError, not a validation error."""
        self.mock_ccxt_instance.public_get_ticker_24hr.return_value = [
            {"symbol": "AUSDT", "quoteVolume": "10"},
            {"symbol": "BUSDT", "quoteVolume": "-1"},
        ]
        with self.assertRaises(ParseError) as ctx:
            await self.client.fetch_tickers_24h()
        self.assertEqual(ctx.exception.symbol, "BUSDT")

    async def test_fetch_order_book_success(self):
        """Test fetch_order_book model conversion and latency."""
        self.mock_ccxt_instance.public_get_depth.return_value = {
            "lastUpdateId": 1027024,
            "bids": [["100.0", "1.0"]],
            "asks": [["101.0", "2.0"], ["102.0", "0.5"]],
        }
        orderbook = await self.client.fetch_order_book(self.symbol)

        self.assertIsInstance(orderbook, OrderBook)
        self.assertEqual(len(orderbook.asks), 2)
        self.assertEqual(orderbook.bids[0].price, 100.0)
        self.assertIsNotNone(orderbook.latency_ms)
        self.mock_ccxt_instance.public_get_depth.assert_awaited_once_with({"symbol": self.symbol})

    async def test_fetch_order_book_with_limit(self):
        self.mock_ccxt_instance.public_get_depth.return_value = {"bids": [], "asks": []}
        await self.client.fetch_order_book(self.symbol, limit=50)
        self.mock_ccxt_instance.public_get_depth.assert_awaited_once_with({"symbol": self.symbol, "limit": 50})

    async def test_fetch_klines(self):
        self.mock_ccxt_instance.public_get_klines.return_value = [
            [1700000000000, "10", "11", "9", "10.5", "100", 1700000059999],
            [1700000060000, "10.5", "12", "10", "11", "50", 1700000119999],
        ]
        candles = await self.client.fetch_klines(self.symbol, "1m", 2)

        self.assertEqual(len(candles), 2)
        self.assertLess(candles[0].open_time, candles[1].open_time)
        self.assertEqual(candles[1].close, 11.0)
        self.mock_ccxt_instance.public_get_klines.assert_awaited_once_with(
            {"symbol": self.symbol, "interval": "1m", "limit": 2}
        )

    # ========== Error Translation Tests ==========

    async def test_ccxt_network_error_becomes_network_error(self):
        self.mock_ccxt_instance.public_get_depth.side_effect = ccxt.NetworkError("Connection reset")
        with self.assertRaises(NetworkError) as ctx:
            await self.client.fetch_order_book(self.symbol)

        self.assertEqual(ctx.exception.symbol, self.symbol)
        self.assertIsInstance(ctx.exception.__cause__, ccxt.NetworkError)
        self.assertFalse(self.client.status["is_healthy"])

    async def test_ccxt_exchange_error_becomes_network_error(self):
        """Non-success statuses surface as NetworkError as well."""
        self.mock_ccxt_instance.public_get_ticker_24hr.side_effect = ccxt.BadSymbol("Invalid symbol")
        with self.assertRaises(NetworkError):
            await self.client.fetch_ticker_24h("NOPE")

    async def test_request_timeout(self):
        """A hung request is abandoned after the configured timeout."""
        async def hang(params):
            await asyncio.sleep(10)

        self.mock_ccxt_instance.public_get_depth.side_effect = hang
        client = ExchangeClient(self.exchange_id, request_timeout=0.01)

        with self.assertRaises(NetworkError) as ctx:
            await client.fetch_order_book(self.symbol)
        self.assertIn("timed out", str(ctx.exception))

    async def test_success_resets_failures(self):
        self.mock_ccxt_instance.public_get_depth.side_effect = [
            ccxt.NetworkError("down"),
            {"bids": [], "asks": []},
        ]
        with self.assertRaises(NetworkError):
            await self.client.fetch_order_book(self.symbol)
        self.assertEqual(self.client.status["failures"], 1)

        await self.client.fetch_order_book(self.symbol)
        self.assertEqual(self.client.status["failures"], 0)

    async def test_client_close(self):
        await self.client.close()
        self.mock_ccxt_instance.close.assert_awaited_once()

    # ========== ExchangeManager Tests ==========

    async def test_exchange_manager_pooling(self):
        """Test ExchangeManager pools clients and handles dynamic credentials."""
        manager = ExchangeManager()

        client1 = await manager.get_client("binance")
        self.assertIn("binance", manager._clients)

        client2 = await manager.get_client("binance")
        self.assertIs(client1, client2)

        await manager.get_client("binance", api_key="new_key", api_secret="new_secret")
        self.assertEqual(client1.api_key, "new_key")
        self.assertEqual(client1.exchange.secret, "new_secret")

        await manager.close_all()
        self.assertEqual(len(manager._clients), 0)
        self.mock_ccxt_instance.close.assert_awaited()


if __name__ == '__main__':
    unittest.main()
