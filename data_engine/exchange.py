import ccxt.async_support as ccxt
from typing import Optional, Dict, Any, List
import asyncio
import logging
import time
from data_engine.models import TickerSnapshot, OrderBook, Candle
from data_engine.errors import NetworkError, ParseError
from config.settings import settings
import logfire

logger = logging.getLogger(__name__)

# Initialize Performance Metrics
REQUEST_LATENCY_HISTOGRAM = logfire.metric_histogram(
    "exchange_request_duration_seconds",
    unit="s",
    description="Duration of requests to the exchange public API"
)
REQUEST_FAILURE_COUNTER = logfire.metric_counter(
    "exchange_request_failures_total",
    unit="1",
    description="Total number of failed or timed out exchange requests"
)
RATE_LIMIT_WEIGHT_GAUGE = logfire.metric_gauge(
    "exchange_rate_limit_used_weight",
    unit="weight",
    description="Current used rate limit weight (Binance x-mbx-used-weight-1m)"
)


class ExchangeClient:
    """
    Async wrapper for the Binance public REST endpoints.

    Uses ccxt's raw implicit endpoints so payloads keep the exchange wire
    format (string-encoded numerics, fixed-position kline arrays).

    Handles:
    - Per-request timeouts
    - Translation of ccxt failures into NetworkError
    - Latency metrics and spans
    - Connection lifecycle management
    """

    def __init__(
        self,
        exchange_id: str = None,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        request_timeout: Optional[float] = None,
    ):
        """
        Initialize exchange client.

        Args:
            exchange_id: ccxt exchange identifier exposing Binance's API (e.g., 'binance')
            api_key: Optional API key
            api_secret: Optional API secret
            request_timeout: Seconds before a single request is abandoned
        """
        self.exchange_id = exchange_id or settings.default_exchange
        self.api_key = api_key or settings.exchange_api_key
        self.api_secret = api_secret or settings.exchange_api_secret
        self.request_timeout = request_timeout or settings.request_timeout
        self.last_request_latency_ms: Optional[float] = None
        self._failures = 0

        exchange_class = getattr(ccxt, self.exchange_id)
        config = {
            "enableRateLimit": True,
            "timeout": int(self.request_timeout * 1000),
        }

        if self.api_key and self.api_secret:
            config["apiKey"] = self.api_key
            config["secret"] = self.api_secret

        self.exchange: ccxt.Exchange = exchange_class(config)

    @property
    def status(self) -> dict:
        """Get exchange connection health status."""
        return {
            "name": self.exchange_id,
            "failures": self._failures,
            "last_latency_ms": self.last_request_latency_ms,
            "is_healthy": self._failures == 0,
        }

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit - cleanup resources."""
        await self.close()

    async def close(self):
        """Close exchange connection."""
        if self.exchange:
            await self.exchange.close()
            logger.info("Connection closed for %s", self.exchange_id)

    async def _request(self, operation: str, method_name: str, params: Dict[str, Any], symbol: Optional[str] = None) -> Any:
        """
        Call a raw endpoint with timeout, span and latency tracking.

        Raises:
            NetworkError: On any ccxt failure or timeout
        """
        method = getattr(self.exchange, method_name)

        with logfire.span("{operation}@{exchange}", operation=operation, exchange=self.exchange_id, symbol=symbol) as span:
            start_time = time.perf_counter()
            try:
                data = await asyncio.wait_for(method(params), timeout=self.request_timeout)
            except asyncio.TimeoutError as e:
                self._record_failure(operation, "timeout")
                span.record_exception(e)
                raise NetworkError(
                    f"{operation} timed out after {self.request_timeout}s on {self.exchange_id}",
                    symbol=symbol,
                ) from e
            except ccxt.BaseError as e:
                self._record_failure(operation, type(e).__name__)
                span.record_exception(e)
                raise NetworkError(f"{operation} failed on {self.exchange_id}: {e}", symbol=symbol) from e

            duration = time.perf_counter() - start_time
            self.last_request_latency_ms = duration * 1000
            self._failures = 0
            if settings.logfire_token:
                REQUEST_LATENCY_HISTOGRAM.record(duration, {"exchange": self.exchange_id, "operation": operation})

                headers = getattr(self.exchange, "last_response_headers", None) or {}
                weight = headers.get("x-mbx-used-weight-1m")
                if weight:
                    RATE_LIMIT_WEIGHT_GAUGE.set(float(weight), {"exchange": self.exchange_id})

        return data

    def _record_failure(self, operation: str, reason: str):
        self._failures += 1
        logger.warning("Exchange request %s failed on %s (%s)", operation, self.exchange_id, reason)
        if settings.logfire_token:
            REQUEST_FAILURE_COUNTER.add(1, {"exchange": self.exchange_id, "operation": operation, "reason": reason})

    async def fetch_tickers_24h(self) -> List[TickerSnapshot]:
        """
        Fetch 24h ticker snapshots for every instrument.

        Returns:
            Snapshots in the order the exchange returned them
        """
        data = await self._request("fetch_tickers_24h", "public_get_ticker_24hr", {})
        if not isinstance(data, list):
            raise ParseError(f"Expected a ticker list, got {type(data).__name__}")
        return [TickerSnapshot.from_raw(raw) for raw in data]

    async def fetch_ticker_24h(self, symbol: str) -> TickerSnapshot:
        """
        Fetch the 24h ticker snapshot for one instrument.

        Args:
            symbol: Exchange symbol (e.g., 'BTCUSDT')
        """
        data = await self._request("fetch_ticker_24h", "public_get_ticker_24hr", {"symbol": symbol}, symbol=symbol)
        if not isinstance(data, dict):
            raise ParseError(f"Expected a ticker object, got {type(data).__name__}", symbol=symbol)
        return TickerSnapshot.from_raw(data)

    async def fetch_order_book(self, symbol: str, limit: Optional[int] = None) -> OrderBook:
        """
        Fetch the order book for an instrument.

        Args:
            symbol: Exchange symbol (e.g., 'BTCUSDT')
            limit: Number of levels per side (exchange default when omitted)

        Returns:
            OrderBook object with structured bid/ask data
        """
        params = {"symbol": symbol}
        if limit is not None:
            params["limit"] = limit

        raw_orderbook = await self._request("fetch_order_book", "public_get_depth", params, symbol=symbol)
        if not isinstance(raw_orderbook, dict):
            raise ParseError(f"Expected a depth object, got {type(raw_orderbook).__name__}", symbol=symbol)

        return OrderBook.from_raw(
            symbol,
            self.exchange_id,
            raw_orderbook,
            latency_ms=self.last_request_latency_ms,
        )

    async def fetch_klines(self, symbol: str, interval: str = "1m", limit: int = 500) -> List[Candle]:
        """
        Fetch the most recent candlesticks.

        Args:
            symbol: Exchange symbol
            interval: Candle duration ('1m', '5m', '1h', '1d')
            limit: Number of candles

        Returns:
            Candles ordered by open time
        """
        params = {"symbol": symbol, "interval": interval, "limit": limit}
        rows = await self._request("fetch_klines", "public_get_klines", params, symbol=symbol)
        if not isinstance(rows, list):
            raise ParseError(f"Expected a kline list, got {type(rows).__name__}", symbol=symbol)
        return [Candle.from_rest(row, symbol) for row in rows]


class ExchangeManager:
    """
    Manager for exchange clients.

    Provides connection pooling and lifecycle management.
    """

    def __init__(self):
        """Initialize exchange manager."""
        self._clients: Dict[str, ExchangeClient] = {}

    async def get_client(self, exchange_id: str = None, api_key: str = None, api_secret: str = None) -> ExchangeClient:
        """
        Get or create pooled exchange client.
        Ensures stable rate limit buckets across requests.
        """
        exchange_id = exchange_id or settings.default_exchange

        if exchange_id not in self._clients:
            logger.info("Initializing pooled client for %s", exchange_id)
            self._clients[exchange_id] = ExchangeClient(exchange_id, api_key=api_key, api_secret=api_secret)

        client = self._clients[exchange_id]
        if api_key and (client.api_key != api_key):
            client.api_key = api_key
            client.exchange.apiKey = api_key
            if api_secret:
                client.api_secret = api_secret
                client.exchange.secret = api_secret
            logger.info("Updated credentials for %s", exchange_id)

        return client

    async def close_all(self):
        """Close all pooled exchange connections."""
        for client in self._clients.values():
            await client.close()
        self._clients.clear()
        logger.info("All exchange connections closed.")


# Global exchange manager instance
exchange_manager = ExchangeManager()
