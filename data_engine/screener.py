"""
Instrument listing and per-symbol solidity analysis.
"""

import asyncio
import logging
from typing import List, Optional

import logfire

from config.settings import settings
from data_engine.analytics import compute_solidity
from data_engine.exchange import ExchangeClient
from data_engine.models import OrderBook, SolidityResult, TickerSnapshot

logger = logging.getLogger(__name__)


class SolidityScreener:
    """
    Finds instruments whose order book is dominated by a single large order.

    Errors from the exchange client propagate unchanged: NetworkError for
    failed requests and ParseError for malformed payloads.
    """

    def __init__(self, client: ExchangeClient, quote_asset: Optional[str] = None):
        self.client = client
        self.quote_asset = quote_asset or settings.quote_asset

    async def list_eligible_symbols(self, min_volume: float) -> List[str]:
        """
        List symbols quoted in the configured asset with enough traded volume.

        Args:
            min_volume: Quote volume a symbol must strictly exceed

        Returns:
            Matching symbols in the order the exchange returned them
        """
        tickers = await self.client.fetch_tickers_24h()
        symbols = [
            ticker.symbol
            for ticker in tickers
            if ticker.symbol.endswith(self.quote_asset) and ticker.quote_volume > min_volume
        ]
        logger.info(
            "%d of %d symbols eligible (quote=%s, min_volume=%s)",
            len(symbols), len(tickers), self.quote_asset, min_volume,
        )
        return symbols

    async def get_ticker(self, symbol: str) -> TickerSnapshot:
        return await self.client.fetch_ticker_24h(symbol)

    async def fetch_order_book(self, symbol: str) -> OrderBook:
        return await self.client.fetch_order_book(symbol)

    async def analyze_solidity(self, symbol: str, ratio_threshold: float) -> SolidityResult:
        """
        Fetch the order book and ticker of a symbol concurrently and compute its solidity.

        Args:
            symbol: Exchange symbol (e.g., 'BTCUSDT')
            ratio_threshold: Percentage of side volume a single order must exceed

        Raises:
            NetworkError: If either request fails
        """
        with logfire.span("analyze_solidity:{symbol}", symbol=symbol, ratio_threshold=ratio_threshold):
            orderbook, ticker = await asyncio.gather(
                self.fetch_order_book(symbol),
                self.get_ticker(symbol),
            )
            result = compute_solidity(orderbook, ticker.quote_volume, ratio_threshold)

        if result.has_solidity:
            logger.debug(
                "Solidity on %s: long=%s short=%s",
                symbol, result.solidity_long, result.solidity_short,
            )
        return result
