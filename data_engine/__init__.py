"""Data engine module for market data fetching and solidity screening."""

from data_engine.errors import ScreenerError, NetworkError, ParseError, StreamError
from data_engine.exchange import ExchangeClient, ExchangeManager, exchange_manager
from data_engine.screener import SolidityScreener
from data_engine.scanner import BatchScanner, chunk_symbols
from data_engine.kline_stream import CandleSeries, KlineSubscription, stream_klines
from data_engine.models import (
    TickerSnapshot,
    OrderBook,
    OrderBookLevel,
    Candle,
    SolidityLevel,
    SolidityResult,
    SymbolOutcome,
    ScanReport,
    KlineEvent,
)

__all__ = [
    "ScreenerError",
    "NetworkError",
    "ParseError",
    "StreamError",
    "ExchangeClient",
    "ExchangeManager",
    "exchange_manager",
    "SolidityScreener",
    "BatchScanner",
    "chunk_symbols",
    "CandleSeries",
    "KlineSubscription",
    "stream_klines",
    "TickerSnapshot",
    "OrderBook",
    "OrderBookLevel",
    "Candle",
    "SolidityLevel",
    "SolidityResult",
    "SymbolOutcome",
    "ScanReport",
    "KlineEvent",
]
