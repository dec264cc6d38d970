"""
Data models for market data.

Uses Pydantic for type-safe data structures. Raw Binance payloads carry
string-encoded numerics; the ``from_*`` constructors parse them and raise
ParseError on malformed fields.
"""

import math
from pydantic import BaseModel, Field, ConfigDict, ValidationError, computed_field, model_validator
from typing import Any, List, Literal, Optional
from datetime import datetime, UTC

from data_engine.errors import ParseError


def parse_number(value: Any, field: str, symbol: Optional[str] = None) -> float:
    """Convert a string-encoded exchange numeric to float."""
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise ParseError(f"Malformed numeric field '{field}': {value!r}", symbol=symbol) from e
    if not math.isfinite(number):
        raise ParseError(f"Non-finite numeric field '{field}': {value!r}", symbol=symbol)
    return number


def parse_timestamp(value: Any, field: str, symbol: Optional[str] = None) -> datetime:
    """Convert an exchange millisecond timestamp to an aware UTC datetime."""
    try:
        return datetime.fromtimestamp(int(value) / 1000, tz=UTC)
    except (TypeError, ValueError, OverflowError, OSError) as e:
        raise ParseError(f"Malformed timestamp field '{field}': {value!r}", symbol=symbol) from e


def build_model(model, symbol: Optional[str] = None, /, **fields):
    """Construct a model from parsed fields, reporting constraint violations as ParseError."""
    try:
        return model(**fields)
    except ValidationError as e:
        raise ParseError(f"Invalid {model.__name__} payload: {e.errors()[0]['msg']}", symbol=symbol) from e


class TickerSnapshot(BaseModel):
    """24h ticker snapshot for one instrument."""

    model_config = ConfigDict(frozen=True)

    symbol: str = Field(..., description="Exchange symbol identifier (e.g., BTCUSDT)")
    quote_volume: float = Field(..., ge=0, description="24h traded volume in the quote asset")

    @classmethod
    def from_raw(cls, raw: dict) -> "TickerSnapshot":
        """Build from a raw /ticker/24hr object."""
        try:
            symbol = raw["symbol"]
        except (KeyError, TypeError) as e:
            raise ParseError(f"Ticker payload without symbol: {raw!r}") from e
        return build_model(
            cls,
            symbol,
            symbol=symbol,
            quote_volume=parse_number(raw.get("quoteVolume"), "quoteVolume", symbol),
        )


class OrderBookLevel(BaseModel):
    """Single level in order book (bid or ask)."""

    price: float = Field(..., ge=0, description="Price level")
    amount: float = Field(..., ge=0, description="Volume at this price level")


class OrderBook(BaseModel):
    """Order book snapshot."""

    symbol: str = Field(..., description="Trading pair symbol (e.g., BTCUSDT)")
    exchange: str = Field(..., description="Exchange name")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    asks: List[OrderBookLevel] = Field(..., description="Sell orders (ascending price)")
    bids: List[OrderBookLevel] = Field(..., description="Buy orders (descending price)")

    latency_ms: Optional[float] = Field(None, description="Round-trip time of the depth request")

    @classmethod
    def from_raw(cls, symbol: str, exchange: str, raw: dict, latency_ms: Optional[float] = None) -> "OrderBook":
        """Build from a raw /depth payload of [price, volume] string pairs."""
        sides = {}
        for side in ("asks", "bids"):
            levels = []
            for entry in raw.get(side) or []:
                try:
                    price, amount = entry[0], entry[1]
                except (IndexError, TypeError, KeyError) as e:
                    raise ParseError(f"Malformed {side} entry: {entry!r}", symbol=symbol) from e
                levels.append(build_model(
                    OrderBookLevel,
                    symbol,
                    price=parse_number(price, f"{side}.price", symbol),
                    amount=parse_number(amount, f"{side}.volume", symbol),
                ))
            sides[side] = levels

        return build_model(
            cls,
            symbol,
            symbol=symbol,
            exchange=exchange,
            asks=sides["asks"],
            bids=sides["bids"],
            latency_ms=latency_ms,
        )

    def get_side(self, side: str) -> List[OrderBookLevel]:
        """Return levels for 'asks' or 'bids'."""
        if side == "asks":
            return self.asks
        if side == "bids":
            return self.bids
        raise ValueError(f"Unknown order book side: {side}")

    def total_volume(self, side: str) -> float:
        """Sum of volume across every level of a side."""
        return sum(level.amount for level in self.get_side(side))


class Candle(BaseModel):
    """OHLCV bar. Identity is its open time."""

    model_config = ConfigDict(frozen=True)

    open_time: datetime = Field(..., description="Bar open time (UTC)")
    open: float
    high: float
    low: float
    close: float
    volume: float

    @classmethod
    def from_rest(cls, row: list, symbol: Optional[str] = None) -> "Candle":
        """Build from a /klines row: [openTime, open, high, low, close, volume, ...]."""
        if not isinstance(row, (list, tuple)) or len(row) < 6:
            raise ParseError(f"Malformed kline row: {row!r}", symbol=symbol)
        return build_model(
            cls,
            symbol,
            open_time=parse_timestamp(row[0], "openTime", symbol),
            open=parse_number(row[1], "open", symbol),
            high=parse_number(row[2], "high", symbol),
            low=parse_number(row[3], "low", symbol),
            close=parse_number(row[4], "close", symbol),
            volume=parse_number(row[5], "volume", symbol),
        )

    @classmethod
    def from_stream(cls, payload: dict, symbol: Optional[str] = None) -> "Candle":
        """Build from the 'k' object of a kline stream event."""
        if not isinstance(payload, dict):
            raise ParseError(f"Malformed kline payload: {payload!r}", symbol=symbol)
        return build_model(
            cls,
            symbol,
            open_time=parse_timestamp(payload.get("t"), "t", symbol),
            open=parse_number(payload.get("o"), "o", symbol),
            high=parse_number(payload.get("h"), "h", symbol),
            low=parse_number(payload.get("l"), "l", symbol),
            close=parse_number(payload.get("c"), "c", symbol),
            volume=parse_number(payload.get("v"), "v", symbol),
        )


class SolidityLevel(BaseModel):
    """Dominant order on one side of the book."""

    model_config = ConfigDict(frozen=True)

    price: float = Field(..., description="Price of the dominant order")
    volume: float = Field(..., description="Volume of the dominant order")


class SolidityResult(BaseModel):
    """
    Liquidity-concentration result for one instrument.

    buy_volume is the total ask volume and sell_volume the total bid volume.
    Downstream consumers rely on this pairing.
    """

    model_config = ConfigDict(frozen=True)

    symbol: str = Field(..., description="Instrument analyzed")
    quote_volume: float = Field(..., description="24h quote volume from the ticker")
    buy_volume: float = Field(..., description="Aggregate ask volume")
    sell_volume: float = Field(..., description="Aggregate bid volume")
    solidity_long: Optional[SolidityLevel] = Field(
        None, description="Dominant ask, present when it exceeds the ratio threshold"
    )
    solidity_short: Optional[SolidityLevel] = Field(
        None, description="Dominant bid, present when it exceeds the ratio threshold"
    )

    @computed_field
    @property
    def has_solidity(self) -> bool:
        """True when at least one side carries a signal."""
        return self.solidity_long is not None or self.solidity_short is not None


class SymbolOutcome(BaseModel):
    """Isolated per-symbol scan outcome: either a result or an error."""

    symbol: str
    result: Optional[SolidityResult] = None
    error: Optional[str] = None

    @model_validator(mode="after")
    def check_exactly_one(self) -> "SymbolOutcome":
        if (self.result is None) == (self.error is None):
            raise ValueError("Exactly one of result or error must be set")
        return self

    @computed_field
    @property
    def ok(self) -> bool:
        return self.error is None


class ScanReport(BaseModel):
    """Aggregated outcome of a batch scan."""

    outcomes: List[SymbolOutcome] = Field(default_factory=list)
    group_count: int = Field(0, description="Number of groups issued")
    cancelled: bool = Field(False, description="Scan stopped early by its cancel event")
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    finished_at: Optional[datetime] = None

    @property
    def results(self) -> List[SolidityResult]:
        return [o.result for o in self.outcomes if o.result is not None]

    @property
    def failures(self) -> List[SymbolOutcome]:
        return [o for o in self.outcomes if o.error is not None]

    @computed_field
    @property
    def symbols_with_solidity(self) -> List[str]:
        """Symbols whose result carries at least one signal."""
        return [r.symbol for r in self.results if r.has_solidity]

    @computed_field
    @property
    def duration_seconds(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()


class KlineEvent(BaseModel):
    """
    Merge event emitted by a kline subscription.

    snapshot carries the initial series, replace/append carry one candle and
    failed carries the reason the stream stopped.
    """

    kind: Literal["snapshot", "replace", "append", "failed"]
    symbol: str
    interval: str
    candle: Optional[Candle] = None
    candles: List[Candle] = Field(default_factory=list)
    reason: Optional[str] = None
