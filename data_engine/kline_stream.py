"""
WebSocket streaming for live candlestick updates.

A subscription turns raw kline stream messages into merge events:
``replace`` when the update belongs to the still-open last bar and
``append`` when it opens a new one. The caller owns the candle series and
applies each event with ``CandleSeries.apply``.
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import AsyncIterator, Callable, Iterable, List, Optional, Tuple, Union

import websockets
from websockets.exceptions import WebSocketException

from config.settings import settings
from data_engine.errors import ParseError, ScreenerError, StreamError
from data_engine.exchange import exchange_manager
from data_engine.models import Candle, KlineEvent

logger = logging.getLogger(__name__)


def parse_stream_message(message: Union[str, bytes], symbol: Optional[str] = None) -> Optional[Candle]:
    """
    Decode one stream message.

    Returns:
        The candle of a kline event, or None for any other event type

    Raises:
        ParseError: On invalid JSON or malformed kline fields
    """
    try:
        data = json.loads(message)
    except (TypeError, ValueError) as e:
        raise ParseError(f"Invalid stream message: {message!r}", symbol=symbol) from e

    if not isinstance(data, dict) or data.get("e") != "kline":
        return None
    return Candle.from_stream(data.get("k"), symbol)


def classify_update(last_open_time: Optional[datetime], candle: Candle) -> str:
    """Return 'replace' when the candle updates the last bar, 'append' otherwise."""
    if last_open_time is not None and last_open_time == candle.open_time:
        return "replace"
    return "append"


class CandleSeries:
    """
    Caller-owned candle sequence driven by kline events.

    ``apply`` is synchronous, so a merge never interleaves with a reader on
    the event loop.
    """

    def __init__(self, candles: Iterable[Candle] = ()):
        self._candles: List[Candle] = list(candles)
        self.error: Optional[str] = None

    def __len__(self) -> int:
        return len(self._candles)

    def __iter__(self):
        return iter(list(self._candles))

    def __getitem__(self, index):
        return self._candles[index]

    @property
    def candles(self) -> Tuple[Candle, ...]:
        return tuple(self._candles)

    @property
    def last(self) -> Optional[Candle]:
        return self._candles[-1] if self._candles else None

    def merge(self, candle: Candle) -> str:
        """Replace the last bar if it has the same open time, else append."""
        kind = classify_update(self.last.open_time if self.last else None, candle)
        if kind == "replace":
            self._candles[-1] = candle
        else:
            self._candles.append(candle)
        return kind

    def apply(self, event: KlineEvent) -> None:
        if event.kind == "snapshot":
            self._candles = list(event.candles)
        elif event.kind in ("replace", "append"):
            self.merge(event.candle)
        elif event.kind == "failed":
            self.error = event.reason


class KlineSubscription:
    """
    Live kline subscription for one (symbol, interval).

    Events are queued by a background task reading the socket and consumed
    with ``async for event in subscription``. Iteration ends when the socket
    closes, the subscription fails or ``close`` is called. There is no
    automatic reconnect.
    """

    def __init__(
        self,
        symbol: str,
        interval: str,
        ws_url: Optional[str] = None,
        connect: Optional[Callable] = None,
    ):
        self.symbol = symbol
        self.interval = interval
        base_url = (ws_url or settings.binance_ws_url).rstrip("/")
        self.url = f"{base_url}/{symbol.lower()}@kline_{interval}"
        self._connect = connect or websockets.connect
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._last_open_time: Optional[datetime] = None
        self._finished = False

    @property
    def key(self) -> Tuple[str, str]:
        return self.symbol, self.interval

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def prime(self, candles: List[Candle]):
        """Seed the merge state from the initial series and queue a snapshot event."""
        self._last_open_time = candles[-1].open_time if candles else None
        self._emit(KlineEvent(kind="snapshot", symbol=self.symbol, interval=self.interval, candles=list(candles)))

    async def start(self):
        """Open the socket in a background task."""
        if self._task is None:
            self._task = asyncio.create_task(self._run())
            logger.info("Started kline stream %s", self.url)

    def fail(self, reason: str):
        """Queue a failed event and end iteration."""
        self._emit(KlineEvent(kind="failed", symbol=self.symbol, interval=self.interval, reason=reason))
        self._finish()

    async def close(self):
        """Close the socket and end iteration."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        self._finish()
        logger.info("Closed kline stream %s", self.url)

    def __aiter__(self) -> AsyncIterator[KlineEvent]:
        return self.events()

    async def events(self) -> AsyncIterator[KlineEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event

    def handle_message(self, message: Union[str, bytes]) -> Optional[KlineEvent]:
        """
        Turn one socket message into a queued merge event.

        Non-kline events are ignored. Malformed messages are logged and skipped.
        """
        try:
            candle = parse_stream_message(message, self.symbol)
        except ParseError as e:
            logger.warning("Skipping malformed message on %s: %s", self.url, e)
            return None
        if candle is None:
            return None

        kind = classify_update(self._last_open_time, candle)
        self._last_open_time = candle.open_time
        event = KlineEvent(kind=kind, symbol=self.symbol, interval=self.interval, candle=candle)
        self._emit(event)
        return event

    async def _run(self):
        try:
            async with self._connect(self.url, ping_interval=20, ping_timeout=20) as ws:
                async for message in ws:
                    self.handle_message(message)
        except asyncio.CancelledError:
            raise
        except (WebSocketException, OSError, asyncio.TimeoutError) as e:
            error = StreamError(f"Kline stream {self.url} failed: {e}", symbol=self.symbol)
            logger.error("%s", error)
            self.fail(str(error))
        except Exception as e:
            logger.exception("Kline stream %s stopped unexpectedly", self.url)
            self.fail(f"{type(e).__name__}: {e}")
        else:
            logger.info("Kline stream %s closed by server", self.url)
        finally:
            self._finish()

    def _emit(self, event: KlineEvent):
        if not self._finished:
            self._queue.put_nowait(event)

    def _finish(self):
        if not self._finished:
            self._finished = True
            self._queue.put_nowait(None)


async def stream_klines(
    symbol: str,
    interval: str,
    limit: int,
    client=None,
    connect: Optional[Callable] = None,
) -> Tuple[List[Candle], KlineSubscription]:
    """
    Fetch recent candles and open a live subscription for further updates.

    Never raises: a failed fetch or setup is logged and reported as a
    ``failed`` event on the returned subscription, together with whatever
    candles were obtained.

    Args:
        symbol: Exchange symbol (e.g., 'BTCUSDT')
        interval: Candle duration ('1m', '5m', '1h')
        limit: Number of historical candles
        client: ExchangeClient (pooled default client when omitted)
        connect: WebSocket connect factory

    Returns:
        (initial candles, subscription handle)
    """
    subscription = KlineSubscription(symbol, interval, connect=connect)
    candles: List[Candle] = []
    try:
        if client is None:
            client = await exchange_manager.get_client()
        candles = await client.fetch_klines(symbol, interval, limit)
        subscription.prime(candles)
        await subscription.start()
    except ScreenerError as e:
        logger.error("Kline stream setup failed for %s@%s: %s", symbol, interval, e)
        subscription.fail(f"{type(e).__name__}: {e}")
    except Exception as e:
        logger.exception("Unexpected error setting up kline stream for %s@%s", symbol, interval)
        subscription.fail(f"{type(e).__name__}: {e}")
    return candles, subscription
