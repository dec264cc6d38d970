"""
Stream Manager: keeps live kline subscriptions keyed by (symbol, interval).

1.  Reuse the pooled ExchangeClient for the historical fetch.
2.  Open at most one socket per (symbol, interval).
3.  Close subscriptions on request or at shutdown.
"""

import logging
from typing import Dict, List, Optional, Tuple

from config.settings import settings

from .exchange import exchange_manager
from .kline_stream import KlineSubscription, stream_klines
from .models import Candle

logger = logging.getLogger(__name__)


class StreamManager:
    """
    Registry of running kline subscriptions.
    """

    def __init__(self):
        self._streams: Dict[Tuple[str, str], KlineSubscription] = {}

    @property
    def active_keys(self) -> List[str]:
        return [f"{symbol}@{interval}" for symbol, interval in self._streams]

    def get_stream(self, symbol: str, interval: str) -> Optional[KlineSubscription]:
        return self._streams.get((symbol, interval))

    async def start_stream(
        self,
        symbol: str,
        interval: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> Tuple[List[Candle], KlineSubscription]:
        """
        Fetch history and start a subscription for the given symbol.

        A stream that is still running for the same key is replaced so each
        caller receives a fresh snapshot followed by live events. The replaced
        subscription receives a failed event with reason "replaced" first.
        """
        interval = interval or settings.kline_default_interval
        limit = limit or settings.kline_default_limit
        stream_key = (symbol, interval)

        existing = self._streams.pop(stream_key, None)
        if existing is not None:
            logger.warning("Replacing running stream for %s@%s", symbol, interval)
            existing.fail("replaced")
            await existing.close()

        client = await exchange_manager.get_client()
        candles, subscription = await stream_klines(symbol, interval, limit, client=client)
        self._streams[stream_key] = subscription
        logger.info("Started stream for %s@%s", symbol, interval)
        return candles, subscription

    async def stop_stream(self, symbol: str, interval: str):
        """
        Stop the subscription for the given key.
        """
        subscription = self._streams.pop((symbol, interval), None)
        if subscription is not None:
            await subscription.close()
            logger.info("Stopped stream for %s@%s", symbol, interval)

    async def stop_all(self):
        """Stop all streams."""
        for subscription in list(self._streams.values()):
            await subscription.close()
        self._streams.clear()


# Global Singleton
stream_manager = StreamManager()
