"""
Dependency injection for FastAPI.

Provides reusable dependencies for the exchange client, screener and scanner.
"""

from typing import AsyncGenerator
from fastapi import Depends

from data_engine import BatchScanner, ExchangeClient, SolidityScreener, exchange_manager


async def get_exchange_client(
    exchange_id: str = "binance",
) -> AsyncGenerator[ExchangeClient, None]:
    """
    Dependency to get an exchange client.

    Args:
        exchange_id: Exchange identifier

    Yields:
        ExchangeClient instance
    """
    client = await exchange_manager.get_client(exchange_id)
    yield client


async def get_screener(
    client: ExchangeClient = Depends(get_exchange_client),
) -> SolidityScreener:
    """Dependency to get a screener bound to the pooled client."""
    return SolidityScreener(client)


async def get_scanner(
    screener: SolidityScreener = Depends(get_screener),
) -> BatchScanner:
    """Dependency to get a batch scanner."""
    return BatchScanner(screener)
