"""
API routes for solidity screening.

Provides endpoints for:
- Eligible symbol listing
- Per-symbol solidity analysis
- Universe scans
- Candlestick history and live kline events
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect

from config.settings import settings
from data_engine import (
    BatchScanner,
    Candle,
    ExchangeClient,
    NetworkError,
    ParseError,
    ScanReport,
    ScreenerError,
    SolidityResult,
    SolidityScreener,
)
from data_engine.stream_manager import stream_manager
from api.dependencies import get_exchange_client, get_scanner, get_screener

logger = logging.getLogger(__name__)

router = APIRouter()


def _to_http_error(e: ScreenerError, action: str) -> HTTPException:
    status_code = 502 if isinstance(e, (NetworkError, ParseError)) else 500
    return HTTPException(status_code=status_code, detail=f"Failed to {action}: {e}")


@router.get("/health")
async def health(client: ExchangeClient = Depends(get_exchange_client)) -> dict:
    """Exchange client health and running streams."""
    return {
        "exchange": client.status,
        "streams": stream_manager.active_keys,
    }


@router.get("/symbols", response_model=list[str])
async def list_symbols(
    min_volume: float = Query(default=settings.default_min_volume, ge=0, description="Minimum 24h quote volume"),
    screener: SolidityScreener = Depends(get_screener),
) -> list[str]:
    """
    List symbols quoted in the configured asset with enough 24h volume.

    Example:
        GET /symbols?min_volume=1000000
    """
    try:
        return await screener.list_eligible_symbols(min_volume)
    except ScreenerError as e:
        raise _to_http_error(e, "list symbols")


@router.get("/solidity/{symbol}", response_model=SolidityResult)
async def get_solidity(
    symbol: str,
    ratio: float = Query(default=settings.default_ratio_threshold, gt=0, description="Concentration threshold in percent"),
    screener: SolidityScreener = Depends(get_screener),
) -> SolidityResult:
    """
    Analyze one symbol's order book for a dominant order.

    Example:
        GET /solidity/BTCUSDT?ratio=10
    """
    try:
        return await screener.analyze_solidity(symbol.upper(), ratio)
    except ScreenerError as e:
        raise _to_http_error(e, f"analyze {symbol}")


@router.get("/scan", response_model=ScanReport)
async def scan(
    min_volume: float = Query(default=settings.default_min_volume, ge=0, description="Minimum 24h quote volume"),
    ratio: float = Query(default=settings.default_ratio_threshold, gt=0, description="Concentration threshold in percent"),
    scanner: BatchScanner = Depends(get_scanner),
) -> ScanReport:
    """
    Scan every eligible symbol. Per-symbol failures are reported, not raised.

    Example:
        GET /scan?min_volume=1000000&ratio=10
    """
    try:
        return await scanner.scan(min_volume, ratio)
    except ScreenerError as e:
        raise _to_http_error(e, "scan symbols")


@router.get("/klines/{symbol}", response_model=list[Candle])
async def get_klines(
    symbol: str,
    interval: str = Query(default=settings.kline_default_interval, description="Candle interval"),
    limit: int = Query(default=settings.kline_default_limit, ge=1, le=1000, description="Number of candles"),
    client: ExchangeClient = Depends(get_exchange_client),
) -> list[Candle]:
    """
    Fetch recent candlesticks.

    Example:
        GET /klines/BTCUSDT?interval=1m&limit=500
    """
    try:
        return await client.fetch_klines(symbol.upper(), interval, limit)
    except ScreenerError as e:
        raise _to_http_error(e, f"fetch klines for {symbol}")


@router.websocket("/klines/{symbol}/stream")
async def stream_klines_ws(
    websocket: WebSocket,
    symbol: str,
    interval: str = settings.kline_default_interval,
    limit: int = settings.kline_default_limit,
):
    """
    Relay kline merge events: a snapshot first, then replace/append events.

    A failed event is sent before the socket closes when the stream stops,
    including reason "replaced" when another client opens the same
    symbol and interval.
    """
    await websocket.accept()
    symbol = symbol.upper()
    _, subscription = await stream_manager.start_stream(symbol, interval, limit)
    try:
        async for event in subscription:
            await websocket.send_json(event.model_dump(mode="json"))
        await websocket.close()
    except WebSocketDisconnect:
        logger.info("Client disconnected from %s@%s", symbol, interval)
    finally:
        if stream_manager.get_stream(symbol, interval) is subscription:
            await stream_manager.stop_stream(symbol, interval)
        else:
            await subscription.close()
