import pytest
from datetime import datetime, UTC
from unittest.mock import AsyncMock, MagicMock, patch

from fastapi.testclient import TestClient
from httpx import AsyncClient, ASGITransport

from api.main import app, lifespan
from api.dependencies import get_exchange_client, get_scanner, get_screener
from data_engine import NetworkError, ParseError, ScanReport, SolidityResult, SymbolOutcome
from data_engine.kline_stream import KlineSubscription
from data_engine.models import Candle


@pytest.fixture
def screener():
    mock = MagicMock()
    mock.list_eligible_symbols = AsyncMock(return_value=["ABCUSDT"])
    mock.analyze_solidity = AsyncMock(return_value=SolidityResult(
        symbol="ABCUSDT", quote_volume=5_000_000, buy_volume=10.0, sell_volume=20.0,
    ))
    app.dependency_overrides[get_screener] = lambda: mock
    yield mock
    app.dependency_overrides.clear()


@pytest.fixture
def client_override():
    mock = MagicMock()
    mock.status = {"name": "binance", "failures": 0, "last_latency_ms": None, "is_healthy": True}
    mock.fetch_klines = AsyncMock(return_value=[
        Candle(open_time=datetime(2024, 1, 1, tzinfo=UTC), open=1, high=2, low=0.5, close=1.5, volume=10),
    ])
    app.dependency_overrides[get_exchange_client] = lambda: mock
    yield mock
    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_list_symbols(screener):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.get("/api/v1/symbols?min_volume=1000")

    assert response.status_code == 200
    assert response.json() == ["ABCUSDT"]
    screener.list_eligible_symbols.assert_awaited_once_with(1000.0)


@pytest.mark.asyncio
async def test_solidity_endpoint(screener):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.get("/api/v1/solidity/abcusdt?ratio=15")

    assert response.status_code == 200
    body = response.json()
    assert body["symbol"] == "ABCUSDT"
    assert body["buy_volume"] == 10.0
    assert body["solidity_long"] is None
    assert body["has_solidity"] is False
    screener.analyze_solidity.assert_awaited_once_with("ABCUSDT", 15.0)


@pytest.mark.asyncio
async def test_network_error_maps_to_bad_gateway(screener):
    screener.analyze_solidity.side_effect = NetworkError("depth failed", symbol="ABCUSDT")
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.get("/api/v1/solidity/ABCUSDT")

    assert response.status_code == 502
    assert "depth failed" in response.json()["detail"]


@pytest.mark.asyncio
async def test_parse_error_maps_to_bad_gateway(screener):
    screener.list_eligible_symbols.side_effect = ParseError("bad quoteVolume")
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.get("/api/v1/symbols")

    assert response.status_code == 502


@pytest.mark.asyncio
async def test_scan_endpoint():
    scanner = MagicMock()
    scanner.scan = AsyncMock(return_value=ScanReport(
        outcomes=[SymbolOutcome(symbol="BUSDT", error="NetworkError: timeout")],
        group_count=1,
    ))
    app.dependency_overrides[get_scanner] = lambda: scanner
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            response = await ac.get("/api/v1/scan?min_volume=100&ratio=20")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    body = response.json()
    assert body["group_count"] == 1
    assert body["outcomes"][0]["ok"] is False
    assert body["symbols_with_solidity"] == []
    scanner.scan.assert_awaited_once_with(100.0, 20.0)


@pytest.mark.asyncio
async def test_klines_and_health(client_override):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        klines = await ac.get("/api/v1/klines/btcusdt?interval=5m&limit=1")
        health = await ac.get("/api/v1/health")

    assert klines.status_code == 200
    assert klines.json()[0]["close"] == 1.5
    client_override.fetch_klines.assert_awaited_once_with("BTCUSDT", "5m", 1)
    assert health.json()["exchange"]["is_healthy"] is True


def test_kline_websocket_relays_events():
    class FakeStreamManager:
        active_keys = []

        async def start_stream(self, symbol, interval, limit):
            sub = KlineSubscription(symbol, interval)
            candles = [Candle(open_time=datetime(2024, 1, 1, tzinfo=UTC), open=1, high=2, low=0.5, close=1.5, volume=10)]
            sub.prime(candles)
            sub.fail("StreamError: closed")
            return candles, sub

        def get_stream(self, symbol, interval):
            return None

    with patch('api.routes.stream_manager', FakeStreamManager()):
        client = TestClient(app)
        with client.websocket_connect("/api/v1/klines/btcusdt/stream?interval=1m&limit=1") as ws:
            snapshot = ws.receive_json()
            failed = ws.receive_json()

    assert snapshot["kind"] == "snapshot"
    assert snapshot["symbol"] == "BTCUSDT"
    assert len(snapshot["candles"]) == 1
    assert failed["kind"] == "failed"
    assert failed["reason"] == "StreamError: closed"


@pytest.mark.asyncio
async def test_lifespan_closes_connections():
    with patch('api.main.exchange_manager') as mock_exchange_manager, \
         patch('api.main.stream_manager') as mock_stream_manager:
        mock_exchange_manager.get_client = AsyncMock()
        mock_exchange_manager.close_all = AsyncMock()
        mock_stream_manager.stop_all = AsyncMock()

        async with lifespan(app):
            mock_exchange_manager.get_client.assert_awaited_once()

        mock_stream_manager.stop_all.assert_awaited_once()
        mock_exchange_manager.close_all.assert_awaited_once()
