import asyncio

import httpx
import pytest

from marketpulse.aggregator import CandleAggregator
from marketpulse.config import load_config
from marketpulse.history import HistoryError, KrakenHistoryClient, warmup

NOW = 1_700_000_000.0


def ohlc_rows(count, start=1_699_990_000):
    return [[start + i * 60, "2.50", "2.60", "2.40", "2.55", "2.51", "1000.5", 12] for i in range(count)]


def client_for(payload, seen=None):
    def handler(request):
        if seen is not None:
            seen.append(request)
        return httpx.Response(200, json=payload)

    return KrakenHistoryClient("https://api.kraken.test", transport=httpx.MockTransport(handler))


def test_fetch_ohlc_drops_open_candle():
    seen = []
    payload = {"error": [], "result": {"XXRPZUSD": ohlc_rows(5), "last": 1_699_990_240}}
    candles = asyncio.run(client_for(payload, seen).fetch_ohlc("XRP/USD", 60))

    assert len(candles) == 4
    assert candles[0].symbol == "XRPUSD"
    assert candles[0].close == 2.55
    assert candles[0].volume == 1000.5
    assert seen[0].url.path == "/0/public/OHLC"
    assert seen[0].url.params["pair"] == "XRPUSD"
    assert seen[0].url.params["interval"] == "1"


def test_fetch_ohlc_error_payload():
    payload = {"error": ["EQuery:Unknown asset pair"]}
    with pytest.raises(HistoryError):
        asyncio.run(client_for(payload).fetch_ohlc("FOO/BAR", 60))


@pytest.fixture
def settings():
    return load_config(SYMBOLS="XRP/USD", PERFORMANCE_STATE_PATH="", WARMUP_CANDLES=150)


def test_warmup_uses_exchange_history(settings):
    rows = [[(int(NOW) // 60 - 10 + i) * 60, "1", "1", "1", "1", "1", "1", 1] for i in range(10)]
    agg = CandleAggregator(interval_s=60)
    payload = {"error": [], "result": {"XRPUSD": rows}}
    seeded = asyncio.run(warmup(agg, "XRP/USD", settings, client=client_for(payload), now=NOW))
    assert seeded == 9
    assert len(agg.snapshot("XRPUSD")) == 9


def test_warmup_falls_back_to_synthetic(settings):
    def failing(request):
        return httpx.Response(500)

    client = KrakenHistoryClient("https://api.kraken.test", transport=httpx.MockTransport(failing))
    agg = CandleAggregator(interval_s=60)
    seeded = asyncio.run(warmup(agg, "XRP/USD", settings, client=client, now=NOW))
    assert seeded == 150
    candles = agg.snapshot("XRPUSD")
    assert candles[-1].time == int(NOW // 60) * 60 - 60


def test_warmup_without_exchange(settings):
    offline = settings.model_copy(update={"WARMUP_FROM_EXCHANGE": False})
    agg = CandleAggregator(interval_s=60)
    assert asyncio.run(warmup(agg, "XRP/USD", offline, now=NOW)) == 150
