import pytest

from marketpulse.config import ConfigurationError, load_config, normalize_symbol


def test_defaults_are_valid():
    s = load_config(SYMBOLS="XRP/USD", PERFORMANCE_STATE_PATH="")
    assert s.CANDLE_INTERVAL_S == 60
    assert s.CANDLE_BUFFER_SIZE == 10_000
    assert s.MAX_ACTIVE_SIGNALS_PER_SYMBOL == 2
    assert s.SIGNAL_TTL_S == 8 * 3600
    assert (s.CONFIDENCE_MIN, s.CONFIDENCE_MAX) == (25, 85)
    assert s.state_path is None


def test_symbol_list_is_normalized():
    s = load_config(SYMBOLS="xrp/usd, BTC-USD ,", PERFORMANCE_STATE_PATH="")
    assert s.pairs == ["XRP/USD", "BTC-USD"]
    assert s.symbols == ["XRPUSD", "BTCUSD"]
    assert normalize_symbol(" eth/usd ") == "ETHUSD"


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("CANDLE_INTERVAL_S", "300")
    monkeypatch.setenv("SYMBOLS", "ETH/USD")
    s = load_config(PERFORMANCE_STATE_PATH="")
    assert s.CANDLE_INTERVAL_S == 300
    assert s.symbols == ["ETHUSD"]


@pytest.mark.parametrize("overrides", [
    {"CANDLE_INTERVAL_S": 45},
    {"SYMBOLS": " , "},
    {"BACKOFF_BASE_S": 10.0, "BACKOFF_CAP_S": 5.0},
    {"CONFIDENCE_MIN": 90.0},
    {"HEARTBEAT_INTERVAL_S": 0},
    {"MAX_ACTIVE_SIGNALS_PER_SYMBOL": 0},
    {"CANDLE_BUFFER_SIZE": 10},
])
def test_invalid_configuration_fails_fast(overrides):
    overrides.setdefault("SYMBOLS", "XRP/USD")
    with pytest.raises(ConfigurationError):
        load_config(PERFORMANCE_STATE_PATH="", **overrides)


def test_non_numeric_value_is_a_configuration_error():
    with pytest.raises(ConfigurationError):
        load_config(SYMBOLS="XRP/USD", CANDLE_INTERVAL_S="abc")
