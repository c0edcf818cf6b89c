from decimal import Decimal

from config import BotConfig, default_plans
from exchange.models import Timeframe


def test_plan_weights_sum_to_one():
    for plan in default_plans().values():
        assert sum(plan.timeframe_weights.values()) == Decimal("1")
        assert set(plan.timeframe_weights) == set(Timeframe)


def test_plan_sizing():
    plans = default_plans()
    assert (plans["short"].sl_multiplier, plans["short"].tp_multiplier) == (Decimal("1.0"), Decimal("1.5"))
    assert plans["long"].fallback_tp_pct == Decimal("0.15")
    assert plans["mid"].weight(Timeframe.M5) == Decimal("0.35")


def test_defaults():
    config = BotConfig()
    assert config.cache.max_bars == 500
    assert config.feed.reconnect_base_ms == 5000
    assert config.feed.reconnect_cap_ms == 30000
    assert config.feed.max_reconnect_attempts == 10
    assert config.fallback.interval_sec == 120
    assert config.strategy.default_plan == "mid"


def test_from_env_overrides(monkeypatch):
    monkeypatch.setenv("FEED_ENABLED", "false")
    monkeypatch.setenv("MAX_BARS", "300")
    monkeypatch.setenv("DB_PATH", "/tmp/x.db")
    monkeypatch.setenv("DEFAULT_PLAN", "long")
    monkeypatch.setenv("COINGECKO_BASE_URL", "http://localhost:9000")

    config = BotConfig.from_env()
    assert config.feed.enabled is False
    assert config.fallback.enabled is True
    assert config.cache.max_bars == 300
    assert config.storage.db_path == "/tmp/x.db"
    assert config.strategy.default_plan == "long"
    assert config.fallback.base_url == "http://localhost:9000"


def test_configs_are_independent():
    a, b = BotConfig(), BotConfig()
    a.feed.enabled = False
    assert b.feed.enabled is True
