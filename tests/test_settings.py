"""Tests for configuration settings and game rules."""

from datetime import UTC, timedelta
from decimal import Decimal

import pytest
from pydantic import ValidationError


def test_settings_loads_from_env(monkeypatch):
    """Test that settings loads from environment variables."""
    from farm_ledger.config.settings import get_settings

    monkeypatch.setenv("FARM_DATA_DIR", "/tmp/farm")
    monkeypatch.setenv("FARM_MAIN_CROP_PRICE", "0.25")
    monkeypatch.setenv("FARM_LEDGER_HISTORY_CAP", "50")
    get_settings.cache_clear()

    settings = get_settings()

    assert settings.data_dir == "/tmp/farm"
    assert settings.main_crop_price == 0.25
    assert settings.ledger_history_cap == 50
    get_settings.cache_clear()


def test_settings_has_defaults():
    """Test that settings has the documented game-balance defaults."""
    from farm_ledger.config.settings import FlatSettings

    settings = FlatSettings(_env_file=None)

    assert settings.main_crop_price == 0.15
    assert settings.specialty_crop_price == 0.20
    assert settings.animal_delivery_value == 160.0
    assert settings.animal_delivery_payment == 60.0
    assert settings.animals_per_delivery == 4
    assert settings.feed_per_delivery == 8
    assert settings.delivery_lookback_minutes == 120
    assert settings.delivery_lookahead_minutes == 10
    assert settings.manager_reserve == 5000.0
    assert settings.abuse_ignore_before is None


def test_settings_are_cached():
    """Test that get_settings returns cached instance."""
    from farm_ledger.config.settings import get_settings

    get_settings.cache_clear()

    settings1 = get_settings()
    settings2 = get_settings()

    assert settings1 is settings2


def test_history_cap_must_be_positive(monkeypatch):
    """Test that a zero history cap is rejected."""
    from farm_ledger.config.settings import FlatSettings

    monkeypatch.setenv("FARM_LEDGER_HISTORY_CAP", "0")

    with pytest.raises(ValidationError):
        FlatSettings(_env_file=None)


def test_get_rules_converts_settings(monkeypatch):
    """Test that GameRules carries Decimal money and timedelta windows."""
    from farm_ledger.config.settings import get_settings
    from farm_ledger.rules import get_rules

    monkeypatch.setenv("FARM_ABUSE_IGNORE_BEFORE", "2024-03-01T00:00:00")
    monkeypatch.setenv("FARM_DELIVERY_LOOKBACK_MINUTES", "90")
    get_settings.cache_clear()

    rules = get_rules()

    assert rules.main_crop_price == Decimal("0.15")
    assert rules.animal_delivery_value == Decimal("160")
    assert rules.delivery_lookback == timedelta(minutes=90)
    assert rules.seed_return_window == timedelta(hours=72)
    # Naive cutoffs are read as UTC
    assert rules.abuse_ignore_before.tzinfo == UTC
    get_settings.cache_clear()


def test_rules_overrides_return_copy():
    """Test that with_overrides leaves the original rules untouched."""
    from farm_ledger.rules import GameRules

    rules = GameRules()
    cheaper = rules.with_overrides(main_crop_price=Decimal("0.10"))

    assert cheaper.main_crop_price == Decimal("0.10")
    assert rules.main_crop_price == Decimal("0.15")


def test_money_rounds_half_up():
    from farm_ledger.rules import money

    assert money("0.125") == Decimal("0.13")
    assert money(7.5) == Decimal("7.50")
    assert money(Decimal("29.995")) == Decimal("30.00")


def test_configure_logging_accepts_json_format():
    """Test that an explicit level and format are accepted."""
    import structlog

    from farm_ledger.config import configure_logging

    configure_logging(level="WARNING", format="json")

    assert structlog.is_configured()
    structlog.reset_defaults()
