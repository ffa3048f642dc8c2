from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from app.core.config import AppEnv, Settings, load_settings, parse_exchange_rates

_VARS = (
    "APP_ENV",
    "LOG_LEVEL",
    "LOG_JSON",
    "PORT",
    "DATABASE_URL",
    "BASE_CURRENCY",
    "EXCHANGE_RATES",
    "COMMISSION_PERCENT",
    "ANALYTICS_EPOCH",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _VARS:
        monkeypatch.delenv(name, raising=False)


# ---- valid values ----


def test_load_settings_defaults() -> None:
    settings = load_settings()
    assert settings.app_env == "dev"
    assert settings.log_level == "info"
    assert settings.log_json is False
    assert settings.port == 8000
    assert settings.database_url is None
    assert settings.base_currency == "USD"
    assert settings.exchange_rates["NGN"] == Decimal("1430")
    assert settings.exchange_rates["USD"] == Decimal("1")
    assert settings.commission_percent == Decimal("10")
    assert settings.analytics_epoch == date(2020, 1, 1)


def test_load_settings_respects_env_vars(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_ENV", "prod")
    monkeypatch.setenv("LOG_LEVEL", "error")
    monkeypatch.setenv("LOG_JSON", "true")
    monkeypatch.setenv("DATABASE_URL", "postgresql+asyncpg://lms@db/lms")
    monkeypatch.setenv("COMMISSION_PERCENT", "12.5")
    monkeypatch.setenv("ANALYTICS_EPOCH", "2018-06-01")
    settings = load_settings()
    assert settings.app_env == "prod"
    assert settings.log_level == "error"
    assert settings.log_json is True
    assert settings.database_url == "postgresql+asyncpg://lms@db/lms"
    assert settings.commission_percent == Decimal("12.5")
    assert settings.analytics_epoch == date(2018, 6, 1)


def test_load_settings_normalizes_case_and_whitespace(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("APP_ENV", "  PROD  ")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("BASE_CURRENCY", " eur ")
    monkeypatch.setenv("EXCHANGE_RATES", "usd:1.09")
    settings = load_settings()
    assert settings.app_env == "prod"
    assert settings.log_level == "debug"
    assert settings.base_currency == "EUR"
    assert settings.exchange_rates == {"EUR": Decimal("1"), "USD": Decimal("1.09")}


# ---- invalid values ----


@pytest.mark.parametrize(
    ("name", "value", "message"),
    [
        ("APP_ENV", "staging", "APP_ENV must be dev|test|prod"),
        ("LOG_LEVEL", "verbose", "LOG_LEVEL must be debug|info|warning|error"),
        ("LOG_JSON", "yes", "LOG_JSON must be true|false"),
        ("PORT", "eighty", "PORT must be an integer"),
        ("BASE_CURRENCY", "DOLLAR", "BASE_CURRENCY must be a 3-letter code"),
        ("COMMISSION_PERCENT", "abc", "COMMISSION_PERCENT must be a number"),
        ("COMMISSION_PERCENT", "150", "COMMISSION_PERCENT must be between 0 and 100"),
        ("ANALYTICS_EPOCH", "last year", "ANALYTICS_EPOCH must be an ISO date"),
    ],
)
def test_load_settings_rejects_invalid_values(
    monkeypatch: pytest.MonkeyPatch, name: str, value: str, message: str
) -> None:
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError, match=message.replace("|", r"\|")):
        load_settings()


# ---- exchange rates ----


def test_parse_exchange_rates_adds_base() -> None:
    rates = parse_exchange_rates("NGN:1430, EUR:0.92,", "USD")
    assert rates == {"USD": Decimal("1"), "NGN": Decimal("1430"), "EUR": Decimal("0.92")}


@pytest.mark.parametrize(
    ("raw", "message"),
    [
        ("NGN", "must be CODE:rate"),
        ("NGN:lots", "must be a number"),
        ("NGN:0", "must be > 0"),
        ("NGN:-3", "must be > 0"),
        ("USD:2", "base USD must be 1"),
    ],
)
def test_parse_exchange_rates_rejects_bad_entries(raw: str, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        parse_exchange_rates(raw, "USD")


# ---- Settings properties ----


def _make_settings(app_env: AppEnv = "dev") -> Settings:
    return Settings(  # type: ignore[arg-type]
        app_env=app_env,
        log_level="info",
        log_json=False,
        port=8000,
        database_url=None,
    )


@pytest.mark.parametrize("app_env", ["dev", "test", "prod"])
def test_settings_env_flags(app_env: AppEnv) -> None:
    s = _make_settings(app_env)
    assert (s.is_dev, s.is_test, s.is_prod) == (
        app_env == "dev",
        app_env == "test",
        app_env == "prod",
    )


def test_settings_is_frozen() -> None:
    s = _make_settings()
    with pytest.raises(AttributeError):
        s.app_env = "prod"  # type: ignore[misc]
