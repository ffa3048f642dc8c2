from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]

_DEFAULT_EXCHANGE_RATES = "NGN:1430,EUR:0.92,GBP:0.79"


def _getenv(name: str, default: str) -> str:
    return os.environ.get(name, default).strip()


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    database_url: str | None
    base_currency: str = "USD"
    # Units of each currency per 1 unit of base_currency (base itself included).
    exchange_rates: dict[str, Decimal] = field(
        default_factory=lambda: {"USD": Decimal("1")}
    )
    commission_percent: Decimal = Decimal("10")
    analytics_epoch: date = date(2020, 1, 1)

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"


def parse_exchange_rates(raw: str, base_currency: str) -> dict[str, Decimal]:
    """Parse ``CODE:rate`` pairs, e.g. ``"NGN:1430,EUR:0.92"``.

    The base currency is always present with rate 1.
    """
    rates: dict[str, Decimal] = {base_currency: Decimal("1")}
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        code, sep, value = chunk.partition(":")
        code = code.strip().upper()
        if not sep or not code:
            raise ValueError(f"EXCHANGE_RATES entry must be CODE:rate (got {chunk!r})")
        try:
            rate = Decimal(value.strip())
        except InvalidOperation:
            raise ValueError(
                f"EXCHANGE_RATES rate for {code} must be a number (got {value!r})"
            ) from None
        if not rate.is_finite() or rate <= 0:
            raise ValueError(f"EXCHANGE_RATES rate for {code} must be > 0 (got {value!r})")
        if code == base_currency and rate != 1:
            raise ValueError(f"EXCHANGE_RATES rate for base {code} must be 1")
        rates[code] = rate
    return rates


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()
    log_json_raw = _getenv("LOG_JSON", "false").lower()
    port_raw = _getenv("PORT", "8000")

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    if log_json_raw not in ("true", "false", "1", "0"):
        raise ValueError(f"LOG_JSON must be true|false (got {log_json_raw!r})")

    try:
        port = int(port_raw)
    except ValueError:
        raise ValueError(f"PORT must be an integer (got {port_raw!r})") from None

    database_url = _getenv("DATABASE_URL", "") or None

    base_currency = _getenv("BASE_CURRENCY", "USD").upper()
    if len(base_currency) != 3 or not base_currency.isalpha():
        raise ValueError(
            f"BASE_CURRENCY must be a 3-letter code (got {base_currency!r})"
        )
    exchange_rates = parse_exchange_rates(
        _getenv("EXCHANGE_RATES", _DEFAULT_EXCHANGE_RATES), base_currency
    )

    commission_raw = _getenv("COMMISSION_PERCENT", "10")
    try:
        commission_percent = Decimal(commission_raw)
    except InvalidOperation:
        raise ValueError(
            f"COMMISSION_PERCENT must be a number (got {commission_raw!r})"
        ) from None
    if not commission_percent.is_finite() or not 0 <= commission_percent <= 100:
        raise ValueError(
            f"COMMISSION_PERCENT must be between 0 and 100 (got {commission_raw!r})"
        )

    epoch_raw = _getenv("ANALYTICS_EPOCH", "2020-01-01")
    try:
        analytics_epoch = date.fromisoformat(epoch_raw)
    except ValueError:
        raise ValueError(
            f"ANALYTICS_EPOCH must be an ISO date (got {epoch_raw!r})"
        ) from None

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=log_json_raw in ("true", "1"),
        port=port,
        database_url=database_url,
        base_currency=base_currency,
        exchange_rates=exchange_rates,
        commission_percent=commission_percent,
        analytics_epoch=analytics_epoch,
    )


# Read once at import; tests monkeypatch the environment and call load_settings().
SETTINGS = load_settings()
