"""Static-rate currency conversion.

Rates are configuration (EXCHANGE_RATES), expressed as units of each
currency per one unit of the base currency.  They are not fetched live.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from decimal import ROUND_HALF_UP, Decimal

from app.core.config import SETTINGS

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")


class UnsupportedCurrency(ValueError):
    def __init__(self, code: str) -> None:
        super().__init__(f"unsupported currency: {code!r}")
        self.code = code


def quantize_money(amount: Decimal) -> Decimal:
    return amount.quantize(_CENT, rounding=ROUND_HALF_UP)


class CurrencyConverter:
    def __init__(
        self,
        rates: Mapping[str, Decimal] | None = None,
        base_currency: str | None = None,
    ) -> None:
        self.base_currency = (base_currency or SETTINGS.base_currency).upper()
        self._rates = dict(rates if rates is not None else SETTINGS.exchange_rates)
        self._rates.setdefault(self.base_currency, Decimal("1"))

    @property
    def currencies(self) -> frozenset[str]:
        return frozenset(self._rates)

    def supports(self, code: str) -> bool:
        return code.upper() in self._rates

    def _rate(self, code: str) -> Decimal:
        rate = self._rates.get(code.upper())
        if rate is None:
            raise UnsupportedCurrency(code)
        return rate

    def convert(self, amount: Decimal, from_currency: str, to_currency: str) -> Decimal:
        """Convert via the base currency, rounded to cents (half-up).

        Raises UnsupportedCurrency if either code is missing from the table.
        """
        from_rate = self._rate(from_currency)
        to_rate = self._rate(to_currency)
        if from_currency.upper() == to_currency.upper():
            return quantize_money(amount)
        return quantize_money(amount / from_rate * to_rate)

    def from_base(self, amount: Decimal, to_currency: str) -> Decimal:
        return self.convert(amount, self.base_currency, to_currency)

    def resolve_display(self, requested: str) -> tuple[str, bool]:
        """Pick the display currency: ``(code, fell_back)``.

        Unsupported codes fall back to the base currency instead of failing.
        """
        try:
            self._rate(requested)
        except UnsupportedCurrency:
            logger.warning(
                "Unsupported display currency %r, falling back to %s",
                requested,
                self.base_currency,
            )
            return self.base_currency, True
        return requested.upper(), False
