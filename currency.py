"""
Currency conversion and price formatting for listing display.

Rates are multipliers against EUR. Conversion goes through EUR, so only one
rate per currency is needed.
"""
import logging
from typing import Callable, Dict, Mapping, Optional

from babel import Locale
from babel.numbers import format_currency

from errors import UnsupportedCurrency

logger = logging.getLogger(__name__)

BASE_CURRENCY = "EUR"
PREFERENCE_KEY = "preferredCurrency"

DEFAULT_RATES: Dict[str, float] = {
    "EUR": 1.0,
    "USD": 1.09,
    "GBP": 0.86,
    "CHF": 0.96,
    "PLN": 4.31,
    "CZK": 25.21,
    "SEK": 11.27,
    "DKK": 7.46,
    "NOK": 11.46,
}

LOCALES: Dict[str, str] = {
    "EUR": "de_DE",
    "USD": "en_US",
    "GBP": "en_GB",
    "CHF": "de_CH",
    "PLN": "pl_PL",
    "CZK": "cs_CZ",
    "SEK": "sv_SE",
    "DKK": "da_DK",
    "NOK": "nb_NO",
}


class RateTable:
    def __init__(self, rates: Optional[Mapping[str, float]] = None):
        self._rates: Dict[str, float] = dict(rates or DEFAULT_RATES)

    def __contains__(self, code: str) -> bool:
        return code in self._rates

    def codes(self):
        return sorted(self._rates)

    def rate(self, code: str) -> float:
        try:
            return self._rates[code]
        except KeyError:
            raise UnsupportedCurrency(code) from None

    def refresh(self, source: Optional[Callable[[], Mapping[str, float]]] = None) -> None:
        """Reload rates from `source`, or reset to the defaults when none is given.

        A source that fails or omits the base currency leaves the table untouched.
        """
        if source is None:
            self._rates = dict(DEFAULT_RATES)
            return
        try:
            fetched = dict(source())
        except Exception:
            logger.exception("Exchange rate refresh failed, keeping current rates")
            return
        if fetched.get(BASE_CURRENCY) != 1:
            logger.warning("Rate source is not EUR-based, ignoring it")
            return
        self._rates = fetched
        logger.info("Exchange rates refreshed for %d currencies", len(fetched))


rates = RateTable()


def convert(amount: Optional[float], from_currency: str = BASE_CURRENCY,
            to_currency: str = BASE_CURRENCY, table: Optional[RateTable] = None) -> float:
    if amount is None:
        return 0
    table = table or rates
    if from_currency == to_currency:
        table.rate(to_currency)
        return amount
    amount_in_eur = amount if from_currency == BASE_CURRENCY else amount / table.rate(from_currency)
    return amount_in_eur * table.rate(to_currency)


def format_price(amount: Optional[float], currency: str) -> str:
    """Render an amount with the symbol and separators of the currency's home locale."""
    if amount is None:
        return ""
    locale = LOCALES.get(currency, "en_US")
    # Up to two fraction digits, none for whole amounts
    pattern = Locale.parse(locale).currency_formats["standard"].pattern.replace("0.00", "0.##")
    return format_currency(amount, currency, format=pattern, locale=locale, currency_digits=False)


class CurrencyPreference:
    """The user's display currency, persisted in client storage."""

    def __init__(self, storage, table: Optional[RateTable] = None):
        self.storage = storage
        self.table = table or rates

    @property
    def currency(self) -> str:
        code = self.storage.get(PREFERENCE_KEY)
        return code if code in self.table else BASE_CURRENCY

    def change(self, code: str) -> str:
        code = code.upper()
        if code not in self.table:
            raise UnsupportedCurrency(code)
        self.storage.set(PREFERENCE_KEY, code)
        return code

    def convert(self, amount: Optional[float], from_currency: str = BASE_CURRENCY) -> float:
        return convert(amount, from_currency, self.currency, self.table)

    def format(self, amount: Optional[float], from_currency: str = BASE_CURRENCY) -> str:
        if amount is None:
            return ""
        return format_price(self.convert(amount, from_currency), self.currency)
