"""
Money helpers built on py-moneyed and Babel.

Amounts are ``Decimal`` everywhere and every rounding is ROUND_HALF_UP,
so a prorated charge, the invoice line and the processor's minor units
always agree.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from babel import Locale
from babel.core import UnknownLocaleError
from babel.numbers import format_currency, get_currency_precision
from moneyed import Currency, Money, get_currency
from moneyed.classes import CurrencyDoesNotExist

EUR = Currency("EUR")

DEFAULT_CURRENCY = "EUR"
DEFAULT_LOCALE = "es_ES"


def round_half_up(amount: Decimal | int | str, places: int = 2) -> Decimal:
    """Round to ``places`` decimals, halves away from zero."""
    if not isinstance(amount, Decimal):
        amount = Decimal(str(amount))
    return amount.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def to_decimal(amount: int | float | Decimal | str) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))


class MoneyHandler:
    """Creates, formats and converts billing amounts for one currency and locale."""

    def __init__(
        self, default_currency: str = DEFAULT_CURRENCY, default_locale: str = DEFAULT_LOCALE
    ) -> None:
        self.default_currency = self._currency(default_currency)
        self.default_locale = self._locale(default_locale)

    def _currency(self, code: str) -> Currency:
        try:
            return get_currency(code.upper())
        except CurrencyDoesNotExist:
            raise ValueError(f"Invalid currency code: {code}")

    def _locale(self, code: str) -> str:
        # Unknown locales format as Spanish rather than failing an invoice.
        try:
            Locale.parse(code)
            return code
        except (UnknownLocaleError, ValueError):
            return DEFAULT_LOCALE

    def create_money(
        self, amount: int | float | Decimal | str, currency: str | None = None
    ) -> Money:
        currency_obj = self._currency(currency) if currency else self.default_currency
        return Money(amount=to_decimal(amount), currency=currency_obj)

    def format_money(self, money: Money, locale: str | None = None, **kwargs: Any) -> str:
        """Locale-aware string, e.g. ``28,00 €`` for es_ES."""
        try:
            return format_currency(
                money.amount,
                money.currency.code,
                locale=self._locale(locale or self.default_locale),
                **kwargs,
            )
        except (TypeError, ValueError):
            return f"{money.currency.code} {money.amount}"

    def money_to_minor_units(self, money: Money) -> int:
        """Amount in the currency's smallest unit (cents for EUR), as processors expect."""
        precision = get_currency_precision(money.currency.code)
        return int(round_half_up(money.amount, precision).scaleb(precision))


money_handler = MoneyHandler()


def create_money(amount: int | float | Decimal | str, currency: str = DEFAULT_CURRENCY) -> Money:
    return money_handler.create_money(amount, currency)


def format_money(money: Money, locale: str | None = None, **kwargs: Any) -> str:
    return money_handler.format_money(money, locale, **kwargs)


__all__ = [
    "EUR",
    "MoneyHandler",
    "money_handler",
    "create_money",
    "format_money",
    "round_half_up",
    "to_decimal",
]
