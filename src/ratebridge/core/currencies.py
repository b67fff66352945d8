"""
Fixed catalog of supported currencies.

Built once at import time and never mutated. Lookups are case-sensitive on the
stored (uppercase) keys; use `normalize_currency` on user input first.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from types import MappingProxyType


@dataclass(frozen=True)
class CurrencyInfo:
    code: str
    name: str
    symbol: str


_CODE_RE = re.compile(r"^[A-Z]{3}$")

_RAW: tuple[tuple[str, str, str], ...] = (
    ("EUR", "Euro", "€"),
    ("USD", "US Dollar", "$"),
    ("JPY", "Japanese Yen", "¥"),
    ("BGN", "Bulgarian Lev", "лв"),
    ("CZK", "Czech Republic Koruna", "Kč"),
    ("DKK", "Danish Krone", "kr"),
    ("GBP", "British Pound Sterling", "£"),
    ("HUF", "Hungarian Forint", "Ft"),
    ("PLN", "Polish Zloty", "zł"),
    ("RON", "Romanian Leu", "lei"),
    ("SEK", "Swedish Krona", "kr"),
    ("CHF", "Swiss Franc", "Fr"),
    ("ISK", "Icelandic Króna", "kr"),
    ("NOK", "Norwegian Krone", "kr"),
    ("HRK", "Croatian Kuna", "kn"),
    ("RUB", "Russian Ruble", "₽"),
    ("TRY", "Turkish Lira", "₺"),
    ("AUD", "Australian Dollar", "A$"),
    ("BRL", "Brazilian Real", "R$"),
    ("CAD", "Canadian Dollar", "C$"),
    ("CNY", "Chinese Yuan", "¥"),
    ("HKD", "Hong Kong Dollar", "HK$"),
    ("IDR", "Indonesian Rupiah", "Rp"),
    ("ILS", "Israeli New Sheqel", "₪"),
    ("INR", "Indian Rupee", "₹"),
    ("KRW", "South Korean Won", "₩"),
    ("MXN", "Mexican Peso", "$"),
    ("MYR", "Malaysian Ringgit", "RM"),
    ("NZD", "New Zealand Dollar", "NZ$"),
    ("PHP", "Philippine Peso", "₱"),
    ("SGD", "Singapore Dollar", "S$"),
    ("THB", "Thai Baht", "฿"),
    ("ZAR", "South African Rand", "R"),
)

CURRENCIES: MappingProxyType[str, CurrencyInfo] = MappingProxyType(
    {code: CurrencyInfo(code=code, name=name, symbol=symbol) for code, name, symbol in _RAW}
)

_CODES: frozenset[str] = frozenset(CURRENCIES)


def normalize_currency(raw: object) -> str | None:
    if not isinstance(raw, str):
        return None
    code = raw.strip().upper()
    if not _CODE_RE.match(code):
        return None
    return code


def is_supported_currency(code: object) -> bool:
    return isinstance(code, str) and code in _CODES


def all_currency_codes() -> frozenset[str]:
    return _CODES


def currency_info(code: object) -> CurrencyInfo | None:
    if not isinstance(code, str):
        return None
    return CURRENCIES.get(code)


def ordered_currency_codes() -> list[str]:
    # Catalog order, used for deterministic sweeps.
    return [code for code, _, _ in _RAW]
